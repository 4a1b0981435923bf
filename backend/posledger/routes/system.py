# backend/posledger/routes/system.py
"""
System health endpoint.

Checks the database and the ledger's bookkeeping tables so an operator can
tell a dead database from a backlog of unreconciled sales.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import (
    DailyReport,
    InventoryDeductionFailure,
    InventoryItem,
    ReportExclusion,
    SalesTransaction,
)
from posledger.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        transaction_count = db.session.query(SalesTransaction).count()
        item_count = db.session.query(InventoryItem).count()
        report_count = db.session.query(DailyReport).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "sales_transactions": transaction_count,
                "inventory_items": item_count,
                "daily_reports": report_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_reconciliation_backlog() -> dict:
    """
    Unresolved report exclusions and recorded deduction failures.

    Anything pending here means a settled sale is not fully reflected in the
    reports or the stock counts; the system still works, so it is 'degraded'.
    """
    start_time = time.time()
    try:
        pending_exclusions = db.session.query(ReportExclusion).filter(
            ReportExclusion.resolved_at.is_(None)
        ).count()
        deduction_failures = db.session.query(InventoryDeductionFailure).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "degraded" if pending_exclusions else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "unresolved_report_exclusions": pending_exclusions,
                "inventory_deduction_failures": deduction_failures,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Reconciliation backlog check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Reconciliation check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unavailable
    """
    start_time = time.time()

    database_health = check_database_health()
    backlog_health = check_reconciliation_backlog()

    all_checks = [database_health, backlog_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "reconciliation": backlog_health,
        }
    }

    return response, http_status
