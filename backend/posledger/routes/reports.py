# Overview: Flask API routes for daily reports; parses input and returns JSON responses.

# backend/posledger/routes/reports.py
from flask import Blueprint, request, jsonify, current_app

from ..services import report_service
from ..services.report_service import ReportError
from ..validation import ConflictError, ValidationError
from posledger.time_utils import parse_report_date


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _parse_date_or_400(raw: str):
    try:
        return parse_report_date(raw), None
    except ValueError:
        return None, (jsonify({"error": "date must be YYYY-MM-DD"}), 400)


@reports_bp.get("/daily/<report_date>")
def x_read_route(report_date: str):
    """X-Read: current snapshot of a day (empty Open report if no sales yet)."""
    day, error = _parse_date_or_400(report_date)
    if error:
        return error
    return jsonify({"report": report_service.get_report(day).to_dict()}), 200


@reports_bp.post("/daily/<report_date>/finalize")
def z_read_route(report_date: str):
    """Z-Read: finalize a day. Repeating it returns the same report."""
    day, error = _parse_date_or_400(report_date)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    try:
        snapshot = report_service.finalize_report(day, actor=payload.get("actor"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ReportError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to finalize daily report")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"report": snapshot.to_dict()}), 200


@reports_bp.get("/daily")
def list_reports_route():
    """
    Query params:
    - limit: int (default 30)
    - offset: int (default 0)
    """
    limit = request.args.get("limit", default=30, type=int)
    offset = request.args.get("offset", default=0, type=int)
    reports = report_service.list_reports(limit=limit, offset=offset)
    return jsonify({"reports": [r.to_dict() for r in reports]}), 200


@reports_bp.get("/daily/<report_date>/reconcile")
def reconcile_route(report_date: str):
    day, error = _parse_date_or_400(report_date)
    if error:
        return error
    return jsonify(report_service.reconcile_report(day)), 200


@reports_bp.get("/exclusions")
def list_exclusions_route():
    include_resolved = request.args.get("include_resolved", "").lower() in ("1", "true", "yes")
    exclusions = report_service.list_exclusions(
        include_resolved=include_resolved,
        reason=request.args.get("reason"),
    )
    return jsonify({"exclusions": [e.to_dict() for e in exclusions]}), 200


@reports_bp.post("/exclusions/<int:exclusion_id>/resolve")
def resolve_exclusion_route(exclusion_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        exclusion = report_service.resolve_exclusion(
            exclusion_id,
            actor=payload.get("actor"),
            note=payload.get("note"),
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    if exclusion is None:
        return jsonify({"error": "Exclusion not found"}), 404
    return jsonify({"exclusion": exclusion.to_dict()}), 200


@reports_bp.post("/exclusions/retry")
def retry_exclusions_route():
    try:
        summary = report_service.retry_pending_aggregations()
    except Exception:
        current_app.logger.exception("Failed to retry pending aggregations")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(summary), 200
