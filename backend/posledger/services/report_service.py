# Overview: Service-layer operations for daily reports; X-Read / Z-Read aggregation and reconciliation.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import ClassVar, Union

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    ImmutableRecordError,
    DailyReport,
    DailyReportEntry,
    DailyReportItem,
    ReportExclusion,
    SalesTransaction,
    REPORT_FINALIZED,
    REPORT_OPEN,
)
from ..numbers import average_cents
from ..validation import ConflictError, ValidationError
from posledger.time_utils import business_date, parse_report_date, to_utc_z, utcnow
from .concurrency import keyed_lock, lock_for_update, run_with_retry


EXCLUSION_REPORT_FINALIZED = "report_finalized"
EXCLUSION_AGGREGATION_FAILED = "aggregation_failed"


class ReportError(Exception):
    """Raised when report generation fails."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ReportAlreadyFinalized(ReportError):
    def __init__(self, report_date: date, transaction_id: int | None = None):
        super().__init__(
            f"Daily report for {report_date.isoformat()} is already finalized",
            details={"report_date": report_date.isoformat(), "transaction_id": transaction_id},
        )
        self.report_date = report_date
        self.transaction_id = transaction_id


class ReportDateInFuture(ReportError, ValidationError):
    def __init__(self, report_date: date, today: date):
        super().__init__(
            f"Cannot finalize {report_date.isoformat()}: the business day has not started (today is {today.isoformat()})",
            details={"report_date": report_date.isoformat(), "today": today.isoformat()},
        )
        self.report_date = report_date


# =============================================================================
# SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class ReportItemLine:
    product_id: str
    product_name: str
    quantity_sold: int
    revenue_cents: int

    @property
    def average_price_cents(self) -> int:
        return average_cents(self.revenue_cents, self.quantity_sold)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity_sold": self.quantity_sold,
            "revenue_cents": self.revenue_cents,
            "average_price_cents": self.average_price_cents,
        }


@dataclass(frozen=True)
class ReportTotals:
    total_sales_cents: int = 0
    transaction_count: int = 0
    items_sold: int = 0
    discount_cents: int = 0
    tax_cents: int = 0
    tax_exempt_cents: int = 0
    # ((method, cents), ...) sorted by method
    payment_totals: tuple = ()

    @property
    def average_transaction_cents(self) -> int:
        return average_cents(self.total_sales_cents, self.transaction_count)

    def to_dict(self) -> dict:
        return {
            "total_sales_cents": self.total_sales_cents,
            "transaction_count": self.transaction_count,
            "items_sold": self.items_sold,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "tax_exempt_cents": self.tax_exempt_cents,
            "average_transaction_cents": self.average_transaction_cents,
            "payment_totals": dict(self.payment_totals),
        }


@dataclass(frozen=True)
class OpenReport:
    """X-Read: running totals of a day that can still change."""
    status: ClassVar[str] = REPORT_OPEN

    report_date: date
    totals: ReportTotals
    items: tuple = ()
    opening_time: datetime | None = None
    closing_time: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "report_date": self.report_date.isoformat(),
            "status": self.status,
            **self.totals.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "opening_time": to_utc_z(self.opening_time),
            "closing_time": to_utc_z(self.closing_time),
        }


@dataclass(frozen=True)
class FinalizedReport:
    """Z-Read: totals of a closed day; equal snapshots for every read."""
    status: ClassVar[str] = REPORT_FINALIZED

    report_date: date
    totals: ReportTotals
    items: tuple
    opening_time: datetime | None
    closing_time: datetime | None
    finalized_at: datetime
    finalized_by: str | None

    def to_dict(self) -> dict:
        return {
            "report_date": self.report_date.isoformat(),
            "status": self.status,
            **self.totals.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "opening_time": to_utc_z(self.opening_time),
            "closing_time": to_utc_z(self.closing_time),
            "finalized_at": to_utc_z(self.finalized_at),
            "finalized_by": self.finalized_by,
        }


ReportSnapshot = Union[OpenReport, FinalizedReport]


def _snapshot(report: DailyReport) -> ReportSnapshot:
    totals = ReportTotals(
        total_sales_cents=report.total_sales_cents,
        transaction_count=report.transaction_count,
        items_sold=report.items_sold,
        discount_cents=report.discount_cents,
        tax_cents=report.tax_cents,
        tax_exempt_cents=report.tax_exempt_cents,
        payment_totals=tuple(sorted((report.payment_totals or {}).items())),
    )
    items = tuple(
        ReportItemLine(row.product_id, row.product_name, row.quantity_sold, row.revenue_cents)
        for row in report.items
    )
    if report.status == REPORT_FINALIZED:
        return FinalizedReport(
            report_date=report.report_date,
            totals=totals,
            items=items,
            opening_time=report.opening_time,
            closing_time=report.closing_time,
            finalized_at=report.finalized_at,
            finalized_by=report.finalized_by,
        )
    return OpenReport(
        report_date=report.report_date,
        totals=totals,
        items=items,
        opening_time=report.opening_time,
        closing_time=report.closing_time,
    )


# =============================================================================
# AGGREGATION
# =============================================================================

def _report_timezone() -> str:
    return current_app.config.get("REPORT_TIMEZONE", "UTC")


def _find_report(report_date: date, *, lock: bool = False) -> DailyReport | None:
    query = db.session.query(DailyReport).filter_by(report_date=report_date)
    if lock:
        query = lock_for_update(query).populate_existing()
    return query.first()


def _get_or_create_report(report_date: date) -> DailyReport:
    report = _find_report(report_date, lock=True)
    if report is not None:
        return report
    try:
        with db.session.begin_nested():
            report = DailyReport(
                report_date=report_date,
                status=REPORT_OPEN,
                payment_totals={},
            )
            db.session.add(report)
    except IntegrityError:
        # Created concurrently by another writer
        report = _find_report(report_date, lock=True)
    return report


def _apply_transaction(report: DailyReport, txn: SalesTransaction) -> None:
    report.total_sales_cents += txn.total_cents
    report.transaction_count += 1
    report.items_sold += txn.items_count
    report.discount_cents += txn.discount_cents
    report.tax_cents += txn.tax_cents
    report.tax_exempt_cents += txn.tax_exempt_cents

    # JSON column: reassign so the change is tracked
    payments = dict(report.payment_totals or {})
    payments[txn.payment_method] = payments.get(txn.payment_method, 0) + txn.total_cents
    report.payment_totals = payments

    if report.opening_time is None or txn.occurred_at < report.opening_time:
        report.opening_time = txn.occurred_at
    if report.closing_time is None or txn.occurred_at > report.closing_time:
        report.closing_time = txn.occurred_at
    report.updated_at = utcnow()

    rows = {row.product_id: row for row in report.items}
    for line in txn.lines:
        if line.quantity == 0:
            continue
        row = rows.get(line.product_id)
        if row is None:
            row = DailyReportItem(
                report=report,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity_sold=0,
                revenue_cents=0,
            )
            db.session.add(row)
            rows[line.product_id] = row
        row.quantity_sold += line.quantity
        row.revenue_cents += line.line_total_cents


def record_sale(transaction_id: int) -> OpenReport:
    """
    Fold a settled sale into its business day's Open report.

    Each transaction is aggregated at most once: a DailyReportEntry with a
    unique transaction_id is written in the same commit as the totals, and a
    transaction that already has one is a no-op.

    Raises ReportAlreadyFinalized when the day was closed first.
    """
    txn = db.session.get(SalesTransaction, transaction_id)
    if txn is None:
        raise ReportError("Sales transaction not found", details={"transaction_id": transaction_id})
    report_date = business_date(txn.occurred_at, _report_timezone())

    def _op() -> ReportSnapshot:
        entry = db.session.query(DailyReportEntry).filter_by(transaction_id=transaction_id).first()
        if entry is not None:
            return _snapshot(db.session.get(DailyReport, entry.report_id))

        report = _get_or_create_report(report_date)
        if report.status == REPORT_FINALIZED:
            db.session.rollback()
            raise ReportAlreadyFinalized(report_date, transaction_id)

        sale = db.session.get(SalesTransaction, transaction_id)
        _apply_transaction(report, sale)
        db.session.add(DailyReportEntry(report_id=report.id, transaction_id=transaction_id))
        try:
            db.session.commit()
        except ImmutableRecordError:
            # Finalized by another process between the status check and the flush
            db.session.rollback()
            raise ReportAlreadyFinalized(report_date, transaction_id)
        return _snapshot(report)

    with keyed_lock("daily_report", report_date):
        return run_with_retry(_op)


def get_report(report_date) -> ReportSnapshot:
    """X-Read. A day with no sales yet reads as an empty Open report."""
    report_date = parse_report_date(report_date)
    report = _find_report(report_date)
    if report is None:
        return OpenReport(report_date=report_date, totals=ReportTotals())
    return _snapshot(report)


def finalize_report(report_date, actor: str | None = None) -> FinalizedReport:
    """
    Z-Read: close a business day.

    OPEN -> FINALIZED is a compare-and-swap (UPDATE ... WHERE status = 'OPEN')
    that also bumps version_id, so an aggregation racing with it fails its
    own version check, retries and sees the finalized status. Finalizing
    again returns the same snapshot; a day with no sales is finalized as an
    empty report.
    Dates after today's business date raise ReportDateInFuture.
    """
    report_date = parse_report_date(report_date)
    today = business_date(utcnow(), _report_timezone())
    if report_date > today:
        raise ReportDateInFuture(report_date, today)

    def _op() -> FinalizedReport:
        report = _get_or_create_report(report_date)
        if report.status == REPORT_FINALIZED:
            db.session.rollback()
            return _snapshot(_find_report(report_date))

        now = utcnow()
        stmt = (
            update(DailyReport)
            .where(DailyReport.id == report.id, DailyReport.status == REPORT_OPEN)
            .values(
                status=REPORT_FINALIZED,
                finalized_at=now,
                finalized_by=actor,
                updated_at=now,
                version_id=DailyReport.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()

        report = _find_report(report_date, lock=True)
        if result.rowcount:
            current_app.logger.info(
                "Z-Read %s finalized by %s: %s transactions, %s cents",
                report_date.isoformat(), actor or "system",
                report.transaction_count, report.total_sales_cents,
            )
        return _snapshot(report)

    with keyed_lock("daily_report", report_date):
        return run_with_retry(_op)


def list_reports(*, limit: int = 30, offset: int = 0) -> list[ReportSnapshot]:
    rows = (
        db.session.query(DailyReport)
        .order_by(DailyReport.report_date.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 366)))
        .all()
    )
    return [_snapshot(row) for row in rows]


def reconcile_report(report_date) -> dict:
    """
    Recompute a day's totals from the transactions it aggregated and compare
    them with the stored running totals.
    """
    report_date = parse_report_date(report_date)
    report = _find_report(report_date)
    if report is None:
        stored = ReportTotals()
        recomputed = ReportTotals()
    else:
        stored = _snapshot(report).totals
        txns = (
            db.session.query(SalesTransaction)
            .join(DailyReportEntry, DailyReportEntry.transaction_id == SalesTransaction.id)
            .filter(DailyReportEntry.report_id == report.id)
            .all()
        )
        payments: dict[str, int] = {}
        for txn in txns:
            payments[txn.payment_method] = payments.get(txn.payment_method, 0) + txn.total_cents
        recomputed = ReportTotals(
            total_sales_cents=sum(t.total_cents for t in txns),
            transaction_count=len(txns),
            items_sold=sum(t.items_count for t in txns),
            discount_cents=sum(t.discount_cents for t in txns),
            tax_cents=sum(t.tax_cents for t in txns),
            tax_exempt_cents=sum(t.tax_exempt_cents for t in txns),
            payment_totals=tuple(sorted(payments.items())),
        )

    open_exclusions = (
        db.session.query(func.count(ReportExclusion.id))
        .filter(ReportExclusion.report_date == report_date, ReportExclusion.resolved_at.is_(None))
        .scalar()
    )
    return {
        "report_date": report_date.isoformat(),
        "status": report.status if report is not None else REPORT_OPEN,
        "stored": stored.to_dict(),
        "recomputed": recomputed.to_dict(),
        "matches": stored == recomputed,
        "unresolved_exclusions": open_exclusions or 0,
    }


# =============================================================================
# EXCLUSIONS
# =============================================================================

def flag_exclusion(
    transaction_id: int,
    report_date: date,
    reason: str,
    detail: str | None = None,
) -> ReportExclusion:
    """Record (or refresh) a settled sale that is missing from its report."""
    exclusion = db.session.query(ReportExclusion).filter_by(transaction_id=transaction_id).first()
    if exclusion is None:
        exclusion = ReportExclusion(transaction_id=transaction_id, report_date=report_date)
        db.session.add(exclusion)
    exclusion.reason = reason
    exclusion.detail = (detail or "")[:255] or None
    db.session.commit()
    return exclusion


def list_exclusions(*, include_resolved: bool = False, reason: str | None = None) -> list[ReportExclusion]:
    query = db.session.query(ReportExclusion)
    if not include_resolved:
        query = query.filter(ReportExclusion.resolved_at.is_(None))
    if reason:
        query = query.filter(ReportExclusion.reason == reason)
    return query.order_by(ReportExclusion.id).all()


def resolve_exclusion(exclusion_id: int, *, actor: str | None = None, note: str | None = None) -> ReportExclusion | None:
    exclusion = db.session.get(ReportExclusion, exclusion_id)
    if exclusion is None:
        return None
    if exclusion.resolved_at is not None:
        raise ConflictError(f"Exclusion {exclusion_id} is already resolved")
    exclusion.resolved_at = utcnow()
    exclusion.resolved_by = actor
    exclusion.resolution_note = note
    db.session.commit()
    return exclusion


def retry_pending_aggregations() -> dict:
    """
    Re-run aggregation for sales flagged aggregation_failed.

    Sales whose day got finalized in the meantime are re-flagged as
    report_finalized; anything still failing stays pending.
    """
    pending = list_exclusions(reason=EXCLUSION_AGGREGATION_FAILED)
    summary = {"retried": len(pending), "recorded": 0, "finalized": 0, "failed": 0}

    for exclusion in pending:
        exclusion_id = exclusion.id
        transaction_id = exclusion.transaction_id
        try:
            record_sale(transaction_id)
        except ReportAlreadyFinalized as exc:
            flag_exclusion(transaction_id, exc.report_date, EXCLUSION_REPORT_FINALIZED, str(exc))
            summary["finalized"] += 1
            continue
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Aggregation retry failed for transaction %s", transaction_id)
            summary["failed"] += 1
            continue

        resolve_exclusion(exclusion_id, actor="system", note="Aggregated on retry")
        summary["recorded"] += 1

    return summary
