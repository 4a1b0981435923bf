from __future__ import annotations

from sqlalchemy import event, select

from ..extensions import db
from .guards import ImmutableRecordError, committed_value, has_column_changes
from posledger.time_utils import to_utc_z


REPORT_OPEN = "OPEN"
REPORT_FINALIZED = "FINALIZED"


class DailyReport(db.Model):
    """
    Rolling per-day sales summary (X-Read while OPEN, Z-Read once FINALIZED).

    One row per calendar date, created lazily by the first sale of the day.
    The OPEN -> FINALIZED transition is a compare-and-swap in
    report_service.finalize_report; after it, the row is frozen (see the
    mapper guards below).
    """
    __tablename__ = "daily_reports"
    __table_args__ = (
        db.UniqueConstraint("report_date", name="uq_daily_reports_date"),
        db.Index("ix_daily_reports_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    report_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=REPORT_OPEN)

    # Running totals (cents)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    items_sold = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_exempt_cents = db.Column(db.Integer, nullable=False, default=0)

    # {"cash": 12800, "card": 0, ...}; always reassigned, never mutated in place
    payment_totals = db.Column(db.JSON, nullable=False, default=dict)

    # First / last sale of the day
    opening_time = db.Column(db.DateTime(timezone=True), nullable=True)
    closing_time = db.Column(db.DateTime(timezone=True), nullable=True)

    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "DailyReportItem",
        backref="report",
        order_by="DailyReportItem.product_id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}


@event.listens_for(DailyReport, "before_update")
def _prevent_finalized_report_update(mapper, connection, target):
    if committed_value(target, "status") == REPORT_FINALIZED and has_column_changes(target):
        raise ImmutableRecordError(
            f"Daily report {target.report_date} is finalized - totals are locked"
        )


@event.listens_for(DailyReport, "before_delete")
def _prevent_report_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Daily report {target.report_date} cannot be deleted")


class DailyReportItem(db.Model):
    """Per-product aggregate within a daily report."""
    __tablename__ = "daily_report_items"
    __table_args__ = (
        db.UniqueConstraint("report_id", "product_id", name="uq_daily_report_items_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey("daily_reports.id"), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(191), nullable=False)
    quantity_sold = db.Column(db.Integer, nullable=False, default=0)
    revenue_cents = db.Column(db.Integer, nullable=False, default=0)


def _report_status(connection, report_id):
    return connection.execute(
        select(DailyReport.status).where(DailyReport.id == report_id)
    ).scalar()


@event.listens_for(DailyReportItem, "before_insert")
@event.listens_for(DailyReportItem, "before_update")
@event.listens_for(DailyReportItem, "before_delete")
def _prevent_finalized_item_change(mapper, connection, target):
    # Per-product rows are part of the Z-Read snapshot
    if _report_status(connection, target.report_id) == REPORT_FINALIZED:
        raise ImmutableRecordError(
            f"Daily report item {target.product_id} belongs to a finalized report"
        )


class DailyReportEntry(db.Model):
    """
    Marks a transaction as aggregated.

    The unique transaction_id is what makes aggregation at-most-once: a
    retried or duplicated hand-off fails the insert instead of double
    counting.
    """
    __tablename__ = "daily_report_entries"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_daily_report_entries_txn"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey("daily_reports.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("sales_transactions.id"), nullable=False)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class ReportExclusion(db.Model):
    """
    A settled sale that is missing from its day's aggregate.

    reason:
    - report_finalized: the day was Z-Read before the sale reached it
    - aggregation_failed: storage kept failing; retry_pending_aggregations
      picks these up
    """
    __tablename__ = "report_exclusions"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_report_exclusions_txn"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("sales_transactions.id"), nullable=False)
    report_date = db.Column(db.Date, nullable=False, index=True)
    reason = db.Column(db.String(32), nullable=False, index=True)
    detail = db.Column(db.String(255), nullable=True)

    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.String(64), nullable=True)
    resolution_note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "report_date": self.report_date.isoformat(),
            "reason": self.reason,
            "detail": self.detail,
            "resolved_at": to_utc_z(self.resolved_at),
            "resolved_by": self.resolved_by,
            "resolution_note": self.resolution_note,
            "created_at": to_utc_z(self.created_at),
        }
