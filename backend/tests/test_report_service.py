import dataclasses
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from posledger.models import DailyReport, DailyReportItem, ImmutableRecordError, ReportExclusion
from posledger.numbers import average_cents
from posledger.services import report_service, sales_service
from posledger.services.report_service import (
    FinalizedReport,
    OpenReport,
    ReportAlreadyFinalized,
    ReportDateInFuture,
)
from posledger.time_utils import utcnow
from posledger.validation import ConflictError, ValidationError


MAY_1 = date(2024, 5, 1)


def _sell(product_id="espresso", quantity=2, price=8000, discount="none", method="cash", hour=9, minute=0):
    return sales_service.settle_sale(
        [{"product_id": product_id, "quantity": quantity, "unit_price_cents": price, "name": None}],
        discount,
        method,
        occurred_at=datetime(2024, 5, 1, hour, minute),
    )


def test_missing_day_reads_as_empty_open_report(db_session):
    snapshot = report_service.get_report("2024-05-01")

    assert isinstance(snapshot, OpenReport)
    assert snapshot.status == "OPEN"
    assert snapshot.totals.transaction_count == 0
    assert snapshot.totals.total_sales_cents == 0
    assert snapshot.items == ()
    # reading does not create the row
    assert db_session.query(DailyReport).count() == 0


def test_sales_roll_into_the_open_report(db_session, espresso_recipe):
    _sell(hour=9)
    _sell(discount="senior", method="card", hour=15, minute=30)
    _sell(product_id="gift-card", quantity=1, price=50000, method="gcash", hour=12)

    snapshot = report_service.get_report(MAY_1)
    totals = snapshot.totals
    assert isinstance(snapshot, OpenReport)
    assert totals.transaction_count == 3
    assert totals.total_sales_cents == 16000 + 12800 + 50000
    assert totals.items_sold == 5
    assert totals.discount_cents == 3200
    assert totals.tax_exempt_cents == 12800
    assert dict(totals.payment_totals) == {"cash": 16000, "card": 12800, "gcash": 50000}
    assert totals.average_transaction_cents == 26267

    assert snapshot.opening_time == datetime(2024, 5, 1, 9, 0)
    assert snapshot.closing_time == datetime(2024, 5, 1, 15, 30)

    items = {item.product_id: item for item in snapshot.items}
    assert items["espresso"].quantity_sold == 4
    assert items["espresso"].revenue_cents == 32000
    assert items["espresso"].product_name == "Espresso"
    assert items["gift-card"].quantity_sold == 1


def test_record_sale_is_at_most_once(db_session, catalog):
    txn = _sell(product_id="gift-card", quantity=1, price=1000).transaction

    again = report_service.record_sale(txn.id)
    assert again.totals.transaction_count == 1
    assert again.totals.total_sales_cents == 1000


def test_finalize_is_idempotent(db_session, catalog):
    _sell(product_id="gift-card", quantity=1, price=1000)

    first = report_service.finalize_report(MAY_1, actor="manager")
    second = report_service.finalize_report(MAY_1, actor="someone-else")

    assert isinstance(first, FinalizedReport)
    assert first.status == "FINALIZED"
    assert first == second
    assert second.finalized_by == "manager"
    assert report_service.get_report(MAY_1) == first


def test_finalize_day_without_sales(db_session):
    snapshot = report_service.finalize_report("2024-05-01")

    assert isinstance(snapshot, FinalizedReport)
    assert snapshot.totals.transaction_count == 0
    assert db_session.query(DailyReport).count() == 1


def test_future_day_cannot_be_finalized(db_session):
    tomorrow = utcnow().date() + timedelta(days=1)

    with pytest.raises(ReportDateInFuture) as excinfo:
        report_service.finalize_report(tomorrow)
    assert isinstance(excinfo.value, ValidationError)
    assert db_session.query(DailyReport).count() == 0

    assert report_service.finalize_report(utcnow().date()).status == "FINALIZED"


def test_finalized_report_rejects_new_sales(db_session, catalog):
    report_service.finalize_report(MAY_1)
    txn = _sell(product_id="gift-card", quantity=1, price=1000).transaction

    with pytest.raises(ReportAlreadyFinalized) as excinfo:
        report_service.record_sale(txn.id)
    assert excinfo.value.report_date == MAY_1
    assert excinfo.value.transaction_id == txn.id


def test_finalized_report_row_is_frozen(db_session, catalog):
    _sell(product_id="gift-card", quantity=1, price=1000)
    report_service.finalize_report(MAY_1)

    row = db_session.query(DailyReport).filter_by(report_date=MAY_1).one()
    row.total_sales_cents = 1
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()

    assert report_service.get_report(MAY_1).totals.total_sales_cents == 1000


def test_finalized_report_items_are_frozen(db_session, catalog):
    _sell(product_id="gift-card", quantity=1, price=1000)
    report_service.finalize_report(MAY_1)

    item = db_session.query(DailyReportItem).filter_by(product_id="gift-card").one()
    item.revenue_cents = 1
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()

    item = db_session.query(DailyReportItem).filter_by(product_id="gift-card").one()
    db_session.delete(item)
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()

    report = db_session.query(DailyReport).filter_by(report_date=MAY_1).one()
    db_session.add(DailyReportItem(report_id=report.id, product_id="espresso", product_name="Espresso"))
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()

    assert [i.revenue_cents for i in report_service.get_report(MAY_1).items] == [1000]


def test_reports_cannot_be_deleted(db_session):
    report_service.finalize_report(MAY_1)
    row = db_session.query(DailyReport).filter_by(report_date=MAY_1).one()

    db_session.delete(row)
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()


def test_snapshots_are_frozen(db_session, catalog):
    _sell(product_id="gift-card", quantity=1, price=1000)
    snapshot = report_service.finalize_report(MAY_1)

    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.finalized_by = "mallory"
    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.totals.total_sales_cents = 0


def test_snapshot_to_dict(db_session, espresso_recipe):
    _sell()
    data = report_service.finalize_report(MAY_1, actor="manager").to_dict()

    assert data["report_date"] == "2024-05-01"
    assert data["status"] == "FINALIZED"
    assert data["total_sales_cents"] == 16000
    assert data["payment_totals"] == {"cash": 16000}
    assert data["items"][0]["average_price_cents"] == 8000
    assert data["finalized_by"] == "manager"
    assert data["finalized_at"].endswith("Z")


def test_list_reports_newest_first(db_session):
    report_service.finalize_report("2024-05-01")
    report_service.finalize_report("2024-05-03")
    report_service.finalize_report("2024-05-02")

    dates = [r.report_date.isoformat() for r in report_service.list_reports(limit=2)]
    assert dates == ["2024-05-03", "2024-05-02"]


def test_reconcile_report(db_session, espresso_recipe):
    _sell()
    _sell(discount="pwd", method="card")

    result = report_service.reconcile_report(MAY_1)
    assert result["matches"] is True
    assert result["stored"]["transaction_count"] == 2
    assert result["recomputed"]["total_sales_cents"] == 16000 + 12800
    assert result["unresolved_exclusions"] == 0


def test_retry_pending_aggregations(db_session, catalog, monkeypatch):
    def broken(transaction_id):
        raise OperationalError("UPDATE daily_reports", {}, Exception("database is locked"))

    with monkeypatch.context() as patch:
        patch.setattr(sales_service, "record_sale", broken)
        txn = _sell(product_id="gift-card", quantity=1, price=2500).transaction

    assert report_service.get_report(MAY_1).totals.transaction_count == 0
    assert len(report_service.list_exclusions(reason="aggregation_failed")) == 1

    summary = report_service.retry_pending_aggregations()
    assert summary == {"retried": 1, "recorded": 1, "finalized": 0, "failed": 0}

    assert report_service.get_report(MAY_1).totals.total_sales_cents == 2500
    exclusion = db_session.query(ReportExclusion).filter_by(transaction_id=txn.id).one()
    assert exclusion.resolved_at is not None
    assert exclusion.resolved_by == "system"
    assert report_service.list_exclusions() == []


def test_retry_after_day_was_finalized(db_session, catalog, monkeypatch):
    def broken(transaction_id):
        raise OperationalError("UPDATE daily_reports", {}, Exception("database is locked"))

    with monkeypatch.context() as patch:
        patch.setattr(sales_service, "record_sale", broken)
        txn = _sell(product_id="gift-card", quantity=1, price=2500).transaction

    report_service.finalize_report(MAY_1)
    summary = report_service.retry_pending_aggregations()
    assert summary["finalized"] == 1

    exclusion = db_session.query(ReportExclusion).filter_by(transaction_id=txn.id).one()
    assert exclusion.reason == "report_finalized"
    assert exclusion.resolved_at is None


def test_resolve_exclusion(db_session, catalog):
    report_service.finalize_report(MAY_1)
    _sell(product_id="gift-card", quantity=1, price=1000)

    [exclusion] = report_service.list_exclusions()
    resolved = report_service.resolve_exclusion(exclusion.id, actor="manager", note="Booked on May 2")
    assert resolved.resolved_by == "manager"
    assert report_service.list_exclusions() == []
    assert len(report_service.list_exclusions(include_resolved=True)) == 1

    with pytest.raises(ConflictError):
        report_service.resolve_exclusion(exclusion.id)
    assert report_service.resolve_exclusion(424242) is None


def test_average_cents_rounds_half_up():
    assert average_cents(0, 0) == 0
    assert average_cents(5, 2) == 3
    assert average_cents(78800, 3) == 26267
    assert average_cents(1000, 3) == 333
