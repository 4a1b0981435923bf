from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from posledger.models import (
    DailyReportEntry,
    ImmutableRecordError,
    InventoryDeductionFailure,
    RecipeLine,
    ReportExclusion,
    SalesTransaction,
    StockMovement,
)
from posledger.services import inventory_service, report_service, sales_service
from posledger.services.discount_service import InvalidDiscountCode
from posledger.services.pricing_service import CartLine, EmptyCart, NegativePrice, SettlementValidationError
from posledger.services.sales_service import InvalidPayment, PartialInventoryDeduction
from posledger.time_utils import utcnow


def _line(product_id, quantity, unit_price_cents, name=None):
    return {
        "product_id": product_id,
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "name": name,
    }


def test_espresso_sale_deducts_beans(db_session, espresso_recipe, coffee_beans):
    result = sales_service.settle_sale([_line("espresso", 2, 8000, "Espresso")], "none", "cash")

    txn = result.transaction
    assert txn.reference == "OR-000001"
    assert txn.subtotal_cents == 16000
    assert txn.discount_cents == 0
    assert txn.total_cents == 16000
    assert txn.items_count == 2

    assert len(result.movements) == 1
    movement = result.movements[0]
    assert movement.kind == "sale"
    assert movement.quantity_delta == Decimal("-36")
    assert movement.transaction_id == txn.id
    assert movement.transaction_line_id == txn.lines[0].id
    assert inventory_service.current_balance(coffee_beans.id) == Decimal("964")

    assert result.failed_lines == []
    assert result.report_status == "recorded"


def test_senior_discount_sale(db_session, espresso_recipe):
    result = sales_service.settle_sale(
        [CartLine("espresso", 2, 8000, "Espresso")], "senior", "cash", tendered_cents=20000,
    )
    txn = result.transaction
    assert txn.discount_type == "senior"
    assert txn.discount_cents == 3200
    assert txn.total_cents == 12800
    assert txn.tax_exempt_cents == 12800
    assert txn.taxable_cents == 0
    assert txn.tendered_cents == 20000
    assert txn.change_cents == 7200


def test_product_without_recipe_deducts_nothing(db_session, catalog, coffee_beans):
    result = sales_service.settle_sale([_line("gift-card", 1, 50000)], None, "card")

    assert result.movements == []
    assert result.transaction.total_cents == 50000
    # name falls back to the catalog
    assert result.transaction.lines[0].product_name == "Gift Card"
    assert db_session.query(SalesTransaction).count() == 1
    assert db_session.query(StockMovement).filter(StockMovement.kind == "sale").count() == 0


def test_unknown_ingredient_is_a_partial_deduction(db_session, catalog, coffee_beans):
    db_session.add_all([
        RecipeLine(product_id="mocha", inventory_item_id=coffee_beans.id, quantity_per_unit=18),
        RecipeLine(product_id="mocha", inventory_item_id=999_999, quantity_per_unit=30),
    ])
    db_session.commit()

    with pytest.raises(PartialInventoryDeduction) as excinfo:
        sales_service.settle_sale([_line("mocha", 1, 15000, "Mocha")], "none", "cash")

    result = excinfo.value.result
    txn_id = result.transaction.id

    # sale persisted, beans deducted, unknown item reported
    assert db_session.get(SalesTransaction, txn_id) is not None
    assert [m.inventory_item_id for m in result.movements] == [coffee_beans.id]
    assert inventory_service.current_balance(coffee_beans.id) == Decimal("982")

    assert len(result.failed_lines) == 1
    failure = result.failed_lines[0]
    assert failure["inventory_item_id"] == 999_999
    assert failure["error_code"] == "UNKNOWN_ITEM"
    assert failure["quantity_required"] == "30.0000"

    rows = db_session.query(InventoryDeductionFailure).filter_by(transaction_id=txn_id).all()
    assert len(rows) == 1
    assert rows[0].error_code == "UNKNOWN_ITEM"

    # still aggregated
    assert result.report_status == "recorded"
    assert db_session.query(DailyReportEntry).filter_by(transaction_id=txn_id).count() == 1


def test_inactive_ingredient_is_a_partial_deduction(db_session, latte_recipe, coffee_beans, milk):
    inventory_service.update_inventory_item(milk.id, {"is_active": False})

    with pytest.raises(PartialInventoryDeduction) as excinfo:
        sales_service.settle_sale([_line("latte", 1, 12000, "Latte")], "none", "card")

    result = excinfo.value.result
    assert [m.inventory_item_id for m in result.movements] == [coffee_beans.id]
    assert [f["inventory_item_id"] for f in result.failed_lines] == [milk.id]
    assert inventory_service.current_balance(milk.id) == Decimal("2000")


def test_zero_quantity_line_is_not_deducted(db_session, espresso_recipe, coffee_beans):
    result = sales_service.settle_sale(
        [_line("espresso", 0, 8000), _line("gift-card", 1, 1000)], "none", "cash",
    )
    assert result.movements == []
    assert inventory_service.current_balance(coffee_beans.id) == Decimal("1000")
    assert len(result.transaction.lines) == 2


def test_multi_component_recipe(db_session, latte_recipe, coffee_beans, milk):
    result = sales_service.settle_sale([_line("latte", 3, 12000)], "none", "gcash")

    assert len(result.movements) == 2
    assert inventory_service.current_balance(coffee_beans.id) == Decimal("946")
    assert inventory_service.current_balance(milk.id) == Decimal("1550")
    assert result.transaction.payment_method == "gcash"
    assert result.transaction.change_cents == 0


def test_negative_stock_shows_up_as_warning(db_session, espresso_recipe, coffee_beans):
    result = sales_service.settle_sale([_line("espresso", 60, 8000)], "none", "card")

    assert inventory_service.current_balance(coffee_beans.id) == Decimal("-80")
    assert result.warnings[0]["code"] == "NEGATIVE_STOCK"
    assert result.failed_lines == []


@pytest.mark.parametrize("kwargs, error", [
    ({"discount_code": "employee"}, InvalidDiscountCode),
    ({"payment_method": "cheque"}, InvalidPayment),
    ({"payment_method": "cash", "tendered_cents": 100}, InvalidPayment),
    ({"payment_method": "card", "tendered_cents": 1}, InvalidPayment),
    ({"payment_method": "cash", "tendered_cents": -5}, InvalidPayment),
])
def test_validation_happens_before_any_write(db_session, espresso_recipe, kwargs, error):
    call = {"discount_code": "none", "payment_method": "cash"}
    call.update(kwargs)
    tendered = call.pop("tendered_cents", None)

    with pytest.raises(error):
        sales_service.settle_sale(
            [_line("espresso", 2, 8000)],
            call["discount_code"],
            call["payment_method"],
            tendered_cents=tendered,
        )

    assert db_session.query(SalesTransaction).count() == 0
    assert db_session.query(StockMovement).filter(StockMovement.kind == "sale").count() == 0


def test_cart_errors(db_session):
    with pytest.raises(EmptyCart):
        sales_service.settle_sale([], "none", "cash")
    with pytest.raises(NegativePrice):
        sales_service.settle_sale([_line("espresso", 1, -1)], "none", "cash")
    assert db_session.query(SalesTransaction).count() == 0


def test_future_sale_rejected(db_session):
    with pytest.raises(SettlementValidationError, match="future"):
        sales_service.settle_sale(
            [_line("espresso", 1, 100)], "none", "cash",
            occurred_at=utcnow() + timedelta(days=1),
        )
    assert db_session.query(SalesTransaction).count() == 0


def test_references_are_sequential(db_session, catalog):
    refs = [
        sales_service.settle_sale([_line("gift-card", 1, 1000)], "none", "cash").transaction.reference
        for _ in range(3)
    ]
    assert refs == ["OR-000001", "OR-000002", "OR-000003"]


def test_explicit_tax_rate(db_session, catalog):
    result = sales_service.settle_sale([_line("gift-card", 1, 10000)], "none", "card", tax_rate_bps=1200)
    assert result.transaction.tax_cents == 1200
    assert result.transaction.total_cents == 11200
    assert result.transaction.tax_rate_bps == 1200


def test_sale_into_finalized_day_is_flagged(db_session, catalog):
    day = datetime(2024, 5, 1, 9, 0)
    report_service.finalize_report(day.date(), actor="manager")

    result = sales_service.settle_sale([_line("gift-card", 1, 1000)], "none", "cash", occurred_at=day)

    assert result.report_status == "excluded"
    assert db_session.get(SalesTransaction, result.transaction.id) is not None
    exclusion = db_session.query(ReportExclusion).filter_by(transaction_id=result.transaction.id).one()
    assert exclusion.reason == "report_finalized"
    assert report_service.get_report(day.date()).totals.transaction_count == 0


def test_aggregation_failure_is_flagged_for_retry(db_session, catalog, monkeypatch):
    def broken(transaction_id):
        raise OperationalError("UPDATE daily_reports", {}, Exception("database is locked"))

    monkeypatch.setattr(sales_service, "record_sale", broken)
    result = sales_service.settle_sale([_line("gift-card", 1, 1000)], "none", "cash")

    assert result.report_status == "pending"
    exclusion = db_session.query(ReportExclusion).filter_by(transaction_id=result.transaction.id).one()
    assert exclusion.reason == "aggregation_failed"


def test_line_deduction_is_idempotent(db_session, espresso_recipe, coffee_beans):
    result = sales_service.settle_sale([_line("espresso", 1, 8000)], "none", "cash")
    line = result.transaction.lines[0]

    again = inventory_service.apply_movement(
        coffee_beans.id, -18, "sale",
        transaction_id=result.transaction.id,
        transaction_line_id=line.id,
    )
    assert again.id == result.movements[0].id
    assert inventory_service.current_balance(coffee_beans.id) == Decimal("982")


def test_transactions_are_immutable(db_session, catalog):
    txn = sales_service.settle_sale([_line("gift-card", 1, 1000)], "none", "cash").transaction

    txn.total_cents = 1
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()

    line = txn.lines[0]
    line.quantity = 5
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()


def test_transaction_detail(db_session, espresso_recipe):
    result = sales_service.settle_sale([_line("espresso", 2, 8000)], "none", "cash")
    detail = sales_service.get_transaction_detail(result.transaction.id)

    assert detail["reference"] == "OR-000001"
    assert len(detail["lines"]) == 1
    assert detail["movements"][0]["quantity_delta"] == "-36.0000"
    assert detail["deduction_failures"] == []

    assert sales_service.get_transaction_detail(424242) is None


def test_list_transactions_by_business_date(db_session, catalog):
    sales_service.settle_sale([_line("gift-card", 1, 100)], "none", "cash", occurred_at=datetime(2024, 5, 1, 23, 59))
    sales_service.settle_sale([_line("gift-card", 1, 200)], "none", "cash", occurred_at=datetime(2024, 5, 2, 0, 1))

    may_first = sales_service.list_transactions(datetime(2024, 5, 1).date())
    assert [t.total_cents for t in may_first] == [100]
    assert len(sales_service.list_transactions()) == 2


def test_result_to_dict(db_session, espresso_recipe):
    data = sales_service.settle_sale([_line("espresso", 1, 8000)], "pwd", "cash").to_dict()
    assert data["transaction"]["total_cents"] == 6400
    assert data["breakdown"]["vat_exempt"] is True
    assert len(data["movements"]) == 1
    assert data["report_status"] == "recorded"
