"""
Sale Settlement - one atomic, auditable operation per cart.

Steps, in order:
1. Resolve the discount, compute the breakdown and validate payment.
   Nothing is written if any of this fails.
2. Persist the SalesTransaction and its lines (name and price snapshotted)
   and commit. From here on the sale is final.
3. Deduct each line's recipe components through the inventory ledger.
   A component that cannot be deducted is recorded as an
   InventoryDeductionFailure; movements already applied stay applied.
4. Hand the sale to the daily report. A closed day or a storage failure is
   flagged as a ReportExclusion and never undoes steps 2-3.

If step 3 left anything undeducted, PartialInventoryDeduction is raised
after step 4 with the full SettlementResult attached.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    InventoryDeductionFailure,
    Product,
    SalesTransaction,
    SalesTransactionLine,
    StockMovement,
)
from ..numbers import format_quantity
from posledger.time_utils import business_date, business_day_bounds, utcnow
from .concurrency import run_with_retry
from .discount_service import resolve_discount
from .document_service import next_document_number
from .inventory_service import InventoryError, apply_movement, movements_for_transaction
from .pricing_service import CartLine, SettlementBreakdown, SettlementValidationError, calculate_breakdown
from .recipe_service import lines_for
from .report_service import (
    EXCLUSION_AGGREGATION_FAILED,
    EXCLUSION_REPORT_FINALIZED,
    ReportAlreadyFinalized,
    flag_exclusion,
    record_sale,
)


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidPayment(SettlementValidationError):
    pass


@dataclass
class SettlementResult:
    transaction: SalesTransaction
    breakdown: SettlementBreakdown
    movements: list[StockMovement] = field(default_factory=list)
    failed_lines: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    report_status: str = "recorded"

    @property
    def fully_deducted(self) -> bool:
        return not self.failed_lines

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "breakdown": self.breakdown.to_dict(),
            "movements": [m.to_dict() for m in self.movements],
            "failed_lines": list(self.failed_lines),
            "warnings": list(self.warnings),
            "report_status": self.report_status,
        }


class PartialInventoryDeduction(SaleError):
    """The sale is settled; some recipe components were not deducted."""

    def __init__(self, result: SettlementResult):
        super().__init__(
            f"Sale {result.transaction.reference} settled but "
            f"{len(result.failed_lines)} inventory deduction(s) failed",
            details={"failed_lines": result.failed_lines},
        )
        self.result = result


def _to_cart_line(raw) -> CartLine:
    if isinstance(raw, CartLine):
        return raw
    return CartLine(
        product_id=raw["product_id"],
        quantity=raw["quantity"],
        unit_price_cents=raw["unit_price_cents"],
        name=raw.get("name"),
    )


def _validate_payment(payment_method, tendered_cents, total_cents: int) -> tuple[str, int, int]:
    """Returns (method, tendered_cents, change_cents)."""
    methods = current_app.config.get("PAYMENT_METHODS", ("cash", "card", "gcash"))
    method = (payment_method or "").strip().lower() if isinstance(payment_method, str) else ""
    if method not in methods:
        raise InvalidPayment(f"payment_method must be one of: {', '.join(methods)}")

    if tendered_cents is not None and tendered_cents < 0:
        raise InvalidPayment("tendered_cents cannot be negative")

    if method == "cash":
        tendered = total_cents if tendered_cents is None else tendered_cents
        if tendered < total_cents:
            raise InvalidPayment(
                f"Insufficient cash: tendered {tendered} < total {total_cents}"
            )
        return method, tendered, tendered - total_cents

    # Card / e-wallet payments are charged for the exact total
    if tendered_cents is not None and tendered_cents != total_cents:
        raise InvalidPayment(f"{method} payments must equal the total ({total_cents})")
    return method, total_cents, 0


def _validate_occurred_at(occurred_at) -> datetime:
    if occurred_at is None:
        return utcnow()
    if not isinstance(occurred_at, datetime):
        raise SettlementValidationError("occurred_at must be a datetime")
    if occurred_at.tzinfo is not None:
        raise SettlementValidationError("occurred_at must be UTC-naive")
    if occurred_at > utcnow() + timedelta(minutes=2):
        raise SettlementValidationError("occurred_at cannot be in the future")
    return occurred_at


def _product_names(lines: list[CartLine]) -> dict[str, str]:
    missing = {line.product_id for line in lines if not line.name}
    if not missing:
        return {}
    rows = db.session.query(Product.id, Product.name).filter(Product.id.in_(missing)).all()
    return {row.id: row.name for row in rows}


def _persist_transaction(
    lines: list[CartLine],
    breakdown: SettlementBreakdown,
    *,
    payment_method: str,
    tendered_cents: int,
    change_cents: int,
    occurred_at: datetime,
    actor: str | None,
    terminal_id: str | None,
) -> int:
    names = _product_names(lines)

    def _op() -> int:
        reference = next_document_number(document_type="SALE", prefix="OR")
        txn = SalesTransaction(
            reference=reference,
            subtotal_cents=breakdown.subtotal_cents,
            discount_type=breakdown.discount_code,
            discount_rate=breakdown.discount_rate,
            discount_cents=breakdown.discount_cents,
            tax_exempt_cents=breakdown.tax_exempt_cents,
            taxable_cents=breakdown.taxable_cents,
            tax_rate_bps=breakdown.tax_rate_bps,
            tax_cents=breakdown.tax_cents,
            total_cents=breakdown.total_cents,
            payment_method=payment_method,
            tendered_cents=tendered_cents,
            change_cents=change_cents,
            items_count=breakdown.items_count,
            actor=actor,
            terminal_id=terminal_id,
            occurred_at=occurred_at,
        )
        db.session.add(txn)
        db.session.flush()

        for number, line in enumerate(lines, start=1):
            db.session.add(SalesTransactionLine(
                transaction_id=txn.id,
                line_number=number,
                product_id=line.product_id,
                product_name=line.name or names.get(line.product_id) or line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            ))

        db.session.commit()
        return txn.id

    return run_with_retry(_op)


def _record_deduction_failure(txn, line, component, required, exc: Exception) -> dict:
    error_code = exc.code if isinstance(exc, InventoryError) else "STORAGE_ERROR"
    failure = {
        "transaction_line_id": line.id,
        "line_number": line.line_number,
        "product_id": line.product_id,
        "inventory_item_id": component.inventory_item_id,
        "quantity_required": format_quantity(required),
        "error_code": error_code,
        "error_message": str(exc)[:255],
    }
    try:
        db.session.add(InventoryDeductionFailure(
            transaction_id=txn.id,
            transaction_line_id=line.id,
            product_id=line.product_id,
            inventory_item_id=component.inventory_item_id,
            quantity_required=required,
            error_code=error_code,
            error_message=failure["error_message"],
        ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Could not record deduction failure for %s line %s", txn.reference, line.line_number,
        )
    return failure


def _deduct_inventory(txn: SalesTransaction) -> tuple[list[StockMovement], list[dict], list[dict]]:
    movements: list[StockMovement] = []
    failures: list[dict] = []
    warnings: list[dict] = []

    for line in list(txn.lines):
        if line.quantity == 0:
            continue
        for component in lines_for(line.product_id):
            required = component.quantity_per_unit * line.quantity
            try:
                movement = apply_movement(
                    component.inventory_item_id,
                    -required,
                    "sale",
                    transaction_id=txn.id,
                    transaction_line_id=line.id,
                    note=f"{txn.reference} {line.product_name} x{line.quantity}",
                    actor=txn.actor,
                    occurred_at=txn.occurred_at,
                )
            except (InventoryError, SQLAlchemyError) as exc:
                db.session.rollback()
                failures.append(_record_deduction_failure(txn, line, component, required, exc))
                continue

            movements.append(movement)
            if movement.quantity_after < 0:
                warnings.append({
                    "code": "NEGATIVE_STOCK",
                    "inventory_item_id": movement.inventory_item_id,
                    "quantity_after": format_quantity(movement.quantity_after),
                })
            elif movement.item is not None and movement.item.is_low_stock:
                warnings.append({
                    "code": "LOW_STOCK",
                    "inventory_item_id": movement.inventory_item_id,
                    "quantity_after": format_quantity(movement.quantity_after),
                })

    return movements, failures, warnings


def _hand_off_to_reports(txn: SalesTransaction) -> str:
    """Returns the report status of the sale: recorded, excluded or pending."""
    transaction_id = txn.id
    reference = txn.reference
    report_date = business_date(txn.occurred_at, current_app.config.get("REPORT_TIMEZONE", "UTC"))
    try:
        record_sale(transaction_id)
        return "recorded"
    except ReportAlreadyFinalized as exc:
        current_app.logger.warning(
            "Sale %s not aggregated: report %s is finalized", reference, exc.report_date.isoformat(),
        )
        reason, status, detail = EXCLUSION_REPORT_FINALIZED, "excluded", str(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Aggregation failed for sale %s", reference)
        reason, status, detail = EXCLUSION_AGGREGATION_FAILED, "pending", exc.__class__.__name__

    try:
        flag_exclusion(transaction_id, report_date, reason, detail)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not flag report exclusion for sale %s", reference)
    return status


def settle_sale(
    cart,
    discount_code: str | None = None,
    payment_method: str = "cash",
    *,
    tendered_cents: int | None = None,
    occurred_at: datetime | None = None,
    actor: str | None = None,
    terminal_id: str | None = None,
    tax_rate_bps: int | None = None,
) -> SettlementResult:
    """
    Settle a cart: record the sale, deduct ingredients, update the day's report.

    `cart` is a sequence of CartLine (or dicts with product_id, quantity,
    unit_price_cents and optional name).
    """
    lines = [_to_cart_line(raw) for raw in cart or []]
    policy = resolve_discount(discount_code)
    if tax_rate_bps is None:
        tax_rate_bps = int(current_app.config.get("TAX_RATE_BPS", 0))
    breakdown = calculate_breakdown(lines, policy, tax_rate_bps=tax_rate_bps)
    method, tendered, change = _validate_payment(payment_method, tendered_cents, breakdown.total_cents)
    occurred_dt = _validate_occurred_at(occurred_at)

    transaction_id = _persist_transaction(
        lines,
        breakdown,
        payment_method=method,
        tendered_cents=tendered,
        change_cents=change,
        occurred_at=occurred_dt,
        actor=actor,
        terminal_id=terminal_id,
    )
    txn = db.session.get(SalesTransaction, transaction_id)

    movements, failures, warnings = _deduct_inventory(txn)
    report_status = _hand_off_to_reports(txn)

    txn = db.session.get(SalesTransaction, transaction_id)
    result = SettlementResult(
        transaction=txn,
        breakdown=breakdown,
        movements=movements,
        failed_lines=failures,
        warnings=warnings,
        report_status=report_status,
    )

    if failures:
        current_app.logger.warning(
            "Sale %s settled with %s undeducted inventory component(s)", txn.reference, len(failures),
        )
        raise PartialInventoryDeduction(result)
    return result


# =============================================================================
# READS
# =============================================================================

def get_transaction(transaction_id: int) -> SalesTransaction | None:
    return db.session.get(SalesTransaction, transaction_id)


def get_transaction_detail(transaction_id: int) -> dict | None:
    txn = get_transaction(transaction_id)
    if txn is None:
        return None
    failures = (
        db.session.query(InventoryDeductionFailure)
        .filter_by(transaction_id=transaction_id)
        .order_by(InventoryDeductionFailure.id)
        .all()
    )
    data = txn.to_dict()
    data["movements"] = [m.to_dict() for m in movements_for_transaction(transaction_id)]
    data["deduction_failures"] = [f.to_dict() for f in failures]
    return data


def list_transactions(report_date: date | None = None, limit: int = 100) -> list[SalesTransaction]:
    query = db.session.query(SalesTransaction)
    if report_date is not None:
        start, end = business_day_bounds(report_date, current_app.config.get("REPORT_TIMEZONE", "UTC"))
        query = query.filter(SalesTransaction.occurred_at >= start, SalesTransaction.occurred_at < end)
    return (
        query.order_by(SalesTransaction.occurred_at.desc(), SalesTransaction.id.desc())
        .limit(max(1, min(limit, 500)))
        .all()
    )
