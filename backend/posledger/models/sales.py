from __future__ import annotations

from ..extensions import db
from ..numbers import format_quantity
from .guards import append_only
from posledger.time_utils import to_utc_z


@append_only
class SalesTransaction(db.Model):
    """
    A settled sale (document-first, immutable once written).

    The monetary breakdown is persisted exactly as calculated at settlement
    time. Refunds and corrections are new records, never edits.
    """
    __tablename__ = "sales_transactions"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_sales_transactions_reference"),
        db.Index("ix_sales_transactions_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable reference (e.g., "OR-000123")
    reference = db.Column(db.String(64), nullable=False)

    # Breakdown (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=False, default="none")
    discount_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_exempt_cents = db.Column(db.Integer, nullable=False, default=0)
    taxable_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False, index=True)
    tendered_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    items_count = db.Column(db.Integer, nullable=False, default=0)

    actor = db.Column(db.String(64), nullable=True)
    terminal_id = db.Column(db.String(32), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "SalesTransactionLine",
        backref="transaction",
        order_by="SalesTransactionLine.line_number",
        lazy=True,
    )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "reference": self.reference,
            "subtotal_cents": self.subtotal_cents,
            "discount_type": self.discount_type,
            "discount_rate": str(self.discount_rate),
            "discount_cents": self.discount_cents,
            "tax_exempt_cents": self.tax_exempt_cents,
            "taxable_cents": self.taxable_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "tendered_cents": self.tendered_cents,
            "change_cents": self.change_cents,
            "items_count": self.items_count,
            "actor": self.actor,
            "terminal_id": self.terminal_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


@append_only
class SalesTransactionLine(db.Model):
    """Line item with product name and price snapshotted at sale time."""
    __tablename__ = "sales_transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_sales_lines_txn_line"),
        db.Index("ix_sales_lines_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("sales_transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(191), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


@append_only
class InventoryDeductionFailure(db.Model):
    """
    A recipe component that could not be deducted for a settled sale.

    Kept for manual reconciliation ("sale completed, stock for X not
    deducted"). Resolution is a compensating movement, never an edit here.
    """
    __tablename__ = "inventory_deduction_failures"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("sales_transactions.id"), nullable=False, index=True)
    transaction_line_id = db.Column(db.Integer, db.ForeignKey("sales_transaction_lines.id"), nullable=False)
    product_id = db.Column(db.String(64), nullable=False)
    inventory_item_id = db.Column(db.Integer, nullable=False)
    quantity_required = db.Column(db.Numeric(14, 4), nullable=False)

    error_code = db.Column(db.String(64), nullable=False)
    error_message = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "transaction_line_id": self.transaction_line_id,
            "product_id": self.product_id,
            "inventory_item_id": self.inventory_item_id,
            "quantity_required": format_quantity(self.quantity_required),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
        }
