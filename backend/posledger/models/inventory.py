from __future__ import annotations

from ..extensions import db
from ..numbers import format_quantity
from .guards import append_only
from posledger.time_utils import to_utc_z


MOVEMENT_KINDS = ("sale", "purchase", "adjustment", "waste", "transfer")


class InventoryItem(db.Model):
    """
    Raw material tracked by the ledger (coffee beans, milk, cups).

    quantity_on_hand is a projection of the item's StockMovement chain and is
    only ever written by inventory_service.apply_movement. It may go
    negative: depleted stock is a business signal, not a crash condition.

    version_id doubles as the compare-and-swap guard for concurrent
    movements on the same item.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_inventory_items_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(191), nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="pcs")

    quantity_on_hand = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    reorder_level = db.Column(db.Numeric(14, 4), nullable=False, default=0)

    # Fractional cents allowed (e.g. 0.35 cents per gram)
    unit_cost_cents = db.Column(db.Numeric(14, 4), nullable=True)

    # Inactive items keep their history but accept no new movements
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_on_hand <= self.reorder_level

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} name={self.name!r} on_hand={self.quantity_on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "quantity_on_hand": format_quantity(self.quantity_on_hand),
            "reorder_level": format_quantity(self.reorder_level),
            "unit_cost_cents": format_quantity(self.unit_cost_cents),
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@append_only
class StockMovement(db.Model):
    """
    One signed, auditable change to an inventory item's quantity.

    Chain invariant per item, in id order:
        quantity_after[n] == quantity_before[n] + quantity_delta[n]
        quantity_after[n] == quantity_before[n + 1]
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_item_id", "inventory_item_id", "id"),
        # A sale line deducts a given ingredient at most once
        db.UniqueConstraint("transaction_line_id", "inventory_item_id", name="uq_stock_movements_line_item"),
        db.UniqueConstraint("reverses_movement_id", name="uq_stock_movements_reverses"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False)

    kind = db.Column(db.String(16), nullable=False, index=True)

    quantity_delta = db.Column(db.Numeric(14, 4), nullable=False)
    quantity_before = db.Column(db.Numeric(14, 4), nullable=False)
    quantity_after = db.Column(db.Numeric(14, 4), nullable=False)

    # Originating sale (kind == "sale")
    transaction_id = db.Column(db.Integer, db.ForeignKey("sales_transactions.id"), nullable=True, index=True)
    transaction_line_id = db.Column(db.Integer, db.ForeignKey("sales_transaction_lines.id"), nullable=True)

    # Compensating entries point at the movement they offset
    reverses_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("InventoryItem", backref=db.backref("movements", lazy="dynamic"))

    @property
    def direction(self) -> str:
        return "inflow" if self.quantity_delta >= 0 else "outflow"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "kind": self.kind,
            "quantity_delta": format_quantity(self.quantity_delta),
            "quantity_before": format_quantity(self.quantity_before),
            "quantity_after": format_quantity(self.quantity_after),
            "direction": self.direction,
            "transaction_id": self.transaction_id,
            "transaction_line_id": self.transaction_line_id,
            "reverses_movement_id": self.reverses_movement_id,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
