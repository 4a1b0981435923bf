from __future__ import annotations

from ..extensions import db
from ..numbers import format_quantity
from posledger.time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable product as published by the catalog.

    The settlement core only reads this table (name snapshot, display
    price). Product ids are short string keys ("espresso", "gift-card").
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_name", "category", "name"),
    )

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(191), nullable=False)
    category = db.Column(db.String(128), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RecipeLine(db.Model):
    """
    One ingredient of a product's bill of materials.

    inventory_item_id is deliberately not a foreign key: recipes are
    maintained by the catalog and may reference items the ledger does not
    know (yet). Settlement reports those as UnknownItem per line instead of
    failing the sale.
    """
    __tablename__ = "recipe_lines"
    __table_args__ = (
        db.UniqueConstraint("product_id", "inventory_item_id", name="uq_recipe_lines_product_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, nullable=False, index=True)

    # Consumed per one unit of product sold, in the inventory item's unit
    quantity_per_unit = db.Column(db.Numeric(14, 4), nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "inventory_item_id": self.inventory_item_id,
            "quantity_per_unit": format_quantity(self.quantity_per_unit),
            "unit": self.unit,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
