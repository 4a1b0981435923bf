"""
Recipe Map - product to raw-material bill of materials.

A product with no recipe lines (gift cards, resold bottled goods) simply
deducts nothing at settlement. Recipes are edited freely until one of the
product's sales is part of a finalized daily report; after that the recipe
is locked so closed days keep the meaning they were reported with.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    DailyReport, DailyReportEntry, InventoryItem, RecipeLine,
    SalesTransactionLine, REPORT_FINALIZED,
)
from ..numbers import ZERO, format_quantity, round_cents, to_quantity
from ..validation import ConflictError, ValidationError


class RecipeLockedError(ConflictError):
    def __init__(self, product_id: str):
        super().__init__(
            f"Recipe for {product_id!r} is locked: the product has sales in a finalized report"
        )
        self.product_id = product_id


@dataclass(frozen=True)
class RecipeComponent:
    inventory_item_id: int
    quantity_per_unit: Decimal


def lines_for(product_id: str) -> list[RecipeComponent]:
    """Components of a product in a stable order; empty when it has no recipe."""
    rows = (
        db.session.query(RecipeLine)
        .filter(RecipeLine.product_id == product_id)
        .order_by(RecipeLine.id)
        .all()
    )
    return [
        RecipeComponent(row.inventory_item_id, to_quantity(row.quantity_per_unit))
        for row in rows
    ]


def list_recipe(product_id: str) -> list[RecipeLine]:
    return (
        db.session.query(RecipeLine)
        .filter(RecipeLine.product_id == product_id)
        .order_by(RecipeLine.id)
        .all()
    )


def is_recipe_locked(product_id: str) -> bool:
    hit = (
        db.session.query(SalesTransactionLine.id)
        .join(DailyReportEntry, DailyReportEntry.transaction_id == SalesTransactionLine.transaction_id)
        .join(DailyReport, DailyReport.id == DailyReportEntry.report_id)
        .filter(
            SalesTransactionLine.product_id == product_id,
            DailyReport.status == REPORT_FINALIZED,
        )
        .first()
    )
    return hit is not None


def _ensure_editable(product_id: str) -> None:
    if is_recipe_locked(product_id):
        raise RecipeLockedError(product_id)


def add_recipe_line(product_id: str, patch: dict) -> RecipeLine:
    _ensure_editable(product_id)

    line = RecipeLine(product_id=product_id, **patch)
    db.session.add(line)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(
            f"Recipe for {product_id!r} already uses inventory item {patch.get('inventory_item_id')}"
        )
    return line


def update_recipe_line(line_id: int, patch: dict) -> RecipeLine | None:
    line = db.session.get(RecipeLine, line_id)
    if line is None:
        return None
    _ensure_editable(line.product_id)

    for key, value in patch.items():
        setattr(line, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Recipe already uses that inventory item")
    return line


def remove_recipe_line(line_id: int) -> bool:
    line = db.session.get(RecipeLine, line_id)
    if line is None:
        return False
    _ensure_editable(line.product_id)

    db.session.delete(line)
    db.session.commit()
    return True


def calculate_product_cost(product_id: str) -> dict:
    """
    Raw-material cost of one unit, from the items' current unit costs.

    Components without a known cost (or without a known item) are listed
    but left out of the total.
    """
    components = []
    total = ZERO
    complete = True
    for component in lines_for(product_id):
        item = db.session.get(InventoryItem, component.inventory_item_id)
        cost = None
        if item is not None and item.unit_cost_cents is not None:
            cost = component.quantity_per_unit * to_quantity(item.unit_cost_cents)
            total += cost
        else:
            complete = False
        components.append({
            "inventory_item_id": component.inventory_item_id,
            "name": item.name if item is not None else None,
            "quantity_per_unit": format_quantity(component.quantity_per_unit),
            "unit_cost_cents": format_quantity(item.unit_cost_cents) if item is not None else None,
            "cost_cents": format_quantity(cost),
        })

    return {
        "product_id": product_id,
        "cost_cents": round_cents(total),
        "complete": complete,
        "components": components,
    }


def check_availability(product_id: str, quantity: int = 1) -> dict:
    """
    Whether current stock covers `quantity` units of a product.

    Advisory only: settlement never blocks on stock, it lets balances go
    negative and logs the shortage.
    """
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")

    shortages = []
    for component in lines_for(product_id):
        required = component.quantity_per_unit * quantity
        item = db.session.get(InventoryItem, component.inventory_item_id)
        on_hand = to_quantity(item.quantity_on_hand) if item is not None else ZERO
        if item is None or on_hand < required:
            shortages.append({
                "inventory_item_id": component.inventory_item_id,
                "name": item.name if item is not None else None,
                "required": format_quantity(required),
                "on_hand": format_quantity(on_hand),
                "missing": format_quantity(required - on_hand),
            })

    return {
        "product_id": product_id,
        "quantity": quantity,
        "available": not shortages,
        "shortages": shortages,
    }
