# Overview: Service-layer operations for the inventory ledger; encapsulates business logic and database work.

# backend/posledger/services/inventory_service.py

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryItem, StockMovement, MOVEMENT_KINDS
from ..numbers import MAX_QUANTITY, ZERO, format_quantity, to_quantity
from ..validation import ConflictError, ValidationError
from posledger.time_utils import utcnow
from .concurrency import keyed_lock, lock_for_update, run_with_retry
"""
Inventory Ledger Invariants & Time Semantics (authoritative)

Canonical time handling:
- All internal datetimes are UTC-naive (tzinfo=None).
- API responses serialize datetimes as ISO-8601 'Z' strings.

Ledger model:
- StockMovement rows are append-only; InventoryItem.quantity_on_hand is the
  projection of the item's movement chain and is written only here.
- Each movement records quantity_before / quantity_after; the balance write
  and the movement insert share one DB transaction.
- Replaying an item's movements in id order from zero reproduces
  quantity_on_hand (see verify_chain).

Business rules:
- Negative on-hand is allowed and logged; a cafe keeps selling when the
  count is off, and the shortage is visible in the ledger.
- sale / waste deltas are negative, purchase deltas positive,
  adjustment / transfer deltas any sign but never zero.
- A (sale line, item) pair produces at most one movement.

Concurrency:
- Writers for one item are serialized in-process by keyed_lock and across
  processes by the item's version_id (compare-and-swap) + run_with_retry.
- Reads (balances, history) never take locks.
"""


class InventoryError(Exception):
    """Raised for inventory ledger errors."""
    code = "INVENTORY_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class UnknownItem(InventoryError):
    code = "UNKNOWN_ITEM"

    def __init__(self, item_id):
        super().__init__(f"Inventory item {item_id} not found", details={"inventory_item_id": item_id})
        self.item_id = item_id


class InvalidMovement(InventoryError, ValidationError):
    code = "INVALID_MOVEMENT"


def _get_item(item_id: int, *, lock: bool = False, active_only: bool = False) -> InventoryItem:
    if not isinstance(item_id, int) or isinstance(item_id, bool):
        raise UnknownItem(item_id)
    query = db.session.query(InventoryItem).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    item = query.first()
    if item is None or (active_only and not item.is_active):
        raise UnknownItem(item_id)
    return item


def get_item(item_id: int) -> InventoryItem:
    return _get_item(item_id)


def current_balance(item_id: int) -> Decimal:
    return to_quantity(_get_item(item_id).quantity_on_hand)


def _check_movement(kind: str, delta: Decimal) -> None:
    if kind not in MOVEMENT_KINDS:
        raise InvalidMovement(f"kind must be one of: {', '.join(MOVEMENT_KINDS)}")
    if delta == 0:
        raise InvalidMovement("quantity_delta cannot be zero")
    if kind in ("sale", "waste") and delta > 0:
        raise InvalidMovement(f"{kind} movements must decrease stock")
    if kind == "purchase" and delta < 0:
        raise InvalidMovement("purchase movements must increase stock")


def _parse_occurred_at(value) -> datetime:
    if value is None:
        return utcnow()
    if not isinstance(value, datetime):
        raise InvalidMovement("occurred_at must be a datetime")
    if value.tzinfo is not None:
        raise InvalidMovement("occurred_at must be UTC-naive")
    if value > utcnow() + timedelta(minutes=2):
        raise InvalidMovement("occurred_at cannot be in the future")
    return value


def _ensure_not_compensated(movement_id: int) -> None:
    already = db.session.query(StockMovement.id).filter_by(reverses_movement_id=movement_id).first()
    if already is not None:
        raise ConflictError(f"Stock movement {movement_id} is already compensated by {already.id}")


def _warn_on_stock_level(item: InventoryItem, movement: StockMovement) -> None:
    if movement.quantity_delta >= 0:
        return
    if movement.quantity_after < 0:
        current_app.logger.warning(
            "Negative stock for %s (item %s): %s -> %s %s",
            item.name, item.id, format_quantity(movement.quantity_before),
            format_quantity(movement.quantity_after), item.unit,
        )
    elif movement.quantity_after <= item.reorder_level:
        current_app.logger.warning(
            "Low stock for %s (item %s): %s %s left, reorder level %s",
            item.name, item.id, format_quantity(movement.quantity_after),
            item.unit, format_quantity(item.reorder_level),
        )


def apply_movement(
    item_id: int,
    delta,
    kind: str,
    *,
    transaction_id: int | None = None,
    transaction_line_id: int | None = None,
    reverses_movement_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """
    Apply one signed stock change and append its movement record.

    before = current balance, after = before + delta; the item balance and
    the StockMovement are committed together or not at all.

    Raises UnknownItem if the item does not exist or is inactive, and
    InvalidMovement for a zero delta, an unknown kind or a sign that
    contradicts the kind.
    """
    try:
        delta = to_quantity(delta)
    except ValueError as exc:
        raise InvalidMovement(str(exc))
    _check_movement(kind, delta)
    occurred_dt = _parse_occurred_at(occurred_at)

    def _op() -> StockMovement:
        # Idempotency: a retried sale line returns the movement it already made
        if transaction_line_id is not None:
            existing = db.session.query(StockMovement).filter_by(
                transaction_line_id=transaction_line_id,
                inventory_item_id=item_id,
            ).first()
            if existing is not None:
                return existing

        # Under the item lock: a movement is compensated at most once
        if reverses_movement_id is not None:
            _ensure_not_compensated(reverses_movement_id)

        item = _get_item(item_id, lock=True, active_only=True)

        before = to_quantity(item.quantity_on_hand)
        after = before + delta
        if abs(after) >= MAX_QUANTITY:
            raise InvalidMovement(f"resulting balance {after} is out of range")

        # version_id turns this UPDATE into a compare-and-swap
        item.quantity_on_hand = after

        movement = StockMovement(
            inventory_item_id=item.id,
            kind=kind,
            quantity_delta=delta,
            quantity_before=before,
            quantity_after=after,
            transaction_id=transaction_id,
            transaction_line_id=transaction_line_id,
            reverses_movement_id=reverses_movement_id,
            note=note,
            actor=actor,
            occurred_at=occurred_dt,
        )
        db.session.add(movement)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if reverses_movement_id is not None:
                raise ConflictError(f"Stock movement {reverses_movement_id} is already compensated")
            raise

        _warn_on_stock_level(item, movement)
        return movement

    with keyed_lock("inventory_item", item_id):
        return run_with_retry(_op)


# =============================================================================
# ITEM MAINTENANCE
# =============================================================================

def create_inventory_item(
    *,
    name: str,
    unit: str = "pcs",
    reorder_level=0,
    unit_cost_cents=None,
    opening_quantity=None,
    actor: str | None = None,
) -> InventoryItem:
    """
    Create an item at zero and book any opening stock as a purchase movement,
    so the first link of the chain is a real movement like every other.
    """
    item = InventoryItem(
        name=name,
        unit=unit or "pcs",
        quantity_on_hand=ZERO,
        reorder_level=to_quantity(reorder_level or 0),
        unit_cost_cents=to_quantity(unit_cost_cents) if unit_cost_cents is not None else None,
    )
    db.session.add(item)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Inventory item '{name}' already exists")

    if opening_quantity is not None and to_quantity(opening_quantity) != 0:
        apply_movement(
            item.id,
            opening_quantity,
            "purchase",
            note="Opening balance",
            actor=actor,
        )
    return item


# Descriptive fields only; the balance changes through movements
EDITABLE_ITEM_FIELDS = {"name", "unit", "reorder_level", "unit_cost_cents", "is_active"}


def update_inventory_item(item_id: int, patch: dict) -> InventoryItem:
    forbidden = set(patch) - EDITABLE_ITEM_FIELDS
    if forbidden:
        raise ValidationError(f"Field not editable: {', '.join(sorted(forbidden))}")

    def _op():
        item = _get_item(item_id, lock=True)
        for key, value in patch.items():
            setattr(item, key, value)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Inventory item '{patch.get('name')}' already exists")
        return item

    with keyed_lock("inventory_item", item_id):
        return run_with_retry(_op)


def compensate_movement(
    movement_id: int,
    *,
    actor: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Offset a movement with an equal and opposite adjustment.

    History is never edited: the original row stays, and the new one points
    back at it through reverses_movement_id.
    """
    original = db.session.get(StockMovement, movement_id)
    if original is None:
        raise InventoryError(f"Stock movement {movement_id} not found", details={"movement_id": movement_id})
    if original.reverses_movement_id is not None:
        raise ConflictError("Cannot compensate a compensating movement")

    _ensure_not_compensated(movement_id)

    return apply_movement(
        original.inventory_item_id,
        -to_quantity(original.quantity_delta),
        "adjustment",
        transaction_id=original.transaction_id,
        reverses_movement_id=original.id,
        note=note or f"Compensates movement {original.id}",
        actor=actor,
    )


# =============================================================================
# READS
# =============================================================================

class MovementHistory:
    """
    Reverse-chronological movements of one item, fetched lazily.

    Iterating issues keyset-paginated queries (id < last seen) in batches,
    so a long history is never loaded at once. Every iter() starts again
    from the newest movement; a reader racing writers may miss movements
    committed mid-iteration but always sees a consistent chain prefix.
    """

    def __init__(self, item_id: int, limit: int, batch_size: int = 50):
        self.item_id = item_id
        self.limit = limit
        self.batch_size = max(1, batch_size)

    def __iter__(self):
        remaining = self.limit
        cursor_id = None
        while remaining > 0:
            query = db.session.query(StockMovement).filter(
                StockMovement.inventory_item_id == self.item_id,
            )
            if cursor_id is not None:
                query = query.filter(StockMovement.id < cursor_id)
            rows = (
                query.order_by(StockMovement.id.desc())
                .limit(min(self.batch_size, remaining))
                .all()
            )
            if not rows:
                return
            yield from rows
            remaining -= len(rows)
            cursor_id = rows[-1].id


def history_for(item_id: int, limit: int | None = None) -> MovementHistory:
    """Audit view of an item's movements; raises UnknownItem eagerly."""
    _get_item(item_id)

    max_limit = current_app.config.get("LEDGER_HISTORY_MAX_LIMIT", 500)
    if limit is None:
        limit = max_limit
    limit = max(1, min(int(limit), max_limit))
    return MovementHistory(
        item_id,
        limit,
        batch_size=current_app.config.get("LEDGER_HISTORY_BATCH_SIZE", 50),
    )


def replay_balance(item_id: int) -> Decimal:
    """Sum of all deltas for the item, i.e. the balance rebuilt from zero."""
    _get_item(item_id)
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(StockMovement.inventory_item_id == item_id).scalar()
    return to_quantity(total or 0)


def verify_chain(item_id: int) -> dict:
    """
    Replay an item's movements in creation order and check the ledger laws.

    Reports every break in the before/after chain and whether the replayed
    balance matches the stored projection.
    """
    item = _get_item(item_id)

    running = ZERO
    count = 0
    breaks = []
    query = (
        db.session.query(StockMovement)
        .filter(StockMovement.inventory_item_id == item_id)
        .order_by(StockMovement.id.asc())
        .yield_per(200)
    )
    for movement in query:
        count += 1
        before = to_quantity(movement.quantity_before)
        after = to_quantity(movement.quantity_after)
        delta = to_quantity(movement.quantity_delta)
        if before != running:
            breaks.append({
                "movement_id": movement.id,
                "problem": "quantity_before does not match previous quantity_after",
                "expected": format_quantity(running),
                "actual": format_quantity(before),
            })
        if before + delta != after:
            breaks.append({
                "movement_id": movement.id,
                "problem": "quantity_after != quantity_before + quantity_delta",
                "expected": format_quantity(before + delta),
                "actual": format_quantity(after),
            })
        running += delta

    stored = to_quantity(item.quantity_on_hand)
    return {
        "inventory_item_id": item.id,
        "movement_count": count,
        "replayed_balance": format_quantity(running),
        "current_balance": format_quantity(stored),
        "consistent": not breaks and running == stored,
        "breaks": breaks,
    }


def list_items() -> list[InventoryItem]:
    return db.session.query(InventoryItem).order_by(InventoryItem.name).all()


def low_stock_items() -> list[InventoryItem]:
    """Items at or below their reorder level, most depleted first."""
    return (
        db.session.query(InventoryItem)
        .filter(InventoryItem.quantity_on_hand <= InventoryItem.reorder_level, InventoryItem.is_active.is_(True))
        .order_by((InventoryItem.quantity_on_hand - InventoryItem.reorder_level).asc(), InventoryItem.name)
        .all()
    )


def movements_for_transaction(transaction_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(transaction_id=transaction_id)
        .order_by(StockMovement.id)
        .all()
    )
