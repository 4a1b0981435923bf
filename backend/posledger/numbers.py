# Overview: Decimal helpers for inventory quantities and money rounding.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# Inventory quantities carry four fractional digits (grams, millilitres, ...)
QUANTITY_SCALE = Decimal("0.0001")
# Numeric(14, 4) leaves ten integer digits
MAX_QUANTITY = Decimal(10) ** 10
ZERO = Decimal("0")


def to_quantity(value) -> Decimal:
    """
    Normalize a quantity to a Decimal with four fractional digits.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError("quantity must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        qty = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"invalid quantity: {value!r}")
    if not qty.is_finite():
        raise ValueError(f"invalid quantity: {value!r}")
    try:
        qty = qty.quantize(QUANTITY_SCALE, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"quantity out of range: {value!r}")
    if abs(qty) >= MAX_QUANTITY:
        raise ValueError(f"quantity out of range: {value!r}")
    return qty


def format_quantity(value) -> str | None:
    if value is None:
        return None
    return str(to_quantity(value))


def round_cents(value: Decimal) -> int:
    """Round a (possibly fractional) cents amount half-up to whole cents."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def average_cents(total_cents: int, count: int) -> int:
    """Nearest-cent average (half-up); 0 when there is nothing to average."""
    if not count:
        return 0
    return (total_cents + count // 2) // count
