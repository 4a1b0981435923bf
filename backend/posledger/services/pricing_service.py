"""
Settlement Calculator - monetary breakdown of a cart.

Money is integer cents end to end. Intermediate values are exact Decimals;
only the final breakdown is rounded (half-up, to the cent):

    subtotal        = sum(unit_price * quantity)            exact
    discount        = round(subtotal * rate / 100)
    after_discount  = subtotal - discount                   reconciles exactly
    exempt policy:  taxable = 0, exempt = after_discount, tax = 0
    otherwise:      taxable = after_discount, exempt = 0,
                    tax = round(taxable * tax_rate_bps / 10000)
    total           = after_discount + tax

The tax rate is always an explicit input. Deployments that do not charge
VAT pass 0 (the default TAX_RATE_BPS); the exemption bookkeeping fields
are filled in either way.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from ..numbers import round_cents
from ..validation import ValidationError
from .discount_service import DiscountPolicy


class SettlementValidationError(ValidationError):
    """Cart rejected before anything is persisted."""


class EmptyCart(SettlementValidationError):
    def __init__(self):
        super().__init__("Cannot settle an empty cart")


class NegativePrice(SettlementValidationError):
    def __init__(self, line_number: int, value: int):
        super().__init__(f"Line {line_number}: unit price cannot be negative ({value})")
        self.line_number = line_number


class NegativeQuantity(SettlementValidationError):
    def __init__(self, line_number: int, value: int):
        super().__init__(f"Line {line_number}: quantity cannot be negative ({value})")
        self.line_number = line_number


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    unit_price_cents: int
    name: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class SettlementBreakdown:
    subtotal_cents: int
    discount_code: str
    discount_rate: Decimal
    discount_cents: int
    after_discount_cents: int
    vat_exempt: bool
    taxable_cents: int
    tax_exempt_cents: int
    tax_rate_bps: int
    tax_cents: int
    total_cents: int
    items_count: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_code": self.discount_code,
            "discount_rate": str(self.discount_rate),
            "discount_cents": self.discount_cents,
            "after_discount_cents": self.after_discount_cents,
            "vat_exempt": self.vat_exempt,
            "taxable_cents": self.taxable_cents,
            "tax_exempt_cents": self.tax_exempt_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "items_count": self.items_count,
        }


def validate_cart(lines: Sequence[CartLine]) -> None:
    if not lines:
        raise EmptyCart()
    for number, line in enumerate(lines, start=1):
        if line.unit_price_cents < 0:
            raise NegativePrice(number, line.unit_price_cents)
        if line.quantity < 0:
            raise NegativeQuantity(number, line.quantity)


def calculate_breakdown(
    lines: Sequence[CartLine],
    policy: DiscountPolicy,
    *,
    tax_rate_bps: int = 0,
) -> SettlementBreakdown:
    validate_cart(lines)
    if tax_rate_bps < 0:
        raise ValidationError("tax_rate_bps cannot be negative")

    subtotal = sum((Decimal(line.unit_price_cents) * line.quantity for line in lines), Decimal(0))
    discount_cents = round_cents(subtotal * policy.rate / 100)
    subtotal_cents = int(subtotal)
    after_discount = subtotal_cents - discount_cents

    if policy.vat_exempt:
        taxable_cents, exempt_cents, tax_cents = 0, after_discount, 0
    else:
        taxable_cents = after_discount
        exempt_cents = 0
        tax_cents = round_cents(Decimal(taxable_cents) * tax_rate_bps / 10000)

    return SettlementBreakdown(
        subtotal_cents=subtotal_cents,
        discount_code=policy.code,
        discount_rate=policy.rate,
        discount_cents=discount_cents,
        after_discount_cents=after_discount,
        vat_exempt=policy.vat_exempt,
        taxable_cents=taxable_cents,
        tax_exempt_cents=exempt_cents,
        tax_rate_bps=tax_rate_bps,
        tax_cents=tax_cents,
        total_cents=after_discount + tax_cents,
        items_count=sum(line.quantity for line in lines),
    )
