# Overview: Discount policy resolution; maps a discount code to its rate and VAT treatment.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..validation import ValidationError


class InvalidDiscountCode(ValidationError):
    """Raised for a discount code outside the supported set."""

    def __init__(self, code):
        super().__init__(f"Unknown discount code: {code!r}")
        self.code = code


@dataclass(frozen=True)
class DiscountPolicy:
    code: str
    rate: Decimal  # percent, 0..100
    vat_exempt: bool
    label: str

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "rate": str(self.rate),
            "vat_exempt": self.vat_exempt,
            "label": self.label,
        }


# Senior citizen and PWD discounts are statutory: 20% off and VAT-exempt.
# The policies are mutually exclusive; a sale carries exactly one.
DISCOUNT_POLICIES = {
    "none": DiscountPolicy("none", Decimal("0"), False, "No Discount"),
    "senior": DiscountPolicy("senior", Decimal("20"), True, "Senior Citizen"),
    "pwd": DiscountPolicy("pwd", Decimal("20"), True, "PWD"),
}


def resolve_discount(code: str | None) -> DiscountPolicy:
    """Resolve a discount code. Blank or missing means no discount."""
    if code is None:
        return DISCOUNT_POLICIES["none"]
    if not isinstance(code, str):
        raise InvalidDiscountCode(code)
    normalized = code.strip().lower()
    if not normalized:
        return DISCOUNT_POLICIES["none"]
    try:
        return DISCOUNT_POLICIES[normalized]
    except KeyError:
        raise InvalidDiscountCode(code) from None


def list_discount_policies() -> list[DiscountPolicy]:
    return list(DISCOUNT_POLICIES.values())
