"""Order pricing: tax, delivery fee and provider amounts."""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Tuple, Union

Number = Union[int, float, str, Decimal]

TAX_RATE = Decimal("0.13")
DELIVERY_FEE = Decimal("5.00")
FREE_DELIVERY_THRESHOLD = Decimal("50.00")

_CENT = Decimal("0.01")


def to_money(value: Number) -> Decimal:
    """Coerce to a Decimal rounded half-up to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Number) -> int:
    """Amount in the smallest currency unit, as payment providers expect."""
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def delivery_fee_for(subtotal: Number) -> Decimal:
    if to_money(subtotal) >= FREE_DELIVERY_THRESHOLD:
        return Decimal("0.00")
    return DELIVERY_FEE


def calculate_totals(items: Iterable[Tuple[Number, int]]) -> Dict[str, Decimal]:
    """Compute order totals from ``(unit_price, quantity)`` pairs.

    Tax is charged on the subtotal only; the delivery fee is waived at or
    above ``FREE_DELIVERY_THRESHOLD``.
    """
    subtotal = Decimal("0.00")
    for unit_price, quantity in items:
        subtotal += to_money(unit_price) * int(quantity)
    subtotal = to_money(subtotal)
    tax_amount = to_money(subtotal * TAX_RATE)
    fee = delivery_fee_for(subtotal)
    return {
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "delivery_fee": fee,
        "total_amount": to_money(subtotal + tax_amount + fee),
    }
