"""
Pricing helpers for quotations and bookings.

All money is Decimal. Amounts are quantized to the smallest currency unit
(two places) when they leave this module.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Tuple

from errors import ValidationError

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    if isinstance(value, float):
        # go through str so 0.1 stays 0.1
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def line_subtotal(rate: Any, quantity: int) -> Decimal:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    return to_money(to_money(rate) * quantity)


def price_items(pairs: Iterable[Tuple[Any, int]]) -> Tuple[List[Decimal], Decimal]:
    """Return per-item subtotals and their sum for (rate, quantity) pairs."""
    subtotals = [line_subtotal(rate, quantity) for rate, quantity in pairs]
    return subtotals, to_money(sum(subtotals, Decimal("0")))


def parse_deposit(value: Any) -> Decimal:
    """Security deposit: missing or unparsable becomes 0, negative is rejected."""
    if value is None or value == "":
        return to_money(0)
    try:
        amount = to_money(value)
    except ValidationError:
        return to_money(0)
    if amount < 0:
        raise ValidationError("Security deposit cannot be negative")
    return amount
