"""
Decimal helpers for monetary arithmetic.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

ZERO = Decimal("0")


def to_money(value: Decimal, places: int = 2) -> Decimal:
    """Round to the currency's minor unit, half-up."""
    return Decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def percent(rate: Decimal) -> str:
    """Format a fractional rate for audit formulas (0.05 -> '5%')."""
    return f"{(rate * 100).normalize():f}%"


def fmt(value: Decimal) -> str:
    return f"{value:,.2f}"


def ratio(numerator: Decimal, denominator: Decimal, places: int = 4) -> Optional[Decimal]:
    """Quotient rounded half-up, or None when the denominator is not positive."""
    if denominator <= 0:
        return None
    return to_money(numerator / denominator, places)
