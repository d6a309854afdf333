"""
Payroll Core - Money Helpers

All payroll figures are Decimal and every persisted amount is a whole currency
unit, rounded half-up.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

ZERO = Decimal("0")
WHOLE_UNIT = Decimal("1")


def to_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """Convert a number or numeric string to Decimal; None maps to ``default``."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_currency(value: Decimal) -> Decimal:
    """Round to the nearest whole currency unit, halves away from zero."""
    return to_decimal(value).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def percent_of(base: Decimal, rate: Decimal) -> Decimal:
    """``rate`` percent of ``base``, unrounded."""
    return base * rate / Decimal("100")


def total(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO)
