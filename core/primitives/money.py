"""
ROS Money Primitive — Integer Minor Units
===========================================
All amounts use integer minor units (centavos) — NO floats.
Rates are Decimals; applying a rate rounds half-up back to minor units.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

MINOR_UNITS_PER_MAJOR = 100

_ONE = Decimal("1")


def apply_rate(amount: int, rate: Decimal) -> int:
    """amount × rate, rounded half-up to whole minor units."""
    if not isinstance(amount, int):
        raise TypeError("amount must be int (minor units).")
    return int((Decimal(amount) * Decimal(rate)).quantize(_ONE, rounding=ROUND_HALF_UP))


def percent_of(amount: int, percent: Union[int, Decimal]) -> int:
    """amount × percent / 100, half-up. 10% of 10000 → 1000."""
    return apply_rate(amount, Decimal(percent) / Decimal(100))


def to_major(amount: int) -> Decimal:
    """10850 → Decimal('108.50')."""
    return (Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def to_minor(value: Union[str, int, Decimal]) -> int:
    """Decimal('108.50') or '108.50' → 10850. Floats are refused."""
    if isinstance(value, float):
        raise TypeError("float amounts are not accepted; use str or Decimal.")
    return int((Decimal(value) * MINOR_UNITS_PER_MAJOR).quantize(_ONE, rounding=ROUND_HALF_UP))
