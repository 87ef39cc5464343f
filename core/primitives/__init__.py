"""
ROS Core Primitives
=====================
Pure, engine-agnostic building blocks.

    money — integer minor-unit arithmetic with Decimal rates
"""

from core.primitives.money import (
    MINOR_UNITS_PER_MAJOR,
    apply_rate,
    percent_of,
    to_major,
    to_minor,
)

__all__ = [
    "MINOR_UNITS_PER_MAJOR",
    "apply_rate",
    "percent_of",
    "to_major",
    "to_minor",
]
