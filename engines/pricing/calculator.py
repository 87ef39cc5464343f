"""
ROS Pricing Engine — Cart Calculator
=======================================
Pure functions turning a cart into the five monetary fields of an
order. Channels may call these to preview a cart; the order engine
calls them once more on submission and only that result is stored.

RULES:
- Deterministic: same input → same output
- Integer minor units; rates are Decimals, rounded half-up
- total = max(0, subtotal + delivery_fee + service_fee
                 − coupon_discount − loyalty_discount)
- Loyalty points are never earned here. Earning happens at settlement.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Optional, Tuple

from core.commands.rejection import RejectionReason
from core.config.rules import RestaurantSettings
from core.primitives.money import MINOR_UNITS_PER_MAJOR, apply_rate
from engines.promotion.policies import evaluate_coupon


@dataclass(frozen=True)
class CartLine:
    """One cart entry: unit price plus modifier price deltas, times quantity."""
    item_id: str
    name: str
    unit_price: int
    quantity: int
    modifier_prices: Tuple[int, ...] = ()
    modifiers_summary: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("name must be non-empty.")
        if not isinstance(self.unit_price, int) or self.unit_price < 0:
            raise ValueError("unit_price must be non-negative integer.")
        if not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValueError("quantity must be positive integer.")
        if any(not isinstance(p, int) for p in self.modifier_prices):
            raise ValueError("modifier_prices must be integers.")

    @property
    def modifier_total(self) -> int:
        return sum(self.modifier_prices)

    @property
    def line_total(self) -> int:
        return max(0, self.unit_price + self.modifier_total) * self.quantity

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "modifier_prices": list(self.modifier_prices),
            "modifiers_summary": self.modifiers_summary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        return cls(
            item_id=str(data.get("item_id", "")),
            name=data.get("name", ""),
            unit_price=data.get("unit_price"),
            quantity=data.get("quantity"),
            modifier_prices=tuple(data.get("modifier_prices") or ()),
            modifiers_summary=data.get("modifiers_summary", ""),
        )


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: int
    delivery_fee: int
    service_fee: int
    coupon_discount: int
    loyalty_discount: int
    total: int
    loyalty_points_used: int = 0
    coupon_code: Optional[str] = None
    coupon_rejection: Optional[RejectionReason] = None

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "service_fee": self.service_fee,
            "coupon_discount": self.coupon_discount,
            "loyalty_discount": self.loyalty_discount,
            "total": self.total,
            "loyalty_points_used": self.loyalty_points_used,
            "coupon_code": self.coupon_code,
            "coupon_rejection": (
                self.coupon_rejection.to_dict() if self.coupon_rejection else None
            ),
        }


# ══════════════════════════════════════════════════════════════
# COMPONENTS
# ══════════════════════════════════════════════════════════════

def calculate_subtotal(lines: Iterable[CartLine]) -> int:
    return sum(line.line_total for line in lines)


def calculate_service_fee(subtotal: int, enabled: bool, rate: Decimal) -> int:
    if not enabled:
        return 0
    return apply_rate(subtotal, rate)


def calculate_coupon_discount(coupon, subtotal: int) -> Tuple[int, Optional[RejectionReason]]:
    """Discount is computed on the subtotal only, never on fees."""
    if coupon is None:
        return 0, None
    reason = evaluate_coupon(coupon, subtotal)
    if reason is not None:
        return 0, reason
    return coupon.discount_for(subtotal), None


def points_value(points: int, redemption_value: Decimal) -> int:
    """Minor-unit value of a number of points."""
    return apply_rate(points, Decimal(redemption_value) * MINOR_UNITS_PER_MAJOR)


def calculate_loyalty_discount(
    points_requested: int,
    balance: int,
    redemption_value: Decimal,
    ceiling: int,
) -> Tuple[int, int]:
    """
    Returns (discount, points_used).

    Usable points are min(requested, balance). When the ceiling cuts the
    discount, only the points needed to cover it are consumed.
    """
    usable = max(0, min(points_requested, balance))
    if usable == 0 or ceiling <= 0:
        return 0, 0
    discount = points_value(usable, redemption_value)
    if discount <= ceiling:
        return discount, usable
    per_point = Decimal(redemption_value) * MINOR_UNITS_PER_MAJOR
    if per_point <= 0:
        return 0, 0
    points_used = min(usable, math.ceil(Decimal(ceiling) / per_point))
    return ceiling, points_used


# ══════════════════════════════════════════════════════════════
# FULL CART
# ══════════════════════════════════════════════════════════════

def calculate_pricing(
    lines: Iterable[CartLine],
    *,
    settings: RestaurantSettings,
    delivery_fee: int = 0,
    service_fee_enabled: bool = False,
    coupon=None,
    loyalty_points_requested: int = 0,
    loyalty_balance: int = 0,
) -> PricingBreakdown:
    """
    Price a cart.

    Coupon failures do not raise: the coupon is simply not applied and
    the reason is carried on the breakdown for the channel to display.
    """
    lines = tuple(lines)
    if delivery_fee < 0:
        raise ValueError("delivery_fee must be >= 0.")

    subtotal = calculate_subtotal(lines)
    service_fee = calculate_service_fee(
        subtotal, service_fee_enabled, settings.service_fee_rate,
    )
    coupon_discount, coupon_rejection = calculate_coupon_discount(coupon, subtotal)

    gross = subtotal + delivery_fee + service_fee
    loyalty_discount, points_used = calculate_loyalty_discount(
        loyalty_points_requested,
        loyalty_balance,
        settings.loyalty_redemption_value,
        ceiling=gross - coupon_discount,
    )

    total = max(0, gross - coupon_discount - loyalty_discount)
    return PricingBreakdown(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        service_fee=service_fee,
        coupon_discount=coupon_discount,
        loyalty_discount=loyalty_discount,
        total=total,
        loyalty_points_used=points_used,
        coupon_code=coupon.code if coupon is not None and coupon_rejection is None else None,
        coupon_rejection=coupon_rejection,
    )


def calculate_points_earned(total: int, settings: RestaurantSettings) -> int:
    """floor(total in currency units × points per currency unit)."""
    if not settings.loyalty_enabled or total <= 0:
        return 0
    raw = Decimal(total) * settings.loyalty_points_per_currency_unit / MINOR_UNITS_PER_MAJOR
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))
