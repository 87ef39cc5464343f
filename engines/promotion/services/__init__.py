"""
ROS Promotion Engine — Coupon Book
=====================================
Coupons are shared by every channel. current_uses is the contended
field: it is incremented only inside the book's lock, at most once
per (code, order_id), and never past max_uses.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Optional, Set, Tuple, Union

from core.commands.rejection import CommandRejectedError, ReasonCode, RejectionReason
from core.primitives.money import percent_of
from engines.promotion.policies import evaluate_coupon

logger = logging.getLogger("ros.promotion")

COUPON_PERCENTAGE = "percentage"
COUPON_FIXED = "fixed"

VALID_COUPON_TYPES = frozenset({COUPON_PERCENTAGE, COUPON_FIXED})


@dataclass(frozen=True)
class Coupon:
    """
    Discount coupon.

    percentage: discount_value is a percent of the subtotal (10 → 10%).
    fixed:      discount_value is an amount in minor units.
    """
    code: str
    type: str
    discount_value: Union[int, Decimal]
    min_order_value: int = 0
    max_uses: int = 1
    current_uses: int = 0
    active: bool = True

    def __post_init__(self):
        if not self.code:
            raise ValueError("code must be non-empty.")
        if self.code != self.code.upper():
            object.__setattr__(self, "code", self.code.upper())
        if self.type not in VALID_COUPON_TYPES:
            raise ValueError(f"type '{self.type}' not valid.")
        if self.discount_value < 0:
            raise ValueError("discount_value must be >= 0.")
        if self.type == COUPON_FIXED and not isinstance(self.discount_value, int):
            raise ValueError("fixed discount_value must be integer minor units.")
        if self.type == COUPON_PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount_value must be <= 100.")
        if self.max_uses < 0 or self.current_uses < 0:
            raise ValueError("uses must be >= 0.")
        if self.current_uses > self.max_uses:
            raise ValueError("current_uses cannot exceed max_uses.")

    def discount_for(self, subtotal: int) -> int:
        """Discount on the subtotal, never more than the subtotal itself."""
        if self.type == COUPON_PERCENTAGE:
            discount = percent_of(subtotal, self.discount_value)
        else:
            discount = int(self.discount_value)
        return min(discount, subtotal)


class CouponBook:
    """In-memory coupon store with compare-and-set redemption."""

    def __init__(self):
        self._coupons: Dict[str, Coupon] = {}
        self._redemptions: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def add(self, coupon: Coupon) -> None:
        with self._lock:
            self._coupons[coupon.code] = coupon

    def get(self, code: str) -> Optional[Coupon]:
        if not code:
            return None
        with self._lock:
            return self._coupons.get(code.strip().upper())

    def redeem(self, code: str, order_id: str, subtotal: int) -> Coupon:
        """
        Consume one use of the coupon for order_id.

        Re-redeeming for the same order returns the coupon unchanged.
        Raises CommandRejectedError when the coupon is unknown, inactive,
        exhausted or below its minimum order value.
        """
        key_code = (code or "").strip().upper()
        with self._lock:
            coupon = self._coupons.get(key_code)
            if coupon is None:
                raise CommandRejectedError(RejectionReason(
                    code=ReasonCode.COUPON_NOT_FOUND,
                    message=f"Coupon '{key_code}' not found.",
                    policy_name="coupon_book.redeem",
                ))
            if (key_code, order_id) in self._redemptions:
                return coupon
            reason = evaluate_coupon(coupon, subtotal)
            if reason is not None:
                raise CommandRejectedError(reason)
            coupon = replace(coupon, current_uses=coupon.current_uses + 1)
            self._coupons[key_code] = coupon
            self._redemptions.add((key_code, order_id))
        logger.info(
            f"Coupon {key_code} redeemed by order {order_id} "
            f"({coupon.current_uses}/{coupon.max_uses})"
        )
        return coupon

    def release(self, code: str, order_id: str) -> bool:
        """Give back the use consumed by order_id. False if it held none."""
        key_code = (code or "").strip().upper()
        with self._lock:
            if (key_code, order_id) not in self._redemptions:
                return False
            self._redemptions.discard((key_code, order_id))
            coupon = self._coupons[key_code]
            self._coupons[key_code] = replace(
                coupon, current_uses=max(0, coupon.current_uses - 1),
            )
        logger.info(f"Coupon {key_code} released by order {order_id}")
        return True
