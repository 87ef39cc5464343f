"""
ROS Promotion Engine — Policies
=================================
A coupon that fails a policy is simply not applied to the cart;
at order creation the same policies turn into a hard rejection.
"""

from __future__ import annotations

from typing import Optional

from core.commands.rejection import ReasonCode, RejectionReason


def coupon_must_be_active_policy(coupon) -> Optional[RejectionReason]:
    if not coupon.active:
        return RejectionReason(
            code=ReasonCode.COUPON_INACTIVE,
            message=f"Coupon '{coupon.code}' is not active.",
            policy_name="coupon_must_be_active_policy",
        )
    return None


def coupon_must_have_uses_left_policy(coupon) -> Optional[RejectionReason]:
    if coupon.current_uses >= coupon.max_uses:
        return RejectionReason(
            code=ReasonCode.COUPON_EXHAUSTED,
            message=f"Coupon '{coupon.code}' used {coupon.current_uses} of "
                    f"{coupon.max_uses} times.",
            policy_name="coupon_must_have_uses_left_policy",
        )
    return None


def coupon_minimum_order_policy(coupon, subtotal: int) -> Optional[RejectionReason]:
    if subtotal < coupon.min_order_value:
        return RejectionReason(
            code=ReasonCode.COUPON_BELOW_MINIMUM,
            message=f"Coupon '{coupon.code}' requires a minimum order of "
                    f"{coupon.min_order_value}, got {subtotal}.",
            policy_name="coupon_minimum_order_policy",
        )
    return None


def evaluate_coupon(coupon, subtotal: int) -> Optional[RejectionReason]:
    """First failing policy wins."""
    for check in (
        coupon_must_be_active_policy,
        coupon_must_have_uses_left_policy,
    ):
        reason = check(coupon)
        if reason is not None:
            return reason
    return coupon_minimum_order_policy(coupon, subtotal)
