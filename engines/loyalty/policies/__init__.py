"""
ROS Loyalty Engine — Policies
===============================
Redemption guards. A balance never goes negative.
"""

from typing import Optional

from core.commands.rejection import ReasonCode, RejectionReason


def points_must_be_positive_policy(points: int) -> Optional[RejectionReason]:
    if not isinstance(points, int) or points <= 0:
        return RejectionReason(
            code=ReasonCode.VALIDATION_FAILED,
            message=f"Points must be a positive integer, got {points!r}.",
            policy_name="points_must_be_positive_policy",
        )
    return None


def sufficient_balance_policy(balance: int, points: int) -> Optional[RejectionReason]:
    """Customer must have enough points to redeem."""
    if balance < points:
        return RejectionReason(
            code=ReasonCode.INSUFFICIENT_POINTS,
            message=f"Customer has {balance} points, needs {points}.",
            policy_name="sufficient_balance_policy",
        )
    return None
