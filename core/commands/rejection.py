"""
ROS Command Layer — Rejection Model
======================================
Structured rejection reasons for denied commands.

Every rejection must be:
- Deterministic (same input → same rejection)
- Machine-readable (code)
- Human-readable (message)
- Attributable (policy_name)

Rejections never leave partial state behind: the engine that
rejects is responsible for undoing anything it already claimed.
"""

from __future__ import annotations

from dataclasses import dataclass


# ══════════════════════════════════════════════════════════════
# REJECTION REASON (frozen explanation structure)
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RejectionReason:
    """
    Structured reason for command rejection.

    Fields:
        code:        Machine-readable rejection code (e.g. 'TABLE_NOT_FREE').
        message:     Human-readable explanation.
        policy_name: Name of the policy that caused rejection.
    """

    code: str
    message: str
    policy_name: str

    def __post_init__(self):
        if not self.code or not isinstance(self.code, str):
            raise ValueError("code must be a non-empty string.")

        if not self.message or not isinstance(self.message, str):
            raise ValueError("message must be a non-empty string.")

        if not self.policy_name or not isinstance(self.policy_name, str):
            raise ValueError("policy_name must be a non-empty string.")

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "policy_name": self.policy_name,
        }


class CommandRejectedError(Exception):
    """Raised by engine services when a policy rejects a command."""

    def __init__(self, reason: RejectionReason):
        super().__init__(f"{reason.code}: {reason.message}")
        self.reason = reason

    @property
    def code(self) -> str:
        return self.reason.code


# ══════════════════════════════════════════════════════════════
# STANDARD REJECTION CODES
# ══════════════════════════════════════════════════════════════

class ReasonCode:
    """
    Known rejection codes.

    Convention: SCREAMING_SNAKE_CASE.
    """

    # ── Validation ────────────────────────────────────────────
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TABLE_REQUIRED = "TABLE_REQUIRED"
    ADDRESS_REQUIRED = "ADDRESS_REQUIRED"
    EMPTY_ORDER = "EMPTY_ORDER"

    # ── Delivery ──────────────────────────────────────────────
    DELIVERY_OUT_OF_RANGE = "DELIVERY_OUT_OF_RANGE"

    # ── Conflicts ─────────────────────────────────────────────
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    TABLE_NOT_FREE = "TABLE_NOT_FREE"
    COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
    COUPON_INACTIVE = "COUPON_INACTIVE"
    COUPON_EXHAUSTED = "COUPON_EXHAUSTED"
    COUPON_BELOW_MINIMUM = "COUPON_BELOW_MINIMUM"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    CUSTOMER_REQUIRED = "CUSTOMER_REQUIRED"
    RIDER_NOT_AVAILABLE = "RIDER_NOT_AVAILABLE"

    # ── Order lifecycle ───────────────────────────────────────
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAYMENT_INTENT_UNKNOWN = "PAYMENT_INTENT_UNKNOWN"
    AWAITING_GATEWAY = "AWAITING_GATEWAY"
    ORDER_TERMINAL = "ORDER_TERMINAL"

    # ── Payments ──────────────────────────────────────────────
    GATEWAY_NOT_CONFIGURED = "GATEWAY_NOT_CONFIGURED"

    # ── Configuration ─────────────────────────────────────────
    RESTAURANT_NOT_CONFIGURED = "RESTAURANT_NOT_CONFIGURED"

    # ── General ───────────────────────────────────────────────
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
