"""
ROS Orders Engine — Policies
==============================
The status machine and its guards. Each policy returns a
RejectionReason or None; evaluate_transition runs them in order
and the first failure wins.
"""

from __future__ import annotations

from typing import Optional

from core.commands.rejection import ReasonCode, RejectionReason
from core.config.rules import RestaurantSettings
from engines.orders.commands import (
    PAYMENT_PENDING,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NEW,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_PENDING_PAYMENT,
    STATUS_PREPARING,
    STATUS_READY,
    STATUS_READY_FOR_PAYMENT,
    TERMINAL_STATUSES,
)
from engines.pricing.delivery import FULFILLMENT_DELIVERY, FULFILLMENT_DINE_IN


ALLOWED_TRANSITIONS = {
    STATUS_NEW: frozenset({
        STATUS_CONFIRMED, STATUS_PREPARING, STATUS_PENDING_PAYMENT,
        STATUS_COMPLETED, STATUS_CANCELLED,
    }),
    STATUS_CONFIRMED: frozenset({
        STATUS_PREPARING, STATUS_PENDING_PAYMENT, STATUS_COMPLETED, STATUS_CANCELLED,
    }),
    STATUS_PREPARING: frozenset({
        STATUS_READY, STATUS_PENDING_PAYMENT, STATUS_COMPLETED, STATUS_CANCELLED,
    }),
    STATUS_READY: frozenset({
        STATUS_READY_FOR_PAYMENT, STATUS_OUT_FOR_DELIVERY,
        STATUS_PENDING_PAYMENT, STATUS_COMPLETED, STATUS_CANCELLED,
    }),
    STATUS_READY_FOR_PAYMENT: frozenset({
        STATUS_PENDING_PAYMENT, STATUS_COMPLETED, STATUS_CANCELLED,
    }),
    STATUS_OUT_FOR_DELIVERY: frozenset({
        STATUS_PENDING_PAYMENT, STATUS_COMPLETED, STATUS_CANCELLED,
    }),
    STATUS_PENDING_PAYMENT: frozenset({STATUS_COMPLETED, STATUS_CANCELLED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_CANCELLED: frozenset(),
}


# ══════════════════════════════════════════════════════════════
# CREATION
# ══════════════════════════════════════════════════════════════

def order_must_have_items_policy(items) -> Optional[RejectionReason]:
    if not items:
        return RejectionReason(
            code=ReasonCode.EMPTY_ORDER,
            message="An order needs at least one item.",
            policy_name="order_must_have_items_policy",
        )
    return None


def fulfillment_requirements_policy(
    fulfillment: str, table_id, delivery_address,
) -> Optional[RejectionReason]:
    """Dine-in needs a table; delivery needs an address."""
    if fulfillment == FULFILLMENT_DINE_IN and not table_id:
        return RejectionReason(
            code=ReasonCode.TABLE_REQUIRED,
            message="Dine-in orders require a table.",
            policy_name="fulfillment_requirements_policy",
        )
    if fulfillment == FULFILLMENT_DELIVERY and delivery_address is None:
        return RejectionReason(
            code=ReasonCode.ADDRESS_REQUIRED,
            message="Delivery orders require an address.",
            policy_name="fulfillment_requirements_policy",
        )
    return None


def delivery_must_be_in_range_policy(quote) -> Optional[RejectionReason]:
    if not quote.in_range:
        return RejectionReason(
            code=ReasonCode.DELIVERY_OUT_OF_RANGE,
            message=(
                f"Address cannot be delivered to "
                f"(distance={quote.distance_km} km, reason={quote.reason})."
            ),
            policy_name="delivery_must_be_in_range_policy",
        )
    return None


def redemption_requires_customer_policy(
    points_requested: int, customer_phone: str, settings: RestaurantSettings,
) -> Optional[RejectionReason]:
    if points_requested <= 0:
        return None
    if not settings.loyalty_enabled:
        return RejectionReason(
            code=ReasonCode.VALIDATION_FAILED,
            message="Loyalty program is disabled for this restaurant.",
            policy_name="redemption_requires_customer_policy",
        )
    if not customer_phone:
        return RejectionReason(
            code=ReasonCode.CUSTOMER_REQUIRED,
            message="Redeeming points requires a customer phone.",
            policy_name="redemption_requires_customer_policy",
        )
    return None


# ══════════════════════════════════════════════════════════════
# TRANSITIONS
# ══════════════════════════════════════════════════════════════

def order_must_not_be_terminal_policy(order) -> Optional[RejectionReason]:
    if order.status in TERMINAL_STATUSES:
        return RejectionReason(
            code=ReasonCode.ORDER_TERMINAL,
            message=f"Order {order.order_number} is already {order.status}.",
            policy_name="order_must_not_be_terminal_policy",
        )
    return None


def transition_must_be_allowed_policy(order, to_status: str) -> Optional[RejectionReason]:
    if to_status not in ALLOWED_TRANSITIONS.get(order.status, frozenset()):
        return RejectionReason(
            code=ReasonCode.INVALID_TRANSITION,
            message=f"Cannot move order {order.order_number} from "
                    f"{order.status} to {to_status}.",
            policy_name="transition_must_be_allowed_policy",
        )
    if to_status == STATUS_OUT_FOR_DELIVERY and order.fulfillment != FULFILLMENT_DELIVERY:
        return RejectionReason(
            code=ReasonCode.INVALID_TRANSITION,
            message=f"Order {order.order_number} is {order.fulfillment}, "
                    f"not a delivery.",
            policy_name="transition_must_be_allowed_policy",
        )
    return None


def gateway_controls_pending_payment_policy(
    order, to_status: str, via_gateway: bool,
) -> Optional[RejectionReason]:
    """pending_payment is entered and left (to completed) only by the payment flow."""
    if via_gateway:
        return None
    if to_status == STATUS_PENDING_PAYMENT:
        return RejectionReason(
            code=ReasonCode.AWAITING_GATEWAY,
            message="pending_payment is set by requesting a gateway charge.",
            policy_name="gateway_controls_pending_payment_policy",
        )
    if order.status == STATUS_PENDING_PAYMENT and to_status == STATUS_COMPLETED:
        return RejectionReason(
            code=ReasonCode.AWAITING_GATEWAY,
            message=f"Order {order.order_number} completes on gateway confirmation.",
            policy_name="gateway_controls_pending_payment_policy",
        )
    return None


def preparing_requires_payment_intent_policy(
    order, to_status: str, settings: RestaurantSettings,
) -> Optional[RejectionReason]:
    """
    Kitchen work starts only once a payment method is known, except on
    channels that collect payment afterwards at the cashier.
    """
    if to_status != STATUS_PREPARING or order.payment_method != PAYMENT_PENDING:
        return None
    if order.channel in settings.deferred_payment_channels:
        return None
    return RejectionReason(
        code=ReasonCode.PAYMENT_INTENT_UNKNOWN,
        message=f"Order {order.order_number} from {order.channel} has no "
                f"payment method; choose one before preparing.",
        policy_name="preparing_requires_payment_intent_policy",
    )


def completion_requires_payment_policy(order, to_status: str) -> Optional[RejectionReason]:
    if to_status == STATUS_COMPLETED and order.payment_method == PAYMENT_PENDING:
        return RejectionReason(
            code=ReasonCode.PAYMENT_PENDING,
            message=f"Order {order.order_number} has no payment method yet.",
            policy_name="completion_requires_payment_policy",
        )
    return None


def evaluate_transition(
    order, to_status: str, settings: RestaurantSettings, *, via_gateway: bool = False,
) -> Optional[RejectionReason]:
    for reason in (
        order_must_not_be_terminal_policy(order),
        transition_must_be_allowed_policy(order, to_status),
        gateway_controls_pending_payment_policy(order, to_status, via_gateway),
        preparing_requires_payment_intent_policy(order, to_status, settings),
        completion_requires_payment_policy(order, to_status),
    ):
        if reason is not None:
            return reason
    return None
