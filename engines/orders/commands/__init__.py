"""
ROS Orders Engine — Request Commands
=======================================
Every channel (PDV, TOTEM, BALCAO, ONLINE) submits the same requests.
Shape errors raise ValueError here; business rules are policies.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from core.commands.base import Command, build_command
from engines.pricing.calculator import CartLine
from engines.pricing.delivery import DeliveryAddress, VALID_FULFILLMENTS

ORDERS_ORDER_CREATE_REQUEST = "orders.order.create.request"
ORDERS_ORDER_TRANSITION_REQUEST = "orders.order.transition.request"
ORDERS_ORDER_CANCEL_REQUEST = "orders.order.cancel.request"
ORDERS_ORDER_SET_PAYMENT_METHOD_REQUEST = "orders.order.set_payment_method.request"

ORDER_COMMAND_TYPES = frozenset({
    ORDERS_ORDER_CREATE_REQUEST,
    ORDERS_ORDER_TRANSITION_REQUEST,
    ORDERS_ORDER_CANCEL_REQUEST,
    ORDERS_ORDER_SET_PAYMENT_METHOD_REQUEST,
})

# ── Channels ──────────────────────────────────────────────────

CHANNEL_PDV = "PDV"
CHANNEL_TOTEM = "TOTEM"
CHANNEL_BALCAO = "BALCAO"
CHANNEL_ONLINE = "ONLINE"

VALID_CHANNELS = frozenset({CHANNEL_PDV, CHANNEL_TOTEM, CHANNEL_BALCAO, CHANNEL_ONLINE})

# ── Statuses ──────────────────────────────────────────────────

STATUS_NEW = "new"
STATUS_CONFIRMED = "confirmed"
STATUS_PREPARING = "preparing"
STATUS_READY = "ready"
STATUS_READY_FOR_PAYMENT = "ready_for_payment"
STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

VALID_STATUSES = frozenset({
    STATUS_NEW, STATUS_CONFIRMED, STATUS_PREPARING, STATUS_READY,
    STATUS_READY_FOR_PAYMENT, STATUS_OUT_FOR_DELIVERY,
    STATUS_PENDING_PAYMENT, STATUS_COMPLETED, STATUS_CANCELLED,
})

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})

# ── Payment methods ───────────────────────────────────────────

PAYMENT_CASH = "cash"
PAYMENT_CREDIT_CARD = "credit_card"
PAYMENT_DEBIT_CARD = "debit_card"
PAYMENT_PIX = "pix"
PAYMENT_PENDING = "pending"

VALID_PAYMENT_METHODS = frozenset({
    PAYMENT_CASH, PAYMENT_CREDIT_CARD, PAYMENT_DEBIT_CARD, PAYMENT_PIX, PAYMENT_PENDING,
})

# ── Cancellation ──────────────────────────────────────────────

VALID_CANCEL_REASONS = frozenset({
    "customer_request", "out_of_stock", "kitchen_delay",
    "wrong_order", "payment_issue", "other",
})


def _cmd(command_type, payload, **kw) -> Command:
    return build_command(command_type, payload, source_engine="orders", **kw)


def _require_order_id(order_id: str) -> None:
    if not order_id or not isinstance(order_id, str):
        raise ValueError("order_id must be non-empty string.")


# ══════════════════════════════════════════════════════════════
# REQUESTS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OrderCreateRequest:
    channel: str
    fulfillment: str
    items: Tuple[CartLine, ...]
    payment_method: str = PAYMENT_PENDING
    table_id: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None
    customer_phone: str = ""
    customer_name: str = ""
    coupon_code: Optional[str] = None
    loyalty_points_requested: int = 0
    service_fee_enabled: bool = False
    notes: str = ""

    def __post_init__(self):
        if self.channel not in VALID_CHANNELS:
            raise ValueError(f"channel '{self.channel}' not valid.")
        if self.fulfillment not in VALID_FULFILLMENTS:
            raise ValueError(f"fulfillment '{self.fulfillment}' not valid.")
        if self.payment_method not in VALID_PAYMENT_METHODS:
            raise ValueError(f"payment_method '{self.payment_method}' not valid.")
        if not isinstance(self.items, tuple):
            raise ValueError("items must be a tuple of CartLine.")
        for line in self.items:
            if not isinstance(line, CartLine):
                raise ValueError("items must be a tuple of CartLine.")
        if not isinstance(self.loyalty_points_requested, int) or self.loyalty_points_requested < 0:
            raise ValueError("loyalty_points_requested must be >= 0.")

    def to_command(self, *, restaurant_id: uuid.UUID, actor_type: str,
                   actor_id: str, command_id: uuid.UUID,
                   correlation_id: uuid.UUID, issued_at: datetime) -> Command:
        return _cmd(ORDERS_ORDER_CREATE_REQUEST, {
            "channel": self.channel,
            "fulfillment": self.fulfillment,
            "items": [line.to_dict() for line in self.items],
            "payment_method": self.payment_method,
            "table_id": self.table_id,
            "delivery_address": (
                self.delivery_address.to_dict() if self.delivery_address else None
            ),
            "customer_phone": self.customer_phone,
            "customer_name": self.customer_name,
            "coupon_code": self.coupon_code,
            "loyalty_points_requested": self.loyalty_points_requested,
            "service_fee_enabled": self.service_fee_enabled,
            "notes": self.notes,
        }, restaurant_id=restaurant_id, actor_type=actor_type,
            actor_id=actor_id, command_id=command_id,
            correlation_id=correlation_id, issued_at=issued_at)


@dataclass(frozen=True)
class OrderTransitionRequest:
    order_id: str
    to_status: str
    rider_id: Optional[str] = None
    source: str = "staff"

    def __post_init__(self):
        _require_order_id(self.order_id)
        if self.to_status not in VALID_STATUSES:
            raise ValueError(f"to_status '{self.to_status}' not valid.")
        if self.source not in ("staff", "gateway"):
            raise ValueError(f"source '{self.source}' not valid.")

    def to_command(self, *, restaurant_id: uuid.UUID, actor_type: str,
                   actor_id: str, command_id: uuid.UUID,
                   correlation_id: uuid.UUID, issued_at: datetime) -> Command:
        return _cmd(ORDERS_ORDER_TRANSITION_REQUEST, {
            "order_id": self.order_id,
            "to_status": self.to_status,
            "rider_id": self.rider_id,
            "source": self.source,
        }, restaurant_id=restaurant_id, actor_type=actor_type,
            actor_id=actor_id, command_id=command_id,
            correlation_id=correlation_id, issued_at=issued_at)


@dataclass(frozen=True)
class OrderCancelRequest:
    order_id: str
    reason: str
    note: str = ""

    def __post_init__(self):
        _require_order_id(self.order_id)
        if self.reason not in VALID_CANCEL_REASONS:
            raise ValueError(
                f"reason '{self.reason}' not valid. "
                f"Must be one of: {sorted(VALID_CANCEL_REASONS)}"
            )

    def to_command(self, *, restaurant_id: uuid.UUID, actor_type: str,
                   actor_id: str, command_id: uuid.UUID,
                   correlation_id: uuid.UUID, issued_at: datetime) -> Command:
        return _cmd(ORDERS_ORDER_CANCEL_REQUEST, {
            "order_id": self.order_id,
            "reason": self.reason,
            "note": self.note,
        }, restaurant_id=restaurant_id, actor_type=actor_type,
            actor_id=actor_id, command_id=command_id,
            correlation_id=correlation_id, issued_at=issued_at)


@dataclass(frozen=True)
class SetPaymentMethodRequest:
    order_id: str
    payment_method: str

    def __post_init__(self):
        _require_order_id(self.order_id)
        if self.payment_method not in VALID_PAYMENT_METHODS:
            raise ValueError(f"payment_method '{self.payment_method}' not valid.")

    def to_command(self, *, restaurant_id: uuid.UUID, actor_type: str,
                   actor_id: str, command_id: uuid.UUID,
                   correlation_id: uuid.UUID, issued_at: datetime) -> Command:
        return _cmd(ORDERS_ORDER_SET_PAYMENT_METHOD_REQUEST, {
            "order_id": self.order_id,
            "payment_method": self.payment_method,
        }, restaurant_id=restaurant_id, actor_type=actor_type,
            actor_id=actor_id, command_id=command_id,
            correlation_id=correlation_id, issued_at=issued_at)
