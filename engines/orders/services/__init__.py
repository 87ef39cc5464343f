"""
ROS Orders Engine — Order Service
===================================
The Order is the one record every channel converges on. Only this
service writes Order.status.

Settlement (the side effects of reaching `completed`) runs inside the
order's lock together with the status change, exactly once per order:

    (a) stamp completed_at
    (b) free the table
    (c) one cash sale keyed by order
    (d) loyalty credit keyed by order
    (e) finalize the redemption debit taken at creation

Failures in (c)/(d) never undo the completion. They are logged, flagged
on the order and picked up again by retry_settlement().
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Set, Tuple

from core.commands.base import Command
from core.commands.rejection import CommandRejectedError, ReasonCode, RejectionReason
from core.config.rules import ConfigStore, RestaurantSettings
from core.time.clock import Clock, SystemClock
from engines.customer.policies import phone_must_be_valid_policy
from engines.loyalty.policies import sufficient_balance_policy
from engines.orders.commands import (
    CHANNEL_BALCAO,
    CHANNEL_ONLINE,
    CHANNEL_PDV,
    CHANNEL_TOTEM,
    ORDERS_ORDER_CANCEL_REQUEST,
    ORDERS_ORDER_CREATE_REQUEST,
    ORDERS_ORDER_SET_PAYMENT_METHOD_REQUEST,
    ORDERS_ORDER_TRANSITION_REQUEST,
    PAYMENT_PIX,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_NEW,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_PENDING_PAYMENT,
)
from engines.orders.events import (
    ORDER_AWAITING_PAYMENT_V1,
    ORDER_CANCELLED_V1,
    ORDER_CHARGE_FAILED_V1,
    ORDER_COMPLETED_V1,
    ORDER_CREATED_V1,
    ORDER_PAID_AFTER_CANCEL_V1,
    ORDER_PAYMENT_METHOD_SET_V1,
    ORDER_RELEASED_CHARGE_PAID_V1,
    ORDER_STATUS_CHANGED_V1,
    RIDER_DISPATCHED_V1,
    build_awaiting_payment_payload,
    build_charge_failed_payload,
    build_order_cancelled_payload,
    build_order_completed_payload,
    build_order_created_payload,
    build_paid_after_cancel_payload,
    build_payment_method_set_payload,
    build_released_charge_paid_payload,
    build_rider_dispatched_payload,
    build_status_changed_payload,
)
from engines.orders.policies import (
    delivery_must_be_in_range_policy,
    evaluate_transition,
    fulfillment_requirements_policy,
    order_must_have_items_policy,
    order_must_not_be_terminal_policy,
    redemption_requires_customer_policy,
)
from engines.pricing.calculator import CartLine, calculate_pricing, calculate_points_earned
from engines.pricing.delivery import (
    FULFILLMENT_DELIVERY,
    FULFILLMENT_DINE_IN,
    DeliveryAddress,
    DeliveryFeeResolver,
    fee_for_fulfillment,
)

logger = logging.getLogger("ros.orders")

ORDER_NUMBER_PREFIXES = {
    CHANNEL_PDV: "PDV",
    CHANNEL_TOTEM: "TOTEM-",
    CHANNEL_BALCAO: "BAL-",
    CHANNEL_ONLINE: "PED",
}

MAX_ORDER_NUMBER_ATTEMPTS = 100

# ── Settlement flags ──────────────────────────────────────────

FLAG_TABLE_RELEASED = "table_released"
FLAG_CASH_RECORDED = "cash_recorded"
FLAG_CASH_PENDING = "cash_pending"
FLAG_LOYALTY_CREDITED = "loyalty_credited"
FLAG_LOYALTY_PENDING = "loyalty_pending"
FLAG_REDEEM_FINALIZED = "redeem_finalized"
FLAG_REDEEM_REVERSED = "redeem_reversed"
FLAG_COUPON_RELEASED = "coupon_released"
FLAG_PAID_AFTER_CANCEL = "paid_after_cancel"
FLAG_RELEASED_CHARGE_PAID = "released_charge_paid"
FLAG_REFUND_RECORDED = "refund_recorded"
FLAG_REFUND_PENDING = "refund_pending"

PENDING_FLAGS = frozenset({FLAG_CASH_PENDING, FLAG_LOYALTY_PENDING, FLAG_REFUND_PENDING})


# ══════════════════════════════════════════════════════════════
# RECORDS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OrderItem:
    """Item snapshot taken at creation; later menu changes do not affect it."""
    item_id: str
    name: str
    unit_price: int
    quantity: int
    modifier_total: int
    total_price: int
    modifiers_summary: str = ""

    @classmethod
    def from_cart_line(cls, line: CartLine) -> "OrderItem":
        return cls(
            item_id=line.item_id,
            name=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            modifier_total=line.modifier_total,
            total_price=line.line_total,
            modifiers_summary=line.modifiers_summary,
        )

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class Order:
    order_id: str
    order_number: str
    restaurant_id: uuid.UUID
    channel: str
    fulfillment: str
    status: str
    items: Tuple[OrderItem, ...]
    subtotal: int
    delivery_fee: int
    service_fee: int
    coupon_discount: int
    loyalty_discount: int
    total: int
    payment_method: str
    created_at: datetime
    customer_id: Optional[str] = None
    table_id: Optional[str] = None
    rider_id: Optional[str] = None
    delivery_address: Optional[dict] = None
    delivery_distance_km: Optional[float] = None
    coupon_code: Optional[str] = None
    loyalty_points_earned: int = 0
    loyalty_points_used: int = 0
    charge_ref: Optional[str] = None
    gateway_key: Optional[str] = None
    cancel_reason: Optional[str] = None
    notes: str = ""
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    settlement_flags: FrozenSet[str] = frozenset()
    status_before_charge: Optional[str] = None
    released_charge_refs: FrozenSet[str] = frozenset()

    def __post_init__(self):
        for name in ("subtotal", "delivery_fee", "service_fee",
                     "coupon_discount", "loyalty_discount", "total"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be non-negative integer.")
        expected = max(0, self.subtotal + self.delivery_fee + self.service_fee
                       - self.coupon_discount - self.loyalty_discount)
        if self.total != expected:
            raise ValueError(f"total {self.total} does not match components ({expected}).")

    def with_flags(self, *added: str, remove: Tuple[str, ...] = ()) -> "Order":
        flags = (set(self.settlement_flags) | set(added)) - set(remove)
        return dataclasses.replace(self, settlement_flags=frozenset(flags))

    @property
    def settlement_pending(self) -> bool:
        return bool(self.settlement_flags & PENDING_FLAGS)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "restaurant_id": str(self.restaurant_id),
            "channel": self.channel,
            "fulfillment": self.fulfillment,
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "service_fee": self.service_fee,
            "coupon_discount": self.coupon_discount,
            "loyalty_discount": self.loyalty_discount,
            "total": self.total,
            "payment_method": self.payment_method,
            "customer_id": self.customer_id,
            "table_id": self.table_id,
            "rider_id": self.rider_id,
            "delivery_address": self.delivery_address,
            "delivery_distance_km": self.delivery_distance_km,
            "coupon_code": self.coupon_code,
            "loyalty_points_earned": self.loyalty_points_earned,
            "loyalty_points_used": self.loyalty_points_used,
            "charge_ref": self.charge_ref,
            "cancel_reason": self.cancel_reason,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "settlement_flags": sorted(self.settlement_flags),
            "released_charge_refs": sorted(self.released_charge_refs),
        }


@dataclass(frozen=True)
class OrderResult:
    order: Order
    changed: bool = True


# ══════════════════════════════════════════════════════════════
# REPOSITORY
# ══════════════════════════════════════════════════════════════

class OrderRepository:
    """In-memory order store with one lock per order."""

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._numbers: Set[str] = set()
        self._order_locks: Dict[str, threading.Lock] = {}

    def lock_for(self, order_id: str) -> threading.Lock:
        with self._lock:
            return self._order_locks.setdefault(order_id, threading.Lock())

    def reserve_number(self, order_number: str) -> bool:
        with self._lock:
            if order_number in self._numbers:
                return False
            self._numbers.add(order_number)
            return True

    def release_number(self, order_number: str) -> None:
        with self._lock:
            self._numbers.discard(order_number)

    def add(self, order: Order) -> None:
        with self._lock:
            if order.order_id in self._orders:
                raise ValueError(f"Order {order.order_id} already exists.")
            self._orders[order.order_id] = order

    def save(self, order: Order) -> None:
        with self._lock:
            if order.order_id not in self._orders:
                raise KeyError(order.order_id)
            self._orders[order.order_id] = order

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(order_id)

    def find(self, *, restaurant_id: Optional[uuid.UUID] = None,
             status: Optional[str] = None) -> Tuple[Order, ...]:
        with self._lock:
            return tuple(
                o for o in self._orders.values()
                if (restaurant_id is None or o.restaurant_id == restaurant_id)
                and (status is None or o.status == status)
            )

    def find_by_charge_ref(self, charge_ref: str) -> Optional[Order]:
        with self._lock:
            for order in self._orders.values():
                if order.charge_ref == charge_ref or charge_ref in order.released_charge_refs:
                    return order
        return None


# ══════════════════════════════════════════════════════════════
# SERVICE
# ══════════════════════════════════════════════════════════════

def _reject(code: str, message: str, policy_name: str) -> CommandRejectedError:
    return CommandRejectedError(RejectionReason(
        code=code, message=message, policy_name=policy_name,
    ))


class OrderService:
    """Order state machine plus settlement."""

    def __init__(
        self,
        *,
        config_store: ConfigStore,
        orders: OrderRepository,
        tables,
        riders,
        coupons,
        loyalty,
        customers,
        cash,
        geocoder=None,
        event_log=None,
        clock: Optional[Clock] = None,
    ):
        self._config = config_store
        self._orders = orders
        self._tables = tables
        self._riders = riders
        self._coupons = coupons
        self._loyalty = loyalty
        self._customers = customers
        self._cash = cash
        self._geocoder = geocoder
        self._events = event_log
        self._clock = clock or SystemClock()
        # Orders with a vendor charge call in flight; guarded by the order lock.
        self._charging: Set[str] = set()
        self._handlers = {
            ORDERS_ORDER_CREATE_REQUEST: self._create,
            ORDERS_ORDER_TRANSITION_REQUEST: self._transition,
            ORDERS_ORDER_CANCEL_REQUEST: self._cancel,
            ORDERS_ORDER_SET_PAYMENT_METHOD_REQUEST: self._set_payment_method,
        }

    # ── entry point ───────────────────────────────────────────

    def execute(self, command: Command) -> OrderResult:
        """
        Run one orders command.

        Raises CommandRejectedError with a specific reason on any
        validation or conflict failure; nothing is left half-applied.
        """
        handler = self._handlers.get(command.command_type)
        if handler is None:
            raise _reject(
                ReasonCode.UNKNOWN_COMMAND,
                f"Unknown command: {command.command_type}",
                "OrderService.execute",
            )
        settings = self.settings_for(command.restaurant_id)
        result = handler(command, settings)
        logger.info(
            f"{command.command_type} by {command.actor_type}:{command.actor_id} → "
            f"order {result.order.order_number} [{result.order.status}]"
            f"{'' if result.changed else ' (no-op)'}"
        )
        return result

    def settings_for(self, restaurant_id: uuid.UUID) -> RestaurantSettings:
        settings = self._config.get_settings(restaurant_id)
        if settings is None:
            raise _reject(
                ReasonCode.RESTAURANT_NOT_CONFIGURED,
                f"Restaurant {restaurant_id} has no settings.",
                "OrderService.settings_for",
            )
        return settings

    # ── queries ───────────────────────────────────────────────

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def list_orders(self, restaurant_id: Optional[uuid.UUID] = None,
                    status: Optional[str] = None) -> Tuple[Order, ...]:
        return self._orders.find(restaurant_id=restaurant_id, status=status)

    def find_by_charge_ref(self, charge_ref: str) -> Optional[Order]:
        return self._orders.find_by_charge_ref(charge_ref)

    def _load(self, order_id: str, restaurant_id: Optional[uuid.UUID] = None) -> Order:
        order = self._orders.get(order_id)
        if order is None or (restaurant_id is not None and order.restaurant_id != restaurant_id):
            raise _reject(
                ReasonCode.ORDER_NOT_FOUND,
                f"Order '{order_id}' not found.",
                "OrderService._load",
            )
        return order

    # ══════════════════════════════════════════════════════════
    # CREATE
    # ══════════════════════════════════════════════════════════

    def _create(self, command: Command, settings: RestaurantSettings) -> OrderResult:
        p = command.payload
        lines = tuple(CartLine.from_dict(d) for d in p.get("items") or ())
        fulfillment = p["fulfillment"]
        channel = p["channel"]
        address = (
            DeliveryAddress.from_dict(p["delivery_address"])
            if p.get("delivery_address") else None
        )
        table_id = p.get("table_id") if fulfillment == FULFILLMENT_DINE_IN else None

        for reason in (
            order_must_have_items_policy(lines),
            fulfillment_requirements_policy(fulfillment, table_id, address),
        ):
            if reason is not None:
                raise CommandRejectedError(reason)

        # The registry is only written once every check below has passed.
        phone = p.get("customer_phone") or ""
        known_customer = None
        if phone:
            reason = phone_must_be_valid_policy(phone)
            if reason is not None:
                raise CommandRejectedError(reason)
            known_customer = self._customers.find_by_phone(phone)
        redeemer_id = known_customer.customer_id if known_customer else None

        points_requested = p.get("loyalty_points_requested", 0)
        reason = redemption_requires_customer_policy(points_requested, phone, settings)
        if reason is not None:
            raise CommandRejectedError(reason)
        balance = self._loyalty.balance_of(redeemer_id) if redeemer_id else 0
        if points_requested:
            reason = sufficient_balance_policy(balance, points_requested)
            if reason is not None:
                raise CommandRejectedError(reason)

        # Geocoding may hit the network: no lock is held here.
        quote = None
        if fulfillment == FULFILLMENT_DELIVERY:
            quote = DeliveryFeeResolver(settings, self._geocoder).quote(address)
            reason = delivery_must_be_in_range_policy(quote)
            if reason is not None:
                raise CommandRejectedError(reason)

        coupon = None
        if p.get("coupon_code"):
            coupon = self._coupons.get(p["coupon_code"])
            if coupon is None:
                raise _reject(
                    ReasonCode.COUPON_NOT_FOUND,
                    f"Coupon '{p['coupon_code']}' not found.",
                    "OrderService._create",
                )

        pricing = calculate_pricing(
            lines,
            settings=settings,
            delivery_fee=fee_for_fulfillment(fulfillment, quote),
            service_fee_enabled=bool(p.get("service_fee_enabled")),
            coupon=coupon,
            loyalty_points_requested=points_requested,
            loyalty_balance=balance,
        )
        if pricing.coupon_rejection is not None:
            raise CommandRejectedError(pricing.coupon_rejection)

        order_id = str(uuid.uuid4())
        order_number = self._allocate_order_number(channel)
        claimed: Dict[str, object] = {"number": order_number}
        try:
            if table_id:
                self._tables.claim(table_id, order_id)
                claimed["table"] = table_id
            if coupon is not None:
                self._coupons.redeem(coupon.code, order_id, pricing.subtotal)
                claimed["coupon"] = coupon.code
            if pricing.loyalty_points_used:
                self._loyalty.debit(
                    redeemer_id, order_id, pricing.loyalty_points_used,
                    f"Points redeemed on order {order_number}",
                )
                claimed["points"] = pricing.loyalty_points_used

            customer_id = None
            if phone:
                customer_id = self._customers.upsert_by_phone(
                    phone,
                    p.get("customer_name", ""),
                    address.to_dict() if address else None,
                ).customer_id

            order = Order(
                order_id=order_id,
                order_number=order_number,
                restaurant_id=command.restaurant_id,
                channel=channel,
                fulfillment=fulfillment,
                status=STATUS_NEW,
                items=tuple(OrderItem.from_cart_line(line) for line in lines),
                subtotal=pricing.subtotal,
                delivery_fee=pricing.delivery_fee,
                service_fee=pricing.service_fee,
                coupon_discount=pricing.coupon_discount,
                loyalty_discount=pricing.loyalty_discount,
                total=pricing.total,
                payment_method=p.get("payment_method") or "pending",
                created_at=self._clock.now_utc(),
                customer_id=customer_id,
                table_id=table_id,
                delivery_address=address.to_dict() if address else None,
                delivery_distance_km=quote.distance_km if quote else None,
                coupon_code=pricing.coupon_code,
                loyalty_points_used=pricing.loyalty_points_used,
                notes=p.get("notes", ""),
            )
            self._orders.add(order)
        except Exception:
            self._rollback_claims(order_id, redeemer_id, claimed)
            raise

        self._publish(order, ORDER_CREATED_V1, build_order_created_payload(order),
                      command.correlation_id)
        return OrderResult(order)

    def _allocate_order_number(self, channel: str) -> str:
        """Channel prefix + last six digits of the epoch millis; -2, -3… on collision."""
        millis = int(self._clock.now_utc().timestamp() * 1000)
        base = f"{ORDER_NUMBER_PREFIXES[channel]}{millis % 1_000_000:06d}"
        for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
            candidate = base if attempt == 1 else f"{base}-{attempt}"
            if self._orders.reserve_number(candidate):
                return candidate
        raise RuntimeError(f"Could not allocate an order number for {channel}.")

    def _rollback_claims(self, order_id: str, customer_id: Optional[str],
                         claimed: Dict[str, object]) -> None:
        if "points" in claimed:
            self._loyalty.reverse(customer_id, order_id, "Order creation rolled back")
        if "coupon" in claimed:
            self._coupons.release(claimed["coupon"], order_id)
        if "table" in claimed:
            self._tables.release(claimed["table"], order_id)
        self._orders.release_number(claimed["number"])
        logger.info(f"Rolled back claims for order {order_id}: {sorted(claimed)}")

    # ══════════════════════════════════════════════════════════
    # TRANSITIONS
    # ══════════════════════════════════════════════════════════

    def _transition(self, command: Command, settings: RestaurantSettings) -> OrderResult:
        p = command.payload
        order_id = p["order_id"]
        to_status = p["to_status"]
        via_gateway = command.is_system and p.get("source") == "gateway"

        if to_status == STATUS_CANCELLED:
            return self._cancel_order(
                order_id, command.restaurant_id, "other", "", command.correlation_id,
            )

        rider = None
        with self._orders.lock_for(order_id):
            order = self._load(order_id, command.restaurant_id)
            if to_status == STATUS_COMPLETED and order.status == STATUS_COMPLETED:
                return OrderResult(order, changed=False)
            if to_status == STATUS_COMPLETED:
                self._reject_if_charging(order, "OrderService._transition")
            reason = evaluate_transition(order, to_status, settings, via_gateway=via_gateway)
            if reason is not None:
                raise CommandRejectedError(reason)
            if to_status == STATUS_OUT_FOR_DELIVERY and p.get("rider_id"):
                rider = self._riders.require_available(p["rider_id"])

            from_status = order.status
            updated = dataclasses.replace(
                order,
                status=to_status,
                rider_id=rider.rider_id if rider else order.rider_id,
            )
            if to_status == STATUS_COMPLETED:
                updated = self._settle(updated, settings)
            self._orders.save(updated)

        self._after_transition(updated, from_status, rider, command.correlation_id)
        return OrderResult(updated)

    def _after_transition(self, order: Order, from_status: str, rider,
                          correlation_id: Optional[uuid.UUID]) -> None:
        self._publish(order, ORDER_STATUS_CHANGED_V1,
                      build_status_changed_payload(order, from_status), correlation_id)
        customer = self._customers.get(order.customer_id) if order.customer_id else None
        if rider is not None:
            self._publish(order, RIDER_DISPATCHED_V1,
                          build_rider_dispatched_payload(order, rider, customer),
                          correlation_id)
        if order.status == STATUS_COMPLETED:
            phone = customer.phone if customer else ""
            self._publish(order, ORDER_COMPLETED_V1,
                          build_order_completed_payload(order, phone), correlation_id)

    def _set_payment_method(self, command: Command, settings: RestaurantSettings) -> OrderResult:
        p = command.payload
        order_id = p["order_id"]
        with self._orders.lock_for(order_id):
            order = self._load(order_id, command.restaurant_id)
            reason = order_must_not_be_terminal_policy(order)
            if reason is not None:
                raise CommandRejectedError(reason)
            if order.status == STATUS_PENDING_PAYMENT:
                raise _reject(
                    ReasonCode.AWAITING_GATEWAY,
                    f"Order {order.order_number} has a gateway charge outstanding.",
                    "OrderService._set_payment_method",
                )
            self._reject_if_charging(order, "OrderService._set_payment_method")
            if order.payment_method == p["payment_method"]:
                return OrderResult(order, changed=False)
            updated = dataclasses.replace(order, payment_method=p["payment_method"])
            self._orders.save(updated)

        self._publish(updated, ORDER_PAYMENT_METHOD_SET_V1,
                      build_payment_method_set_payload(updated), command.correlation_id)
        return OrderResult(updated)

    # ══════════════════════════════════════════════════════════
    # CANCELLATION
    # ══════════════════════════════════════════════════════════

    def _cancel(self, command: Command, settings: RestaurantSettings) -> OrderResult:
        p = command.payload
        return self._cancel_order(
            p["order_id"], command.restaurant_id, p["reason"],
            p.get("note", ""), command.correlation_id,
        )

    def _cancel_order(self, order_id: str, restaurant_id: uuid.UUID, cancel_reason: str,
                      note: str, correlation_id: Optional[uuid.UUID]) -> OrderResult:
        with self._orders.lock_for(order_id):
            order = self._load(order_id, restaurant_id)
            if order.status == STATUS_CANCELLED:
                return OrderResult(order, changed=False)
            reason = order_must_not_be_terminal_policy(order)
            if reason is not None:
                raise CommandRejectedError(reason)

            flags = []
            if order.table_id and self._tables.release(order.table_id, order.order_id):
                flags.append(FLAG_TABLE_RELEASED)
            if order.loyalty_points_used and order.customer_id:
                if self._loyalty.reverse(
                    order.customer_id, order.order_id,
                    f"Order {order.order_number} cancelled",
                ) is not None:
                    flags.append(FLAG_REDEEM_REVERSED)
            if order.coupon_code and self._coupons.release(order.coupon_code, order.order_id):
                flags.append(FLAG_COUPON_RELEASED)

            from_status = order.status
            updated = dataclasses.replace(
                order.with_flags(*flags),
                status=STATUS_CANCELLED,
                cancel_reason=cancel_reason,
                cancelled_at=self._clock.now_utc(),
                notes="\n".join(n for n in (order.notes, note) if n),
            )
            self._orders.save(updated)

        if from_status == STATUS_PENDING_PAYMENT:
            logger.warning(
                f"Order {updated.order_number} cancelled with charge "
                f"{updated.charge_ref} outstanding"
            )
        self._publish(updated, ORDER_STATUS_CHANGED_V1,
                      build_status_changed_payload(updated, from_status), correlation_id)
        self._publish(updated, ORDER_CANCELLED_V1,
                      build_order_cancelled_payload(updated), correlation_id)
        return OrderResult(updated)

    # ══════════════════════════════════════════════════════════
    # GATEWAY PATH
    # ══════════════════════════════════════════════════════════

    def _reject_if_charging(self, order: Order, policy_name: str) -> None:
        """Caller holds the order lock."""
        if order.order_id in self._charging:
            raise _reject(
                ReasonCode.AWAITING_GATEWAY,
                f"Order {order.order_number} has a charge being created.",
                policy_name,
            )

    def reserve_charge(self, order_id: str) -> Order:
        """
        Hold the order for one QR charge while the vendor call runs.

        Until begin_gateway_payment or release_charge_reservation, another
        charge, a payment method change or a completion is rejected with
        AWAITING_GATEWAY. Cancelling stays possible.
        """
        with self._orders.lock_for(order_id):
            order = self._load(order_id)
            reason = order_must_not_be_terminal_policy(order)
            if reason is not None:
                raise CommandRejectedError(reason)
            if order.status == STATUS_PENDING_PAYMENT:
                raise _reject(
                    ReasonCode.AWAITING_GATEWAY,
                    f"Order {order.order_number} already has charge "
                    f"{order.charge_ref} outstanding.",
                    "OrderService.reserve_charge",
                )
            self._reject_if_charging(order, "OrderService.reserve_charge")
            reason = evaluate_transition(
                order, STATUS_PENDING_PAYMENT, self.settings_for(order.restaurant_id),
                via_gateway=True,
            )
            if reason is not None:
                raise CommandRejectedError(reason)
            self._charging.add(order_id)
        return order

    def release_charge_reservation(self, order_id: str) -> None:
        with self._orders.lock_for(order_id):
            self._charging.discard(order_id)

    def begin_gateway_payment(self, order_id: str, *, charge_ref: str,
                              gateway_key: str) -> OrderResult:
        """
        Move an order to pending_payment once a QR charge exists.

        If the order moved on while the charge was being created (it was
        cancelled), the charge is kept in released_charge_refs so a later
        payment on it books a refund.
        """
        with self._orders.lock_for(order_id):
            self._charging.discard(order_id)
            order = self._load(order_id)
            settings = self.settings_for(order.restaurant_id)
            reason = evaluate_transition(
                order, STATUS_PENDING_PAYMENT, settings, via_gateway=True,
            )
            if reason is not None:
                self._orders.save(dataclasses.replace(
                    order, released_charge_refs=order.released_charge_refs | {charge_ref},
                ))
                logger.warning(
                    f"Charge {charge_ref} created but order {order.order_number} is "
                    f"{order.status}; a payment on it will be booked as refund"
                )
                raise CommandRejectedError(reason)
            from_status = order.status
            updated = dataclasses.replace(
                order,
                status=STATUS_PENDING_PAYMENT,
                payment_method=PAYMENT_PIX,
                charge_ref=charge_ref,
                gateway_key=gateway_key,
                status_before_charge=order.status,
            )
            self._orders.save(updated)

        self._publish(updated, ORDER_STATUS_CHANGED_V1,
                      build_status_changed_payload(updated, from_status))
        self._publish(updated, ORDER_AWAITING_PAYMENT_V1,
                      build_awaiting_payment_payload(updated))
        return OrderResult(updated)

    def fail_gateway_charge(self, order_id: str, charge_ref: str) -> OrderResult:
        """
        The vendor reported charge_ref as failed: reopen the order for payment.

        The order goes back to the status it had before the charge, with
        payment method pix kept, so the channel can ask for a new charge or
        settle it manually. No-op unless the order is still waiting on
        exactly this charge.
        """
        with self._orders.lock_for(order_id):
            order = self._load(order_id)
            if order.status != STATUS_PENDING_PAYMENT or order.charge_ref != charge_ref:
                return OrderResult(order, changed=False)
            from_status = order.status
            updated = dataclasses.replace(
                order,
                status=order.status_before_charge or STATUS_NEW,
                charge_ref=None,
                gateway_key=None,
                status_before_charge=None,
                released_charge_refs=order.released_charge_refs | {charge_ref},
            )
            self._orders.save(updated)

        logger.warning(
            f"Charge {charge_ref} for order {updated.order_number} failed; "
            f"order back to {updated.status}"
        )
        self._publish(updated, ORDER_STATUS_CHANGED_V1,
                      build_status_changed_payload(updated, from_status))
        self._publish(updated, ORDER_CHARGE_FAILED_V1,
                      build_charge_failed_payload(updated, charge_ref))
        return OrderResult(updated)

    def settle_from_gateway(self, order_id: str, *,
                            charge_ref: Optional[str] = None) -> OrderResult:
        """
        The single confirmation routine for confirm calls, webhooks and
        reconciliation polls.

        pending_payment → completed with settlement. A cancelled order that
        still gets paid is flagged paid_after_cancel and a refund is booked.
        A payment on a charge the order already let go of (failed, or
        created after the order was cancelled) also books a refund.
        Anything else is a no-op.
        """
        with self._orders.lock_for(order_id):
            order = self._load(order_id)
            if charge_ref and charge_ref in order.released_charge_refs:
                if FLAG_RELEASED_CHARGE_PAID in order.settlement_flags:
                    return OrderResult(order, changed=False)
                outcome = FLAG_RELEASED_CHARGE_PAID
                updated = self._book_refund(order.with_flags(FLAG_RELEASED_CHARGE_PAID))
            elif charge_ref and order.charge_ref and charge_ref != order.charge_ref:
                logger.warning(
                    f"Charge {charge_ref} does not belong to order "
                    f"{order.order_number} ({order.charge_ref}); ignored"
                )
                return OrderResult(order, changed=False)
            elif order.status == STATUS_PENDING_PAYMENT:
                settings = self.settings_for(order.restaurant_id)
                outcome = STATUS_COMPLETED
                updated = self._settle(
                    dataclasses.replace(order, status=STATUS_COMPLETED), settings,
                )
            elif (order.status == STATUS_CANCELLED and order.charge_ref
                  and FLAG_PAID_AFTER_CANCEL not in order.settlement_flags):
                outcome = FLAG_PAID_AFTER_CANCEL
                updated = self._book_refund(order.with_flags(FLAG_PAID_AFTER_CANCEL))
            else:
                logger.info(
                    f"Gateway confirmation for order {order.order_number} "
                    f"in {order.status}: nothing to do"
                )
                return OrderResult(order, changed=False)
            self._orders.save(updated)

        if outcome == FLAG_RELEASED_CHARGE_PAID:
            logger.warning(
                f"Released charge {charge_ref} of order {updated.order_number} "
                f"was paid; refund booked"
            )
            self._publish(updated, ORDER_RELEASED_CHARGE_PAID_V1,
                          build_released_charge_paid_payload(updated, charge_ref))
        elif outcome == FLAG_PAID_AFTER_CANCEL:
            logger.warning(
                f"Order {updated.order_number} paid after cancellation; refund booked"
            )
            self._publish(updated, ORDER_PAID_AFTER_CANCEL_V1,
                          build_paid_after_cancel_payload(updated))
        else:
            self._after_transition(updated, STATUS_PENDING_PAYMENT, None, None)
        return OrderResult(updated)

    # ══════════════════════════════════════════════════════════
    # SETTLEMENT
    # ══════════════════════════════════════════════════════════

    def _settle(self, order: Order, settings: RestaurantSettings) -> Order:
        """Caller holds the order lock and has set status=completed."""
        order = dataclasses.replace(order, completed_at=self._clock.now_utc())
        if order.table_id and self._tables.release(order.table_id, order.order_id):
            order = order.with_flags(FLAG_TABLE_RELEASED)
        order = self._book_sale(order)
        order = self._credit_loyalty(order, settings)
        if order.loyalty_points_used:
            order = order.with_flags(FLAG_REDEEM_FINALIZED)
        return order

    def _book_sale(self, order: Order) -> Order:
        if FLAG_CASH_RECORDED in order.settlement_flags:
            return order
        try:
            self._cash.record_sale(
                order.order_id, order.total, order.payment_method,
                f"Order {order.order_number} - {order.payment_method}",
            )
        except Exception:
            logger.error(
                f"Cash entry failed for order {order.order_number}; left pending",
                exc_info=True,
            )
            return order.with_flags(FLAG_CASH_PENDING)
        return order.with_flags(FLAG_CASH_RECORDED, remove=(FLAG_CASH_PENDING,))

    def _credit_loyalty(self, order: Order, settings: RestaurantSettings) -> Order:
        if (FLAG_LOYALTY_CREDITED in order.settlement_flags
                or not settings.loyalty_enabled or not order.customer_id):
            return order
        points = calculate_points_earned(order.total, settings)
        if points <= 0:
            return order
        try:
            self._loyalty.credit(
                order.customer_id, order.order_id, points,
                f"Points earned on order {order.order_number}",
            )
        except Exception:
            logger.error(
                f"Loyalty credit failed for order {order.order_number}; left pending",
                exc_info=True,
            )
            return order.with_flags(FLAG_LOYALTY_PENDING)
        return dataclasses.replace(
            order.with_flags(FLAG_LOYALTY_CREDITED, remove=(FLAG_LOYALTY_PENDING,)),
            loyalty_points_earned=points,
        )

    def _book_refund(self, order: Order) -> Order:
        if FLAG_REFUND_RECORDED in order.settlement_flags:
            return order
        # A released charge was always a QR charge, whatever the order settled with.
        if FLAG_RELEASED_CHARGE_PAID in order.settlement_flags:
            method, why = PAYMENT_PIX, "released charge paid"
        else:
            method, why = order.payment_method, "paid after cancellation"
        try:
            self._cash.record_refund(
                order.order_id, order.total, method,
                f"Refund due: order {order.order_number} {why}",
            )
        except Exception:
            logger.error(
                f"Refund entry failed for order {order.order_number}; left pending",
                exc_info=True,
            )
            return order.with_flags(FLAG_REFUND_PENDING)
        return order.with_flags(FLAG_REFUND_RECORDED, remove=(FLAG_REFUND_PENDING,))

    def retry_settlement(self, order_id: str) -> OrderResult:
        """Re-run side effects left pending by an earlier failure."""
        with self._orders.lock_for(order_id):
            order = self._load(order_id)
            if not order.settlement_pending:
                return OrderResult(order, changed=False)
            settings = self.settings_for(order.restaurant_id)
            updated = order
            if order.status == STATUS_COMPLETED:
                updated = self._credit_loyalty(self._book_sale(updated), settings)
            if order.settlement_flags & {FLAG_PAID_AFTER_CANCEL, FLAG_RELEASED_CHARGE_PAID}:
                updated = self._book_refund(updated)
            self._orders.save(updated)
        logger.info(
            f"Settlement retry for order {updated.order_number}: "
            f"{'still pending' if updated.settlement_pending else 'done'}"
        )
        return OrderResult(updated, changed=updated != order)

    # ── events ────────────────────────────────────────────────

    def _publish(self, order: Order, event_type: str, payload: dict,
                 correlation_id: Optional[uuid.UUID] = None) -> None:
        if self._events is None:
            return
        self._events.publish(
            event_type=event_type,
            payload=payload,
            restaurant_id=order.restaurant_id,
            source_engine="orders",
            occurred_at=self._clock.now_utc(),
            correlation_id=correlation_id,
        )
