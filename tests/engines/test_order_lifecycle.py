"""
Tests — Orders Engine: State Machine
=======================================
Allowed moves, payment guards, rider dispatch and cancellation.
"""

from __future__ import annotations

import uuid

import pytest

from core.commands.base import ACTOR_HUMAN
from core.commands.rejection import CommandRejectedError, ReasonCode
from engines.loyalty.services import TXN_REVERSE
from engines.orders.commands import (
    OrderTransitionRequest,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NEW,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_PENDING_PAYMENT,
    STATUS_PREPARING,
    STATUS_READY,
    STATUS_READY_FOR_PAYMENT,
)
from engines.orders.events import (
    ORDER_CANCELLED_V1,
    ORDER_COMPLETED_V1,
    ORDER_PAYMENT_METHOD_SET_V1,
    ORDER_STATUS_CHANGED_V1,
    RIDER_DISPATCHED_V1,
)
from engines.orders.services import (
    FLAG_COUPON_RELEASED,
    FLAG_REDEEM_REVERSED,
    FLAG_TABLE_RELEASED,
)
from engines.pricing.delivery import DeliveryAddress
from engines.promotion.services import COUPON_FIXED, Coupon
from ros_testkit import NOW, line, make_settings, point_north


PHONE = "11988887777"


def rejected(code: str, call, *args, **kwargs):
    with pytest.raises(CommandRejectedError) as exc:
        call(*args, **kwargs)
    assert exc.value.code == code


def delivery_order(world, **kwargs):
    p = point_north(2)
    return world.create(
        [line("Pizza", 4000, 1, summary="half calabresa")],
        channel="ONLINE",
        fulfillment="delivery",
        delivery_address=DeliveryAddress(
            street="Rua Augusta", number="100", neighborhood="Consolacao",
            city="Sao Paulo", latitude=p.latitude, longitude=p.longitude,
        ),
        customer_phone=PHONE,
        customer_name="Maria",
        payment_method="cash",
        **kwargs,
    )


class TestHappyPath:
    def test_pickup_flow(self, world):
        order = world.create(payment_method="cash")
        order = world.walk(order.order_id, STATUS_CONFIRMED, STATUS_PREPARING,
                           STATUS_READY, STATUS_READY_FOR_PAYMENT, STATUS_COMPLETED)
        assert order.status == STATUS_COMPLETED
        assert order.completed_at == NOW

    def test_status_change_events(self, world):
        order = world.create(payment_method="cash")
        world.walk(order.order_id, STATUS_CONFIRMED, STATUS_PREPARING)
        changes = world.events.events(ORDER_STATUS_CHANGED_V1)
        assert [(e["payload"]["from_status"], e["payload"]["status"]) for e in changes] == [
            (STATUS_NEW, STATUS_CONFIRMED),
            (STATUS_CONFIRMED, STATUS_PREPARING),
        ]

    def test_skipping_back_is_invalid(self, world):
        order = world.create(payment_method="cash")
        world.walk(order.order_id, STATUS_PREPARING)
        rejected(ReasonCode.INVALID_TRANSITION, world.transition, order.order_id, STATUS_CONFIRMED)
        assert world.service.get_order(order.order_id).status == STATUS_PREPARING

    def test_unknown_order(self, world):
        rejected(ReasonCode.ORDER_NOT_FOUND, world.transition, "missing", STATUS_CONFIRMED)

    def test_order_of_another_restaurant_is_invisible(self, world):
        other = make_settings(restaurant_id=uuid.uuid4())
        world.config.put_settings(other)
        order = world.create(payment_method="cash")
        command = OrderTransitionRequest(
            order_id=order.order_id, to_status=STATUS_CONFIRMED,
        ).to_command(
            restaurant_id=other.restaurant_id, actor_type=ACTOR_HUMAN, actor_id="x",
            command_id=uuid.uuid4(), correlation_id=uuid.uuid4(), issued_at=NOW,
        )
        rejected(ReasonCode.ORDER_NOT_FOUND, world.service.execute, command)


class TestPaymentGuards:
    def test_completion_needs_payment_method(self, world):
        order = world.create()
        rejected(ReasonCode.PAYMENT_PENDING, world.transition, order.order_id, STATUS_COMPLETED)
        assert world.service.get_order(order.order_id).status == STATUS_NEW

        world.set_payment(order.order_id, "credit_card")
        assert world.transition(order.order_id, STATUS_COMPLETED).order.status == STATUS_COMPLETED

    def test_totem_cannot_prepare_without_payment_intent(self, world):
        order = world.create(channel="TOTEM")
        rejected(ReasonCode.PAYMENT_INTENT_UNKNOWN, world.transition,
                 order.order_id, STATUS_PREPARING)

    def test_pdv_defers_payment_to_cashier(self, world):
        order = world.create(channel="PDV")
        assert world.transition(order.order_id, STATUS_PREPARING).order.status == STATUS_PREPARING

    def test_deferred_channels_come_from_settings(self, make_world):
        world = make_world(make_settings(deferred_payment_channels=frozenset()))
        order = world.create(channel="PDV")
        rejected(ReasonCode.PAYMENT_INTENT_UNKNOWN, world.transition,
                 order.order_id, STATUS_PREPARING)

    def test_staff_cannot_enter_pending_payment(self, world):
        order = world.create(payment_method="pix")
        rejected(ReasonCode.AWAITING_GATEWAY, world.transition,
                 order.order_id, STATUS_PENDING_PAYMENT)

    def test_staff_cannot_complete_pending_payment(self, world):
        order = world.create()
        world.payments.request_payment(order.order_id, "pix")
        rejected(ReasonCode.AWAITING_GATEWAY, world.transition, order.order_id, STATUS_COMPLETED)

    def test_completing_twice_is_noop(self, world):
        order = world.create(payment_method="cash")
        world.transition(order.order_id, STATUS_COMPLETED)
        events_before = world.events.event_count

        result = world.transition(order.order_id, STATUS_COMPLETED)

        assert result.changed is False
        assert world.events.event_count == events_before
        assert len(world.cash.movements(order.order_id)) == 1

    def test_terminal_order_cannot_move(self, world):
        order = world.create(payment_method="cash")
        world.transition(order.order_id, STATUS_COMPLETED)
        rejected(ReasonCode.ORDER_TERMINAL, world.transition, order.order_id, STATUS_PREPARING)


class TestSetPaymentMethod:
    def test_changes_method(self, world):
        order = world.create()
        result = world.set_payment(order.order_id, "debit_card")
        assert result.order.payment_method == "debit_card"
        assert len(world.events.events(ORDER_PAYMENT_METHOD_SET_V1)) == 1

    def test_same_method_is_noop(self, world):
        order = world.create(payment_method="cash")
        assert world.set_payment(order.order_id, "cash").changed is False
        assert world.events.events(ORDER_PAYMENT_METHOD_SET_V1) == ()

    def test_terminal_order(self, world):
        order = world.create(payment_method="cash")
        world.transition(order.order_id, STATUS_COMPLETED)
        rejected(ReasonCode.ORDER_TERMINAL, world.set_payment, order.order_id, "pix")

    def test_outstanding_charge(self, world):
        order = world.create()
        world.payments.request_payment(order.order_id, "pix")
        rejected(ReasonCode.AWAITING_GATEWAY, world.set_payment, order.order_id, "cash")


class TestDelivery:
    def test_out_for_delivery_only_for_delivery_orders(self, world):
        order = world.create(payment_method="cash")
        world.walk(order.order_id, STATUS_PREPARING, STATUS_READY)
        rejected(ReasonCode.INVALID_TRANSITION, world.transition,
                 order.order_id, STATUS_OUT_FOR_DELIVERY)

    def test_dispatch_with_rider_notifies_rider(self, world):
        order = delivery_order(world)
        world.walk(order.order_id, STATUS_PREPARING, STATUS_READY)

        order = world.transition(order.order_id, STATUS_OUT_FOR_DELIVERY, rider_id="r1").order

        assert order.rider_id == "r1"
        dispatched = world.events.events(RIDER_DISPATCHED_V1)
        assert len(dispatched) == 1
        payload = dispatched[0]["payload"]
        assert payload["customer_name"] == "Maria"
        assert payload["items"] == [
            {"name": "Pizza", "quantity": 1, "modifiers_summary": "half calabresa"},
        ]
        phone, message = world.notifier.sent[0]
        assert phone == "(11) 97777-6666"
        assert "NEW DELIVERY" in message
        assert "1x Pizza (half calabresa)" in message
        assert "R$ 45.00 (cash)" in message

    def test_dispatch_without_rider(self, world):
        order = delivery_order(world)
        world.walk(order.order_id, STATUS_PREPARING, STATUS_READY)
        order = world.transition(order.order_id, STATUS_OUT_FOR_DELIVERY).order
        assert order.rider_id is None
        assert world.events.events(RIDER_DISPATCHED_V1) == ()

    def test_inactive_rider(self, world):
        order = delivery_order(world)
        world.walk(order.order_id, STATUS_PREPARING, STATUS_READY)
        rejected(ReasonCode.RIDER_NOT_AVAILABLE, world.transition,
                 order.order_id, STATUS_OUT_FOR_DELIVERY, "r2")
        assert world.service.get_order(order.order_id).status == STATUS_READY

    def test_delivered_order_completes(self, world):
        order = delivery_order(world)
        world.walk(order.order_id, STATUS_PREPARING, STATUS_READY)
        world.transition(order.order_id, STATUS_OUT_FOR_DELIVERY, rider_id="r1")
        order = world.transition(order.order_id, STATUS_COMPLETED).order
        assert order.status == STATUS_COMPLETED
        assert order.rider_id == "r1"


class TestCancellation:
    def test_cancel_frees_table(self, world):
        order = world.create(fulfillment="dine_in", table_id="t2")
        order = world.cancel(order.order_id, note="left early").order
        assert order.status == STATUS_CANCELLED
        assert order.cancel_reason == "customer_request"
        assert order.cancelled_at == NOW
        assert order.notes == "left early"
        assert FLAG_TABLE_RELEASED in order.settlement_flags
        assert world.tables.get("t2").order_id is None
        assert len(world.events.events(ORDER_CANCELLED_V1)) == 1

    def test_cancel_reverses_redemption_and_releases_coupon(self, world):
        customer = world.customers.upsert_by_phone(PHONE, "Maria")
        world.loyalty.credit(customer.customer_id, "seed-order", 300)
        world.coupons.add(Coupon(code="OFF5", type=COUPON_FIXED, discount_value=500, max_uses=1))
        order = world.create([line("Combo", 5000)], customer_phone=PHONE,
                             loyalty_points_requested=200, coupon_code="OFF5")
        assert world.loyalty.balance_of(customer.customer_id) == 100

        order = world.cancel(order.order_id).order

        assert world.loyalty.balance_of(customer.customer_id) == 300
        assert world.loyalty.has_transaction(order.order_id, TXN_REVERSE)
        assert world.coupons.get("OFF5").current_uses == 0
        assert {FLAG_REDEEM_REVERSED, FLAG_COUPON_RELEASED} <= order.settlement_flags

    def test_cancel_never_credits_points(self, world):
        order = world.create(customer_phone=PHONE, payment_method="cash")
        world.cancel(order.order_id)
        assert world.loyalty.transactions() == ()
        assert world.cash.movements() == ()

    def test_cancel_twice_is_noop(self, world):
        order = world.create()
        world.cancel(order.order_id)
        result = world.cancel(order.order_id)
        assert result.changed is False
        assert len(world.events.events(ORDER_CANCELLED_V1)) == 1

    def test_completed_order_cannot_be_cancelled(self, world):
        order = world.create(payment_method="cash")
        world.transition(order.order_id, STATUS_COMPLETED)
        rejected(ReasonCode.ORDER_TERMINAL, world.cancel, order.order_id)

    def test_cancel_through_transition(self, world):
        order = world.create()
        order = world.transition(order.order_id, STATUS_CANCELLED).order
        assert order.status == STATUS_CANCELLED
        assert order.cancel_reason == "other"

    def test_invalid_reason(self, world):
        order = world.create()
        with pytest.raises(ValueError, match="reason"):
            world.cancel(order.order_id, reason="bored")

    def test_completed_notifies_customer(self, world):
        order = world.create(customer_phone=PHONE, payment_method="cash")
        world.transition(order.order_id, STATUS_COMPLETED)
        completed = world.events.events(ORDER_COMPLETED_V1)
        assert completed[0]["payload"]["customer_phone"] == PHONE
        phone, message = world.notifier.sent[-1]
        assert phone == PHONE
        assert "You earned 50 loyalty points." in message
