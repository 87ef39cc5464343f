"""
Tests — Orders Engine: Settlement
====================================
Side effects of completion run once; failures leave flags that
retry_settlement() picks up.
"""

from __future__ import annotations

import pytest

from core.commands.rejection import CommandRejectedError
from engines.cash.services import CATEGORY_SALE, CashLedger
from engines.loyalty.services import TXN_EARN, LoyaltyLedger
from engines.orders.commands import STATUS_COMPLETED
from engines.orders.events import ORDER_COMPLETED_V1
from engines.orders.services import (
    FLAG_CASH_PENDING,
    FLAG_CASH_RECORDED,
    FLAG_LOYALTY_CREDITED,
    FLAG_LOYALTY_PENDING,
    FLAG_REDEEM_FINALIZED,
    FLAG_TABLE_RELEASED,
)
from ros_testkit import NOW, line, make_settings


PHONE = "11988887777"


class FlakyCash(CashLedger):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.broken = True

    def record_sale(self, order_id, amount, payment_method, description):
        if self.broken:
            raise RuntimeError("cash register offline")
        return super().record_sale(order_id, amount, payment_method, description)


class FlakyLoyalty(LoyaltyLedger):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.broken = True

    def credit(self, customer_id, order_id, points, description=""):
        if self.broken:
            raise RuntimeError("loyalty store offline")
        return super().credit(customer_id, order_id, points, description)


class TestCompletion:
    def test_dine_in_with_customer(self, world):
        order = world.create(fulfillment="dine_in", table_id="t1",
                             customer_phone=PHONE, payment_method="cash")

        order = world.transition(order.order_id, STATUS_COMPLETED).order

        assert order.completed_at == NOW
        assert world.tables.get("t1").order_id is None
        movements = world.cash.movements(order.order_id)
        assert len(movements) == 1
        assert movements[0].category == CATEGORY_SALE
        assert movements[0].amount == 5000
        assert movements[0].payment_method == "cash"
        assert order.loyalty_points_earned == 50
        assert world.loyalty.balance_of(order.customer_id) == 50
        assert world.loyalty.has_transaction(order.order_id, TXN_EARN)
        assert {FLAG_TABLE_RELEASED, FLAG_CASH_RECORDED, FLAG_LOYALTY_CREDITED} \
            <= order.settlement_flags
        assert not order.settlement_pending
        assert len(world.events.events(ORDER_COMPLETED_V1)) == 1

    def test_points_follow_total_after_discounts(self, world):
        customer = world.customers.upsert_by_phone(PHONE, "Maria")
        world.loyalty.credit(customer.customer_id, "seed-order", 150)
        order = world.create([line("Sandwich", 2000)], customer_phone=PHONE,
                             loyalty_points_requested=150, payment_method="pix")

        order = world.transition(order.order_id, STATUS_COMPLETED).order

        assert order.total == 1850
        assert order.loyalty_points_earned == 18
        assert FLAG_REDEEM_FINALIZED in order.settlement_flags
        assert world.loyalty.balance_of(customer.customer_id) == 18

    def test_no_points_without_customer(self, world):
        order = world.create(payment_method="cash")
        order = world.transition(order.order_id, STATUS_COMPLETED).order
        assert order.loyalty_points_earned == 0
        assert FLAG_LOYALTY_CREDITED not in order.settlement_flags
        assert world.loyalty.transactions() == ()

    def test_no_points_with_program_disabled(self, make_world):
        world = make_world(make_settings(loyalty_enabled=False))
        order = world.create(customer_phone=PHONE, payment_method="cash")
        order = world.transition(order.order_id, STATUS_COMPLETED).order
        assert order.loyalty_points_earned == 0
        assert world.loyalty.balance_of(order.customer_id) == 0
        assert len(world.cash.movements(order.order_id)) == 1

    def test_list_orders_by_status(self, world):
        done = world.create(payment_method="cash")
        world.transition(done.order_id, STATUS_COMPLETED)
        open_order = world.create()
        assert [o.order_id for o in world.service.list_orders(status=STATUS_COMPLETED)] == [
            done.order_id,
        ]
        assert [o.order_id for o in world.service.list_orders(
            restaurant_id=world.settings.restaurant_id, status="new",
        )] == [open_order.order_id]


class TestSettlementFailures:
    def test_cash_failure_does_not_undo_completion(self, make_world, caplog):
        cash = FlakyCash()
        world = make_world(cash=cash)
        order = world.create(fulfillment="dine_in", table_id="t1", payment_method="cash")

        with caplog.at_level("ERROR", logger="ros.orders"):
            order = world.transition(order.order_id, STATUS_COMPLETED).order

        assert order.status == STATUS_COMPLETED
        assert FLAG_CASH_PENDING in order.settlement_flags
        assert order.settlement_pending
        assert world.tables.get("t1").order_id is None
        assert cash.movements() == ()
        assert "Cash entry failed" in caplog.text

    def test_retry_books_pending_cash_once(self, make_world):
        cash = FlakyCash()
        world = make_world(cash=cash)
        order = world.create(payment_method="credit_card")
        world.transition(order.order_id, STATUS_COMPLETED)

        still_broken = world.service.retry_settlement(order.order_id)
        assert still_broken.changed is False
        assert FLAG_CASH_PENDING in still_broken.order.settlement_flags

        cash.broken = False
        result = world.service.retry_settlement(order.order_id)
        assert result.changed is True
        assert FLAG_CASH_RECORDED in result.order.settlement_flags
        assert FLAG_CASH_PENDING not in result.order.settlement_flags
        assert len(cash.movements(order.order_id)) == 1

        assert world.service.retry_settlement(order.order_id).changed is False
        assert len(cash.movements(order.order_id)) == 1

    def test_loyalty_failure_then_retry(self, make_world):
        loyalty = FlakyLoyalty()
        world = make_world(loyalty=loyalty)
        order = world.create(customer_phone=PHONE, payment_method="cash")

        order = world.transition(order.order_id, STATUS_COMPLETED).order
        assert FLAG_LOYALTY_PENDING in order.settlement_flags
        assert order.loyalty_points_earned == 0
        assert FLAG_CASH_RECORDED in order.settlement_flags

        loyalty.broken = False
        order = world.service.retry_settlement(order.order_id).order
        assert FLAG_LOYALTY_CREDITED in order.settlement_flags
        assert not order.settlement_pending
        assert order.loyalty_points_earned == 50
        assert loyalty.balance_of(order.customer_id) == 50
        assert len(world.cash.movements(order.order_id)) == 1

    def test_retry_on_settled_order_is_noop(self, world):
        order = world.create(payment_method="cash")
        world.transition(order.order_id, STATUS_COMPLETED)
        result = world.service.retry_settlement(order.order_id)
        assert result.changed is False

    def test_retry_unknown_order(self, world):
        with pytest.raises(CommandRejectedError):
            world.service.retry_settlement("missing")
