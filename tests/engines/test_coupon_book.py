"""
Tests — Coupon Book
======================
Compare-and-set redemption; current_uses never passes max_uses.
"""

from __future__ import annotations

import threading

import pytest

from core.commands.rejection import CommandRejectedError, ReasonCode
from engines.promotion.services import COUPON_FIXED, COUPON_PERCENTAGE, Coupon, CouponBook


def book_with(**overrides) -> CouponBook:
    values = dict(code="save10", type=COUPON_PERCENTAGE, discount_value=10,
                  min_order_value=5000, max_uses=2)
    values.update(overrides)
    book = CouponBook()
    book.add(Coupon(**values))
    return book


class TestCoupon:
    def test_code_is_upper_cased(self):
        assert Coupon(code="save10", type=COUPON_PERCENTAGE, discount_value=10).code == "SAVE10"

    def test_percentage_above_100_rejected(self):
        with pytest.raises(ValueError, match="<= 100"):
            Coupon(code="X", type=COUPON_PERCENTAGE, discount_value=150)

    def test_fixed_must_be_minor_units(self):
        with pytest.raises(ValueError, match="integer minor units"):
            Coupon(code="X", type=COUPON_FIXED, discount_value=10.5)

    def test_uses_cannot_exceed_max(self):
        with pytest.raises(ValueError, match="current_uses"):
            Coupon(code="X", type=COUPON_FIXED, discount_value=100, max_uses=1, current_uses=2)

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="type"):
            Coupon(code="X", type="bogo", discount_value=1)


class TestRedeem:
    def test_redeem_consumes_one_use(self):
        book = book_with()
        coupon = book.redeem("SAVE10", "order-1", 6000)
        assert coupon.current_uses == 1
        assert book.get("save10").current_uses == 1

    def test_same_order_redeems_once(self):
        book = book_with()
        book.redeem("SAVE10", "order-1", 6000)
        book.redeem("save10", "order-1", 6000)
        assert book.get("SAVE10").current_uses == 1

    def test_exhausted(self):
        book = book_with(max_uses=1)
        book.redeem("SAVE10", "order-1", 6000)
        with pytest.raises(CommandRejectedError) as exc:
            book.redeem("SAVE10", "order-2", 6000)
        assert exc.value.code == ReasonCode.COUPON_EXHAUSTED
        assert book.get("SAVE10").current_uses == 1

    def test_unknown(self):
        with pytest.raises(CommandRejectedError) as exc:
            CouponBook().redeem("NOPE", "order-1", 6000)
        assert exc.value.code == ReasonCode.COUPON_NOT_FOUND

    def test_below_minimum(self):
        with pytest.raises(CommandRejectedError) as exc:
            book_with().redeem("SAVE10", "order-1", 4999)
        assert exc.value.code == ReasonCode.COUPON_BELOW_MINIMUM

    def test_inactive(self):
        with pytest.raises(CommandRejectedError) as exc:
            book_with(active=False).redeem("SAVE10", "order-1", 6000)
        assert exc.value.code == ReasonCode.COUPON_INACTIVE


class TestRelease:
    def test_release_gives_use_back(self):
        book = book_with(max_uses=1)
        book.redeem("SAVE10", "order-1", 6000)
        assert book.release("SAVE10", "order-1") is True
        assert book.get("SAVE10").current_uses == 0
        book.redeem("SAVE10", "order-2", 6000)
        assert book.get("SAVE10").current_uses == 1

    def test_release_twice(self):
        book = book_with()
        book.redeem("SAVE10", "order-1", 6000)
        assert book.release("SAVE10", "order-1") is True
        assert book.release("SAVE10", "order-1") is False
        assert book.get("SAVE10").current_uses == 0

    def test_release_without_redemption(self):
        assert book_with().release("SAVE10", "order-9") is False


class TestConcurrentRedemption:
    def test_never_over_redeemed(self):
        book = book_with(max_uses=5)
        successes = []
        failures = []
        barrier = threading.Barrier(20)

        def attempt(i):
            barrier.wait()
            try:
                book.redeem("SAVE10", f"order-{i}", 6000)
                successes.append(i)
            except CommandRejectedError as e:
                failures.append(e.code)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 5
        assert failures == [ReasonCode.COUPON_EXHAUSTED] * 15
        assert book.get("SAVE10").current_uses == 5
