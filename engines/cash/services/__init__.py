"""
ROS Cash Engine — Accounting Sink
===================================
Append-only cash movements written by settlement.

Each order produces at most one sale (income) and at most one refund
(expense); both are keyed by order so retries cannot double-book.
Staff post everything else (supplier payments, withdrawals, change
float) as manual movements with no order.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Protocol, Tuple

from core.time.clock import Clock, SystemClock, business_date

logger = logging.getLogger("ros.cash")

MOVEMENT_INCOME = "income"
MOVEMENT_EXPENSE = "expense"

CATEGORY_SALE = "sale"
CATEGORY_REFUND = "refund"
CATEGORY_SUPPLIER = "supplier"
CATEGORY_SALARY = "salary"
CATEGORY_RENT = "rent"
CATEGORY_UTILITIES = "utilities"
CATEGORY_WITHDRAWAL = "withdrawal"
CATEGORY_FLOAT = "float"
CATEGORY_OTHER = "other"

MANUAL_CATEGORIES = frozenset({
    CATEGORY_SALE, CATEGORY_SUPPLIER, CATEGORY_SALARY, CATEGORY_RENT,
    CATEGORY_UTILITIES, CATEGORY_WITHDRAWAL, CATEGORY_FLOAT, CATEGORY_OTHER,
})


@dataclass(frozen=True)
class CashMovement:
    movement_id: str
    order_id: Optional[str]
    type: str
    category: str
    amount: int
    payment_method: str
    description: str
    movement_date: date

    def __post_init__(self):
        if self.type not in (MOVEMENT_INCOME, MOVEMENT_EXPENSE):
            raise ValueError(f"type '{self.type}' not valid.")
        if not isinstance(self.amount, int) or self.amount < 0:
            raise ValueError("amount must be non-negative integer (minor units).")

    def to_dict(self) -> dict:
        return {
            "movement_id": self.movement_id,
            "order_id": self.order_id,
            "type": self.type,
            "category": self.category,
            "amount": self.amount,
            "payment_method": self.payment_method,
            "description": self.description,
            "movement_date": self.movement_date.isoformat(),
        }


@dataclass(frozen=True)
class DailyCashSummary:
    movement_date: date
    income_by_method: Dict[str, int] = field(default_factory=dict)
    total_income: int = 0
    total_expense: int = 0

    @property
    def net(self) -> int:
        return self.total_income - self.total_expense


class AccountingSink(Protocol):
    def record_sale(self, order_id: str, amount: int, payment_method: str,
                    description: str) -> Optional[CashMovement]:
        ...  # pragma: no cover

    def record_refund(self, order_id: str, amount: int, payment_method: str,
                      description: str) -> Optional[CashMovement]:
        ...  # pragma: no cover


class CashLedger:
    """Thread-safe in-memory accounting sink."""

    def __init__(self, *, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._movements: List[CashMovement] = []
        self._by_key: Dict[Tuple[str, str], CashMovement] = {}

    def _record(self, order_id, movement_type, category, amount,
                payment_method, description) -> Optional[CashMovement]:
        with self._lock:
            if (order_id, category) in self._by_key:
                logger.info(f"Cash {category} for order {order_id} already recorded")
                return None
            movement = CashMovement(
                movement_id=str(uuid.uuid4()),
                order_id=order_id,
                type=movement_type,
                category=category,
                amount=amount,
                payment_method=payment_method,
                description=description,
                movement_date=business_date(self._clock),
            )
            self._movements.append(movement)
            self._by_key[(order_id, category)] = movement
        logger.info(
            f"Cash {movement_type}/{category} {amount} ({payment_method}) "
            f"for order {order_id}"
        )
        return movement

    def record_sale(self, order_id: str, amount: int, payment_method: str,
                    description: str) -> Optional[CashMovement]:
        return self._record(
            order_id, MOVEMENT_INCOME, CATEGORY_SALE,
            amount, payment_method, description,
        )

    def record_refund(self, order_id: str, amount: int, payment_method: str,
                      description: str) -> Optional[CashMovement]:
        return self._record(
            order_id, MOVEMENT_EXPENSE, CATEGORY_REFUND,
            amount, payment_method, description,
        )

    def record_manual(self, movement_type: str, category: str, amount: int,
                      payment_method: str = "cash", description: str = "") -> CashMovement:
        """
        A staff-entered movement not tied to any order.

        Never deduplicated: two identical withdrawals are two withdrawals.
        """
        if category not in MANUAL_CATEGORIES:
            raise ValueError(f"category '{category}' not valid for a manual movement.")
        if not isinstance(amount, int) or amount <= 0:
            raise ValueError("amount must be a positive integer (minor units).")
        movement = CashMovement(
            movement_id=str(uuid.uuid4()),
            order_id=None,
            type=movement_type,
            category=category,
            amount=amount,
            payment_method=payment_method,
            description=description,
            movement_date=business_date(self._clock),
        )
        with self._lock:
            self._movements.append(movement)
        logger.info(f"Manual cash {movement_type}/{category} {amount} ({payment_method})")
        return movement

    def movements(self, order_id: Optional[str] = None) -> Tuple[CashMovement, ...]:
        with self._lock:
            return tuple(
                m for m in self._movements
                if order_id is None or m.order_id == order_id
            )

    def daily_summary(self, movement_date: date) -> DailyCashSummary:
        """Cash-register close: income per payment method, expenses, net."""
        by_method: Dict[str, int] = {}
        income = expense = 0
        for m in self.movements():
            if m.movement_date != movement_date:
                continue
            if m.type == MOVEMENT_INCOME:
                income += m.amount
                by_method[m.payment_method] = by_method.get(m.payment_method, 0) + m.amount
            else:
                expense += m.amount
        return DailyCashSummary(
            movement_date=movement_date,
            income_by_method=by_method,
            total_income=income,
            total_expense=expense,
        )
