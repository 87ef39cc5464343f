"""
ROS Loyalty Engine — Points Ledger
====================================
Append-only ledger of point movements per customer.

The cached balance is a projection of the transaction sum. Every
movement is keyed by (order_id, type) so a retried settlement or a
duplicate webhook can never credit or debit twice.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from core.commands.rejection import CommandRejectedError
from core.time.clock import Clock, SystemClock
from engines.loyalty.policies import (
    points_must_be_positive_policy,
    sufficient_balance_policy,
)

logger = logging.getLogger("ros.loyalty")

TXN_EARN = "earn"
TXN_REDEEM = "redeem"
TXN_REVERSE = "reverse"
TXN_ADJUST = "adjust"

VALID_TXN_TYPES = frozenset({TXN_EARN, TXN_REDEEM, TXN_REVERSE, TXN_ADJUST})


@dataclass(frozen=True)
class LoyaltyTransaction:
    transaction_id: str
    customer_id: str
    order_id: Optional[str]
    points: int
    type: str
    description: str
    created_at: datetime

    def __post_init__(self):
        if self.type not in VALID_TXN_TYPES:
            raise ValueError(f"type '{self.type}' not valid.")
        if not self.customer_id:
            raise ValueError("customer_id must be non-empty.")

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "customer_id": self.customer_id,
            "order_id": self.order_id,
            "points": self.points,
            "type": self.type,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class BalanceDrift:
    """A cached balance that disagreed with its transaction sum."""
    customer_id: str
    cached: int
    computed: int

    @property
    def delta(self) -> int:
        return self.computed - self.cached


class LoyaltyLedger:
    """Thread-safe in-memory loyalty ledger."""

    def __init__(self, *, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._transactions: List[LoyaltyTransaction] = []
        self._by_key: Dict[Tuple[str, str], LoyaltyTransaction] = {}
        self._balances: Dict[str, int] = {}

    # ── internals (caller holds the lock) ─────────────────────

    def _append(self, customer_id, order_id, points, txn_type, description):
        txn = LoyaltyTransaction(
            transaction_id=str(uuid.uuid4()),
            customer_id=customer_id,
            order_id=order_id,
            points=points,
            type=txn_type,
            description=description,
            created_at=self._clock.now_utc(),
        )
        self._transactions.append(txn)
        if order_id is not None:
            self._by_key[(order_id, txn_type)] = txn
        self._balances[customer_id] = self._balances.get(customer_id, 0) + points
        return txn

    # ── movements ─────────────────────────────────────────────

    def credit(self, customer_id: str, order_id: str, points: int,
               description: str = "") -> Optional[LoyaltyTransaction]:
        """Earn points for a settled order. Duplicate → None."""
        if points <= 0:
            return None
        with self._lock:
            if (order_id, TXN_EARN) in self._by_key:
                logger.info(f"Loyalty credit for order {order_id} already applied")
                return None
            txn = self._append(
                customer_id, order_id, points, TXN_EARN,
                description or f"Points earned on order {order_id}",
            )
        logger.info(f"Credited {points} points to {customer_id} (order {order_id})")
        return txn

    def debit(self, customer_id: str, order_id: str, points: int,
              description: str = "") -> Optional[LoyaltyTransaction]:
        """
        Redeem points for an order.

        The balance check and the write happen under the same lock, so two
        concurrent redemptions cannot overdraw. Duplicate → None.
        Raises CommandRejectedError(INSUFFICIENT_POINTS).
        """
        reason = points_must_be_positive_policy(points)
        if reason is not None:
            raise CommandRejectedError(reason)
        with self._lock:
            if (order_id, TXN_REDEEM) in self._by_key:
                return None
            reason = sufficient_balance_policy(
                self._balances.get(customer_id, 0), points,
            )
            if reason is not None:
                raise CommandRejectedError(reason)
            txn = self._append(
                customer_id, order_id, -points, TXN_REDEEM,
                description or f"Points redeemed on order {order_id}",
            )
        logger.info(f"Debited {points} points from {customer_id} (order {order_id})")
        return txn

    def reverse(self, customer_id: str, order_id: str,
                description: str = "") -> Optional[LoyaltyTransaction]:
        """Give back the points an order redeemed. No redeem or already reversed → None."""
        with self._lock:
            redeemed = self._by_key.get((order_id, TXN_REDEEM))
            if redeemed is None or (order_id, TXN_REVERSE) in self._by_key:
                return None
            txn = self._append(
                customer_id, order_id, -redeemed.points, TXN_REVERSE,
                description or f"Redemption reversed for order {order_id}",
            )
        logger.info(f"Reversed {txn.points} points to {customer_id} (order {order_id})")
        return txn

    def adjust(self, customer_id: str, points: int, description: str) -> LoyaltyTransaction:
        """Manual correction by staff. Cannot take the balance below zero."""
        if points == 0:
            raise ValueError("points must be non-zero.")
        with self._lock:
            if points < 0:
                reason = sufficient_balance_policy(
                    self._balances.get(customer_id, 0), -points,
                )
                if reason is not None:
                    raise CommandRejectedError(reason)
            txn = self._append(customer_id, None, points, TXN_ADJUST, description)
        logger.info(f"Adjusted {customer_id} by {points} points: {description}")
        return txn

    # ── queries ───────────────────────────────────────────────

    def balance_of(self, customer_id: str) -> int:
        with self._lock:
            return self._balances.get(customer_id, 0)

    def transactions(self, customer_id: Optional[str] = None,
                     order_id: Optional[str] = None) -> Tuple[LoyaltyTransaction, ...]:
        with self._lock:
            return tuple(
                t for t in self._transactions
                if (customer_id is None or t.customer_id == customer_id)
                and (order_id is None or t.order_id == order_id)
            )

    def has_transaction(self, order_id: str, txn_type: str) -> bool:
        with self._lock:
            return (order_id, txn_type) in self._by_key

    # ── reconciliation ────────────────────────────────────────

    def reconcile(self, customer_id: Optional[str] = None) -> List[BalanceDrift]:
        """
        Re-sum transactions and overwrite any cached balance that drifted.

        Drift is logged and corrected, never raised.
        """
        drifts: List[BalanceDrift] = []
        with self._lock:
            sums: Dict[str, int] = {}
            for txn in self._transactions:
                sums[txn.customer_id] = sums.get(txn.customer_id, 0) + txn.points
            customers = set(sums) | set(self._balances)
            if customer_id is not None:
                customers &= {customer_id}
            for cid in sorted(customers):
                cached = self._balances.get(cid, 0)
                computed = sums.get(cid, 0)
                if cached != computed:
                    drifts.append(BalanceDrift(cid, cached, computed))
                    self._balances[cid] = computed
        for drift in drifts:
            logger.warning(
                f"Loyalty balance drift for {drift.customer_id}: "
                f"cached={drift.cached} computed={drift.computed}; corrected"
            )
        return drifts
