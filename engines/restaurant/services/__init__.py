"""
ROS Restaurant Engine — Resource Coordinator
==============================================
Tables are exclusive resources: claimed by compare-and-set when a
dine-in order is created, released only by the order holding them.
Riders are advisory; assigning one does not lock it.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from core.commands.rejection import CommandRejectedError
from engines.restaurant.policies import (
    rider_must_be_active_policy,
    table_must_be_free_policy,
)

logger = logging.getLogger("ros.restaurant")

TABLE_FREE = "free"
TABLE_OCCUPIED = "occupied"
TABLE_RESERVED = "reserved"

VALID_TABLE_STATUSES = frozenset({TABLE_FREE, TABLE_OCCUPIED, TABLE_RESERVED})


# ══════════════════════════════════════════════════════════════
# TABLES
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Table:
    table_id: str
    number: int
    status: str = TABLE_FREE
    order_id: Optional[str] = None

    def __post_init__(self):
        if self.status not in VALID_TABLE_STATUSES:
            raise ValueError(f"status '{self.status}' not valid.")

    def to_dict(self) -> dict:
        return {
            "table_id": self.table_id,
            "number": self.number,
            "status": self.status,
            "order_id": self.order_id,
        }


class TableRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._tables: Dict[str, Table] = {}

    def add(self, table: Table) -> None:
        with self._lock:
            self._tables[table.table_id] = table

    def get(self, table_id: str) -> Optional[Table]:
        with self._lock:
            return self._tables.get(table_id)

    def all(self) -> Tuple[Table, ...]:
        with self._lock:
            return tuple(sorted(self._tables.values(), key=lambda t: t.number))

    def claim(self, table_id: str, order_id: str) -> Table:
        """
        free → occupied by order_id. Re-claiming by the same order is a no-op.

        Raises CommandRejectedError(TABLE_NOT_FOUND | TABLE_NOT_FREE).
        """
        with self._lock:
            table = self._tables.get(table_id)
            if table is not None and table.order_id == order_id:
                return table
            reason = table_must_be_free_policy(table_id, table)
            if reason is not None:
                raise CommandRejectedError(reason)
            table = dataclasses.replace(table, status=TABLE_OCCUPIED, order_id=order_id)
            self._tables[table_id] = table
        logger.info(f"Table {table.number} claimed by order {order_id}")
        return table

    def release(self, table_id: str, order_id: str) -> bool:
        """Free the table only if order_id still holds it."""
        with self._lock:
            table = self._tables.get(table_id)
            if table is None or table.order_id != order_id:
                return False
            self._tables[table_id] = dataclasses.replace(
                table, status=TABLE_FREE, order_id=None,
            )
        logger.info(f"Table {table.number} released by order {order_id}")
        return True


# ══════════════════════════════════════════════════════════════
# RIDERS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Rider:
    rider_id: str
    name: str
    phone: str = ""
    active: bool = True


class RiderRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._riders: Dict[str, Rider] = {}

    def add(self, rider: Rider) -> None:
        with self._lock:
            self._riders[rider.rider_id] = rider

    def get(self, rider_id: str) -> Optional[Rider]:
        with self._lock:
            return self._riders.get(rider_id)

    def require_available(self, rider_id: str) -> Rider:
        rider = self.get(rider_id)
        reason = rider_must_be_active_policy(rider_id, rider)
        if reason is not None:
            raise CommandRejectedError(reason)
        return rider

    def active(self) -> Tuple[Rider, ...]:
        with self._lock:
            return tuple(r for r in self._riders.values() if r.active)
