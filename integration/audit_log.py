"""
ROS Integration — Audit Log
==============================
Append-only trail of every gateway call and webhook received.
Failures stay visible for the cashier's end-of-day reconciliation.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from integration.adapters import Direction


@dataclass(frozen=True)
class IntegrationAuditEntry:
    audit_id: uuid.UUID
    restaurant_id: Optional[uuid.UUID]
    external_system_id: str
    direction: Direction
    event_type: str
    payload_hash: str
    status: str  # SUCCESS | FAILED
    occurred_at: datetime
    order_id: Optional[str] = None
    external_event_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "audit_id": str(self.audit_id),
            "restaurant_id": str(self.restaurant_id) if self.restaurant_id else None,
            "external_system_id": self.external_system_id,
            "direction": self.direction.value,
            "event_type": self.event_type,
            "payload_hash": self.payload_hash,
            "status": self.status,
            "occurred_at": self.occurred_at.isoformat(),
            "order_id": self.order_id,
            "external_event_id": self.external_event_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class IntegrationAuditLog:
    """In-memory append-only audit log."""

    def __init__(self) -> None:
        self._entries: List[IntegrationAuditEntry] = []
        self._lock = threading.Lock()

    def _append(self, entry: IntegrationAuditEntry) -> IntegrationAuditEntry:
        with self._lock:
            self._entries.append(entry)
        return entry

    def record_success(
        self,
        *,
        restaurant_id: Optional[uuid.UUID],
        external_system_id: str,
        direction: Direction,
        event_type: str,
        payload_hash: str,
        occurred_at: datetime,
        order_id: Optional[str] = None,
        external_event_id: Optional[str] = None,
    ) -> IntegrationAuditEntry:
        return self._append(IntegrationAuditEntry(
            audit_id=uuid.uuid4(),
            restaurant_id=restaurant_id,
            external_system_id=external_system_id,
            direction=direction,
            event_type=event_type,
            payload_hash=payload_hash,
            status="SUCCESS",
            occurred_at=occurred_at,
            order_id=order_id,
            external_event_id=external_event_id,
        ))

    def record_failure(
        self,
        *,
        restaurant_id: Optional[uuid.UUID],
        external_system_id: str,
        direction: Direction,
        event_type: str,
        payload_hash: str,
        occurred_at: datetime,
        error_code: str,
        error_message: str,
        order_id: Optional[str] = None,
        external_event_id: Optional[str] = None,
    ) -> IntegrationAuditEntry:
        return self._append(IntegrationAuditEntry(
            audit_id=uuid.uuid4(),
            restaurant_id=restaurant_id,
            external_system_id=external_system_id,
            direction=direction,
            event_type=event_type,
            payload_hash=payload_hash,
            status="FAILED",
            occurred_at=occurred_at,
            order_id=order_id,
            external_event_id=external_event_id,
            error_code=error_code,
            error_message=error_message,
        ))

    def query_by_restaurant(self, restaurant_id: uuid.UUID) -> List[IntegrationAuditEntry]:
        with self._lock:
            return [e for e in self._entries if e.restaurant_id == restaurant_id]

    def query_failures(self, restaurant_id: Optional[uuid.UUID] = None) -> List[IntegrationAuditEntry]:
        with self._lock:
            return [
                e for e in self._entries
                if e.status == "FAILED"
                and (restaurant_id is None or e.restaurant_id == restaurant_id)
            ]

    @property
    def entries(self) -> List[IntegrationAuditEntry]:
        with self._lock:
            return list(self._entries)
