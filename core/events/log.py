"""
ROS Event Bus — Event Log
===========================
Append-only, in-memory record of everything the engines did.

Events are recorded first and dispatched second: a subscriber
only ever hears about something that already happened.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Optional

from core.events.dispatcher import dispatch
from core.events.registry import SubscriberRegistry


class EventLog:
    """Thread-safe append-only event log with optional subscriber dispatch."""

    def __init__(self, subscribers: Optional[SubscriberRegistry] = None):
        self._events: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._subscribers = subscribers

    def publish(
        self,
        *,
        event_type: str,
        payload: dict,
        restaurant_id: uuid.UUID,
        source_engine: str,
        occurred_at: datetime,
        correlation_id: Optional[uuid.UUID] = None,
    ) -> dict[str, Any]:
        event = {
            "event_id": uuid.uuid4(),
            "event_type": event_type,
            "restaurant_id": restaurant_id,
            "source_engine": source_engine,
            "correlation_id": correlation_id,
            "occurred_at": occurred_at,
            "payload": dict(payload),
        }
        with self._lock:
            self._events.append(copy.deepcopy(event))
        if self._subscribers is not None:
            dispatch(event, self._subscribers)
        return event

    def events(self, event_type: Optional[str] = None) -> tuple[dict[str, Any], ...]:
        with self._lock:
            selected = [
                e for e in self._events
                if event_type is None or e["event_type"] == event_type
            ]
            return tuple(copy.deepcopy(selected))

    @property
    def event_count(self) -> int:
        with self._lock:
            return len(self._events)
