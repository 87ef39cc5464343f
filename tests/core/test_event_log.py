"""
Tests for core.events — subscriber registry, dispatch and the event log.
"""

import uuid
from datetime import datetime, timezone

import pytest

from core.events.dispatcher import dispatch
from core.events.errors import (
    DuplicateSubscriberError,
    EventBusError,
    InvalidEventTypeFormat,
)
from core.events.log import EventLog
from core.events.registry import SubscriberRegistry


T0 = datetime(2026, 3, 6, 18, 30, tzinfo=timezone.utc)
RESTAURANT = uuid.uuid4()
COMPLETED = "orders.order.completed.v1"


class Recorder:
    def __init__(self):
        self.seen = []

    def __call__(self, event):
        self.seen.append(event)


def explode(event):
    raise RuntimeError("whatsapp down")


# ══════════════════════════════════════════════════════════════
# REGISTRY
# ══════════════════════════════════════════════════════════════


class TestSubscriberRegistry:
    def test_subscribe(self):
        registry = SubscriberRegistry()
        handler = Recorder()
        registry.subscribe(COMPLETED, handler, "notifications")
        assert registry.get_subscribers(COMPLETED) == [(handler, "notifications")]
        assert registry.subscriber_count(COMPLETED) == 1

    def test_unknown_type_is_empty(self):
        assert SubscriberRegistry().get_subscribers(COMPLETED) == []

    @pytest.mark.parametrize("event_type", ["", "orders.completed", None])
    def test_invalid_event_type(self, event_type):
        with pytest.raises(InvalidEventTypeFormat):
            SubscriberRegistry().subscribe(event_type, Recorder(), "x")

    def test_handler_must_be_callable(self):
        with pytest.raises(EventBusError):
            SubscriberRegistry().subscribe(COMPLETED, "not-callable", "x")

    def test_duplicate_handler(self):
        registry = SubscriberRegistry()
        handler = Recorder()
        registry.subscribe(COMPLETED, handler, "a")
        with pytest.raises(DuplicateSubscriberError):
            registry.subscribe(COMPLETED, handler, "b")

    def test_several_handlers(self):
        registry = SubscriberRegistry()
        registry.subscribe(COMPLETED, Recorder(), "a")
        registry.subscribe(COMPLETED, Recorder(), "b")
        assert registry.subscriber_count(COMPLETED) == 2


# ══════════════════════════════════════════════════════════════
# DISPATCH
# ══════════════════════════════════════════════════════════════


class TestDispatch:
    def test_no_subscribers(self):
        result = dispatch({"event_type": COMPLETED, "event_id": "e1"}, SubscriberRegistry())
        assert result["subscribers_notified"] == 0
        assert result["failures"] == []

    def test_failure_does_not_stop_others(self):
        registry = SubscriberRegistry()
        recorder = Recorder()
        registry.subscribe(COMPLETED, explode, "whatsapp")
        registry.subscribe(COMPLETED, recorder, "reporting")

        result = dispatch({"event_type": COMPLETED, "event_id": "e1"}, registry)

        assert result["subscribers_notified"] == 1
        assert result["subscribers_failed"] == 1
        assert result["failures"][0]["subscriber"] == "whatsapp"
        assert result["failures"][0]["error_type"] == "RuntimeError"
        assert len(recorder.seen) == 1


# ══════════════════════════════════════════════════════════════
# EVENT LOG
# ══════════════════════════════════════════════════════════════


class TestEventLog:
    def _publish(self, log, event_type=COMPLETED, **payload):
        return log.publish(
            event_type=event_type, payload=payload or {"order_id": "o-1"},
            restaurant_id=RESTAURANT, source_engine="orders", occurred_at=T0,
        )

    def test_publish_records(self):
        log = EventLog()
        event = self._publish(log)
        assert isinstance(event["event_id"], uuid.UUID)
        assert event["restaurant_id"] == RESTAURANT
        assert log.event_count == 1
        assert log.events()[0]["payload"] == {"order_id": "o-1"}

    def test_filter_by_type(self):
        log = EventLog()
        self._publish(log)
        self._publish(log, "orders.order.cancelled.v1")
        assert len(log.events(COMPLETED)) == 1
        assert len(log.events()) == 2

    def test_history_is_a_copy(self):
        log = EventLog()
        self._publish(log)
        log.events()[0]["payload"]["order_id"] = "tampered"
        assert log.events()[0]["payload"]["order_id"] == "o-1"

    def test_subscribers_hear_after_recording(self):
        registry = SubscriberRegistry()
        counts = []
        log = EventLog(registry)
        registry.subscribe(COMPLETED, lambda e: counts.append(log.event_count), "probe")

        self._publish(log)

        assert counts == [1]

    def test_subscriber_failure_keeps_event(self):
        registry = SubscriberRegistry()
        registry.subscribe(COMPLETED, explode, "whatsapp")
        log = EventLog(registry)
        self._publish(log)
        assert log.event_count == 1
