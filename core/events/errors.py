"""
ROS Event Bus — Errors
========================
Raised at subscription time only. Dispatch itself never raises.
"""


class EventBusError(Exception):
    """Base error for event bus operations."""
    pass


class InvalidEventTypeFormat(EventBusError):
    """Event type is not engine.domain.action[.vN]."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(
            f"Event type '{event_type}' must look like "
            f"'orders.order.completed.v1'."
        )


class DuplicateSubscriberError(EventBusError):
    """Handler subscribed twice to one event type."""

    def __init__(self, event_type: str, handler_name: str):
        self.event_type = event_type
        self.handler_name = handler_name
        super().__init__(
            f"Handler '{handler_name}' is already subscribed to '{event_type}'."
        )
