"""
ROS Event Bus — Public API
============================
Engines record what happened; subscribers react afterwards.
"""

from core.events.dispatcher import dispatch
from core.events.errors import (
    DuplicateSubscriberError,
    EventBusError,
    InvalidEventTypeFormat,
)
from core.events.log import EventLog
from core.events.registry import SubscriberRegistry

__all__ = [
    "dispatch",
    "EventLog",
    "SubscriberRegistry",
    "EventBusError",
    "InvalidEventTypeFormat",
    "DuplicateSubscriberError",
]
