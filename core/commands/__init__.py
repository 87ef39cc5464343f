"""
ROS Command Layer
==================
Every state change begins as a Command.
Rejected commands carry a structured RejectionReason.
"""

from core.commands.base import (
    ACTOR_DEVICE,
    ACTOR_HUMAN,
    ACTOR_SYSTEM,
    Command,
    VALID_ACTOR_TYPES,
    build_command,
    derive_source_engine,
)
from core.commands.rejection import (
    CommandRejectedError,
    ReasonCode,
    RejectionReason,
)

__all__ = [
    "ACTOR_DEVICE",
    "ACTOR_HUMAN",
    "ACTOR_SYSTEM",
    "Command",
    "VALID_ACTOR_TYPES",
    "build_command",
    "derive_source_engine",
    "CommandRejectedError",
    "ReasonCode",
    "RejectionReason",
]
