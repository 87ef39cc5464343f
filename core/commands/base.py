"""
ROS Command Layer — Command Base Contract
============================================
Every state change in ROS begins as a Command.

A Command is a frozen, auditable declaration of intent coming from
one of the ordering channels (PDV, TOTEM, BALCAO, ONLINE) or from
the system itself (gateway confirmations, reconciliation).

Rules:
- Immutable once created (frozen dataclass)
- No business logic inside
- command_type must end with '.request'
- command_type follows engine.domain.action.request format
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime


# ══════════════════════════════════════════════════════════════
# ACTOR TYPES
# ══════════════════════════════════════════════════════════════

ACTOR_HUMAN = "HUMAN"
ACTOR_SYSTEM = "SYSTEM"
ACTOR_DEVICE = "DEVICE"

VALID_ACTOR_TYPES = frozenset({ACTOR_HUMAN, ACTOR_SYSTEM, ACTOR_DEVICE})


# ══════════════════════════════════════════════════════════════
# CANONICAL COMMAND
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Command:
    """
    Canonical ROS Command — declaration of intent.

    Fields:
        command_id:     Unique identifier (UUID).
        command_type:   Namespaced type ending in '.request'
                        (e.g. 'orders.order.create.request').
        restaurant_id:  Tenant boundary (UUID).
        actor_type:     HUMAN | SYSTEM | DEVICE.
        actor_id:       Identity of the actor (staff id, kiosk id, gateway).
        payload:        Intent data (dict).
        issued_at:      When the command was issued.
        correlation_id: Groups related commands/events in a story.
        source_engine:  Engine that owns this command.

    Example:
        Command(
            command_id=uuid.uuid4(),
            command_type="orders.order.cancel.request",
            restaurant_id=uuid.UUID("..."),
            actor_type="HUMAN",
            actor_id="waiter-7",
            payload={"order_id": "...", "reason": "customer_request"},
            issued_at=datetime.now(timezone.utc),
            correlation_id=uuid.uuid4(),
            source_engine="orders",
        )
    """

    command_id: uuid.UUID
    command_type: str
    restaurant_id: uuid.UUID
    actor_type: str
    actor_id: str
    payload: dict
    issued_at: datetime
    correlation_id: uuid.UUID
    source_engine: str

    def __post_init__(self):
        if not isinstance(self.command_id, uuid.UUID):
            raise ValueError(
                f"command_id must be UUID, got {type(self.command_id).__name__}"
            )

        if not self.command_type or not isinstance(self.command_type, str):
            raise ValueError("command_type must be a non-empty string.")

        if not self.command_type.endswith(".request"):
            raise ValueError(
                f"command_type '{self.command_type}' must end with "
                f"'.request' (e.g. 'orders.order.create.request')."
            )

        parts = self.command_type.split(".")
        if len(parts) < 4:
            raise ValueError(
                f"command_type '{self.command_type}' must follow "
                f"engine.domain.action.request format (minimum 4 segments)."
            )

        if parts[0] != self.source_engine:
            raise ValueError(
                f"command_type namespace '{parts[0]}' does not match "
                f"source_engine '{self.source_engine}'."
            )

        if not isinstance(self.restaurant_id, uuid.UUID):
            raise ValueError("restaurant_id must be UUID.")

        if self.actor_type not in VALID_ACTOR_TYPES:
            raise ValueError(
                f"actor_type '{self.actor_type}' not valid. "
                f"Must be one of: {sorted(VALID_ACTOR_TYPES)}"
            )

        if not self.actor_id or not isinstance(self.actor_id, str):
            raise ValueError("actor_id must be a non-empty string.")

        if not isinstance(self.payload, dict):
            raise TypeError("payload must be a dict.")

        if not isinstance(self.correlation_id, uuid.UUID):
            raise ValueError("correlation_id must be UUID.")

    @property
    def is_system(self) -> bool:
        return self.actor_type == ACTOR_SYSTEM


def build_command(command_type: str, payload: dict, *, source_engine: str,
                  restaurant_id, actor_type, actor_id,
                  command_id, correlation_id, issued_at) -> Command:
    """Shared constructor used by every engine's request dataclasses."""
    return Command(
        command_id=command_id, command_type=command_type,
        restaurant_id=restaurant_id,
        actor_type=actor_type, actor_id=actor_id,
        payload=payload, issued_at=issued_at,
        correlation_id=correlation_id, source_engine=source_engine,
    )


def derive_source_engine(command_type: str) -> str:
    """
    Extract source engine from command type.

    orders.order.create.request → orders
    """
    return command_type.split(".")[0]
