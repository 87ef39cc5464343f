"""
ROS HTTP API - Contracts
========================
Framework-agnostic request/response DTOs for the order endpoints.

Contracts only check transport shape (types, required ids). Business
rules stay with the engine request dataclasses and policies.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from core.commands.base import VALID_ACTOR_TYPES


def _require_uuid(value: Any, name: str) -> None:
    if not isinstance(value, uuid.UUID):
        raise ValueError(f"{name} must be UUID.")


def _require_str(value: Any, name: str) -> None:
    if not value or not isinstance(value, str):
        raise ValueError(f"{name} must be a non-empty string.")


@dataclass(frozen=True)
class ActorMetadata:
    actor_type: str
    actor_id: str

    def __post_init__(self):
        if self.actor_type not in VALID_ACTOR_TYPES:
            raise ValueError(
                f"actor_type '{self.actor_type}' not valid. "
                f"Must be one of: {sorted(VALID_ACTOR_TYPES)}"
            )
        _require_str(self.actor_id, "actor_id")


@dataclass(frozen=True)
class OrderReadRequest:
    restaurant_id: uuid.UUID
    order_id: str

    def __post_init__(self):
        _require_uuid(self.restaurant_id, "restaurant_id")
        _require_str(self.order_id, "order_id")


@dataclass(frozen=True)
class OrderCreateHttpRequest:
    restaurant_id: uuid.UUID
    actor: ActorMetadata
    body: dict

    def __post_init__(self):
        _require_uuid(self.restaurant_id, "restaurant_id")
        if not isinstance(self.actor, ActorMetadata):
            raise ValueError("actor must be ActorMetadata.")
        if not isinstance(self.body, dict):
            raise ValueError("body must be dict.")
        if not isinstance(self.body.get("items"), list):
            raise ValueError("items must be a list.")


@dataclass(frozen=True)
class OrderTransitionHttpRequest:
    restaurant_id: uuid.UUID
    actor: ActorMetadata
    order_id: str
    to_status: str
    rider_id: Optional[str] = None

    def __post_init__(self):
        _require_uuid(self.restaurant_id, "restaurant_id")
        if not isinstance(self.actor, ActorMetadata):
            raise ValueError("actor must be ActorMetadata.")
        _require_str(self.order_id, "order_id")
        _require_str(self.to_status, "to_status")


@dataclass(frozen=True)
class OrderCancelHttpRequest:
    restaurant_id: uuid.UUID
    actor: ActorMetadata
    order_id: str
    reason: str
    note: str = ""

    def __post_init__(self):
        _require_uuid(self.restaurant_id, "restaurant_id")
        if not isinstance(self.actor, ActorMetadata):
            raise ValueError("actor must be ActorMetadata.")
        _require_str(self.order_id, "order_id")
        _require_str(self.reason, "reason")


@dataclass(frozen=True)
class PaymentHttpRequest:
    restaurant_id: uuid.UUID
    order_id: str
    method: str
    gateway: Optional[str] = None
    payer_contact: str = ""

    def __post_init__(self):
        _require_uuid(self.restaurant_id, "restaurant_id")
        _require_str(self.order_id, "order_id")
        _require_str(self.method, "method")
        if self.gateway is not None:
            _require_str(self.gateway, "gateway")


@dataclass(frozen=True)
class WebhookHttpRequest:
    system_id: str
    payload: dict
    raw_body: bytes = b""
    signature: str = ""
    restaurant_id: Optional[uuid.UUID] = None

    def __post_init__(self):
        _require_str(self.system_id, "system_id")
        if not isinstance(self.payload, dict):
            raise ValueError("payload must be dict.")
        if self.restaurant_id is not None:
            _require_uuid(self.restaurant_id, "restaurant_id")


@dataclass(frozen=True)
class PricingQuoteHttpRequest:
    restaurant_id: uuid.UUID
    body: dict

    def __post_init__(self):
        _require_uuid(self.restaurant_id, "restaurant_id")
        if not isinstance(self.body, dict):
            raise ValueError("body must be dict.")
        if not isinstance(self.body.get("items"), list):
            raise ValueError("items must be a list.")


@dataclass(frozen=True)
class HttpApiErrorBody:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class HttpApiResponse:
    ok: bool
    data: Any = None
    error: Optional[HttpApiErrorBody] = None
    meta: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            body = {"ok": True, "data": self.data}
            if self.meta:
                body["meta"] = dict(self.meta)
            return body
        if self.error is None:
            raise ValueError("error must be set when ok is False.")
        return {"ok": False, "error": self.error.to_dict()}
