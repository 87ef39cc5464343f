"""
ROS Integration — Inbound Webhooks
=====================================
Receives payment notifications from QR gateway vendors, validates
them and extracts the reference the gateway needs to look the
payment up.

Doctrine: A webhook body is never trusted for payment status.
The adapter only says WHICH charge to check; the payment service
asks the gateway itself and then calls the order service's single
settlement routine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from integration.adapters import ValidationError
from integration.gateways import MERCADOPAGO, PAGSEGURO


@dataclass(frozen=True)
class WebhookNotice:
    """What an inbound webhook points at."""

    system_id: str
    reference: str
    event_id: Optional[str] = None
    event_type: str = "payment"


# ══════════════════════════════════════════════════════════════
# INBOUND ADAPTER PROTOCOL
# ══════════════════════════════════════════════════════════════

class InboundAdapter(ABC):
    """
    Base class for webhook adapters.

    Adapters are stateless. No internal mutable state.
    """

    @property
    @abstractmethod
    def system_id(self) -> str:
        ...

    @abstractmethod
    def validate(self, payload: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """Returns (is_valid, error_message)."""
        ...

    @abstractmethod
    def parse(self, payload: Dict[str, Any]) -> Optional[WebhookNotice]:
        """None when the webhook is about something we do not track."""
        ...

    def extract_event_id(self, payload: Dict[str, Any]) -> Optional[str]:
        event_id = payload.get("event_id") or payload.get("id")
        return str(event_id) if event_id is not None else None

    def read(self, payload: Dict[str, Any]) -> Optional[WebhookNotice]:
        """validate + parse; raises ValidationError on a malformed payload."""
        is_valid, error = self.validate(payload)
        if not is_valid:
            raise ValidationError(error or "Invalid webhook payload.", system_id=self.system_id)
        return self.parse(payload)


class MercadoPagoWebhookAdapter(InboundAdapter):
    """{"type": "payment", "data": {"id": "..."}}"""

    @property
    def system_id(self) -> str:
        return MERCADOPAGO

    def validate(self, payload: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        if not isinstance(payload, dict):
            return False, "payload must be an object"
        if not payload.get("type") and not payload.get("action"):
            return False, "missing 'type'"
        data = payload.get("data")
        if payload.get("type") == "payment" and (
            not isinstance(data, dict) or not data.get("id")
        ):
            return False, "payment notification without data.id"
        return True, None

    def parse(self, payload: Dict[str, Any]) -> Optional[WebhookNotice]:
        if payload.get("type") != "payment":
            return None
        return WebhookNotice(
            system_id=self.system_id,
            reference=str(payload["data"]["id"]),
            event_id=self.extract_event_id(payload),
            event_type=payload.get("action") or "payment",
        )


class PagSeguroWebhookAdapter(InboundAdapter):
    """{"notificationCode": "...", "notificationType": "transaction"}"""

    @property
    def system_id(self) -> str:
        return PAGSEGURO

    def validate(self, payload: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        if not isinstance(payload, dict):
            return False, "payload must be an object"
        if not payload.get("notificationCode"):
            return False, "Missing notificationCode"
        return True, None

    def parse(self, payload: Dict[str, Any]) -> Optional[WebhookNotice]:
        if payload.get("notificationType", "transaction") != "transaction":
            return None
        return WebhookNotice(
            system_id=self.system_id,
            reference=str(payload["notificationCode"]),
            event_id=str(payload["notificationCode"]),
            event_type="transaction",
        )


# ══════════════════════════════════════════════════════════════
# INBOUND ADAPTER REGISTRY
# ══════════════════════════════════════════════════════════════

class InboundAdapterRegistry:
    """Registry of inbound adapters by system_id."""

    def __init__(self) -> None:
        self._adapters: Dict[str, InboundAdapter] = {}

    def register(self, adapter: InboundAdapter) -> None:
        self._adapters[adapter.system_id] = adapter

    def get(self, system_id: str) -> Optional[InboundAdapter]:
        return self._adapters.get(system_id)

    def list_system_ids(self) -> List[str]:
        return list(self._adapters.keys())


def default_inbound_registry() -> InboundAdapterRegistry:
    registry = InboundAdapterRegistry()
    registry.register(MercadoPagoWebhookAdapter())
    registry.register(PagSeguroWebhookAdapter())
    return registry
