"""
ROS Integration — Outbound Notifications
===========================================
Subscribes to order events and pushes messages to riders and
customers (WhatsApp by default).

Doctrine: Notifications are fire-and-forget. A failed message is
logged and audit-recorded, never raised back into the order flow.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

from core.events.registry import SubscriberRegistry
from core.primitives.money import to_major
from core.time.clock import Clock, SystemClock
from engines.orders.events import ORDER_COMPLETED_V1, RIDER_DISPATCHED_V1
from integration.adapters import (
    Direction,
    IntegrationError,
    TransientError,
    compute_payload_hash,
)
from integration.audit_log import IntegrationAuditLog

logger = logging.getLogger("ros.integration")


# ══════════════════════════════════════════════════════════════
# NOTIFIER PROTOCOL
# ══════════════════════════════════════════════════════════════

class Notifier(Protocol):
    system_id: str

    def send(self, phone: str, message: str) -> None:
        """Raises IntegrationError on failure."""
        ...  # pragma: no cover


def digits_only(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


class LoggingNotifier:
    """Writes messages to the log instead of sending them. Keeps a copy for inspection."""

    system_id = "log"

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []

    def send(self, phone: str, message: str) -> None:
        self.sent.append((phone, message))
        logger.info(f"[notify {phone}] {message}")


class WhatsAppNotifier:
    """Messaging server: POST {server_url}/api/messages/send."""

    system_id = "whatsapp"

    def __init__(
        self,
        server_url: str,
        device_id: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
    ):
        if not server_url:
            raise ValueError("server_url must be non-empty.")
        self._server_url = server_url.rstrip("/")
        self._device_id = device_id
        self._session = session or requests.Session()
        self._timeout = timeout

    def send(self, phone: str, message: str) -> None:
        number = digits_only(phone)
        if not number:
            raise IntegrationError("No phone number to notify.", system_id=self.system_id)
        try:
            response = self._session.post(
                f"{self._server_url}/api/messages/send",
                json={"deviceId": self._device_id, "phone": number, "message": message},
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransientError(
                f"WhatsApp send to {number} failed: {e}", system_id=self.system_id,
            ) from e


# ══════════════════════════════════════════════════════════════
# MESSAGES
# ══════════════════════════════════════════════════════════════

def _format_money(amount: int) -> str:
    return f"R$ {to_major(amount or 0):.2f}"


def _format_address(address: Optional[Dict[str, Any]]) -> str:
    if not address:
        return "Address not provided"
    first = " ".join(
        part for part in (
            f"{address.get('street', '')}, {address.get('number', '')}".strip(", "),
            address.get("complement", ""),
        ) if part
    )
    second = " - ".join(
        part for part in (address.get("neighborhood", ""), address.get("city", "")) if part
    )
    return "\n".join(line for line in (first, second) if line)


def build_rider_message(payload: Dict[str, Any]) -> str:
    items = "\n".join(
        f"• {item['quantity']}x {item['name']}"
        + (f" ({item['modifiers_summary']})" if item.get("modifiers_summary") else "")
        for item in payload.get("items") or ()
    ) or "Items not available"
    return (
        f"*NEW DELIVERY*\n\n"
        f"*Order #{payload['order_number']}*\n\n"
        f"*Customer:* {payload.get('customer_name') or 'Not provided'}\n"
        f"*Phone:* {payload.get('customer_phone') or 'Not provided'}\n\n"
        f"*Delivery address:*\n{_format_address(payload.get('delivery_address'))}\n\n"
        f"*Items:*\n{items}\n\n"
        f"*Total:* {_format_money(payload.get('total'))} ({payload.get('payment_method')})\n\n"
        f"Reply *OK* to confirm pickup"
    )


def build_completed_message(payload: Dict[str, Any]) -> str:
    message = (
        f"Order #{payload['order_number']}\n\n"
        f"Your order is complete. Thank you!"
    )
    earned = payload.get("loyalty_points_earned") or 0
    if earned:
        message += f"\n\nYou earned {earned} loyalty points."
    return message


# ══════════════════════════════════════════════════════════════
# SUBSCRIBER
# ══════════════════════════════════════════════════════════════

class OrderNotificationSubscriber:
    """Event subscriber turning order events into messages."""

    subscriber_name = "integration.notifications"

    def __init__(
        self,
        notifier: Notifier,
        audit_log: Optional[IntegrationAuditLog] = None,
        clock: Optional[Clock] = None,
    ):
        self._notifier = notifier
        self._audit = audit_log
        self._clock = clock or SystemClock()

    def register(self, registry: SubscriberRegistry) -> None:
        registry.subscribe(RIDER_DISPATCHED_V1, self.on_rider_dispatched, self.subscriber_name)
        registry.subscribe(ORDER_COMPLETED_V1, self.on_order_completed, self.subscriber_name)

    def on_rider_dispatched(self, event: Dict[str, Any]) -> bool:
        payload = event["payload"]
        return self._deliver(event, payload.get("rider_phone", ""), build_rider_message(payload))

    def on_order_completed(self, event: Dict[str, Any]) -> bool:
        payload = event["payload"]
        if not payload.get("customer_phone"):
            return False
        return self._deliver(event, payload["customer_phone"], build_completed_message(payload))

    def _deliver(self, event: Dict[str, Any], phone: str, message: str) -> bool:
        payload = event["payload"]
        now: datetime = self._clock.now_utc()
        audit = dict(
            restaurant_id=event.get("restaurant_id"),
            external_system_id=self._notifier.system_id,
            direction=Direction.OUTBOUND,
            event_type=event["event_type"],
            payload_hash=compute_payload_hash(payload),
            occurred_at=now,
            order_id=payload.get("order_id"),
        )
        if not digits_only(phone):
            logger.info(
                f"No phone for {event['event_type']} on order "
                f"{payload.get('order_number')}; notification skipped"
            )
            return False
        try:
            self._notifier.send(phone, message)
        except IntegrationError as e:
            logger.error(
                f"Notification for order {payload.get('order_number')} failed: {e}",
                exc_info=True,
            )
            if self._audit is not None:
                self._audit.record_failure(
                    error_code=type(e).__name__, error_message=str(e), **audit,
                )
            return False
        if self._audit is not None:
            self._audit.record_success(**audit)
        return True
