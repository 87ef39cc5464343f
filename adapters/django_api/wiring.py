"""
ROS Django Adapter Wiring
=========================
Constructs HttpApiDependencies for local/staging live runs.

This module is adapter-only glue:
- in-memory stores, one set per process
- gateway credentials and messaging endpoints read from Django settings
- no business rules
"""

from __future__ import annotations

import logging
import threading
import uuid
from decimal import Decimal

import requests
from django.conf import settings as django_settings

from core.config.rules import (
    DeliveryZone,
    GatewayCredentials,
    GeoPoint,
    InMemoryConfigStore,
    RestaurantSettings,
)
from core.events.log import EventLog
from core.events.registry import SubscriberRegistry
from core.http_api.dependencies import HttpApiDependencies, UuidIdProvider
from core.time.clock import SystemClock
from engines.cash.services import CashLedger
from engines.customer.services import CustomerRegistry
from engines.loyalty.services import LoyaltyLedger
from engines.orders.services import OrderRepository, OrderService
from engines.payments.services import PaymentService
from engines.promotion.services import CouponBook
from engines.restaurant.services import RiderRegistry, TableRegistry
from integration.audit_log import IntegrationAuditLog
from integration.gateways import GatewayProvider
from integration.geocoding import NominatimGeocoder
from integration.inbound import default_inbound_registry
from integration.outbound import LoggingNotifier, OrderNotificationSubscriber, WhatsAppNotifier

logger = logging.getLogger("ros.http")

DEV_RESTAURANT_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")

_DEPENDENCIES_LOCK = threading.Lock()
_DEPENDENCIES: HttpApiDependencies | None = None


def _setting(name: str, default=None):
    return getattr(django_settings, name, default)


def _build_config_store() -> InMemoryConfigStore:
    store = InMemoryConfigStore()
    origin = _setting("ROS_RESTAURANT_ORIGIN")
    store.put_settings(RestaurantSettings(
        restaurant_id=DEV_RESTAURANT_ID,
        name=_setting("ROS_RESTAURANT_NAME", "ROS Dev Restaurant"),
        origin=GeoPoint(*origin) if origin else None,
        delivery_zones=tuple(
            DeliveryZone(zone_id=zone_id, radius_km=radius, fee=fee)
            for zone_id, radius, fee in _setting("ROS_DELIVERY_ZONES", ())
        ),
        loyalty_enabled=bool(_setting("ROS_LOYALTY_ENABLED", False)),
        loyalty_points_per_currency_unit=Decimal(
            str(_setting("ROS_LOYALTY_POINTS_PER_UNIT", "1"))
        ),
        loyalty_redemption_value=Decimal(str(_setting("ROS_LOYALTY_REDEMPTION_VALUE", "0.01"))),
        qr_gateway=_setting("ROS_QR_GATEWAY") or None,
    ))
    for system_id, values in (_setting("ROS_GATEWAY_CREDENTIALS", {}) or {}).items():
        store.put_gateway_credentials(DEV_RESTAURANT_ID, GatewayCredentials(
            system_id=system_id,
            access_token=values.get("access_token", ""),
            account_email=values.get("account_email", ""),
            webhook_secret=values.get("webhook_secret", ""),
            extra=dict(values.get("extra") or {}),
        ))
    return store


def _build_notifier(session: requests.Session):
    server_url = _setting("ROS_WHATSAPP_SERVER_URL")
    if not server_url:
        return LoggingNotifier()
    return WhatsAppNotifier(
        server_url,
        _setting("ROS_WHATSAPP_DEVICE_ID", "default"),
        session=session,
        timeout=_setting("ROS_HTTP_TIMEOUT_SECONDS", 10),
    )


def _create_dependencies() -> HttpApiDependencies:
    clock = SystemClock()
    session = requests.Session()
    timeout = _setting("ROS_HTTP_TIMEOUT_SECONDS", 10)
    config_store = _build_config_store()
    audit_log = IntegrationAuditLog()

    subscribers = SubscriberRegistry()
    OrderNotificationSubscriber(_build_notifier(session), audit_log, clock).register(subscribers)
    event_log = EventLog(subscribers)

    geocoder = NominatimGeocoder(
        session,
        user_agent=_setting("ROS_GEOCODER_USER_AGENT", "ros-delivery/1.0"),
        timeout=timeout,
    ) if _setting("ROS_GEOCODING_ENABLED", False) else None

    coupons = CouponBook()
    customers = CustomerRegistry()
    loyalty = LoyaltyLedger(clock=clock)
    order_service = OrderService(
        config_store=config_store,
        orders=OrderRepository(),
        tables=TableRegistry(),
        riders=RiderRegistry(),
        coupons=coupons,
        loyalty=loyalty,
        customers=customers,
        cash=CashLedger(clock=clock),
        geocoder=geocoder,
        event_log=event_log,
        clock=clock,
    )
    payment_service = PaymentService(
        orders=order_service,
        gateways=GatewayProvider(config_store, session=session, timeout=timeout),
        config_store=config_store,
        inbound_registry=default_inbound_registry(),
        audit_log=audit_log,
        clock=clock,
    )
    logger.info(f"ROS dependencies wired for restaurant {DEV_RESTAURANT_ID}")

    return HttpApiDependencies(
        order_service=order_service,
        payment_service=payment_service,
        config_store=config_store,
        coupons=coupons,
        customers=customers,
        loyalty=loyalty,
        id_provider=UuidIdProvider(),
        clock=clock,
        geocoder=geocoder,
    )


def build_dependencies() -> HttpApiDependencies:
    """
    Lazy singleton wiring for adapter runtime.
    """
    global _DEPENDENCIES
    with _DEPENDENCIES_LOCK:
        if _DEPENDENCIES is None:
            _DEPENDENCIES = _create_dependencies()
        return _DEPENDENCIES


def reset_dependencies() -> None:
    global _DEPENDENCIES
    with _DEPENDENCIES_LOCK:
        _DEPENDENCIES = None
