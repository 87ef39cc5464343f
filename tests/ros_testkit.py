"""
ROS test kit: one in-memory restaurant with every engine connected
the way the Django adapter wires them, but with a fixed clock, a fake
QR gateway and a fake geocoder.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from core.commands.base import ACTOR_HUMAN
from core.config.rules import (
    DeliveryZone,
    GatewayCredentials,
    GeoPoint,
    InMemoryConfigStore,
    RestaurantSettings,
)
from core.events.log import EventLog
from core.events.registry import SubscriberRegistry
from core.time.clock import FixedClock
from engines.cash.services import CashLedger
from engines.customer.services import CustomerRegistry
from engines.loyalty.services import LoyaltyLedger
from engines.orders.commands import (
    OrderCancelRequest,
    OrderCreateRequest,
    OrderTransitionRequest,
    SetPaymentMethodRequest,
)
from engines.orders.services import OrderRepository, OrderService
from engines.payments.services import PaymentService
from engines.pricing.calculator import CartLine
from engines.promotion.services import CouponBook
from engines.restaurant.services import Rider, RiderRegistry, Table, TableRegistry
from integration.audit_log import IntegrationAuditLog
from integration.gateways import (
    CHARGE_PENDING,
    MANUAL,
    ChargeResult,
    GatewayConfigurationError,
    ManualGateway,
    PaymentGateway,
)
from integration.inbound import default_inbound_registry
from integration.outbound import LoggingNotifier, OrderNotificationSubscriber


RID = uuid.UUID("6f1c2a3e-0b7d-4c5e-9a8f-2d3e4f5a6b7c")
NOW = datetime(2026, 3, 6, 18, 30, tzinfo=timezone.utc)
ORIGIN = GeoPoint(latitude=-23.5505, longitude=-46.6333)

ZONES = (
    DeliveryZone(zone_id="near", radius_km=3.0, fee=500),
    DeliveryZone(zone_id="mid", radius_km=6.0, fee=900),
    DeliveryZone(zone_id="far", radius_km=10.0, fee=1500),
)


def point_north(km: float) -> GeoPoint:
    """A point `km` kilometres due north of ORIGIN (1° latitude ≈ 111.19 km)."""
    return GeoPoint(latitude=ORIGIN.latitude + km / 111.19, longitude=ORIGIN.longitude)


def make_settings(**overrides) -> RestaurantSettings:
    values = dict(
        restaurant_id=RID,
        name="Cantina Teste",
        origin=ORIGIN,
        delivery_zones=ZONES,
        max_delivery_radius_km=10.0,
        service_fee_rate=Decimal("0.10"),
        loyalty_enabled=True,
        loyalty_points_per_currency_unit=Decimal("1"),
        loyalty_redemption_value=Decimal("0.01"),
        qr_gateway="mercadopago",
    )
    values.update(overrides)
    return RestaurantSettings(**values)


def line(name: str, unit_price: int, quantity: int = 1,
         modifier_prices=(), summary: str = "") -> CartLine:
    return CartLine(
        item_id=name.lower().replace(" ", "-"),
        name=name,
        unit_price=unit_price,
        quantity=quantity,
        modifier_prices=tuple(modifier_prices),
        modifiers_summary=summary,
    )


# ── Test Doubles ─────────────────────────────────────────────

class FakeGeocoder:
    def __init__(self, points: Optional[Dict[str, GeoPoint]] = None):
        self.points = dict(points or {})
        self.queries = []

    def locate(self, query: str) -> Optional[GeoPoint]:
        self.queries.append(query)
        return self.points.get(query)


class FakeGateway(PaymentGateway):
    """QR vendor double: charges are pending until a test marks them paid."""

    def __init__(self, system_id: str = "mercadopago"):
        self._system_id = system_id
        self.charges = []
        self.statuses: Dict[str, str] = {}
        self.fetch_calls = []
        self.charge_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None

    @property
    def system_id(self) -> str:
        return self._system_id

    def charge(self, amount: int, order_ref: str, payer_contact: str = "") -> ChargeResult:
        if self.charge_error is not None:
            raise self.charge_error
        charge_ref = f"{self._system_id}-{len(self.charges) + 1}"
        self.charges.append((amount, order_ref, charge_ref))
        self.statuses.setdefault(charge_ref, CHARGE_PENDING)
        return ChargeResult(
            immediate=False,
            charge_ref=charge_ref,
            qr_image="data:image/png;base64,iVBORw0KGgo=",
            copy_paste_code=f"00020126580014br.gov.bcb.pix{charge_ref}",
        )

    def fetch_status(self, charge_ref: str) -> str:
        self.fetch_calls.append(charge_ref)
        if self.status_error is not None:
            raise self.status_error
        return self.statuses.get(charge_ref, CHARGE_PENDING)


class FakeGatewayProvider:
    def __init__(self, *gateways: PaymentGateway):
        self._gateways = {g.system_id: g for g in gateways}

    def get(self, restaurant_id, system_id: str) -> PaymentGateway:
        if system_id == MANUAL:
            return ManualGateway()
        gateway = self._gateways.get(system_id)
        if gateway is None:
            raise GatewayConfigurationError(
                f"Unknown payment gateway '{system_id}'", system_id=system_id,
            )
        return gateway


# ── World ────────────────────────────────────────────────────

class World:
    """Every engine for one restaurant, wired together."""

    def __init__(self, settings: Optional[RestaurantSettings] = None, *,
                 gateway: Optional[FakeGateway] = None,
                 geocoder: Optional[FakeGeocoder] = None,
                 cash=None, loyalty=None):
        self.clock = FixedClock(NOW)
        self.settings = settings or make_settings()
        self.config = InMemoryConfigStore()
        self.config.put_settings(self.settings)
        self.config.put_gateway_credentials(
            self.settings.restaurant_id,
            GatewayCredentials(system_id="mercadopago", access_token="TEST-TOKEN"),
        )

        self.tables = TableRegistry()
        for number in (1, 2, 3):
            self.tables.add(Table(table_id=f"t{number}", number=number))
        self.riders = RiderRegistry()
        self.riders.add(Rider(rider_id="r1", name="Joao", phone="(11) 97777-6666"))
        self.riders.add(Rider(rider_id="r2", name="Ana", phone="11955554444", active=False))

        self.coupons = CouponBook()
        self.loyalty = loyalty or LoyaltyLedger(clock=self.clock)
        self.customers = CustomerRegistry()
        self.cash = cash or CashLedger(clock=self.clock)
        self.geocoder = geocoder or FakeGeocoder()

        self.audit = IntegrationAuditLog()
        self.notifier = LoggingNotifier()
        subscribers = SubscriberRegistry()
        OrderNotificationSubscriber(self.notifier, self.audit, self.clock).register(subscribers)
        self.events = EventLog(subscribers)

        self.orders = OrderRepository()
        self.service = OrderService(
            config_store=self.config,
            orders=self.orders,
            tables=self.tables,
            riders=self.riders,
            coupons=self.coupons,
            loyalty=self.loyalty,
            customers=self.customers,
            cash=self.cash,
            geocoder=self.geocoder,
            event_log=self.events,
            clock=self.clock,
        )
        self.gateway = gateway or FakeGateway()
        self.payments = PaymentService(
            orders=self.service,
            gateways=FakeGatewayProvider(self.gateway),
            config_store=self.config,
            inbound_registry=default_inbound_registry(),
            audit_log=self.audit,
            clock=self.clock,
        )

    # ── commands ──────────────────────────────────────────────

    def run(self, request, actor_type: str = ACTOR_HUMAN, actor_id: str = "cashier-1"):
        return self.service.execute(request.to_command(
            restaurant_id=self.settings.restaurant_id,
            actor_type=actor_type,
            actor_id=actor_id,
            command_id=uuid.uuid4(),
            correlation_id=uuid.uuid4(),
            issued_at=self.clock.now_utc(),
        ))

    def create(self, items=None, *, channel: str = "PDV",
               fulfillment: str = "pickup", **kwargs):
        if items is None:
            items = (line("Burger", 2500, 2),)
        return self.run(OrderCreateRequest(
            channel=channel, fulfillment=fulfillment, items=tuple(items), **kwargs,
        )).order

    def transition(self, order_id: str, to_status: str, rider_id: Optional[str] = None):
        return self.run(OrderTransitionRequest(
            order_id=order_id, to_status=to_status, rider_id=rider_id,
        ))

    def walk(self, order_id: str, *statuses: str):
        order = None
        for status in statuses:
            order = self.transition(order_id, status).order
        return order

    def cancel(self, order_id: str, reason: str = "customer_request", note: str = ""):
        return self.run(OrderCancelRequest(order_id=order_id, reason=reason, note=note))

    def set_payment(self, order_id: str, method: str):
        return self.run(SetPaymentMethodRequest(order_id=order_id, payment_method=method))
