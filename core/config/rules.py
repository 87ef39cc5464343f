"""
ROS Core Config — Restaurant Settings
========================================
Restaurant settings and gateway toggles are data, never module
globals. Every engine call receives the RestaurantSettings for the
tenant it is acting on; nothing reads ambient configuration.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Optional, Protocol, Tuple


# ══════════════════════════════════════════════════════════════
# GEOGRAPHY
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GeoPoint:
    """Latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class DeliveryZone:
    """
    Delivery pricing tier.

    A destination belongs to the smallest zone whose radius covers it.
    fee is in minor units.
    """

    zone_id: str
    radius_km: float
    fee: int
    active: bool = True

    def __post_init__(self) -> None:
        if not math.isfinite(self.radius_km) or self.radius_km <= 0:
            raise ValueError("radius_km must be positive.")
        if not isinstance(self.fee, int) or self.fee < 0:
            raise ValueError("fee must be non-negative integer (minor units).")


# ══════════════════════════════════════════════════════════════
# RESTAURANT SETTINGS
# ══════════════════════════════════════════════════════════════

DEFAULT_MAX_DELIVERY_RADIUS_KM = 50.0


@dataclass(frozen=True)
class RestaurantSettings:
    """
    Per-restaurant configuration passed explicitly to every engine call.

    Rates are Decimals; money is integer minor units.
    """

    restaurant_id: uuid.UUID
    name: str = ""
    currency: str = "BRL"
    origin: Optional[GeoPoint] = None
    delivery_zones: Tuple[DeliveryZone, ...] = ()
    max_delivery_radius_km: float = DEFAULT_MAX_DELIVERY_RADIUS_KM
    service_fee_rate: Decimal = Decimal("0.10")
    loyalty_enabled: bool = False
    loyalty_points_per_currency_unit: Decimal = Decimal("1")
    loyalty_redemption_value: Decimal = Decimal("0.01")
    # Channels allowed to start kitchen work before a payment method is
    # chosen; payment is collected later at the PDV/cashier.
    deferred_payment_channels: FrozenSet[str] = frozenset({"PDV", "BALCAO"})
    qr_gateway: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.restaurant_id, uuid.UUID):
            raise ValueError("restaurant_id must be UUID.")
        if not self.currency or len(self.currency) != 3:
            raise ValueError("currency must be 3-letter ISO 4217 code.")
        if self.max_delivery_radius_km <= 0:
            raise ValueError("max_delivery_radius_km must be positive.")
        if not Decimal("0") <= self.service_fee_rate <= Decimal("1"):
            raise ValueError("service_fee_rate must be between 0 and 1.")
        if self.loyalty_points_per_currency_unit < 0:
            raise ValueError("loyalty_points_per_currency_unit must be >= 0.")
        if self.loyalty_redemption_value < 0:
            raise ValueError("loyalty_redemption_value must be >= 0.")

    def active_zones(self) -> Tuple[DeliveryZone, ...]:
        return tuple(
            sorted((z for z in self.delivery_zones if z.active),
                   key=lambda z: z.radius_km)
        )


@dataclass(frozen=True)
class GatewayCredentials:
    """Credentials for one QR payment vendor."""

    system_id: str
    access_token: str = ""
    account_email: str = ""
    webhook_secret: str = ""
    extra: Dict[str, str] = field(default_factory=dict)


# ══════════════════════════════════════════════════════════════
# CONFIG STORE PROTOCOL
# ══════════════════════════════════════════════════════════════

class ConfigStore(Protocol):
    """
    Protocol for admin-configured settings storage.

    Implementations may back this with a database, file, or in-memory store.
    """

    def get_settings(self, restaurant_id: uuid.UUID) -> Optional[RestaurantSettings]:
        ...  # pragma: no cover

    def get_gateway_credentials(
        self, restaurant_id: uuid.UUID, system_id: str
    ) -> Optional[GatewayCredentials]:
        ...  # pragma: no cover


class InMemoryConfigStore:
    """Simple in-memory config store for tests and local wiring."""

    def __init__(self) -> None:
        self._settings: Dict[uuid.UUID, RestaurantSettings] = {}
        self._credentials: Dict[Tuple[uuid.UUID, str], GatewayCredentials] = {}

    def put_settings(self, settings: RestaurantSettings) -> None:
        self._settings[settings.restaurant_id] = settings

    def put_gateway_credentials(
        self, restaurant_id: uuid.UUID, credentials: GatewayCredentials
    ) -> None:
        self._credentials[(restaurant_id, credentials.system_id)] = credentials

    def get_settings(self, restaurant_id: uuid.UUID) -> Optional[RestaurantSettings]:
        return self._settings.get(restaurant_id)

    def get_gateway_credentials(
        self, restaurant_id: uuid.UUID, system_id: str
    ) -> Optional[GatewayCredentials]:
        return self._credentials.get((restaurant_id, system_id))
