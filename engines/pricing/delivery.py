"""
ROS Pricing Engine — Delivery Fee Resolution
===============================================
Distance between the restaurant and the customer decides whether an
address is deliverable and which zone fee applies.

RULES:
- Great-circle (Haversine) distance, Earth radius 6371 km, 1 decimal
- The smallest active zone whose radius covers the distance wins
- Beyond max_delivery_radius_km, or outside every zone → out of range, fee 0
- Only delivery orders carry a delivery fee
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from core.config.rules import DeliveryZone, GeoPoint, RestaurantSettings

logger = logging.getLogger("ros.pricing")

EARTH_RADIUS_KM = 6371.0

FULFILLMENT_DINE_IN = "dine_in"
FULFILLMENT_PICKUP = "pickup"
FULFILLMENT_DELIVERY = "delivery"

VALID_FULFILLMENTS = frozenset({
    FULFILLMENT_DINE_IN,
    FULFILLMENT_PICKUP,
    FULFILLMENT_DELIVERY,
})

QUOTE_OUT_OF_RANGE = "DELIVERY_OUT_OF_RANGE"
QUOTE_ADDRESS_NOT_FOUND = "ADDRESS_NOT_FOUND"
QUOTE_ORIGIN_NOT_CONFIGURED = "ORIGIN_NOT_CONFIGURED"


def haversine_km(origin: GeoPoint, destination: GeoPoint) -> float:
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(destination.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(destination.longitude - origin.longitude)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


@dataclass(frozen=True)
class DeliveryAddress:
    """Structured delivery address; coordinates skip geocoding when present."""
    street: str
    number: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    zipcode: str = ""
    complement: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def __post_init__(self):
        if not self.street or not self.street.strip():
            raise ValueError("street must be non-empty.")
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together.")

    @property
    def point(self) -> Optional[GeoPoint]:
        if self.latitude is None:
            return None
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)

    def to_query(self) -> str:
        """Free-text form used for geocoding lookups."""
        head = f"{self.street} {self.number}".strip()
        parts = [head, self.neighborhood, self.city, self.state, self.zipcode]
        return ", ".join(p for p in parts if p)

    def to_dict(self) -> dict:
        return {
            "street": self.street,
            "number": self.number,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "state": self.state,
            "zipcode": self.zipcode,
            "complement": self.complement,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryAddress":
        return cls(
            street=str(data.get("street", "")),
            number=str(data.get("number", "")),
            neighborhood=str(data.get("neighborhood", "")),
            city=str(data.get("city", "")),
            state=str(data.get("state", "")),
            zipcode=str(data.get("zipcode", "")),
            complement=str(data.get("complement", "")),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


@dataclass(frozen=True)
class DeliveryQuote:
    distance_km: Optional[float]
    fee: int
    in_range: bool
    zone_id: Optional[str] = None
    destination: Optional[GeoPoint] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "distance_km": self.distance_km,
            "fee": self.fee,
            "in_range": self.in_range,
            "zone_id": self.zone_id,
            "reason": self.reason,
        }


def resolve_delivery_fee(
    origin: GeoPoint,
    destination: GeoPoint,
    zones: Iterable[DeliveryZone],
    max_radius_km: float,
) -> DeliveryQuote:
    distance = haversine_km(origin, destination)
    if distance > max_radius_km:
        return DeliveryQuote(
            distance_km=distance, fee=0, in_range=False,
            destination=destination, reason=QUOTE_OUT_OF_RANGE,
        )
    covering = sorted(
        (z for z in zones if z.active and z.radius_km >= distance),
        key=lambda z: z.radius_km,
    )
    if not covering:
        return DeliveryQuote(
            distance_km=distance, fee=0, in_range=False,
            destination=destination, reason=QUOTE_OUT_OF_RANGE,
        )
    zone = covering[0]
    return DeliveryQuote(
        distance_km=distance, fee=zone.fee, in_range=True,
        zone_id=zone.zone_id, destination=destination,
    )


def fee_for_fulfillment(fulfillment: str, quote: Optional[DeliveryQuote]) -> int:
    if fulfillment != FULFILLMENT_DELIVERY or quote is None or not quote.in_range:
        return 0
    return quote.fee


class Geocoder(Protocol):
    def locate(self, query: str) -> Optional[GeoPoint]:
        ...  # pragma: no cover


class DeliveryFeeResolver:
    """Quote a delivery address against one restaurant's zones."""

    def __init__(self, settings: RestaurantSettings, geocoder: Optional[Geocoder] = None):
        self._settings = settings
        self._geocoder = geocoder

    def quote(self, address: DeliveryAddress) -> DeliveryQuote:
        origin = self._settings.origin
        if origin is None:
            logger.warning(
                f"Restaurant {self._settings.restaurant_id} has no origin; "
                f"delivery disabled"
            )
            return DeliveryQuote(
                distance_km=None, fee=0, in_range=False,
                reason=QUOTE_ORIGIN_NOT_CONFIGURED,
            )

        destination = address.point
        if destination is None and self._geocoder is not None:
            destination = self._geocoder.locate(address.to_query())
        if destination is None:
            logger.info(f"Address not found: {address.to_query()!r}")
            return DeliveryQuote(
                distance_km=None, fee=0, in_range=False,
                reason=QUOTE_ADDRESS_NOT_FOUND,
            )

        return resolve_delivery_fee(
            origin,
            destination,
            self._settings.active_zones(),
            self._settings.max_delivery_radius_km,
        )
