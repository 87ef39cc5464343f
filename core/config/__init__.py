"""
ROS Core Config — Public API
===============================
Restaurant settings are passed explicitly, never read from globals.
"""

from core.config.rules import (
    DEFAULT_MAX_DELIVERY_RADIUS_KM,
    ConfigStore,
    DeliveryZone,
    GatewayCredentials,
    GeoPoint,
    InMemoryConfigStore,
    RestaurantSettings,
)

__all__ = [
    "DEFAULT_MAX_DELIVERY_RADIUS_KM",
    "ConfigStore",
    "DeliveryZone",
    "GatewayCredentials",
    "GeoPoint",
    "InMemoryConfigStore",
    "RestaurantSettings",
]
