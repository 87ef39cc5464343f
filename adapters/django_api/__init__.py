"""
ROS Django HTTP adapter.
Thin framework glue over core/http_api handlers.
"""

from adapters.django_api.wiring import (
    DEV_RESTAURANT_ID,
    build_dependencies,
    reset_dependencies,
)

__all__ = [
    "DEV_RESTAURANT_ID",
    "build_dependencies",
    "reset_dependencies",
]
