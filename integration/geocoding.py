"""
ROS Integration — Geocoding
==============================
Turns a free-text delivery address into coordinates so the delivery
fee resolver can quote it. OpenStreetMap Nominatim by default.

Misses return None (the address is simply unknown). Network failures
raise TransientError; callers may retry.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from core.config.rules import GeoPoint
from integration.adapters import TransientError

logger = logging.getLogger("ros.integration")

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_USER_AGENT = "ros-delivery/1.0"


class NominatimGeocoder:
    system_id = "nominatim"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: str = NOMINATIM_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10,
        country_codes: str = "br",
    ):
        self._session = session or requests.Session()
        self._base_url = base_url
        self._user_agent = user_agent
        self._timeout = timeout
        self._country_codes = country_codes

    def locate(self, query: str) -> Optional[GeoPoint]:
        if not query or not query.strip():
            return None
        params = {"q": query, "format": "json", "limit": 1}
        if self._country_codes:
            params["countrycodes"] = self._country_codes
        try:
            response = self._session.get(
                self._base_url,
                params=params,
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Geocoding failed for '{query}': {e}")
            raise TransientError(f"Geocoder unavailable: {e}", system_id=self.system_id) from e

        results = response.json()
        if not results:
            logger.info(f"Geocoder found no match for '{query}'")
            return None
        first = results[0]
        try:
            return GeoPoint(latitude=float(first["lat"]), longitude=float(first["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Geocoder returned an unusable result for '{query}': {first}")
            return None
