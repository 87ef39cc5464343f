"""
ROS HTTP API - Dependencies
===========================
Injected services and providers for handler wiring.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from core.time.clock import Clock


class IdProvider(Protocol):
    def new_command_id(self) -> uuid.UUID:
        ...

    def new_correlation_id(self) -> uuid.UUID:
        ...


class UuidIdProvider:
    def new_command_id(self) -> uuid.UUID:
        return uuid.uuid4()

    def new_correlation_id(self) -> uuid.UUID:
        return uuid.uuid4()


@dataclass(frozen=True)
class HttpApiDependencies:
    order_service: Any
    payment_service: Any
    config_store: Any
    coupons: Any
    customers: Any
    loyalty: Any
    id_provider: IdProvider
    clock: Clock
    geocoder: Optional[Any] = None
