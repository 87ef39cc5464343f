"""
ROS Integration — Adapter Utilities
======================================
Shared infrastructure for payment gateways, webhooks, geocoding and
messaging.

Doctrine: External systems NEVER write order state directly.
Webhooks and polls only ever reach the order service's settlement
routine, which decides whether anything happens.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from enum import Enum
from typing import Any, Dict


# ══════════════════════════════════════════════════════════════
# ERROR HIERARCHY
# ══════════════════════════════════════════════════════════════

class IntegrationError(Exception):
    """Base error for all integration failures."""

    def __init__(self, message: str, system_id: str = "", retryable: bool = False):
        super().__init__(message)
        self.system_id = system_id
        self.retryable = retryable


class ValidationError(IntegrationError):
    """External payload failed validation (bad payload, missing fields)."""

    def __init__(self, message: str, system_id: str = ""):
        super().__init__(message, system_id=system_id, retryable=False)


class AuthenticationError(IntegrationError):
    """Signature/auth verification failed."""

    def __init__(self, message: str, system_id: str = ""):
        super().__init__(message, system_id=system_id, retryable=False)


class TransientError(IntegrationError):
    """Temporary failure — retryable with backoff."""

    def __init__(self, message: str, system_id: str = ""):
        super().__init__(message, system_id=system_id, retryable=True)


# ══════════════════════════════════════════════════════════════
# DIRECTION ENUM
# ══════════════════════════════════════════════════════════════

class Direction(Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


def compute_payload_hash(payload: Dict[str, Any]) -> str:
    """Deterministic hash of a payload for audit and dedup."""
    normalized = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


# ══════════════════════════════════════════════════════════════
# WEBHOOK SIGNATURE VERIFICATION
# ══════════════════════════════════════════════════════════════

def verify_hmac_signature(
    payload_bytes: bytes,
    signature: str,
    secret: str,
    algorithm: str = "sha256",
) -> bool:
    """
    Verify HMAC signature on an inbound webhook payload.

    Returns True if signature matches, False otherwise.
    """
    if algorithm == "sha256":
        digest = hashlib.sha256
    elif algorithm == "sha1":
        digest = hashlib.sha1
    else:
        return False

    expected = hmac.new(secret.encode("utf-8"), payload_bytes, digest).hexdigest()
    return hmac.compare_digest(expected, signature or "")
