"""
Tests — Integration Adapter Utilities
=========================================
Error hierarchy, payload hashing, signature verification.
"""

from __future__ import annotations

import hashlib
import hmac
import uuid

from integration.adapters import (
    AuthenticationError,
    IntegrationError,
    TransientError,
    ValidationError,
    compute_payload_hash,
    verify_hmac_signature,
)
from integration.gateways import GatewayConfigurationError, GatewayUnavailableError


# ══════════════════════════════════════════════════════════════
# ERROR HIERARCHY
# ══════════════════════════════════════════════════════════════


class TestErrorHierarchy:
    def test_all_errors_are_integration_errors(self):
        assert issubclass(ValidationError, IntegrationError)
        assert issubclass(AuthenticationError, IntegrationError)
        assert issubclass(TransientError, IntegrationError)
        assert issubclass(GatewayUnavailableError, TransientError)
        assert issubclass(GatewayConfigurationError, IntegrationError)

    def test_validation_error_not_retryable(self):
        e = ValidationError("bad payload", system_id="mercadopago")
        assert e.retryable is False
        assert e.system_id == "mercadopago"

    def test_transient_error_is_retryable(self):
        e = TransientError("timeout", system_id="nominatim")
        assert e.retryable is True

    def test_gateway_errors(self):
        assert GatewayUnavailableError("down", system_id="pagseguro").retryable is True
        assert GatewayConfigurationError("no token", system_id="pagseguro").retryable is False

    def test_authentication_error_not_retryable(self):
        e = AuthenticationError("bad signature")
        assert e.retryable is False
        assert str(e) == "bad signature"


# ══════════════════════════════════════════════════════════════
# PAYLOAD HASH
# ══════════════════════════════════════════════════════════════


class TestPayloadHash:
    def test_deterministic(self):
        payload = {"type": "payment", "data": {"id": "123"}}
        assert compute_payload_hash(payload) == compute_payload_hash(payload)
        assert len(compute_payload_hash(payload)) == 64  # SHA-256 hex

    def test_differs_for_different_data(self):
        assert compute_payload_hash({"a": 1}) != compute_payload_hash({"a": 2})

    def test_key_order_independent(self):
        assert compute_payload_hash({"b": 2, "a": 1}) == compute_payload_hash({"a": 1, "b": 2})

    def test_non_json_values(self):
        value = uuid.UUID("11111111-1111-1111-1111-111111111111")
        assert compute_payload_hash({"id": value}) == compute_payload_hash({"id": str(value)})


# ══════════════════════════════════════════════════════════════
# HMAC SIGNATURE VERIFICATION
# ══════════════════════════════════════════════════════════════


class TestHmacSignature:
    def test_valid_sha256_signature(self):
        secret = "test-secret"
        payload = b'{"type": "payment", "data": {"id": "123"}}'
        sig = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        assert verify_hmac_signature(payload, sig, secret, "sha256") is True

    def test_invalid_signature_rejected(self):
        payload = b'{"type": "payment"}'
        assert verify_hmac_signature(payload, "bad-sig", "secret", "sha256") is False

    def test_missing_signature_rejected(self):
        assert verify_hmac_signature(b"body", "", "secret") is False
        assert verify_hmac_signature(b"body", None, "secret") is False

    def test_sha1_algorithm(self):
        secret = "s1-secret"
        payload = b"test-body"
        sig = hmac.new(secret.encode(), payload, hashlib.sha1).hexdigest()
        assert verify_hmac_signature(payload, sig, secret, "sha1") is True

    def test_unknown_algorithm_rejected(self):
        assert verify_hmac_signature(b"x", "sig", "sec", "md5") is False
