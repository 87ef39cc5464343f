"""
Tests — Inbound Webhook Adapters
====================================
Payload validation and reference extraction per vendor. Settlement
itself is covered by the payment service tests.
"""

from __future__ import annotations

import pytest

from integration.adapters import ValidationError
from integration.inbound import (
    InboundAdapterRegistry,
    MercadoPagoWebhookAdapter,
    PagSeguroWebhookAdapter,
    WebhookNotice,
    default_inbound_registry,
)


class TestMercadoPagoAdapter:
    adapter = MercadoPagoWebhookAdapter()

    def test_payment_notification(self):
        notice = self.adapter.read({
            "id": 901, "type": "payment", "action": "payment.updated",
            "data": {"id": 1234567890},
        })
        assert notice == WebhookNotice(
            system_id="mercadopago",
            reference="1234567890",
            event_id="901",
            event_type="payment.updated",
        )

    def test_action_defaults_to_payment(self):
        notice = self.adapter.read({"type": "payment", "data": {"id": "55"}})
        assert notice.event_type == "payment"
        assert notice.event_id is None

    def test_other_topics_ignored(self):
        assert self.adapter.read({"type": "merchant_order", "data": {"id": "1"}}) is None
        assert self.adapter.read({"action": "test.created"}) is None

    @pytest.mark.parametrize("payload, error", [
        ({}, "missing 'type'"),
        ({"type": "payment"}, "without data.id"),
        ({"type": "payment", "data": {}}, "without data.id"),
        ({"type": "payment", "data": "123"}, "without data.id"),
    ])
    def test_invalid_payloads(self, payload, error):
        is_valid, message = self.adapter.validate(payload)
        assert is_valid is False
        assert error in message
        with pytest.raises(ValidationError) as exc:
            self.adapter.read(payload)
        assert exc.value.system_id == "mercadopago"

    def test_non_object_payload(self):
        assert self.adapter.validate(["payment"]) == (False, "payload must be an object")


class TestPagSeguroAdapter:
    adapter = PagSeguroWebhookAdapter()

    def test_transaction_notification(self):
        notice = self.adapter.read({
            "notificationCode": "766B9C-AD4B044B04DA-77742F5FA653-E1AB24",
            "notificationType": "transaction",
        })
        assert notice.system_id == "pagseguro"
        assert notice.reference == "766B9C-AD4B044B04DA-77742F5FA653-E1AB24"
        assert notice.event_id == notice.reference

    def test_type_defaults_to_transaction(self):
        assert self.adapter.read({"notificationCode": "ABC"}).reference == "ABC"

    def test_other_notification_types_ignored(self):
        assert self.adapter.read({
            "notificationCode": "ABC", "notificationType": "preApproval",
        }) is None

    def test_missing_code(self):
        with pytest.raises(ValidationError, match="notificationCode"):
            self.adapter.read({"notificationType": "transaction"})

    def test_event_id_falls_back_to_id(self):
        assert self.adapter.extract_event_id({"id": 7}) == "7"
        assert self.adapter.extract_event_id({}) is None


class TestInboundRegistry:
    def test_register_and_get(self):
        registry = InboundAdapterRegistry()
        adapter = MercadoPagoWebhookAdapter()
        registry.register(adapter)
        assert registry.get("mercadopago") is adapter

    def test_get_unknown_returns_none(self):
        assert InboundAdapterRegistry().get("stripe") is None

    def test_default_registry(self):
        registry = default_inbound_registry()
        assert sorted(registry.list_system_ids()) == ["mercadopago", "pagseguro"]
