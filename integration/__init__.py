"""
ROS Integration Layer — Public API
=====================================
Everything that talks to the outside world: QR payment vendors,
their webhooks, geocoding and rider/customer messaging.

Doctrine: External systems NEVER write order state directly.

Inbound:  webhook → validate → gateway lookup → order settlement
Outbound: order event → message → notifier
"""

from integration.adapters import (
    AuthenticationError,
    Direction,
    IntegrationError,
    TransientError,
    ValidationError,
    compute_payload_hash,
    verify_hmac_signature,
)
from integration.audit_log import IntegrationAuditEntry, IntegrationAuditLog
from integration.gateways import (
    ChargeResult,
    GatewayConfigurationError,
    GatewayProvider,
    GatewayUnavailableError,
    ManualGateway,
    MercadoPagoGateway,
    PagSeguroGateway,
    PaymentGateway,
)
from integration.geocoding import NominatimGeocoder
from integration.inbound import (
    InboundAdapter,
    InboundAdapterRegistry,
    MercadoPagoWebhookAdapter,
    PagSeguroWebhookAdapter,
    WebhookNotice,
    default_inbound_registry,
)
from integration.outbound import (
    LoggingNotifier,
    Notifier,
    OrderNotificationSubscriber,
    WhatsAppNotifier,
)

__all__ = [
    # Errors
    "IntegrationError",
    "ValidationError",
    "AuthenticationError",
    "TransientError",
    "GatewayUnavailableError",
    "GatewayConfigurationError",
    # Utilities
    "Direction",
    "compute_payload_hash",
    "verify_hmac_signature",
    # Audit
    "IntegrationAuditEntry",
    "IntegrationAuditLog",
    # Gateways
    "ChargeResult",
    "PaymentGateway",
    "ManualGateway",
    "MercadoPagoGateway",
    "PagSeguroGateway",
    "GatewayProvider",
    # Geocoding
    "NominatimGeocoder",
    # Inbound
    "WebhookNotice",
    "InboundAdapter",
    "InboundAdapterRegistry",
    "MercadoPagoWebhookAdapter",
    "PagSeguroWebhookAdapter",
    "default_inbound_registry",
    # Outbound
    "Notifier",
    "LoggingNotifier",
    "WhatsAppNotifier",
    "OrderNotificationSubscriber",
]
