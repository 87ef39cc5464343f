"""
ROS HTTP API - Public API
=========================
"""

from core.http_api.contracts import (
    ActorMetadata,
    HttpApiErrorBody,
    HttpApiResponse,
    OrderCancelHttpRequest,
    OrderCreateHttpRequest,
    OrderReadRequest,
    OrderTransitionHttpRequest,
    PaymentHttpRequest,
    PricingQuoteHttpRequest,
    WebhookHttpRequest,
)
from core.http_api.dependencies import HttpApiDependencies, IdProvider, UuidIdProvider
from core.http_api.errors import (
    error_response,
    http_status_for,
    map_rejection_reason,
    rejection_response,
    success_response,
)
from core.http_api.handlers import (
    get_order,
    post_order_cancel,
    post_order_confirm,
    post_order_create,
    post_order_payment,
    post_order_transition,
    post_pricing_quote,
    post_webhook,
)

__all__ = [
    "ActorMetadata",
    "OrderReadRequest",
    "OrderCreateHttpRequest",
    "OrderTransitionHttpRequest",
    "OrderCancelHttpRequest",
    "PaymentHttpRequest",
    "WebhookHttpRequest",
    "PricingQuoteHttpRequest",
    "HttpApiErrorBody",
    "HttpApiResponse",
    "IdProvider",
    "UuidIdProvider",
    "HttpApiDependencies",
    "error_response",
    "success_response",
    "map_rejection_reason",
    "rejection_response",
    "http_status_for",
    "get_order",
    "post_order_create",
    "post_order_transition",
    "post_order_cancel",
    "post_order_payment",
    "post_order_confirm",
    "post_webhook",
    "post_pricing_quote",
]
