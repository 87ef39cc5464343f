"""
ROS HTTP API - Framework-Agnostic Handlers
==========================================
Pure handler functions over contracts and injected dependencies.

Every handler returns the response envelope; none raises for
business or integration failures.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from core.commands.base import ACTOR_HUMAN
from core.commands.rejection import CommandRejectedError
from core.http_api.contracts import (
    ActorMetadata,
    OrderCancelHttpRequest,
    OrderCreateHttpRequest,
    OrderReadRequest,
    OrderTransitionHttpRequest,
    PaymentHttpRequest,
    PricingQuoteHttpRequest,
    WebhookHttpRequest,
)
from core.http_api.errors import (
    GATEWAY_ERROR,
    GATEWAY_UNAVAILABLE,
    INVALID_REQUEST,
    SIGNATURE_INVALID,
    WEBHOOK_REJECTED,
    error_response,
    rejection_response,
    success_response,
)
from engines.orders.commands import (
    OrderCancelRequest,
    OrderCreateRequest,
    OrderTransitionRequest,
)
from engines.pricing.calculator import CartLine, calculate_pricing
from engines.pricing.delivery import (
    FULFILLMENT_DELIVERY,
    DeliveryAddress,
    DeliveryFeeResolver,
    fee_for_fulfillment,
)
from integration.adapters import (
    AuthenticationError,
    IntegrationError,
    TransientError,
    ValidationError,
)

logger = logging.getLogger("ros.http")


def _guarded(call: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    try:
        return call()
    except CommandRejectedError as exc:
        return rejection_response(exc.reason)
    except (ValueError, KeyError, TypeError) as exc:
        return error_response(code=INVALID_REQUEST, message=str(exc))
    except AuthenticationError as exc:
        return error_response(code=SIGNATURE_INVALID, message=str(exc),
                              details={"system_id": exc.system_id})
    except ValidationError as exc:
        return error_response(code=WEBHOOK_REJECTED, message=str(exc),
                              details={"system_id": exc.system_id})
    except TransientError as exc:
        return error_response(code=GATEWAY_UNAVAILABLE, message=str(exc),
                              details={"system_id": exc.system_id, "retryable": True})
    except IntegrationError as exc:
        logger.error(f"Integration failure: {exc}", exc_info=True)
        return error_response(code=GATEWAY_ERROR, message=str(exc),
                              details={"system_id": exc.system_id, "retryable": exc.retryable})


def _command_kwargs(restaurant_id, actor: ActorMetadata, dependencies) -> dict[str, Any]:
    return {
        "restaurant_id": restaurant_id,
        "actor_type": actor.actor_type,
        "actor_id": actor.actor_id,
        "command_id": dependencies.id_provider.new_command_id(),
        "correlation_id": dependencies.id_provider.new_correlation_id(),
        "issued_at": dependencies.clock.now_utc(),
    }


def _cart_lines(raw_items: list) -> tuple[CartLine, ...]:
    return tuple(CartLine.from_dict(item) for item in raw_items)


def _address(raw: Any) -> DeliveryAddress | None:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ValueError("delivery_address must be an object.")
    return DeliveryAddress.from_dict(raw)


# ══════════════════════════════════════════════════════════════
# ORDERS
# ══════════════════════════════════════════════════════════════

def post_order_create(request: OrderCreateHttpRequest, dependencies) -> dict[str, Any]:
    def _run():
        body = request.body
        engine_request = OrderCreateRequest(
            channel=body["channel"],
            fulfillment=body["fulfillment"],
            items=_cart_lines(body["items"]),
            payment_method=body.get("payment_method", "pending"),
            table_id=body.get("table_id"),
            delivery_address=_address(body.get("delivery_address")),
            customer_phone=body.get("customer_phone", ""),
            customer_name=body.get("customer_name", ""),
            coupon_code=body.get("coupon_code"),
            loyalty_points_requested=body.get("loyalty_points_requested", 0),
            service_fee_enabled=bool(body.get("service_fee_enabled", False)),
            notes=body.get("notes", ""),
        )
        result = dependencies.order_service.execute(engine_request.to_command(
            **_command_kwargs(request.restaurant_id, request.actor, dependencies),
        ))
        return success_response(result.order.to_dict())

    return _guarded(_run)


def post_order_transition(request: OrderTransitionHttpRequest, dependencies) -> dict[str, Any]:
    def _run():
        engine_request = OrderTransitionRequest(
            order_id=request.order_id,
            to_status=request.to_status,
            rider_id=request.rider_id,
        )
        result = dependencies.order_service.execute(engine_request.to_command(
            **_command_kwargs(request.restaurant_id, request.actor, dependencies),
        ))
        return success_response(result.order.to_dict(), meta={"changed": result.changed})

    return _guarded(_run)


def post_order_cancel(request: OrderCancelHttpRequest, dependencies) -> dict[str, Any]:
    def _run():
        engine_request = OrderCancelRequest(
            order_id=request.order_id,
            reason=request.reason,
            note=request.note,
        )
        result = dependencies.order_service.execute(engine_request.to_command(
            **_command_kwargs(request.restaurant_id, request.actor, dependencies),
        ))
        return success_response(result.order.to_dict(), meta={"changed": result.changed})

    return _guarded(_run)


def get_order(request: OrderReadRequest, dependencies) -> dict[str, Any]:
    order = dependencies.order_service.get_order(request.order_id)
    if order is None or order.restaurant_id != request.restaurant_id:
        return error_response(
            code="ORDER_NOT_FOUND",
            message=f"Order '{request.order_id}' not found.",
        )
    return success_response(order.to_dict())


# ══════════════════════════════════════════════════════════════
# PAYMENTS
# ══════════════════════════════════════════════════════════════

def _require_order_in_restaurant(order_id: str, restaurant_id, dependencies) -> dict[str, Any] | None:
    order = dependencies.order_service.get_order(order_id)
    if order is None or order.restaurant_id != restaurant_id:
        return error_response(
            code="ORDER_NOT_FOUND",
            message=f"Order '{order_id}' not found.",
        )
    return None


def post_order_payment(request: PaymentHttpRequest, dependencies) -> dict[str, Any]:
    missing = _require_order_in_restaurant(request.order_id, request.restaurant_id, dependencies)
    if missing is not None:
        return missing

    def _run():
        outcome = dependencies.payment_service.request_payment(
            request.order_id,
            request.method,
            gateway_key=request.gateway,
            payer_contact=request.payer_contact,
        )
        return success_response(outcome.to_dict())

    return _guarded(_run)


def post_order_confirm(request: OrderReadRequest, dependencies) -> dict[str, Any]:
    missing = _require_order_in_restaurant(request.order_id, request.restaurant_id, dependencies)
    if missing is not None:
        return missing

    def _run():
        result = dependencies.payment_service.confirm(request.order_id)
        return success_response(result.order.to_dict(), meta={"changed": result.changed})

    return _guarded(_run)


def post_webhook(request: WebhookHttpRequest, dependencies) -> dict[str, Any]:
    def _run():
        outcome = dependencies.payment_service.handle_callback(
            request.system_id,
            request.payload,
            restaurant_id=request.restaurant_id,
            raw_body=request.raw_body,
            signature=request.signature,
        )
        return success_response(outcome.to_dict())

    return _guarded(_run)


# ══════════════════════════════════════════════════════════════
# PRICING PREVIEW
# ══════════════════════════════════════════════════════════════

def post_pricing_quote(request: PricingQuoteHttpRequest, dependencies) -> dict[str, Any]:
    """
    Price a cart without creating anything.

    Coupon problems come back inside the breakdown; redemption is
    clamped to the customer's balance instead of rejected.
    """
    def _run():
        body = request.body
        settings = dependencies.order_service.settings_for(request.restaurant_id)
        fulfillment = body.get("fulfillment", "pickup")

        quote = None
        if fulfillment == FULFILLMENT_DELIVERY:
            address = _address(body.get("delivery_address"))
            if address is None:
                raise ValueError("delivery_address is required for delivery.")
            quote = DeliveryFeeResolver(settings, dependencies.geocoder).quote(address)

        coupon = None
        if body.get("coupon_code"):
            coupon = dependencies.coupons.get(body["coupon_code"])

        balance = 0
        if body.get("customer_phone"):
            customer = dependencies.customers.find_by_phone(body["customer_phone"])
            if customer is not None:
                balance = dependencies.loyalty.balance_of(customer.customer_id)

        pricing = calculate_pricing(
            _cart_lines(body["items"]),
            settings=settings,
            delivery_fee=fee_for_fulfillment(fulfillment, quote),
            service_fee_enabled=bool(body.get("service_fee_enabled", False)),
            coupon=coupon,
            loyalty_points_requested=int(body.get("loyalty_points_requested", 0)),
            loyalty_balance=balance if settings.loyalty_enabled else 0,
        )
        data = pricing.to_dict()
        data["delivery_quote"] = quote.to_dict() if quote else None
        if body.get("coupon_code") and coupon is None:
            data["coupon_rejection"] = {
                "code": "COUPON_NOT_FOUND",
                "message": f"Coupon '{body['coupon_code']}' not found.",
                "policy_name": "post_pricing_quote",
            }
        return success_response(data)

    return _guarded(_run)


def default_actor() -> ActorMetadata:
    return ActorMetadata(actor_type=ACTOR_HUMAN, actor_id="anonymous")
