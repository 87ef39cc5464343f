"""
ROS Django Adapter Views
========================
Pass-through HTTP views over core/http_api handlers.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from adapters.django_api.wiring import build_dependencies
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
from core.http_api.errors import INVALID_REQUEST, error_response, http_status_for
from core.http_api.handlers import (
    default_actor,
    get_order,
    post_order_cancel,
    post_order_confirm,
    post_order_create,
    post_order_payment,
    post_order_transition,
    post_pricing_quote,
    post_webhook,
)

SIGNATURE_HEADERS = ("X-Signature", "X-Hub-Signature-256")


def _respond(payload: dict[str, Any]) -> JsonResponse:
    return JsonResponse(payload, status=http_status_for(payload))


def _json_error(code: str, message: str, status: int = 400) -> JsonResponse:
    return JsonResponse(
        error_response(code=code, message=message, details={}),
        status=status,
    )


def _parse_uuid(value: Any, field_name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except Exception as exc:
        raise ValueError(f"{field_name} must be a valid UUID.") from exc


def _parse_optional_uuid(value: Any, field_name: str) -> uuid.UUID | None:
    if value is None or value == "":
        return None
    return _parse_uuid(value, field_name)


def _parse_json_body(request: HttpRequest) -> dict[str, Any]:
    if not request.body:
        return {}
    try:
        parsed = json.loads(request.body.decode("utf-8"))
    except Exception as exc:
        raise ValueError("Request body must be valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Request body must be a JSON object.")
    return parsed


def _parse_actor_metadata(body: dict[str, Any]) -> ActorMetadata:
    actor_payload = body.get("actor")
    if actor_payload is None:
        return default_actor()
    if not isinstance(actor_payload, dict):
        raise ValueError("actor must be an object.")
    return ActorMetadata(
        actor_type=actor_payload["actor_type"],
        actor_id=actor_payload["actor_id"],
    )


def _method_not_allowed() -> JsonResponse:
    return _json_error(
        "METHOD_NOT_ALLOWED",
        "Method not allowed for this endpoint.",
        status=405,
    )


def _dispatch_write(handler, contract_factory, request: HttpRequest, **route) -> JsonResponse:
    try:
        body = _parse_json_body(request)
        restaurant_id = _parse_uuid(body["restaurant_id"], "restaurant_id")
        contract = contract_factory(
            body=body,
            restaurant_id=restaurant_id,
            actor=_parse_actor_metadata(body),
            **route,
        )
    except (ValueError, KeyError) as exc:
        return _json_error(INVALID_REQUEST, str(exc), status=400)
    return _respond(handler(contract, build_dependencies()))


# ── contract factories ────────────────────────────────────────

def _order_create_contract_factory(*, body, restaurant_id, actor):
    return OrderCreateHttpRequest(restaurant_id=restaurant_id, actor=actor, body=body)


def _order_transition_contract_factory(*, body, restaurant_id, actor, order_id):
    return OrderTransitionHttpRequest(
        restaurant_id=restaurant_id,
        actor=actor,
        order_id=order_id,
        to_status=body["to_status"],
        rider_id=body.get("rider_id"),
    )


def _order_cancel_contract_factory(*, body, restaurant_id, actor, order_id):
    return OrderCancelHttpRequest(
        restaurant_id=restaurant_id,
        actor=actor,
        order_id=order_id,
        reason=body["reason"],
        note=body.get("note", ""),
    )


def _payment_contract_factory(*, body, restaurant_id, actor, order_id):
    return PaymentHttpRequest(
        restaurant_id=restaurant_id,
        order_id=order_id,
        method=body["method"],
        gateway=body.get("gateway"),
        payer_contact=body.get("payer_contact", ""),
    )


def _confirm_contract_factory(*, body, restaurant_id, actor, order_id):
    return OrderReadRequest(restaurant_id=restaurant_id, order_id=order_id)


def _pricing_quote_contract_factory(*, body, restaurant_id, actor):
    return PricingQuoteHttpRequest(restaurant_id=restaurant_id, body=body)


# ── views ─────────────────────────────────────────────────────

@csrf_exempt
def orders_create_view(request: HttpRequest) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    return _dispatch_write(post_order_create, _order_create_contract_factory, request)


@csrf_exempt
def order_detail_view(request: HttpRequest, order_id: str) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    try:
        contract = OrderReadRequest(
            restaurant_id=_parse_uuid(request.GET.get("restaurant_id"), "restaurant_id"),
            order_id=order_id,
        )
    except ValueError as exc:
        return _json_error(INVALID_REQUEST, str(exc), status=400)
    return _respond(get_order(contract, build_dependencies()))


@csrf_exempt
def order_transition_view(request: HttpRequest, order_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    return _dispatch_write(
        post_order_transition, _order_transition_contract_factory, request,
        order_id=order_id,
    )


@csrf_exempt
def order_cancel_view(request: HttpRequest, order_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    return _dispatch_write(
        post_order_cancel, _order_cancel_contract_factory, request,
        order_id=order_id,
    )


@csrf_exempt
def order_payment_view(request: HttpRequest, order_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    return _dispatch_write(
        post_order_payment, _payment_contract_factory, request,
        order_id=order_id,
    )


@csrf_exempt
def order_confirm_view(request: HttpRequest, order_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    return _dispatch_write(
        post_order_confirm, _confirm_contract_factory, request,
        order_id=order_id,
    )


@csrf_exempt
def pricing_quote_view(request: HttpRequest) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    return _dispatch_write(post_pricing_quote, _pricing_quote_contract_factory, request)


@csrf_exempt
def webhook_view(request: HttpRequest, system_id: str) -> JsonResponse:
    """Vendors post without our envelope; the tenant may come as ?restaurant_id=."""
    if request.method != "POST":
        return _method_not_allowed()
    try:
        signature = next(
            (request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers), "",
        )
        contract = WebhookHttpRequest(
            system_id=system_id,
            payload=_parse_json_body(request),
            raw_body=request.body,
            signature=signature,
            restaurant_id=_parse_optional_uuid(request.GET.get("restaurant_id"), "restaurant_id"),
        )
    except ValueError as exc:
        return _json_error(INVALID_REQUEST, str(exc), status=400)
    return _respond(post_webhook(contract, build_dependencies()))
