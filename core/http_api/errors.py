"""
ROS HTTP API - Error Mapping
============================
Stable transport error mapping for command rejections, integration
failures and handler input errors.
"""

from __future__ import annotations

from typing import Any, Optional

from core.commands.rejection import ReasonCode, RejectionReason
from core.http_api.contracts import HttpApiErrorBody, HttpApiResponse

INVALID_REQUEST = "INVALID_REQUEST"
GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
GATEWAY_ERROR = "GATEWAY_ERROR"
WEBHOOK_REJECTED = "WEBHOOK_REJECTED"
SIGNATURE_INVALID = "SIGNATURE_INVALID"

_STATUS_BY_CODE = {
    INVALID_REQUEST: 400,
    WEBHOOK_REJECTED: 400,
    ReasonCode.VALIDATION_FAILED: 400,
    ReasonCode.TABLE_REQUIRED: 400,
    ReasonCode.ADDRESS_REQUIRED: 400,
    ReasonCode.EMPTY_ORDER: 400,
    SIGNATURE_INVALID: 401,
    ReasonCode.ORDER_NOT_FOUND: 404,
    ReasonCode.RESTAURANT_NOT_CONFIGURED: 404,
    ReasonCode.TABLE_NOT_FOUND: 404,
    ReasonCode.COUPON_NOT_FOUND: 404,
    ReasonCode.DELIVERY_OUT_OF_RANGE: 422,
    GATEWAY_ERROR: 502,
    GATEWAY_UNAVAILABLE: 503,
}


def error_response(
    *,
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    return HttpApiResponse(
        ok=False,
        error=HttpApiErrorBody(
            code=code,
            message=message,
            details=details or {},
        ),
    ).to_dict()


def success_response(
    data: Any,
    *,
    meta: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    return HttpApiResponse(ok=True, data=data, meta=meta).to_dict()


def map_rejection_reason(reason: RejectionReason) -> HttpApiErrorBody:
    return HttpApiErrorBody(
        code=reason.code,
        message=reason.message,
        details={
            "policy_name": reason.policy_name,
            "message_key": f"rejection.{reason.code.lower()}",
        },
    )


def rejection_response(
    reason: RejectionReason,
    *,
    extra_details: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    mapped = map_rejection_reason(reason)
    details = dict(mapped.details)
    if extra_details:
        details.update(extra_details)
    return error_response(
        code=mapped.code,
        message=mapped.message,
        details=details,
    )


def http_status_for(payload: dict[str, Any]) -> int:
    """200 for success; otherwise by error code, business conflicts default to 409."""
    if payload.get("ok"):
        return 200
    code = (payload.get("error") or {}).get("code", "")
    return _STATUS_BY_CODE.get(code, 409)
