"""
ROS Orders Engine — Event Types
=================================
Published after the order repository has been updated; subscribers
(notifications, reporting) only ever see committed state.
"""

# ── Event Types ───────────────────────────────────────────────

ORDER_CREATED_V1 = "orders.order.created.v1"
ORDER_STATUS_CHANGED_V1 = "orders.order.status_changed.v1"
ORDER_PAYMENT_METHOD_SET_V1 = "orders.order.payment_method_set.v1"
ORDER_AWAITING_PAYMENT_V1 = "orders.order.awaiting_payment.v1"
ORDER_COMPLETED_V1 = "orders.order.completed.v1"
ORDER_CANCELLED_V1 = "orders.order.cancelled.v1"
ORDER_PAID_AFTER_CANCEL_V1 = "orders.order.paid_after_cancel.v1"
ORDER_CHARGE_FAILED_V1 = "orders.order.charge_failed.v1"
ORDER_RELEASED_CHARGE_PAID_V1 = "orders.order.released_charge_paid.v1"
RIDER_DISPATCHED_V1 = "orders.rider.dispatched.v1"

ALL_EVENT_TYPES = (
    ORDER_CREATED_V1,
    ORDER_STATUS_CHANGED_V1,
    ORDER_PAYMENT_METHOD_SET_V1,
    ORDER_AWAITING_PAYMENT_V1,
    ORDER_COMPLETED_V1,
    ORDER_CANCELLED_V1,
    ORDER_PAID_AFTER_CANCEL_V1,
    ORDER_CHARGE_FAILED_V1,
    ORDER_RELEASED_CHARGE_PAID_V1,
    RIDER_DISPATCHED_V1,
)


# ── Payload Builders ──────────────────────────────────────────

def _base_fields(order) -> dict:
    return {
        "order_id": order.order_id,
        "order_number": order.order_number,
        "channel": order.channel,
        "fulfillment": order.fulfillment,
        "status": order.status,
    }


def build_order_created_payload(order) -> dict:
    base = _base_fields(order)
    base.update({
        "total": order.total,
        "payment_method": order.payment_method,
        "customer_id": order.customer_id,
        "table_id": order.table_id,
        "created_at": order.created_at.isoformat(),
    })
    return base


def build_status_changed_payload(order, from_status: str) -> dict:
    base = _base_fields(order)
    base["from_status"] = from_status
    return base


def build_payment_method_set_payload(order) -> dict:
    base = _base_fields(order)
    base["payment_method"] = order.payment_method
    return base


def build_awaiting_payment_payload(order) -> dict:
    base = _base_fields(order)
    base.update({
        "charge_ref": order.charge_ref,
        "gateway": order.gateway_key,
        "total": order.total,
    })
    return base


def build_order_completed_payload(order, customer_phone: str = "") -> dict:
    base = _base_fields(order)
    base.update({
        "total": order.total,
        "payment_method": order.payment_method,
        "customer_id": order.customer_id,
        "customer_phone": customer_phone,
        "loyalty_points_earned": order.loyalty_points_earned,
        "settlement_flags": sorted(order.settlement_flags),
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
    })
    return base


def build_order_cancelled_payload(order) -> dict:
    base = _base_fields(order)
    base.update({
        "cancel_reason": order.cancel_reason,
        "total": order.total,
        "cancelled_at": order.cancelled_at.isoformat() if order.cancelled_at else None,
    })
    return base


def build_paid_after_cancel_payload(order) -> dict:
    base = _base_fields(order)
    base.update({
        "charge_ref": order.charge_ref,
        "total": order.total,
        "payment_method": order.payment_method,
    })
    return base


def build_charge_failed_payload(order, charge_ref: str) -> dict:
    base = _base_fields(order)
    base.update({
        "charge_ref": charge_ref,
        "total": order.total,
    })
    return base


def build_released_charge_paid_payload(order, charge_ref: str) -> dict:
    base = _base_fields(order)
    base.update({
        "charge_ref": charge_ref,
        "total": order.total,
        "payment_method": order.payment_method,
    })
    return base


def build_rider_dispatched_payload(order, rider, customer=None) -> dict:
    base = _base_fields(order)
    base.update({
        "customer_name": customer.name if customer else "",
        "customer_phone": customer.phone if customer else "",
        "items": [
            {"name": item.name, "quantity": item.quantity,
             "modifiers_summary": item.modifiers_summary}
            for item in order.items
        ],
        "rider_id": rider.rider_id,
        "rider_name": rider.name,
        "rider_phone": rider.phone,
        "delivery_address": order.delivery_address,
        "total": order.total,
        "payment_method": order.payment_method,
    })
    return base
