"""
ROS Payments Engine — Payment Service
=======================================
Turns "the customer wants to pay this way" into order settlement.

Two shapes of payment:
- Manual (cash, cards, staff-confirmed PIX): settled on the spot. The
  payment method is set and the order completed in one call.
- QR gateway (Mercado Pago, PagSeguro, Nubank): a charge is created, the order
  waits in pending_payment, and one of three paths confirms it later:

      confirm(order_id)          staff/customer acknowledgment
      handle_callback(...)       vendor webhook
      reconcile_pending()        poll of every outstanding charge

All three call OrderService.settle_from_gateway, which settles exactly
once. A charge the vendor reports as failed sends the order back to
where it was, ready for a new charge or manual settlement. Gateway
calls never run under an order lock; the order is reserved instead.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.commands.base import ACTOR_SYSTEM
from core.commands.rejection import CommandRejectedError, ReasonCode, RejectionReason
from core.time.clock import Clock, SystemClock
from engines.orders.commands import (
    PAYMENT_PENDING,
    PAYMENT_PIX,
    STATUS_COMPLETED,
    STATUS_PENDING_PAYMENT,
    VALID_PAYMENT_METHODS,
    OrderTransitionRequest,
    SetPaymentMethodRequest,
)
from engines.orders.policies import order_must_not_be_terminal_policy
from integration.adapters import (
    AuthenticationError,
    Direction,
    IntegrationError,
    TransientError,
    ValidationError,
    compute_payload_hash,
    verify_hmac_signature,
)
from integration.gateways import CHARGE_FAILED, CHARGE_PAID, CHARGE_PENDING, MANUAL, ChargeResult

logger = logging.getLogger("ros.payments")

PAYMENTS_ACTOR_ID = "engine.payments"


@dataclass(frozen=True)
class PaymentOutcome:
    """What the ordering channel gets back from request_payment."""

    order: Any
    gateway: str
    charge: Optional[ChargeResult] = None

    @property
    def completed(self) -> bool:
        return self.order.status == STATUS_COMPLETED

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "gateway": self.gateway,
            "completed": self.completed,
            "charge": self.charge.to_dict() if self.charge else None,
        }


@dataclass(frozen=True)
class CallbackOutcome:
    system_id: str
    reference: Optional[str] = None
    charge_ref: Optional[str] = None
    charge_status: Optional[str] = None
    order_id: Optional[str] = None
    settled: bool = False
    released: bool = False
    ignored: bool = False

    def to_dict(self) -> dict:
        return {
            "system_id": self.system_id,
            "reference": self.reference,
            "charge_ref": self.charge_ref,
            "charge_status": self.charge_status,
            "order_id": self.order_id,
            "settled": self.settled,
            "released": self.released,
            "ignored": self.ignored,
        }


@dataclass(frozen=True)
class ReconciliationReport:
    checked: int
    settled: List[str]
    still_pending: List[str]
    failed: List[str]
    errors: Dict[str, str]

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "settled": list(self.settled),
            "still_pending": list(self.still_pending),
            "failed": list(self.failed),
            "errors": dict(self.errors),
        }


def _reject(code: str, message: str, policy_name: str) -> CommandRejectedError:
    return CommandRejectedError(RejectionReason(
        code=code, message=message, policy_name=policy_name,
    ))


class PaymentService:

    def __init__(
        self,
        *,
        orders,
        gateways,
        config_store,
        inbound_registry,
        audit_log,
        clock: Optional[Clock] = None,
    ):
        self._orders = orders
        self._gateways = gateways
        self._config = config_store
        self._inbound = inbound_registry
        self._audit = audit_log
        self._clock = clock or SystemClock()

    # ══════════════════════════════════════════════════════════
    # REQUEST
    # ══════════════════════════════════════════════════════════

    def request_payment(
        self,
        order_id: str,
        method: str,
        gateway_key: Optional[str] = None,
        payer_contact: str = "",
    ) -> PaymentOutcome:
        """
        Settle an order with the chosen method.

        cash/credit_card/debit_card go through the manual gateway and
        complete immediately. pix uses the restaurant's QR gateway unless
        gateway_key says "manual" (PIX checked by staff on their own app).

        An order already waiting on a charge is re-checked with the vendor
        first: a paid charge settles it, a failed one reopens it for this
        request, anything else is rejected.

        Raises:
            ValueError:               unknown method
            CommandRejectedError:     order missing/terminal/awaiting a charge,
                                      or no QR gateway configured
            TransientError:           vendor unreachable (order untouched)
            IntegrationError:         vendor refused or misconfigured
        """
        if method not in VALID_PAYMENT_METHODS or method == PAYMENT_PENDING:
            raise ValueError(f"payment method '{method}' not valid.")

        order = self._load(order_id)
        if order.status == STATUS_PENDING_PAYMENT:
            order = self._recheck_outstanding_charge(order)
            if order.status == STATUS_COMPLETED:
                return PaymentOutcome(order=order, gateway=order.gateway_key or MANUAL)
        reason = order_must_not_be_terminal_policy(order)
        if reason is not None:
            raise CommandRejectedError(reason)

        settings = self._orders.settings_for(order.restaurant_id)
        if method != PAYMENT_PIX:
            gateway_key = MANUAL
        elif gateway_key is None:
            gateway_key = settings.qr_gateway
            if not gateway_key:
                raise _reject(
                    ReasonCode.GATEWAY_NOT_CONFIGURED,
                    f"No QR gateway configured for restaurant {order.restaurant_id}.",
                    "PaymentService.request_payment",
                )

        gateway = self._gateways.get(order.restaurant_id, gateway_key)
        if gateway.system_id == MANUAL:
            return PaymentOutcome(
                order=self._complete_manually(order, method),
                gateway=MANUAL,
            )

        # Reserved before the vendor call so one order never has two live charges.
        order = self._orders.reserve_charge(order.order_id)
        try:
            charge = self._charge(order, gateway, payer_contact)
        except Exception:
            self._orders.release_charge_reservation(order.order_id)
            raise
        result = self._orders.begin_gateway_payment(
            order.order_id, charge_ref=charge.charge_ref, gateway_key=gateway.system_id,
        )
        logger.info(
            f"Order {order.order_number} awaiting {gateway.system_id} charge {charge.charge_ref}"
        )
        return PaymentOutcome(order=result.order, gateway=gateway.system_id, charge=charge)

    def _recheck_outstanding_charge(self, order):
        status = CHARGE_PENDING
        if order.charge_ref and order.gateway_key:
            gateway = self._gateways.get(order.restaurant_id, order.gateway_key)
            status = gateway.fetch_status(order.charge_ref)
        if status == CHARGE_PAID:
            return self._orders.settle_from_gateway(
                order.order_id, charge_ref=order.charge_ref,
            ).order
        if status == CHARGE_FAILED:
            result = self._orders.fail_gateway_charge(order.order_id, order.charge_ref)
            if result.order.status != STATUS_PENDING_PAYMENT:
                return result.order
            order = result.order
        raise _reject(
            ReasonCode.AWAITING_GATEWAY,
            f"Order {order.order_number} already has charge {order.charge_ref} outstanding.",
            "PaymentService.request_payment",
        )

    def _complete_manually(self, order, method: str):
        self._orders.execute(self._system_command(
            SetPaymentMethodRequest(order_id=order.order_id, payment_method=method),
            order.restaurant_id,
        ))
        result = self._orders.execute(self._system_command(
            OrderTransitionRequest(order_id=order.order_id, to_status=STATUS_COMPLETED),
            order.restaurant_id,
        ))
        return result.order

    def _charge(self, order, gateway, payer_contact: str) -> ChargeResult:
        # Vendors dedupe on the reference, so a retry after a failed charge needs a new one.
        attempt = len(order.released_charge_refs) + 1
        order_ref = order.order_id if attempt == 1 else f"{order.order_id}-{attempt}"
        audit = dict(
            restaurant_id=order.restaurant_id,
            external_system_id=gateway.system_id,
            direction=Direction.OUTBOUND,
            event_type="payment.charge",
            payload_hash=compute_payload_hash({"order_id": order.order_id, "amount": order.total}),
            occurred_at=self._clock.now_utc(),
            order_id=order.order_id,
        )
        try:
            charge = gateway.charge(order.total, order_ref, payer_contact)
        except IntegrationError as e:
            self._audit.record_failure(
                error_code=type(e).__name__, error_message=str(e), **audit,
            )
            logger.warning(
                f"Charge for order {order.order_number} via {gateway.system_id} failed "
                f"({'retryable' if e.retryable else 'not retryable'}): {e}"
            )
            raise
        self._audit.record_success(external_event_id=charge.charge_ref, **audit)
        return charge

    # ══════════════════════════════════════════════════════════
    # CONFIRMATION PATHS
    # ══════════════════════════════════════════════════════════

    def confirm(self, order_id: str):
        """
        Explicit acknowledgment that the outstanding charge was paid.

        Confirming an order that is not pending_payment is a no-op.
        """
        self._load(order_id)
        result = self._orders.settle_from_gateway(order_id)
        if result.changed:
            logger.info(f"Order {result.order.order_number} confirmed as paid")
        return result

    def handle_callback(
        self,
        system_id: str,
        payload: Dict[str, Any],
        *,
        restaurant_id: Optional[uuid.UUID] = None,
        raw_body: bytes = b"",
        signature: str = "",
    ) -> CallbackOutcome:
        """
        Process a vendor webhook.

        The payload only tells us which charge to look at; its status is
        always fetched from the vendor before anything is settled.
        Duplicate deliveries settle once.
        """
        adapter = self._inbound.get(system_id)
        if adapter is None:
            raise IntegrationError(f"No webhook adapter for '{system_id}'.", system_id=system_id)

        payload_hash = compute_payload_hash(payload)
        received_at = self._clock.now_utc()
        audit = dict(
            restaurant_id=restaurant_id,
            external_system_id=system_id,
            direction=Direction.INBOUND,
            event_type="payment.webhook",
            payload_hash=payload_hash,
            occurred_at=received_at,
            external_event_id=adapter.extract_event_id(payload),
        )

        try:
            notice = adapter.read(payload)
            if notice is None:
                self._audit.record_success(**audit)
                return CallbackOutcome(system_id=system_id, ignored=True)

            restaurant_id = restaurant_id or self._restaurant_for(system_id, notice.reference)
            audit["restaurant_id"] = restaurant_id
            self._verify_signature(restaurant_id, system_id, payload, raw_body, signature)
            gateway = self._gateways.get(restaurant_id, system_id)
            charge_ref, status = gateway.resolve_notification(notice.reference)
        except IntegrationError as e:
            self._audit.record_failure(
                error_code=type(e).__name__, error_message=str(e), **audit,
            )
            logger.warning(f"Webhook from {system_id} rejected: {e}")
            raise

        order = self._orders.find_by_charge_ref(charge_ref)
        if order is None:
            self._audit.record_failure(
                error_code="UNKNOWN_CHARGE",
                error_message=f"No order holds charge {charge_ref}.",
                **audit,
            )
            logger.warning(f"Webhook from {system_id} for unknown charge {charge_ref}")
            return CallbackOutcome(
                system_id=system_id, reference=notice.reference,
                charge_ref=charge_ref, charge_status=status, ignored=True,
            )

        settled = released = False
        if status == CHARGE_PAID:
            settled = self._orders.settle_from_gateway(
                order.order_id, charge_ref=charge_ref,
            ).changed
        elif status == CHARGE_FAILED:
            released = self._orders.fail_gateway_charge(order.order_id, charge_ref).changed
            logger.warning(
                f"Charge {charge_ref} for order {order.order_number} failed at {system_id}"
                f"{'; order reopened for payment' if released else ''}"
            )
        audit["restaurant_id"] = order.restaurant_id
        self._audit.record_success(order_id=order.order_id, **audit)
        return CallbackOutcome(
            system_id=system_id, reference=notice.reference, charge_ref=charge_ref,
            charge_status=status, order_id=order.order_id, settled=settled,
            released=released,
        )

    def _verify_signature(self, restaurant_id: uuid.UUID, system_id: str,
                          payload: Dict[str, Any], raw_body: bytes, signature: str) -> None:
        credentials = self._config.get_gateway_credentials(restaurant_id, system_id)
        if credentials is None or not credentials.webhook_secret:
            return
        body = raw_body or json.dumps(payload, sort_keys=True).encode("utf-8")
        if not verify_hmac_signature(body, signature, credentials.webhook_secret):
            raise AuthenticationError("Webhook signature mismatch.", system_id=system_id)

    def _restaurant_for(self, system_id: str, reference: str) -> uuid.UUID:
        """Vendors that put the charge id in the webhook let us find the tenant."""
        order = self._orders.find_by_charge_ref(reference)
        if order is None:
            raise ValidationError(
                f"Cannot resolve restaurant for {system_id} reference {reference}.",
                system_id=system_id,
            )
        return order.restaurant_id

    def reconcile_pending(self, restaurant_id: Optional[uuid.UUID] = None) -> ReconciliationReport:
        """
        Poll the vendor for every order still in pending_payment.

        Paid charges settle; failed ones reopen their order for payment.

        A vendor that is down for one order does not stop the others.
        """
        pending = self._orders.list_orders(restaurant_id=restaurant_id, status=STATUS_PENDING_PAYMENT)
        settled: List[str] = []
        still_pending: List[str] = []
        failed: List[str] = []
        errors: Dict[str, str] = {}

        for order in pending:
            if not order.charge_ref or not order.gateway_key:
                still_pending.append(order.order_id)
                continue
            try:
                gateway = self._gateways.get(order.restaurant_id, order.gateway_key)
                status = gateway.fetch_status(order.charge_ref)
            except TransientError as e:
                errors[order.order_id] = str(e)
                logger.warning(f"Reconciliation poll for order {order.order_number} failed: {e}")
                continue
            except IntegrationError as e:
                errors[order.order_id] = str(e)
                logger.error(
                    f"Reconciliation for order {order.order_number} cannot reach "
                    f"{order.gateway_key}: {e}",
                    exc_info=True,
                )
                continue

            if status == CHARGE_PAID:
                if self._orders.settle_from_gateway(
                    order.order_id, charge_ref=order.charge_ref,
                ).changed:
                    settled.append(order.order_id)
            elif status == CHARGE_FAILED:
                self._orders.fail_gateway_charge(order.order_id, order.charge_ref)
                failed.append(order.order_id)
            else:
                still_pending.append(order.order_id)

        report = ReconciliationReport(
            checked=len(pending), settled=settled, still_pending=still_pending,
            failed=failed, errors=errors,
        )
        logger.info(
            f"Reconciliation: {report.checked} checked, {len(settled)} settled, "
            f"{len(still_pending)} pending, {len(failed)} failed, {len(errors)} errors"
        )
        return report

    # ── helpers ───────────────────────────────────────────────

    def _load(self, order_id: str):
        order = self._orders.get_order(order_id)
        if order is None:
            raise _reject(
                ReasonCode.ORDER_NOT_FOUND,
                f"Order '{order_id}' not found.",
                "PaymentService._load",
            )
        return order

    def _system_command(self, request, restaurant_id: uuid.UUID):
        now = self._clock.now_utc()
        return request.to_command(
            restaurant_id=restaurant_id,
            actor_type=ACTOR_SYSTEM,
            actor_id=PAYMENTS_ACTOR_ID,
            command_id=uuid.uuid4(),
            correlation_id=uuid.uuid4(),
            issued_at=now,
        )
