"""
ROS Integration — Payment Gateways
=====================================
One contract for every way an order gets paid:

    charge(amount, order_ref, payer_contact) → ChargeResult
    fetch_status(charge_ref)                 → paid | pending | failed

Manual settlement (cash/card at the counter) is immediate. QR vendors
(Mercado Pago, PagSeguro, Nubank) return a scannable image and a copy-paste
PIX string and settle later, by webhook or by polling.

Network failures, timeouts and 5xx answers raise GatewayUnavailableError
(retryable). A provider answer without a QR artifact, bad credentials
or an unknown vendor raise GatewayConfigurationError (not retryable).
"""

from __future__ import annotations

import logging
import uuid
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import requests

from core.config.rules import GatewayCredentials
from core.primitives.money import to_major
from integration.adapters import IntegrationError, TransientError

logger = logging.getLogger("ros.integration")

DEFAULT_TIMEOUT_SECONDS = 10

CHARGE_PAID = "paid"
CHARGE_PENDING = "pending"
CHARGE_FAILED = "failed"

MANUAL = "manual"
MERCADOPAGO = "mercadopago"
PAGSEGURO = "pagseguro"
NUBANK = "nubank"


# ══════════════════════════════════════════════════════════════
# ERRORS
# ══════════════════════════════════════════════════════════════

class GatewayUnavailableError(TransientError):
    """Provider unreachable, timed out or failing server-side."""


class GatewayConfigurationError(IntegrationError):
    """Credentials missing/refused, or the provider returned no charge artifact."""

    def __init__(self, message: str, system_id: str = ""):
        super().__init__(message, system_id=system_id, retryable=False)


# ══════════════════════════════════════════════════════════════
# CONTRACT
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ChargeResult:
    immediate: bool
    charge_ref: str
    qr_image: Optional[str] = None
    copy_paste_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "immediate": self.immediate,
            "charge_ref": self.charge_ref,
            "qr_image": self.qr_image,
            "copy_paste_code": self.copy_paste_code,
        }


class PaymentGateway(ABC):

    @property
    @abstractmethod
    def system_id(self) -> str:
        ...

    @abstractmethod
    def charge(self, amount: int, order_ref: str, payer_contact: str = "") -> ChargeResult:
        """amount in minor units."""
        ...

    @abstractmethod
    def fetch_status(self, charge_ref: str) -> str:
        ...

    def resolve_notification(self, reference: str) -> Tuple[str, str]:
        """
        Turn a webhook reference into (charge_ref, status).

        Vendors whose webhooks carry the charge id directly just poll it.
        """
        return reference, self.fetch_status(reference)


class ManualGateway(PaymentGateway):
    """Cash or card taken at the counter; settled on the spot."""

    @property
    def system_id(self) -> str:
        return MANUAL

    def charge(self, amount: int, order_ref: str, payer_contact: str = "") -> ChargeResult:
        return ChargeResult(immediate=True, charge_ref=f"{MANUAL}-{order_ref}")

    def fetch_status(self, charge_ref: str) -> str:
        return CHARGE_PAID


# ══════════════════════════════════════════════════════════════
# HTTP VENDORS
# ══════════════════════════════════════════════════════════════

class _HttpGateway(PaymentGateway):

    def __init__(self, credentials: GatewayCredentials, *,
                 session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 base_url: Optional[str] = None):
        self._credentials = credentials
        self._session = session or requests.Session()
        self._timeout = timeout
        if base_url:
            self._base_url = base_url.rstrip("/")

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{self.system_id} unreachable: {e}")
            raise GatewayUnavailableError(
                f"{self.system_id} unreachable: {e}", system_id=self.system_id,
            ) from e
        if response.status_code >= 500:
            raise GatewayUnavailableError(
                f"{self.system_id} answered {response.status_code}",
                system_id=self.system_id,
            )
        if response.status_code in (401, 403):
            raise GatewayConfigurationError(
                f"{self.system_id} refused the credentials ({response.status_code})",
                system_id=self.system_id,
            )
        if response.status_code >= 400:
            raise IntegrationError(
                f"{self.system_id} rejected the request ({response.status_code}): "
                f"{response.text[:200]}",
                system_id=self.system_id,
            )
        return response


MERCADOPAGO_STATUS = {
    "approved": CHARGE_PAID,
    "authorized": CHARGE_PENDING,
    "pending": CHARGE_PENDING,
    "in_process": CHARGE_PENDING,
    "rejected": CHARGE_FAILED,
    "cancelled": CHARGE_FAILED,
    "refunded": CHARGE_FAILED,
    "charged_back": CHARGE_FAILED,
}


class MercadoPagoGateway(_HttpGateway):
    _base_url = "https://api.mercadopago.com"

    def __init__(self, credentials: GatewayCredentials, **kwargs):
        if not credentials.access_token:
            raise GatewayConfigurationError(
                "Mercado Pago access token not configured", system_id=MERCADOPAGO,
            )
        super().__init__(credentials, **kwargs)

    @property
    def system_id(self) -> str:
        return MERCADOPAGO

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._credentials.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def charge(self, amount: int, order_ref: str, payer_contact: str = "") -> ChargeResult:
        body = {
            # The vendor API takes a JSON number in currency units.
            "transaction_amount": float(to_major(amount)),
            "description": f"Order #{order_ref}",
            "payment_method_id": "pix",
            "external_reference": order_ref,
            "payer": {"email": payer_contact or self._credentials.account_email},
        }
        response = self._request(
            "POST", f"{self._base_url}/v1/payments",
            json=body, headers=self._headers(idempotency_key=f"ros-{order_ref}"),
        )
        data = response.json()
        tx = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        if not data.get("id") or not tx.get("qr_code"):
            raise GatewayConfigurationError(
                f"Mercado Pago returned no PIX artifact for {order_ref}",
                system_id=MERCADOPAGO,
            )
        qr_b64 = tx.get("qr_code_base64")
        logger.info(f"Mercado Pago charge {data['id']} created for {order_ref}")
        return ChargeResult(
            immediate=False,
            charge_ref=str(data["id"]),
            qr_image=f"data:image/png;base64,{qr_b64}" if qr_b64 else None,
            copy_paste_code=tx["qr_code"],
        )

    def fetch_status(self, charge_ref: str) -> str:
        response = self._request(
            "GET", f"{self._base_url}/v1/payments/{charge_ref}", headers=self._headers(),
        )
        status = response.json().get("status", "")
        return MERCADOPAGO_STATUS.get(status, CHARGE_PENDING)


PAGSEGURO_PAID_CODES = frozenset({"3", "4"})
PAGSEGURO_FAILED_CODES = frozenset({"6", "7", "8"})


def _pagseguro_status(code: Optional[str]) -> str:
    if code in PAGSEGURO_PAID_CODES:
        return CHARGE_PAID
    if code in PAGSEGURO_FAILED_CODES:
        return CHARGE_FAILED
    return CHARGE_PENDING


class PagSeguroGateway(_HttpGateway):
    """PagSeguro v2/v3 XML API. Status 3 (paid) and 4 (available) settle."""

    _base_url = "https://ws.pagseguro.uol.com.br"
    checkout_url = "https://pagseguro.uol.com.br/checkout/pix"

    def __init__(self, credentials: GatewayCredentials, **kwargs):
        if not credentials.access_token or not credentials.account_email:
            raise GatewayConfigurationError(
                "PagSeguro token/email not configured", system_id=PAGSEGURO,
            )
        super().__init__(credentials, **kwargs)

    @property
    def system_id(self) -> str:
        return PAGSEGURO

    def _auth(self) -> Dict[str, str]:
        return {
            "email": self._credentials.account_email,
            "token": self._credentials.access_token,
        }

    def _parse(self, response: requests.Response) -> ET.Element:
        try:
            return ET.fromstring(response.text)
        except ET.ParseError as e:
            raise GatewayConfigurationError(
                f"PagSeguro answered with unreadable XML: {e}", system_id=PAGSEGURO,
            ) from e

    def charge(self, amount: int, order_ref: str, payer_contact: str = "") -> ChargeResult:
        major = to_major(amount)
        form = dict(self._auth())
        form.update({
            "paymentMethod": "pix",
            "currency": "BRL",
            "reference": order_ref,
            "itemId1": order_ref,
            "itemDescription1": f"Order #{order_ref}",
            "itemAmount1": f"{major:.2f}",
            "itemQuantity1": "1",
            "senderEmail": payer_contact or self._credentials.account_email,
        })
        response = self._request(
            "POST", f"{self._base_url}/v2/transactions", data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        code = self._parse(response).findtext("code")
        if not code:
            raise GatewayConfigurationError(
                f"PagSeguro returned no transaction code for {order_ref}",
                system_id=PAGSEGURO,
            )
        logger.info(f"PagSeguro charge {code} created for {order_ref}")
        return ChargeResult(
            immediate=False,
            charge_ref=code,
            qr_image=f"{self.checkout_url}/{code}",
            copy_paste_code=(
                f"00020126580014br.gov.bcb.pix0136{code}@pagseguro.com"
                f"520400005303986540{major:.2f}"
                f"5802BR6014PagSeguro6009Sao Paulo62070503***"
            ),
        )

    def fetch_status(self, charge_ref: str) -> str:
        response = self._request(
            "GET", f"{self._base_url}/v3/transactions/{charge_ref}", params=self._auth(),
        )
        return _pagseguro_status(self._parse(response).findtext("status"))

    def resolve_notification(self, reference: str) -> Tuple[str, str]:
        """PagSeguro webhooks carry a notificationCode, not the transaction code."""
        response = self._request(
            "GET", f"{self._base_url}/v3/transactions/notifications/{reference}",
            params=self._auth(),
        )
        root = self._parse(response)
        code = root.findtext("code")
        if not code:
            raise GatewayConfigurationError(
                f"PagSeguro notification {reference} has no transaction code",
                system_id=PAGSEGURO,
            )
        return code, _pagseguro_status(root.findtext("status"))


NUBANK_STATUS = {
    "COMPLETED": CHARGE_PAID,
    "PAID": CHARGE_PAID,
    "ACTIVE": CHARGE_PENDING,
    "PENDING": CHARGE_PENDING,
    "EXPIRED": CHARGE_FAILED,
    "CANCELLED": CHARGE_FAILED,
    "REMOVED": CHARGE_FAILED,
}


class NubankGateway(_HttpGateway):
    """
    Nubank PIX charges. Amounts go out in minor units.

    Credentials live in `extra` (client_id, client_secret); the OAuth2
    client-credentials token is fetched once per gateway instance.
    No webhook: Nubank charges settle by confirm or reconciliation.
    """

    _base_url = "https://api.nubank.com.br"

    def __init__(self, credentials: GatewayCredentials, **kwargs):
        if not credentials.extra.get("client_id") or not credentials.extra.get("client_secret"):
            raise GatewayConfigurationError(
                "Nubank client id/secret not configured", system_id=NUBANK,
            )
        super().__init__(credentials, **kwargs)
        self._token: Optional[str] = None

    @property
    def system_id(self) -> str:
        return NUBANK

    def _headers(self) -> Dict[str, str]:
        if self._token is None:
            response = self._request(
                "POST", f"{self._base_url}/oauth2/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._credentials.extra["client_id"],
                    "client_secret": self._credentials.extra["client_secret"],
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            token = (response.json() or {}).get("access_token")
            if not token:
                raise GatewayConfigurationError(
                    "Nubank issued no access token", system_id=NUBANK,
                )
            self._token = token
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    def charge(self, amount: int, order_ref: str, payer_contact: str = "") -> ChargeResult:
        body = {
            "amount": {"value": amount, "currency": "BRL"},
            "description": f"Order #{order_ref}",
            "payer": {"email": payer_contact or self._credentials.account_email},
            "external_id": order_ref,
        }
        response = self._request(
            "POST", f"{self._base_url}/v1/pix/charges", json=body, headers=self._headers(),
        )
        data = response.json() or {}
        if not data.get("id") or not data.get("qr_code"):
            raise GatewayConfigurationError(
                f"Nubank returned no PIX artifact for {order_ref}", system_id=NUBANK,
            )
        logger.info(f"Nubank charge {data['id']} created for {order_ref}")
        return ChargeResult(
            immediate=False,
            charge_ref=str(data["id"]),
            qr_image=data.get("qr_code_url"),
            copy_paste_code=data["qr_code"],
        )

    def fetch_status(self, charge_ref: str) -> str:
        response = self._request(
            "GET", f"{self._base_url}/v1/pix/charges/{charge_ref}", headers=self._headers(),
        )
        status = str((response.json() or {}).get("status", "")).upper()
        return NUBANK_STATUS.get(status, CHARGE_PENDING)


# ══════════════════════════════════════════════════════════════
# PROVIDER
# ══════════════════════════════════════════════════════════════

GATEWAY_CLASSES = {
    MERCADOPAGO: MercadoPagoGateway,
    PAGSEGURO: PagSeguroGateway,
    NUBANK: NubankGateway,
}


class GatewayProvider:
    """Builds the configured gateway for a restaurant on demand."""

    def __init__(self, config_store, *, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self._config = config_store
        self._session = session or requests.Session()
        self._timeout = timeout

    def get(self, restaurant_id: uuid.UUID, system_id: str) -> PaymentGateway:
        if system_id == MANUAL:
            return ManualGateway()
        gateway_class = GATEWAY_CLASSES.get(system_id)
        if gateway_class is None:
            raise GatewayConfigurationError(
                f"Unknown payment gateway '{system_id}'", system_id=system_id,
            )
        credentials = self._config.get_gateway_credentials(restaurant_id, system_id)
        if credentials is None:
            raise GatewayConfigurationError(
                f"Gateway '{system_id}' not configured for restaurant {restaurant_id}",
                system_id=system_id,
            )
        return gateway_class(credentials, session=self._session, timeout=self._timeout)
