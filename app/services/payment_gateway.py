"""Paylink payment gateway integration."""

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from urllib.parse import quote

import httpx

from app.config import settings
from app.errors import GatewayError
from app.metrics import PAYLINK_REQUESTS

logger = logging.getLogger(__name__)

PAYLINK_AUTH_PATH = "/api/auth"
PAYLINK_ADD_INVOICE_PATH = "/api/addInvoice"
PAYLINK_GET_INVOICE_PATH = "/api/getInvoice/{transaction_no}"
PAYLINK_GET_ORDER_PATH = "/api/getInvoiceByOrderNumber/{order_number}"
SUPPORTED_CARD_BRANDS = ["mada", "visaMastercard", "stcpay"]


class ProviderStatus(str, enum.Enum):
    paid = "paid"
    not_paid = "not_paid"
    unknown = "unknown"


def normalize_status(value: Any) -> ProviderStatus:
    """Map Paylink's free-form order status onto a closed set."""
    text = str(value or "").strip().lower()
    if not text:
        return ProviderStatus.unknown
    if text == "paid":
        return ProviderStatus.paid
    return ProviderStatus.not_paid


@dataclass(frozen=True)
class InvoiceStatusSnapshot:
    status: ProviderStatus
    raw_status: str = ""
    payment_errors: list[dict[str, Any]] = field(default_factory=list)
    receipt_url: str | None = None
    transaction_no: str | None = None
    order_number: str | None = None

    @property
    def is_paid(self) -> bool:
        return self.status is ProviderStatus.paid


@dataclass(frozen=True)
class RemoteInvoice:
    pay_url: str
    provider_invoice_id: str


@dataclass(frozen=True)
class Customer:
    name: str
    email: str
    mobile: str


def snapshot_from_payload(data: dict[str, Any]) -> InvoiceStatusSnapshot:
    raw_status = str(data.get("orderStatus") or data.get("status") or "")
    errors = data.get("paymentErrors")
    receipt = data.get("paymentReceipt") or {}
    order_request = data.get("gatewayOrderRequest") or {}
    order_number = (
        order_request.get("orderNumber")
        or data.get("merchantOrderNumber")
        or data.get("orderNumber")
    )
    transaction_no = data.get("transactionNo")
    return InvoiceStatusSnapshot(
        status=normalize_status(raw_status),
        raw_status=raw_status,
        payment_errors=[e for e in errors if isinstance(e, dict)]
        if isinstance(errors, list)
        else [],
        receipt_url=receipt.get("url") if isinstance(receipt, dict) else None,
        transaction_no=str(transaction_no) if transaction_no else None,
        order_number=str(order_number) if order_number else None,
    )


@dataclass
class TokenCache:
    """Bearer token plus the monotonic instant it stops being valid."""

    value: str | None = None
    expires_at: float = 0.0

    def usable(self, now: float, margin_seconds: float) -> bool:
        return bool(self.value) and self.expires_at - now > margin_seconds

    def clear(self) -> None:
        self.value = None
        self.expires_at = 0.0


class PaylinkGateway:
    """Thin wrapper around the Paylink REST API.

    Every failure (transport, timeout, non-2xx, malformed body, auth) is raised
    as GatewayError so callers can treat it as "unknown".
    """

    provider = "paylink"

    def __init__(
        self,
        base_url: str | None = None,
        api_id: str | None = None,
        secret: str | None = None,
        timeout: float | None = None,
        token_margin_seconds: float | None = None,
        token_cache: TokenCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = (base_url or settings.paylink_base_url).rstrip("/")
        self._api_id = settings.paylink_api_id if api_id is None else api_id
        self._secret = settings.paylink_secret if secret is None else secret
        self._timeout = timeout or settings.paylink_timeout_seconds
        self._token_margin = (
            settings.paylink_token_margin_seconds
            if token_margin_seconds is None
            else token_margin_seconds
        )
        self._token_cache = token_cache or TokenCache()
        self._clock = clock

    def is_configured(self) -> bool:
        return bool(self._api_id and self._secret)

    # ── Auth ─────────────────────────────────────────────

    def _token(self) -> str:
        now = self._clock()
        if self._token_cache.usable(now, self._token_margin):
            return self._token_cache.value  # type: ignore[return-value]
        if not self.is_configured():
            raise GatewayError("Paylink is not configured")
        payload = {
            "apiId": self._api_id,
            "secretKey": self._secret,
            "persistToken": True,
        }
        data = self._send("auth", "POST", PAYLINK_AUTH_PATH, json=payload)
        token = data.get("id_token")
        if not token:
            raise GatewayError("Paylink auth response is missing id_token")
        try:
            ttl = float(data.get("expires_in") or settings.paylink_default_token_ttl_seconds)
        except (TypeError, ValueError):
            ttl = float(settings.paylink_default_token_ttl_seconds)
        self._token_cache.value = str(token)
        self._token_cache.expires_at = now + ttl
        logger.info("Acquired Paylink token (ttl=%ss)", int(ttl))
        return self._token_cache.value

    # ── Transport ────────────────────────────────────────

    def _send(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.request(
                    method, f"{self._base_url}{path}", json=json, headers=headers
                )
        except httpx.HTTPError as exc:
            PAYLINK_REQUESTS.labels(operation, "transport_error").inc()
            logger.warning("Paylink %s request failed: %s", operation, exc)
            raise GatewayError(f"Paylink {operation} request failed: {exc}") from exc

        if resp.status_code == 401 and token:
            self._token_cache.clear()
        if resp.status_code < 200 or resp.status_code >= 300:
            PAYLINK_REQUESTS.labels(operation, "http_error").inc()
            logger.warning(
                "Paylink %s returned %s: %s", operation, resp.status_code, resp.text[:500]
            )
            raise GatewayError(f"Paylink {operation} returned {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            PAYLINK_REQUESTS.labels(operation, "malformed").inc()
            raise GatewayError(f"Paylink {operation} returned invalid JSON") from exc
        if not isinstance(data, dict):
            PAYLINK_REQUESTS.labels(operation, "malformed").inc()
            raise GatewayError(f"Paylink {operation} returned an unexpected body")
        PAYLINK_REQUESTS.labels(operation, "ok").inc()
        return data

    def _authorized(
        self, operation: str, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return self._send(operation, method, path, json=json, token=self._token())

    # ── Invoices ─────────────────────────────────────────

    def create_remote_invoice(
        self,
        order_number: str,
        amount: Decimal,
        currency: str,
        customer: Customer,
        callback_url: str,
        cancel_url: str,
        line_items: list[dict[str, Any]],
        note: str | None = None,
    ) -> RemoteInvoice:
        """Create a Paylink invoice and return where the payer should be sent."""
        payload: dict[str, Any] = {
            "orderNumber": order_number,
            "amount": float(amount),
            "currency": currency,
            "clientName": customer.name,
            "clientEmail": customer.email,
            "clientMobile": customer.mobile,
            "products": line_items,
            "supportedCardBrands": SUPPORTED_CARD_BRANDS,
            "callBackUrl": callback_url,
            "cancelUrl": cancel_url,
        }
        if note:
            payload["note"] = note
        data = self._authorized("add_invoice", "POST", PAYLINK_ADD_INVOICE_PATH, payload)
        pay_url = data.get("url")
        provider_id = data.get("transactionNo") or data.get("invoiceId")
        if not pay_url or not provider_id:
            raise GatewayError("Paylink addInvoice response is missing url or transactionNo")
        logger.info(
            "Created Paylink invoice %s", provider_id, extra={"order_number": order_number}
        )
        return RemoteInvoice(pay_url=str(pay_url), provider_invoice_id=str(provider_id))

    def get_invoice_status(self, provider_invoice_id: str) -> InvoiceStatusSnapshot:
        path = PAYLINK_GET_INVOICE_PATH.format(
            transaction_no=quote(str(provider_invoice_id), safe="")
        )
        data = self._authorized("get_invoice", "GET", path)
        snapshot = snapshot_from_payload(data)
        if snapshot.transaction_no is None:
            snapshot = InvoiceStatusSnapshot(
                status=snapshot.status,
                raw_status=snapshot.raw_status,
                payment_errors=snapshot.payment_errors,
                receipt_url=snapshot.receipt_url,
                transaction_no=str(provider_invoice_id),
                order_number=snapshot.order_number,
            )
        return snapshot

    def get_order_status_by_order_number(self, order_number: str) -> InvoiceStatusSnapshot:
        path = PAYLINK_GET_ORDER_PATH.format(order_number=quote(order_number, safe=""))
        data = self._authorized("get_order", "GET", path)
        return snapshot_from_payload(data)


class SimulatedGateway:
    """Development stand-in that reports a fixed outcome for every lookup."""

    provider = "paylink"

    def __init__(self, paid: bool = True, payment_errors: list[dict[str, Any]] | None = None):
        self._paid = paid
        self._errors = payment_errors or [
            {"code": "SIMULATED", "title": "Simulated failure", "message": "Declined"}
        ]

    def is_configured(self) -> bool:
        return True

    def _snapshot(self, reference: str, order_number: str | None) -> InvoiceStatusSnapshot:
        if self._paid:
            return InvoiceStatusSnapshot(
                status=ProviderStatus.paid,
                raw_status="Paid",
                transaction_no=f"SIM-{reference}",
                order_number=order_number,
            )
        return InvoiceStatusSnapshot(
            status=ProviderStatus.not_paid,
            raw_status="Declined",
            payment_errors=list(self._errors),
            order_number=order_number,
        )

    def create_remote_invoice(self, order_number: str, *args: Any, **kwargs: Any) -> RemoteInvoice:
        return RemoteInvoice(
            pay_url=f"{settings.app_url}/simulated-pay/{order_number}",
            provider_invoice_id=f"SIM-{order_number}",
        )

    def get_invoice_status(self, provider_invoice_id: str) -> InvoiceStatusSnapshot:
        return self._snapshot(provider_invoice_id, None)

    def get_order_status_by_order_number(self, order_number: str) -> InvoiceStatusSnapshot:
        return self._snapshot(order_number, order_number)
