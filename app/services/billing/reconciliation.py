"""Reconcile local invoices with what Paylink says about them.

Webhook deliveries, manual rechecks and the batch sweep all end in
``ReconciliationEngine.verify_and_apply``. The provider's own lookup endpoint
is the only source of truth; a webhook body is just a hint about which
invoice to look at.

Exactly-once application of a payment hinges on the PaymentEvent unique key:
the caller whose ``invoice.paid`` insert succeeds marks the invoice paid and
grants the entitlement in the same transaction, everyone else sees a
duplicate and stops.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.db import run_atomic
from app.errors import GatewayError, UnauthorizedWebhook
from app.metrics import PAYMENT_RECONCILE, PAYMENT_WEBHOOKS
from app.models.billing import (
    PAYLINK_PROVIDER,
    Invoice,
    InvoiceStatus,
    PaymentEventType,
)
from app.services.billing.entitlements import EntitlementGranter, entitlements
from app.services.billing.invoices import invoices, push_payment_errors
from app.services.billing.payment_events import payment_events
from app.services.payment_gateway import InvoiceStatusSnapshot, ProviderStatus

logger = logging.getLogger(__name__)

RECONCILE_ERROR = "RECONCILE_ERROR"


@dataclass
class ApplyOutcome:
    status_changed: bool = False
    paid: bool = False
    duplicate: bool = False
    reverted: bool = False


@dataclass
class WebhookResult:
    ok: bool
    verified: bool
    duplicate: bool = False
    detail: str | None = None


@dataclass
class RecheckResult:
    invoice: Invoice
    verified: bool
    error: str | None = None

    @property
    def paid(self) -> bool:
        return self.invoice.status is InvoiceStatus.paid


@dataclass
class ReconcileSummary:
    checked: int = 0
    updated: int = 0
    failed: int = 0


def authenticate_webhook(authorization: str | None) -> None:
    """Compare the webhook credential byte-for-byte with configuration."""
    expected = settings.paylink_webhook_auth
    if not expected or not authorization:
        PAYMENT_WEBHOOKS.labels("unauthorized").inc()
        raise UnauthorizedWebhook("Webhook authorization failed")
    if not hmac.compare_digest(authorization.encode(), expected.encode()):
        PAYMENT_WEBHOOKS.labels("unauthorized").inc()
        raise UnauthorizedWebhook("Webhook authorization failed")


class ReconciliationEngine:
    def __init__(self, gateway, granter: EntitlementGranter | None = None) -> None:
        self.gateway = gateway
        self.granter = granter or entitlements

    # ── Critical section ─────────────────────────────────

    def verify_and_apply(
        self,
        db: Session,
        invoice: Invoice,
        snapshot: InvoiceStatusSnapshot,
        webhook_payload: dict[str, Any] | None = None,
    ) -> ApplyOutcome:
        """Apply a freshly fetched provider snapshot to ``invoice``.

        The session must have no pending writes: a duplicate event rolls the
        whole transaction back.
        """
        if snapshot.status is ProviderStatus.paid:
            if invoice.status is InvoiceStatus.paid:
                self._refresh_paid_details(db, invoice, snapshot)
                return ApplyOutcome(paid=True)
            return self._apply_paid(db, invoice, snapshot, webhook_payload)
        if snapshot.status is ProviderStatus.not_paid:
            return self._apply_not_paid(db, invoice, snapshot, webhook_payload)

        invoice.last_provider_status = snapshot.raw_status or ProviderStatus.unknown.value
        invoice.last_verified_at = datetime.now(UTC)
        db.commit()
        return ApplyOutcome(paid=invoice.status is InvoiceStatus.paid)

    def _apply_paid(
        self,
        db: Session,
        invoice: Invoice,
        snapshot: InvoiceStatusSnapshot,
        webhook_payload: dict[str, Any] | None,
    ) -> ApplyOutcome:
        event_id = (
            snapshot.transaction_no or invoice.provider_invoice_id or invoice.order_number
        )
        order_number = invoice.order_number
        log_extra = {"order_number": order_number, "invoice_id": str(invoice.id)}

        def work() -> ApplyOutcome:
            inserted = payment_events.record_event(
                db,
                PAYLINK_PROVIDER,
                event_id,
                order_number,
                PaymentEventType.invoice_paid,
                webhook_payload or {"source": "lookup", "status": snapshot.raw_status},
            )
            if not inserted:
                return ApplyOutcome(paid=True, duplicate=True)
            if not invoices.mark_paid(db, invoice, snapshot):
                return ApplyOutcome(paid=True)
            self.granter.grant_for_paid_invoice(db, invoice)
            return ApplyOutcome(status_changed=True, paid=True)

        outcome = run_atomic(db, work)
        if outcome.status_changed:
            logger.info("Invoice paid (event %s)", event_id, extra=log_extra)
        elif outcome.duplicate:
            logger.info("Payment event %s already applied", event_id, extra=log_extra)
        return outcome

    @staticmethod
    def _refresh_paid_details(
        db: Session, invoice: Invoice, snapshot: InvoiceStatusSnapshot
    ) -> None:
        if not invoice.provider_transaction_no and snapshot.transaction_no:
            invoice.provider_transaction_no = snapshot.transaction_no
        if not invoice.payment_receipt_url and snapshot.receipt_url:
            invoice.payment_receipt_url = snapshot.receipt_url
        invoice.last_provider_status = snapshot.raw_status or snapshot.status.value
        invoice.last_verified_at = datetime.now(UTC)
        db.commit()

    def _apply_not_paid(
        self,
        db: Session,
        invoice: Invoice,
        snapshot: InvoiceStatusSnapshot,
        webhook_payload: dict[str, Any] | None,
    ) -> ApplyOutcome:
        if webhook_payload is not None and snapshot.transaction_no:
            payment_events.record_event(
                db,
                PAYLINK_PROVIDER,
                f"{snapshot.transaction_no}:{snapshot.raw_status.lower() or 'unknown'}",
                invoice.order_number,
                PaymentEventType.invoice_update,
                webhook_payload,
            )

        def work() -> ApplyOutcome:
            before = invoice.status
            invoice.last_provider_status = snapshot.raw_status or snapshot.status.value
            invoice.last_verified_at = datetime.now(UTC)
            push_payment_errors(invoice, snapshot.payment_errors)
            db.flush()
            reverted = invoices.revert_to_pending_if_unproven(db, invoice)
            return ApplyOutcome(
                status_changed=invoice.status is not before,
                paid=invoice.status is InvoiceStatus.paid,
                reverted=reverted,
            )

        return run_atomic(db, work)

    # ── Entry points ─────────────────────────────────────

    def handle_webhook(self, db: Session, payload: dict[str, Any]) -> WebhookResult:
        """Verify an authenticated webhook delivery and apply it.

        Never raises: the provider gets HTTP 200 and a flag describing what
        happened, and redelivery or the sweep picks up anything unverified.
        """
        transaction_no = str(payload.get("transactionNo") or "").strip()
        order_number = str(
            payload.get("merchantOrderNumber") or payload.get("orderNumber") or ""
        ).strip()
        if not transaction_no and not order_number:
            PAYMENT_WEBHOOKS.labels("ignored").inc()
            return WebhookResult(ok=True, verified=False, detail="missing_identifiers")

        try:
            if transaction_no:
                snapshot = self.gateway.get_invoice_status(transaction_no)
            else:
                snapshot = self.gateway.get_order_status_by_order_number(order_number)
        except GatewayError as exc:
            PAYMENT_WEBHOOKS.labels("unverified").inc()
            logger.warning(
                "Webhook verification failed: %s",
                exc.message,
                extra={"order_number": order_number or None},
            )
            return WebhookResult(ok=True, verified=False, detail="verification_failed")

        try:
            invoice = self._find_invoice(
                db, snapshot.order_number or order_number, transaction_no
            )
            if invoice is None:
                PAYMENT_WEBHOOKS.labels("invoice_not_found").inc()
                logger.warning(
                    "Webhook for unknown invoice (transaction %s)",
                    transaction_no or "-",
                    extra={"order_number": snapshot.order_number or order_number},
                )
                return WebhookResult(ok=True, verified=True, detail="invoice_not_found")
            outcome = self.verify_and_apply(db, invoice, snapshot, webhook_payload=payload)
        except SQLAlchemyError:
            db.rollback()
            PAYMENT_WEBHOOKS.labels("apply_failed").inc()
            logger.exception(
                "Failed to apply webhook", extra={"order_number": order_number or None}
            )
            return WebhookResult(ok=False, verified=True, detail="apply_failed")

        if outcome.duplicate:
            PAYMENT_WEBHOOKS.labels("duplicate").inc()
        elif outcome.status_changed:
            PAYMENT_WEBHOOKS.labels("applied").inc()
        else:
            PAYMENT_WEBHOOKS.labels("no_change").inc()
        return WebhookResult(
            ok=True,
            verified=True,
            duplicate=outcome.duplicate,
            detail=snapshot.status.value,
        )

    @staticmethod
    def _find_invoice(
        db: Session, order_number: str, transaction_no: str
    ) -> Invoice | None:
        if order_number:
            invoice = invoices.find_by_order_number(db, order_number)
            if invoice is not None:
                return invoice
        if transaction_no:
            stmt = select(Invoice).where(
                (Invoice.provider_invoice_id == transaction_no)
                | (Invoice.provider_transaction_no == transaction_no)
            )
            return db.scalars(stmt).first()
        return None

    def recheck_by_order_number(
        self, db: Session, order_number: str, user_id
    ) -> RecheckResult:
        """Look the caller's invoice up at the provider by order number."""
        invoice = invoices.get_by_order_number(db, order_number, user_id)
        try:
            snapshot = self.gateway.get_order_status_by_order_number(invoice.order_number)
        except GatewayError as exc:
            logger.warning(
                "Recheck failed: %s",
                exc.message,
                extra={"order_number": order_number},
            )
            return RecheckResult(invoice=invoice, verified=False, error="verification_failed")
        try:
            self.verify_and_apply(db, invoice, snapshot)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Recheck apply failed", extra={"order_number": order_number})
            return RecheckResult(invoice=invoice, verified=False, error="apply_failed")
        db.refresh(invoice)
        return RecheckResult(invoice=invoice, verified=True)

    def verify_invoice(self, db: Session, invoice: Invoice) -> ApplyOutcome:
        """Fetch a fresh snapshot for ``invoice`` and apply it; GatewayError propagates."""
        if invoice.provider_invoice_id:
            snapshot = self.gateway.get_invoice_status(invoice.provider_invoice_id)
        else:
            snapshot = self.gateway.get_order_status_by_order_number(invoice.order_number)
        return self.verify_and_apply(db, invoice, snapshot)

    def reconcile(
        self,
        db: Session,
        user_id=None,
        invoice_ids: list[str] | None = None,
        order_numbers: list[str] | None = None,
        limit: int | None = None,
    ) -> ReconcileSummary:
        """Verify a batch of invoices, one failure never stopping the rest."""
        candidates = invoices.reconcile_candidates(
            db,
            user_id=user_id,
            invoice_ids=invoice_ids,
            order_numbers=order_numbers,
            limit=limit or settings.reconcile_batch_limit,
        )
        summary = ReconcileSummary()
        for invoice in candidates:
            summary.checked += 1
            order_number = invoice.order_number
            try:
                outcome = self.verify_invoice(db, invoice)
            except GatewayError as exc:
                summary.failed += 1
                PAYMENT_RECONCILE.labels("gateway_error").inc()
                logger.warning(
                    "Reconcile lookup failed: %s",
                    exc.message,
                    extra={"order_number": order_number},
                )
                self._record_failure(db, invoice, exc)
                continue
            except SQLAlchemyError:
                db.rollback()
                summary.failed += 1
                PAYMENT_RECONCILE.labels("error").inc()
                logger.exception("Reconcile apply failed", extra={"order_number": order_number})
                continue

            if outcome.reverted:
                PAYMENT_RECONCILE.labels("reverted").inc()
            elif outcome.status_changed:
                PAYMENT_RECONCILE.labels("paid").inc()
            elif outcome.duplicate:
                PAYMENT_RECONCILE.labels("duplicate").inc()
            else:
                PAYMENT_RECONCILE.labels("unchanged").inc()
            if outcome.status_changed:
                summary.updated += 1

        logger.info(
            "Reconcile sweep checked=%s updated=%s failed=%s",
            summary.checked,
            summary.updated,
            summary.failed,
        )
        return summary

    @staticmethod
    def _record_failure(db: Session, invoice: Invoice, exc: GatewayError) -> None:
        push_payment_errors(
            invoice,
            [{"code": RECONCILE_ERROR, "title": "Reconcile failed", "message": exc.message}],
        )
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Could not record reconcile failure",
                extra={"order_number": invoice.order_number},
            )
