import logging
import secrets
import time
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import InvalidProduct, InvoiceNotFound, ProfileNotFound
from app.models.billing import (
    PAYMENT_ERROR_TRAIL_LIMIT,
    Invoice,
    InvoiceProduct,
    InvoiceStatus,
    TargetType,
    purpose_key,
)
from app.models.user import Profile
from app.services.billing.payment_events import payment_events
from app.services.billing.pricing import PricingTable
from app.services.common import coerce_uuid
from app.services.payment_gateway import InvoiceStatusSnapshot, RemoteInvoice

logger = logging.getLogger(__name__)

ORDER_PREFIXES = {
    InvoiceProduct.contacts_access: "ACC",
    InvoiceProduct.listing: "LST",
    InvoiceProduct.promotion: "PRM",
}
DEFAULT_FEATURE_TYPE = "toplist"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def make_order_number(product: InvoiceProduct, user_id: uuid.UUID) -> str:
    stamp = _base36(int(time.time() * 1000))
    nonce = secrets.token_hex(2)
    return f"{ORDER_PREFIXES[product]}-{user_id.hex[-6:]}-{stamp}{nonce}".upper()


def parse_product(value: Any) -> InvoiceProduct:
    if isinstance(value, InvoiceProduct):
        return value
    try:
        return InvoiceProduct(str(value or "").strip().lower())
    except ValueError as exc:
        raise InvalidProduct(f"Unknown product: {value}") from exc


def push_payment_errors(invoice: Invoice, entries: list[dict[str, Any]]) -> None:
    """Prepend provider errors to the invoice's bounded trail."""
    if not entries:
        return
    now = datetime.now(UTC).isoformat()
    fresh = [
        {
            "code": entry.get("code"),
            "title": entry.get("title"),
            "message": entry.get("message"),
            "at": entry.get("at") or now,
        }
        for entry in entries
    ]
    # Reassign so the JSON column is marked dirty
    invoice.last_payment_errors = (fresh + list(invoice.last_payment_errors or []))[
        :PAYMENT_ERROR_TRAIL_LIMIT
    ]


class InvoiceLedger:
    def __init__(self, pricing: PricingTable | None = None) -> None:
        self.pricing = pricing or PricingTable.from_settings()

    # ── Lookups ──────────────────────────────────────────

    @staticmethod
    def get_for_user(db: Session, invoice_id: str, user_id: uuid.UUID | None) -> Invoice:
        try:
            item = db.get(Invoice, coerce_uuid(invoice_id))
        except ValueError:
            item = None
        if not item or (user_id is not None and item.user_id != user_id):
            raise InvoiceNotFound("Invoice not found")
        return item

    @staticmethod
    def get_by_order_number(
        db: Session, order_number: str, user_id: uuid.UUID | None = None
    ) -> Invoice:
        stmt = select(Invoice).where(Invoice.order_number == order_number)
        if user_id is not None:
            stmt = stmt.where(Invoice.user_id == user_id)
        item = db.scalar(stmt)
        if not item:
            raise InvoiceNotFound("Invoice not found")
        return item

    @staticmethod
    def find_by_order_number(db: Session, order_number: str) -> Invoice | None:
        return db.scalar(select(Invoice).where(Invoice.order_number == order_number))

    @staticmethod
    def find_pending(db: Session, user_id: uuid.UUID, key: str) -> Invoice | None:
        stmt = select(Invoice).where(
            Invoice.user_id == user_id,
            Invoice.purpose_key == key,
            Invoice.status == InvoiceStatus.pending,
        )
        return db.scalar(stmt)

    @staticmethod
    def reconcile_candidates(
        db: Session,
        user_id: uuid.UUID | None = None,
        invoice_ids: list[str] | None = None,
        order_numbers: list[str] | None = None,
        limit: int = 50,
    ) -> list[Invoice]:
        stmt = select(Invoice).where(
            Invoice.status.in_([InvoiceStatus.pending, InvoiceStatus.paid])
        )
        if user_id is not None:
            stmt = stmt.where(Invoice.user_id == user_id)
        if invoice_ids:
            ids = []
            for value in invoice_ids:
                try:
                    ids.append(coerce_uuid(value))
                except ValueError:
                    logger.warning("Ignoring malformed invoice id %r", value)
            stmt = stmt.where(Invoice.id.in_(ids))
        elif order_numbers:
            stmt = stmt.where(Invoice.order_number.in_(order_numbers))
        else:
            stmt = stmt.where(Invoice.provider_invoice_id.is_not(None))
        stmt = stmt.order_by(Invoice.created_at.desc()).limit(limit)
        return list(db.scalars(stmt).all())

    # ── Drafts ───────────────────────────────────────────

    def create_draft(
        self,
        db: Session,
        user_id: uuid.UUID,
        product: Any,
        profile_id: str | uuid.UUID | None = None,
        duration_days: int | None = None,
        force: bool = False,
    ) -> Invoice:
        """Find or create the single pending invoice for (user, product, profile)."""
        invoice, _ = self.open_draft(
            db, user_id, product, profile_id, duration_days=duration_days, force=force
        )
        return invoice

    def open_draft(
        self,
        db: Session,
        user_id: uuid.UUID,
        product: Any,
        profile_id: str | uuid.UUID | None = None,
        duration_days: int | None = None,
        force: bool = False,
    ) -> tuple[Invoice, bool]:
        """Like ``create_draft`` but also reports whether a new invoice was created."""
        product = parse_product(product)
        profile: Profile | None = None
        if product is not InvoiceProduct.contacts_access:
            profile = self._owned_profile(db, user_id, profile_id)
        target_type = TargetType(profile.target_type.value) if profile else None
        quote = self.pricing.quote(product, target_type, duration_days)
        key = purpose_key(product, profile.id if profile else None)

        existing = self.find_pending(db, user_id, key)
        if existing and not force and existing.duration_days == quote.duration_days:
            logger.info(
                "Reusing pending invoice %s",
                existing.id,
                extra={"order_number": existing.order_number},
            )
            return existing, False
        if existing:
            existing.status = InvoiceStatus.cancelled
            db.flush()
            logger.info(
                "Superseded pending invoice %s",
                existing.id,
                extra={"order_number": existing.order_number},
            )

        invoice = Invoice(
            order_number=make_order_number(product, user_id),
            user_id=user_id,
            product=product,
            purpose_key=key,
            profile_id=profile.id if profile else None,
            target_type=target_type,
            amount=quote.amount,
            currency=settings.payment_currency,
            duration_days=quote.duration_days,
            feature_type=DEFAULT_FEATURE_TYPE
            if product is InvoiceProduct.promotion
            else None,
            status=InvoiceStatus.pending,
            last_payment_errors=[],
            expires_at=datetime.now(UTC)
            + timedelta(hours=settings.invoice_draft_ttl_hours),
        )
        db.add(invoice)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request created the pending invoice first
            db.rollback()
            winner = self.find_pending(db, user_id, key)
            if winner is None:
                raise
            logger.info(
                "Lost pending-invoice race; reusing %s",
                winner.id,
                extra={"order_number": winner.order_number},
            )
            return winner, False
        db.refresh(invoice)
        logger.info(
            "Created draft invoice %s (%s %s %s)",
            invoice.id,
            product.value,
            invoice.amount,
            invoice.currency,
            extra={"order_number": invoice.order_number},
        )
        return invoice, True

    @staticmethod
    def _owned_profile(
        db: Session, user_id: uuid.UUID, profile_id: str | uuid.UUID | None
    ) -> Profile:
        if not profile_id:
            raise ProfileNotFound("profile_id is required for this product")
        try:
            profile = db.get(Profile, coerce_uuid(profile_id))
        except ValueError:
            profile = None
        if not profile or profile.user_id != user_id:
            raise ProfileNotFound("Profile not found or not owned by user")
        return profile

    # ── Provider linkage ─────────────────────────────────

    @staticmethod
    def attach_provider_invoice(
        db: Session, invoice: Invoice, remote: RemoteInvoice
    ) -> Invoice:
        if invoice.provider_invoice_id and invoice.payment_url:
            return invoice
        invoice.provider_invoice_id = remote.provider_invoice_id
        invoice.payment_url = remote.pay_url
        invoice.invoice_number = invoice.invoice_number or invoice.order_number
        db.commit()
        db.refresh(invoice)
        logger.info(
            "Attached provider invoice %s",
            remote.provider_invoice_id,
            extra={"order_number": invoice.order_number, "invoice_id": str(invoice.id)},
        )
        return invoice

    # ── State transitions (run inside a caller's transaction) ──

    @staticmethod
    def mark_paid(db: Session, invoice: Invoice, snapshot: InvoiceStatusSnapshot) -> bool:
        """Transition to paid; False when another caller already did."""
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "status": InvoiceStatus.paid,
            "paid_at": now,
            "last_provider_status": snapshot.raw_status or snapshot.status.value,
            "last_verified_at": now,
            "updated_at": now,
        }
        transaction_no = snapshot.transaction_no or invoice.provider_invoice_id
        if transaction_no:
            values["provider_transaction_no"] = transaction_no
        if snapshot.receipt_url:
            values["payment_receipt_url"] = snapshot.receipt_url
        result = db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status != InvoiceStatus.paid)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.refresh(invoice)
        return result.rowcount == 1

    def revert_to_pending_if_unproven(self, db: Session, invoice: Invoice) -> bool:
        """Undo a local "paid" that nothing ever proved."""
        if invoice.status is not InvoiceStatus.paid:
            return False
        log_extra = {"order_number": invoice.order_number, "invoice_id": str(invoice.id)}
        if invoice.provider_transaction_no or payment_events.has_paid_event(
            db, invoice.order_number
        ):
            logger.warning(
                "Revert to pending blocked: proof of payment exists", extra=log_extra
            )
            return False
        if self.find_pending(db, invoice.user_id, invoice.purpose_key):
            logger.warning(
                "Revert to pending blocked: another pending invoice exists",
                extra=log_extra,
            )
            return False
        result = db.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.status == InvoiceStatus.paid,
                Invoice.provider_transaction_no.is_(None),
            )
            .values(
                status=InvoiceStatus.pending,
                paid_at=None,
                payment_receipt_url=None,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        db.refresh(invoice)
        if result.rowcount == 1:
            logger.info("Reverted unproven paid invoice to pending", extra=log_extra)
            return True
        return False


invoices = InvoiceLedger()
