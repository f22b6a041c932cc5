"""Turn a paid invoice into product entitlements.

Each product maps to one effect descriptor. The descriptor is built once from
the invoice and applied the same way by every caller (webhook, recheck, sweep
and the simulated checkout), so there is one place that decides what a paid
invoice is worth.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.billing import (
    Entitlement,
    Invoice,
    InvoiceProduct,
    TargetType,
    scope_key,
)
from app.models.user import Profile, User
from app.services.billing.invoices import DEFAULT_FEATURE_TYPE
from app.services.billing.pricing import PricingTable
from app.services.common import as_utc

logger = logging.getLogger(__name__)

CONTACTS_ACCESS = "contacts_access"


def listed_type(target: TargetType) -> str:
    return f"listed_{target.value}"


def promoted_type(target: TargetType) -> str:
    return f"promoted_{target.value}"


def _owned_profile(db: Session, invoice: Invoice) -> Profile | None:
    if invoice.profile_id is None:
        return None
    profile = db.get(Profile, invoice.profile_id)
    if profile is None or profile.user_id != invoice.user_id:
        logger.warning(
            "Profile %s no longer belongs to the invoice owner; skipping profile flags",
            invoice.profile_id,
            extra={"order_number": invoice.order_number},
        )
        return None
    return profile


@dataclass(frozen=True)
class ContactsAccessGrant:
    user_id: uuid.UUID
    expires_at: datetime

    @property
    def entitlement_type(self) -> str:
        return CONTACTS_ACCESS

    @property
    def profile_id(self) -> uuid.UUID | None:
        return None

    def apply_flags(self, db: Session, invoice: Invoice, now: datetime) -> None:
        user = db.get(User, self.user_id)
        if user is not None:
            user.is_active = True


@dataclass(frozen=True)
class ListingGrant:
    user_id: uuid.UUID
    profile_id: uuid.UUID | None
    target_type: TargetType
    expires_at: datetime

    @property
    def entitlement_type(self) -> str:
        return listed_type(self.target_type)

    def apply_flags(self, db: Session, invoice: Invoice, now: datetime) -> None:
        profile = _owned_profile(db, invoice)
        if profile is None:
            return
        profile.is_listed = True
        profile.is_active = True
        profile.listing_expires_at = self.expires_at


@dataclass(frozen=True)
class PromotionGrant:
    user_id: uuid.UUID
    profile_id: uuid.UUID | None
    target_type: TargetType
    feature_type: str
    expires_at: datetime

    @property
    def entitlement_type(self) -> str:
        return promoted_type(self.target_type)

    def apply_flags(self, db: Session, invoice: Invoice, now: datetime) -> None:
        profile = _owned_profile(db, invoice)
        if profile is None:
            return
        profile.promotion_status = True
        profile.promotion_type = self.feature_type
        profile.promotion_start = now
        profile.promotion_end = self.expires_at


Effect = ContactsAccessGrant | ListingGrant | PromotionGrant


def describe_effect(invoice: Invoice, pricing: PricingTable, now: datetime) -> Effect:
    """Build the effect descriptor a paid ``invoice`` entitles its owner to."""
    days = pricing.grant_days(invoice.product, invoice.duration_days)
    expires_at = now + timedelta(days=days)
    target = invoice.target_type or TargetType.player
    if invoice.product is InvoiceProduct.contacts_access:
        return ContactsAccessGrant(user_id=invoice.user_id, expires_at=expires_at)
    if invoice.product is InvoiceProduct.listing:
        return ListingGrant(
            user_id=invoice.user_id,
            profile_id=invoice.profile_id,
            target_type=target,
            expires_at=expires_at,
        )
    return PromotionGrant(
        user_id=invoice.user_id,
        profile_id=invoice.profile_id,
        target_type=target,
        feature_type=invoice.feature_type or DEFAULT_FEATURE_TYPE,
        expires_at=expires_at,
    )


class EntitlementGranter:
    def __init__(self, pricing: PricingTable | None = None) -> None:
        self.pricing = pricing or PricingTable.from_settings()

    def grant_for_paid_invoice(
        self, db: Session, invoice: Invoice, now: datetime | None = None
    ) -> Entitlement:
        """Upsert the entitlement for a paid invoice and set denormalised flags.

        Callers guarantee the invoice is paid and run this inside their own
        transaction; nothing is committed here.
        """
        now = now or datetime.now(UTC)
        effect = describe_effect(invoice, self.pricing, now)
        key = scope_key(effect.profile_id)
        stmt = select(Entitlement).where(
            Entitlement.user_id == effect.user_id,
            Entitlement.type == effect.entitlement_type,
            Entitlement.scope_key == key,
        )
        entitlement = db.scalar(stmt)
        if entitlement is None:
            entitlement = Entitlement(
                user_id=effect.user_id,
                type=effect.entitlement_type,
                profile_id=effect.profile_id,
                scope_key=key,
            )
            db.add(entitlement)
        entitlement.active = True
        entitlement.granted_at = now
        entitlement.expires_at = effect.expires_at
        entitlement.source_invoice_id = invoice.id
        effect.apply_flags(db, invoice, now)
        db.flush()
        logger.info(
            "Granted %s until %s",
            effect.entitlement_type,
            effect.expires_at.isoformat(),
            extra={"order_number": invoice.order_number, "invoice_id": str(invoice.id)},
        )
        return entitlement

    # ── Reads ────────────────────────────────────────────

    @staticmethod
    def active_for_user(
        db: Session, user_id: uuid.UUID, now: datetime | None = None
    ) -> list[Entitlement]:
        now = now or datetime.now(UTC)
        stmt = (
            select(Entitlement)
            .where(Entitlement.user_id == user_id, Entitlement.active.is_(True))
            .order_by(Entitlement.granted_at.desc())
        )
        return [
            item
            for item in db.scalars(stmt).all()
            if item.expires_at is None or as_utc(item.expires_at) > now
        ]

    @staticmethod
    def is_entitled(
        db: Session,
        user_id: uuid.UUID,
        entitlement_type: str,
        profile_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> bool:
        now = now or datetime.now(UTC)
        stmt = select(Entitlement).where(
            Entitlement.user_id == user_id,
            Entitlement.type == entitlement_type,
            Entitlement.scope_key == scope_key(profile_id),
            Entitlement.active.is_(True),
        )
        item = db.scalar(stmt)
        if item is None:
            return False
        return item.expires_at is None or as_utc(item.expires_at) > now


entitlements = EntitlementGranter()
