import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

# ── Enums ────────────────────────────────────────────────


class InvoiceStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    cancelled = "cancelled"


class InvoiceProduct(str, enum.Enum):
    contacts_access = "contacts_access"
    listing = "listing"
    promotion = "promotion"


class TargetType(str, enum.Enum):
    player = "player"
    coach = "coach"


class PaymentEventType(str, enum.Enum):
    invoice_paid = "invoice.paid"
    invoice_update = "invoice.update"


PAYLINK_PROVIDER = "paylink"
NO_PROFILE_KEY = "-"
PAYMENT_ERROR_TRAIL_LIMIT = 10


def purpose_key(product: InvoiceProduct, profile_id: uuid.UUID | None) -> str:
    return f"{product.value}:{profile_id or NO_PROFILE_KEY}"


def scope_key(profile_id: uuid.UUID | None) -> str:
    return str(profile_id) if profile_id else NO_PROFILE_KEY


# ── Invoice ──────────────────────────────────────────────


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("order_number", name="uq_invoices_order_number"),
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        UniqueConstraint(
            "provider_transaction_no", name="uq_invoices_provider_transaction_no"
        ),
        Index(
            "uq_invoices_pending_purpose",
            "user_id",
            "purpose_key",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_number: Mapped[str | None] = mapped_column(String(64))
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    product: Mapped[InvoiceProduct] = mapped_column(
        Enum(InvoiceProduct), nullable=False, index=True
    )
    purpose_key: Mapped[str] = mapped_column(String(80), nullable=False)
    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.id"), index=True
    )
    target_type: Mapped[TargetType | None] = mapped_column(Enum(TargetType))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="SAR")
    duration_days: Mapped[int | None] = mapped_column(Integer)
    feature_type: Mapped[str | None] = mapped_column(String(40))
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus), default=InvoiceStatus.pending, index=True
    )

    provider: Mapped[str] = mapped_column(String(40), default=PAYLINK_PROVIDER)
    provider_invoice_id: Mapped[str | None] = mapped_column(String(120), index=True)
    provider_transaction_no: Mapped[str | None] = mapped_column(String(120))
    payment_url: Mapped[str | None] = mapped_column(String(1024))
    payment_receipt_url: Mapped[str | None] = mapped_column(String(1024))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    last_provider_status: Mapped[str | None] = mapped_column(String(40))
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Most recent first, at most PAYMENT_ERROR_TRAIL_LIMIT entries
    last_payment_errors: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    entitlements = relationship("Entitlement", back_populates="source_invoice")


# ── Payment events ───────────────────────────────────────


class PaymentEvent(Base):
    """Write-once record of a provider notification."""

    __tablename__ = "payment_events"
    __table_args__ = (
        UniqueConstraint(
            "provider", "provider_event_id", name="uq_payment_events_provider_event"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider: Mapped[str] = mapped_column(String(40), nullable=False)
    provider_event_id: Mapped[str] = mapped_column(String(160), nullable=False)
    order_number: Mapped[str | None] = mapped_column(String(64), index=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


# ── Entitlements ─────────────────────────────────────────


class Entitlement(Base):
    __tablename__ = "entitlements"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "type", "scope_key", name="uq_entitlements_user_type_scope"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.id"), index=True
    )
    scope_key: Mapped[str] = mapped_column(String(64), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    source_invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    source_invoice = relationship("Invoice", back_populates="entitlements")
