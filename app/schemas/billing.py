from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.billing import InvoiceProduct, InvoiceStatus, TargetType

# ── Invoice ──────────────────────────────────────────────


class InvoiceDraftCreate(BaseModel):
    product: str = Field(min_length=1, max_length=40)
    profile_id: UUID | None = None
    duration_days: int | None = Field(default=None, ge=1, le=3650)
    force: bool = False


class PaymentErrorEntry(BaseModel):
    code: str | None = None
    title: str | None = None
    message: str | None = None
    at: str | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    order_number: str
    invoice_number: str | None = None
    product: InvoiceProduct
    profile_id: UUID | None = None
    target_type: TargetType | None = None
    amount: Decimal
    currency: str
    duration_days: int | None = None
    feature_type: str | None = None
    status: InvoiceStatus
    payment_url: str | None = None
    payment_receipt_url: str | None = None
    paid_at: datetime | None = None
    expires_at: datetime | None = None
    last_provider_status: str | None = None
    last_verified_at: datetime | None = None
    last_payment_errors: list[PaymentErrorEntry] = []
    created_at: datetime


class PaymentInitiated(BaseModel):
    invoice_id: UUID
    order_number: str
    payment_url: str


class SimulatePayment(BaseModel):
    outcome: Literal["paid", "failed"] = "paid"


# ── Reconciliation ───────────────────────────────────────


class WebhookAck(BaseModel):
    ok: bool
    verified: bool
    duplicate: bool = False
    detail: str | None = None


class RecheckRead(BaseModel):
    id: UUID
    order_number: str
    status: InvoiceStatus
    verified: bool
    paid: bool
    error: str | None = None


class ReconcileRequest(BaseModel):
    invoice_ids: list[str] | None = Field(default=None, max_length=200)
    order_numbers: list[str] | None = Field(default=None, max_length=200)
    all_users: bool = False


class ReconcileRead(BaseModel):
    checked: int
    updated: int


# ── Entitlement ──────────────────────────────────────────


class EntitlementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    type: str
    profile_id: UUID | None = None
    active: bool
    granted_at: datetime
    expires_at: datetime | None = None
    source_invoice_id: UUID | None = None


class EntitlementCheck(BaseModel):
    type: str
    profile_id: UUID | None = None
    active: bool
