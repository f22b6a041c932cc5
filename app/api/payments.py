"""Payment drafts, checkout, Paylink webhook and reconciliation routes."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_db, get_payment_gateway, require_role, require_user_auth
from app.config import settings
from app.models.billing import InvoiceStatus
from app.models.user import User
from app.schemas.billing import (
    InvoiceDraftCreate,
    InvoiceRead,
    PaymentInitiated,
    RecheckRead,
    ReconcileRead,
    ReconcileRequest,
    SimulatePayment,
    WebhookAck,
)
from app.services.auth_dependencies import is_admin
from app.services.billing import ReconciliationEngine, authenticate_webhook, invoices
from app.services.billing.checkout import initiate_payment
from app.services.common import coerce_uuid
from app.services.payment_gateway import SimulatedGateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])

require_admin = require_role("admin")


def _invoice_read(invoice) -> InvoiceRead:
    data = InvoiceRead.model_validate(invoice)
    if invoice.status is not InvoiceStatus.pending:
        # Pay URL and queued errors only matter while payment is still possible
        data.payment_url = None
        data.last_payment_errors = []
    return data


@router.post("/invoices", response_model=InvoiceRead, status_code=201)
def create_invoice_draft(
    payload: InvoiceDraftCreate,
    response: Response,
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
):
    invoice, created = invoices.open_draft(
        db,
        coerce_uuid(auth["user_id"]),
        payload.product,
        profile_id=payload.profile_id,
        duration_days=payload.duration_days,
        force=payload.force,
    )
    if not created:
        response.status_code = 200
    return _invoice_read(invoice)


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: str,
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
):
    invoice = invoices.get_for_user(db, invoice_id, coerce_uuid(auth["user_id"]))
    return _invoice_read(invoice)


@router.post("/invoices/{invoice_id}/initiate", response_model=PaymentInitiated)
def initiate_invoice_payment(
    invoice_id: str,
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    user_id = coerce_uuid(auth["user_id"])
    invoice = invoices.get_for_user(db, invoice_id, user_id)
    user = db.get(User, user_id)
    invoice = initiate_payment(db, gateway, invoice, user)
    return PaymentInitiated(
        invoice_id=invoice.id,
        order_number=invoice.order_number,
        payment_url=invoice.payment_url,
    )


@router.post("/webhook/paylink", response_model=WebhookAck)
async def paylink_webhook(
    request: Request,
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    """Paylink notification: authenticated by a static credential, verified by lookup."""
    authenticate_webhook(authorization)
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.warning("Paylink webhook with a non-object body")
        return WebhookAck(ok=True, verified=False, detail="invalid_body")
    # The provider lookup and DB writes are blocking; keep them off the event loop
    result = await run_in_threadpool(
        ReconciliationEngine(gateway).handle_webhook, db, payload
    )
    return WebhookAck(
        ok=result.ok,
        verified=result.verified,
        duplicate=result.duplicate,
        detail=result.detail,
    )


@router.post("/recheck/{order_number}", response_model=RecheckRead)
def recheck_invoice(
    order_number: str,
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    user_id = None if is_admin(auth) else coerce_uuid(auth["user_id"])
    result = ReconciliationEngine(gateway).recheck_by_order_number(
        db, order_number, user_id
    )
    return RecheckRead(
        id=result.invoice.id,
        order_number=result.invoice.order_number,
        status=result.invoice.status,
        verified=result.verified,
        paid=result.paid,
        error=result.error,
    )


@router.post("/reconcile", response_model=ReconcileRead)
def reconcile_invoices(
    payload: ReconcileRequest | None = None,
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    payload = payload or ReconcileRequest()
    if payload.all_users:
        require_admin(auth=auth)
    user_id = None if payload.all_users else coerce_uuid(auth["user_id"])
    summary = ReconciliationEngine(gateway).reconcile(
        db,
        user_id=user_id,
        invoice_ids=payload.invoice_ids,
        order_numbers=payload.order_numbers,
    )
    return ReconcileRead(checked=summary.checked, updated=summary.updated)


@router.post("/invoices/{invoice_id}/simulate", response_model=RecheckRead)
def simulate_invoice_payment(
    invoice_id: str,
    payload: SimulatePayment,
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
):
    """Development-only: run the normal recheck path against a canned outcome."""
    if not settings.payments_simulation_enabled:
        raise HTTPException(status_code=404, detail="Not Found")
    invoice = invoices.get_for_user(db, invoice_id, coerce_uuid(auth["user_id"]))
    engine = ReconciliationEngine(SimulatedGateway(paid=payload.outcome == "paid"))
    result = engine.recheck_by_order_number(db, invoice.order_number, invoice.user_id)
    logger.info(
        "Simulated %s payment",
        payload.outcome,
        extra={"order_number": invoice.order_number},
    )
    return RecheckRead(
        id=result.invoice.id,
        order_number=result.invoice.order_number,
        status=result.invoice.status,
        verified=result.verified,
        paid=result.paid,
        error=result.error,
    )
