import logging
from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import InvoiceNotPending
from app.models.billing import Invoice, InvoiceProduct, InvoiceStatus, TargetType
from app.models.user import User
from app.services.billing.invoices import invoices
from app.services.payment_gateway import Customer

logger = logging.getLogger(__name__)

FALLBACK_MOBILE = "0500000000"

PRODUCT_TITLES = {
    (InvoiceProduct.contacts_access, None): "Contacts access (1 year)",
    (InvoiceProduct.listing, TargetType.player): "Player listing (1 year)",
    (InvoiceProduct.listing, TargetType.coach): "Coach listing (1 year)",
    (InvoiceProduct.promotion, TargetType.player): "Top list (Player)",
    (InvoiceProduct.promotion, TargetType.coach): "Top list (Coach)",
}


def product_title(invoice: Invoice) -> str:
    target = None
    if invoice.product is not InvoiceProduct.contacts_access:
        target = invoice.target_type or TargetType.player
    title = PRODUCT_TITLES.get((invoice.product, target), invoice.product.value)
    if invoice.product is InvoiceProduct.promotion and invoice.duration_days:
        title = f"{title} ({invoice.duration_days} days)"
    return title


def invoice_note(invoice: Invoice) -> str:
    target = invoice.target_type.value if invoice.target_type else ""
    return (
        f"userId={invoice.user_id};product={invoice.product.value};"
        f"targetType={target};profileId={invoice.profile_id or ''};"
        f"durationDays={invoice.duration_days or ''};feature={invoice.feature_type or ''}"
    )


def line_items(invoice: Invoice) -> list[dict[str, Any]]:
    return [
        {
            "title": product_title(invoice),
            "price": float(invoice.amount),
            "qty": 1,
            "isDigital": True,
        }
    ]


def initiate_payment(db: Session, gateway, invoice: Invoice, user: User) -> Invoice:
    """Create the remote invoice for a pending draft, once.

    A GatewayError from the provider leaves the draft untouched.
    """
    if invoice.status is not InvoiceStatus.pending:
        raise InvoiceNotPending(f"Invoice is {invoice.status.value}")
    if invoice.provider_invoice_id and invoice.payment_url:
        if not invoice.invoice_number:
            invoice.invoice_number = invoice.order_number
            db.commit()
        return invoice

    customer = Customer(
        name=user.name or user.email,
        email=user.email,
        mobile=user.phone or FALLBACK_MOBILE,
    )
    remote = gateway.create_remote_invoice(
        invoice.order_number,
        invoice.amount,
        invoice.currency,
        customer,
        f"{settings.app_url}/profile?tab=payments&invoiceId={invoice.id}",
        f"{settings.app_url}/profile?tab=payments",
        line_items(invoice),
        note=invoice_note(invoice),
    )
    return invoices.attach_provider_invoice(db, invoice, remote)
