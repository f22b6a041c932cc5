from app.services.billing.entitlements import EntitlementGranter, entitlements
from app.services.billing.invoices import InvoiceLedger, invoices
from app.services.billing.payment_events import PaymentEventLog, payment_events
from app.services.billing.pricing import PricingTable, Quote
from app.services.billing.reconciliation import (
    ReconciliationEngine,
    authenticate_webhook,
)

__all__ = [
    "EntitlementGranter",
    "InvoiceLedger",
    "PaymentEventLog",
    "PricingTable",
    "Quote",
    "ReconciliationEngine",
    "authenticate_webhook",
    "entitlements",
    "invoices",
    "payment_events",
]
