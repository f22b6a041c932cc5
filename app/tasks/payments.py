import logging

from app.celery_app import celery_app
from app.db import SessionLocal
from app.services.billing import ReconciliationEngine
from app.services.payment_gateway import PaylinkGateway

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.payments.reconcile_pending_invoices")
def reconcile_pending_invoices(limit: int | None = None) -> dict:
    """Sweep every user's provider-linked invoices against Paylink."""
    gateway = PaylinkGateway()
    if not gateway.is_configured():
        logger.warning("Skipping reconcile sweep: Paylink credentials are not set")
        return {"checked": 0, "updated": 0, "failed": 0}
    db = SessionLocal()
    try:
        summary = ReconciliationEngine(gateway).reconcile(db, limit=limit)
    finally:
        db.close()
    return {"checked": summary.checked, "updated": summary.updated, "failed": summary.failed}
