import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.billing import PaymentEvent, PaymentEventType

logger = logging.getLogger(__name__)


class PaymentEventLog:
    @staticmethod
    def record_event(
        db: Session,
        provider: str,
        provider_event_id: str,
        order_number: str | None,
        event_type: PaymentEventType,
        payload: dict | None,
    ) -> bool:
        """Insert an event row; False means this provider event was already seen.

        The unique constraint on (provider, provider_event_id) is the only
        dedup mechanism. A duplicate rolls back the surrounding transaction,
        so the insert has to be the first write of its unit of work.
        """
        event = PaymentEvent(
            provider=provider,
            provider_event_id=provider_event_id,
            order_number=order_number,
            event_type=event_type.value,
            payload=payload,
        )
        db.add(event)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info(
                "Duplicate %s event %s/%s",
                event_type.value,
                provider,
                provider_event_id,
                extra={"order_number": order_number},
            )
            return False
        logger.info(
            "Recorded %s event %s/%s",
            event_type.value,
            provider,
            provider_event_id,
            extra={"order_number": order_number},
        )
        return True

    @staticmethod
    def has_paid_event(db: Session, order_number: str) -> bool:
        stmt = (
            select(PaymentEvent.id)
            .where(
                PaymentEvent.order_number == order_number,
                PaymentEvent.event_type == PaymentEventType.invoice_paid.value,
            )
            .limit(1)
        )
        return db.scalar(stmt) is not None


payment_events = PaymentEventLog()
