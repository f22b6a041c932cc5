from app.models.billing import PaymentEvent, PaymentEventType
from app.services.billing.payment_events import payment_events


def test_first_insert_is_recorded(db_session):
    inserted = payment_events.record_event(
        db_session, "paylink", "TXN1", "ACC-1", PaymentEventType.invoice_paid, {"a": 1}
    )
    db_session.commit()

    assert inserted is True
    event = db_session.query(PaymentEvent).one()
    assert event.provider_event_id == "TXN1"
    assert event.event_type == "invoice.paid"
    assert event.payload == {"a": 1}


def test_duplicate_insert_reports_false(db_session):
    payment_events.record_event(
        db_session, "paylink", "TXN1", "ACC-1", PaymentEventType.invoice_paid, {}
    )
    db_session.commit()

    again = payment_events.record_event(
        db_session, "paylink", "TXN1", "ACC-1", PaymentEventType.invoice_paid, {}
    )

    assert again is False
    assert db_session.query(PaymentEvent).count() == 1


def test_same_event_id_from_another_provider_is_distinct(db_session):
    payment_events.record_event(
        db_session, "paylink", "TXN1", "ACC-1", PaymentEventType.invoice_paid, {}
    )
    assert payment_events.record_event(
        db_session, "other", "TXN1", "ACC-1", PaymentEventType.invoice_paid, {}
    )


def test_has_paid_event_ignores_updates(db_session):
    payment_events.record_event(
        db_session, "paylink", "TXN1:pending", "ACC-1", PaymentEventType.invoice_update, {}
    )
    db_session.commit()
    assert payment_events.has_paid_event(db_session, "ACC-1") is False

    payment_events.record_event(
        db_session, "paylink", "TXN1", "ACC-1", PaymentEventType.invoice_paid, {}
    )
    db_session.commit()
    assert payment_events.has_paid_event(db_session, "ACC-1") is True
    assert payment_events.has_paid_event(db_session, "ACC-2") is False
