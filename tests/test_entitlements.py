from datetime import UTC, datetime, timedelta

import pytest

from app.models.billing import Entitlement, InvoiceProduct, InvoiceStatus, TargetType
from app.services.billing.entitlements import (
    ContactsAccessGrant,
    ListingGrant,
    PromotionGrant,
    describe_effect,
    entitlements,
)
from app.services.billing.invoices import invoices
from app.services.billing.pricing import PricingTable
from app.services.common import as_utc

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _paid(db_session, user_id, product, **kwargs):
    invoice = invoices.create_draft(db_session, user_id, product, **kwargs)
    invoice.status = InvoiceStatus.paid
    db_session.commit()
    return invoice


class TestDescribeEffect:
    def test_contacts_access(self, db_session, user):
        invoice = _paid(db_session, user.id, "contacts_access")
        effect = describe_effect(invoice, PricingTable.from_settings(), NOW)
        assert isinstance(effect, ContactsAccessGrant)
        assert effect.entitlement_type == "contacts_access"
        assert effect.profile_id is None
        assert effect.expires_at == NOW + timedelta(days=365)

    def test_listing(self, db_session, user, coach_profile):
        invoice = _paid(db_session, user.id, "listing", profile_id=coach_profile.id)
        effect = describe_effect(invoice, PricingTable.from_settings(), NOW)
        assert isinstance(effect, ListingGrant)
        assert effect.entitlement_type == "listed_coach"
        assert effect.target_type is TargetType.coach

    def test_promotion_uses_invoice_duration(self, db_session, user, player_profile):
        invoice = _paid(
            db_session, user.id, "promotion", profile_id=player_profile.id, duration_days=30
        )
        effect = describe_effect(invoice, PricingTable.from_settings(), NOW)
        assert isinstance(effect, PromotionGrant)
        assert effect.entitlement_type == "promoted_player"
        assert effect.expires_at == NOW + timedelta(days=30)
        assert effect.feature_type == "toplist"


class TestGrant:
    def test_contacts_access_activates_user(self, db_session, user):
        invoice = _paid(db_session, user.id, InvoiceProduct.contacts_access)

        entitlements.grant_for_paid_invoice(db_session, invoice, now=NOW)
        db_session.commit()
        db_session.refresh(user)

        row = db_session.query(Entitlement).one()
        assert row.type == "contacts_access"
        assert row.profile_id is None
        assert row.active is True
        assert as_utc(row.expires_at) == NOW + timedelta(days=365)
        assert row.source_invoice_id == invoice.id
        assert user.is_active is True

    def test_grant_twice_keeps_one_row(self, db_session, user):
        invoice = _paid(db_session, user.id, "contacts_access")
        entitlements.grant_for_paid_invoice(db_session, invoice, now=NOW)
        entitlements.grant_for_paid_invoice(db_session, invoice, now=NOW)
        db_session.commit()

        assert db_session.query(Entitlement).count() == 1

    def test_listing_flags_profile(self, db_session, user, player_profile):
        invoice = _paid(db_session, user.id, "listing", profile_id=player_profile.id)

        entitlements.grant_for_paid_invoice(db_session, invoice, now=NOW)
        db_session.commit()
        db_session.refresh(player_profile)

        assert player_profile.is_listed is True
        assert player_profile.is_active is True
        assert as_utc(player_profile.listing_expires_at) == NOW + timedelta(days=365)
        row = db_session.query(Entitlement).one()
        assert row.type == "listed_player"
        assert row.profile_id == player_profile.id

    def test_listing_skips_flags_when_profile_changed_owner(
        self, db_session, user, other_user, player_profile
    ):
        invoice = _paid(db_session, user.id, "listing", profile_id=player_profile.id)
        player_profile.user_id = other_user.id
        db_session.commit()

        entitlements.grant_for_paid_invoice(db_session, invoice, now=NOW)
        db_session.commit()
        db_session.refresh(player_profile)

        assert player_profile.is_listed is False
        assert db_session.query(Entitlement).count() == 1

    def test_promotion_sets_window(self, db_session, user, coach_profile):
        invoice = _paid(
            db_session, user.id, "promotion", profile_id=coach_profile.id, duration_days=10
        )

        entitlements.grant_for_paid_invoice(db_session, invoice, now=NOW)
        db_session.commit()
        db_session.refresh(coach_profile)

        assert coach_profile.promotion_status is True
        assert coach_profile.promotion_type == "toplist"
        assert as_utc(coach_profile.promotion_start) == NOW
        assert as_utc(coach_profile.promotion_end) == NOW + timedelta(days=10)
        assert db_session.query(Entitlement).one().type == "promoted_coach"

    def test_regrant_refreshes_expiry(self, db_session, user):
        first = _paid(db_session, user.id, "contacts_access")
        entitlements.grant_for_paid_invoice(db_session, first, now=NOW)
        db_session.commit()
        second = _paid(db_session, user.id, "contacts_access")
        later = NOW + timedelta(days=100)

        entitlements.grant_for_paid_invoice(db_session, second, now=later)
        db_session.commit()

        row = db_session.query(Entitlement).one()
        assert as_utc(row.expires_at) == later + timedelta(days=365)
        assert row.source_invoice_id == second.id


class TestReads:
    @pytest.fixture()
    def granted(self, db_session, user):
        invoice = _paid(db_session, user.id, "contacts_access")
        entitlements.grant_for_paid_invoice(db_session, invoice, now=NOW)
        db_session.commit()
        return invoice

    def test_active_before_expiry(self, db_session, user, granted):
        assert entitlements.is_entitled(
            db_session, user.id, "contacts_access", now=NOW + timedelta(days=1)
        )
        active = entitlements.active_for_user(db_session, user.id, now=NOW + timedelta(days=1))
        assert [e.type for e in active] == ["contacts_access"]

    def test_expired_is_not_active(self, db_session, user, granted):
        later = NOW + timedelta(days=366)
        assert not entitlements.is_entitled(db_session, user.id, "contacts_access", now=later)
        assert entitlements.active_for_user(db_session, user.id, now=later) == []

    def test_profile_scope_must_match(self, db_session, user, player_profile, granted):
        assert not entitlements.is_entitled(
            db_session, user.id, "contacts_access", profile_id=player_profile.id, now=NOW
        )
