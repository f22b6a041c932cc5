"""payments schema

Revision ID: 001_payments
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "001_payments"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    # Profiles
    op.create_table(
        "profiles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("job", sa.String(length=40), nullable=True),
        sa.Column("is_listed", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("listing_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("promotion_status", sa.Boolean(), nullable=True),
        sa.Column("promotion_type", sa.String(length=40), nullable=True),
        sa.Column("promotion_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("promotion_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"])

    # Invoices
    op.create_table(
        "invoices",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column(
            "product",
            sa.Enum("contacts_access", "listing", "promotion", name="invoiceproduct"),
            nullable=False,
        ),
        sa.Column("purpose_key", sa.String(length=80), nullable=False),
        sa.Column("profile_id", sa.UUID(), nullable=True),
        sa.Column(
            "target_type",
            sa.Enum("player", "coach", name="targettype"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("feature_type", sa.String(length=40), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", "failed", "cancelled", name="invoicestatus"),
            nullable=True,
        ),
        sa.Column("provider", sa.String(length=40), nullable=True),
        sa.Column("provider_invoice_id", sa.String(length=120), nullable=True),
        sa.Column("provider_transaction_no", sa.String(length=120), nullable=True),
        sa.Column("payment_url", sa.String(length=1024), nullable=True),
        sa.Column("payment_receipt_url", sa.String(length=1024), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_provider_status", sa.String(length=40), nullable=True),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_errors", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number", name="uq_invoices_order_number"),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        sa.UniqueConstraint(
            "provider_transaction_no", name="uq_invoices_provider_transaction_no"
        ),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_product", "invoices", ["product"])
    op.create_index("ix_invoices_profile_id", "invoices", ["profile_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index(
        "ix_invoices_provider_invoice_id", "invoices", ["provider_invoice_id"]
    )
    op.create_index(
        "uq_invoices_pending_purpose",
        "invoices",
        ["user_id", "purpose_key"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Payment events
    op.create_table(
        "payment_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("provider_event_id", sa.String(length=160), nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=True),
        sa.Column("event_type", sa.String(length=40), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "provider", "provider_event_id", name="uq_payment_events_provider_event"
        ),
    )
    op.create_index(
        "ix_payment_events_order_number", "payment_events", ["order_number"]
    )

    # Entitlements
    op.create_table(
        "entitlements",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("profile_id", sa.UUID(), nullable=True),
        sa.Column("scope_key", sa.String(length=64), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_invoice_id", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["source_invoice_id"], ["invoices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "type", "scope_key", name="uq_entitlements_user_type_scope"
        ),
    )
    op.create_index("ix_entitlements_user_id", "entitlements", ["user_id"])
    op.create_index("ix_entitlements_profile_id", "entitlements", ["profile_id"])


def downgrade() -> None:
    op.drop_index("ix_entitlements_profile_id", table_name="entitlements")
    op.drop_index("ix_entitlements_user_id", table_name="entitlements")
    op.drop_table("entitlements")

    op.drop_index("ix_payment_events_order_number", table_name="payment_events")
    op.drop_table("payment_events")

    op.drop_index("uq_invoices_pending_purpose", table_name="invoices")
    op.drop_index("ix_invoices_provider_invoice_id", table_name="invoices")
    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_index("ix_invoices_profile_id", table_name="invoices")
    op.drop_index("ix_invoices_product", table_name="invoices")
    op.drop_index("ix_invoices_user_id", table_name="invoices")
    op.drop_table("invoices")

    op.drop_index("ix_profiles_user_id", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("users")

    sa.Enum(name="invoicestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="targettype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="invoiceproduct").drop(op.get_bind(), checkfirst=True)
