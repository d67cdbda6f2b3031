"""Create entitlement, subscription history and webhook ledger tables.

Revision ID: 3f9c1a7d2b40
Revises:
Create Date: 2026-10-12
"""
from alembic import op
import sqlalchemy as sa

revision = "3f9c1a7d2b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_entitlements",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("plan", sa.String(32), nullable=False, server_default="free"),
        sa.Column("credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("subscription_id", sa.String(255), nullable=True),
        sa.Column("subscription_product_id", sa.String(255), nullable=True),
        sa.Column("payment_customer_id", sa.String(255), nullable=True),
        sa.Column("subscription_status", sa.String(20), nullable=True),
        sa.Column("billing_period", sa.String(20), nullable=True),
        sa.Column("subscription_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("credits >= 0", name="ck_user_entitlements_credits_non_negative"),
    )
    op.create_index("ix_user_entitlements_subscription_id", "user_entitlements", ["subscription_id"], unique=True)
    op.create_index("ix_user_entitlements_payment_customer_id", "user_entitlements", ["payment_customer_id"])

    op.create_table(
        "subscription_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subscription_id", sa.String(255), nullable=False, unique=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(255), nullable=True),
        sa.Column("billing_period", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("amount_paid", sa.Float, nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_subscription_history_user_id", "subscription_history", ["user_id"])

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("subscription_id", sa.String(255), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("signature_status", sa.String(20), nullable=False, server_default="unverified"),
        sa.Column("outcome", sa.String(20), nullable=True),
        sa.Column("detail", sa.String(500), nullable=True),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processed_webhook_events_event_type", "processed_webhook_events", ["event_type"])
    op.create_index("ix_processed_webhook_events_subscription_id", "processed_webhook_events", ["subscription_id"])
    op.create_index("ix_processed_webhook_events_outcome", "processed_webhook_events", ["outcome"])
    op.create_index("ix_processed_webhook_events_processed_at", "processed_webhook_events", ["processed_at"])
    op.create_index(
        "ix_processed_webhook_events_outcome_time", "processed_webhook_events", ["outcome", "processed_at"],
    )


def downgrade() -> None:
    op.drop_table("processed_webhook_events")
    op.drop_table("subscription_history")
    op.drop_table("user_entitlements")
