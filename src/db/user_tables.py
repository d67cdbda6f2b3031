"""User entitlement table — one row per user, owned by the webhook reconciler."""
from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from src.db.tables import Base, utcnow


class UserEntitlementRow(Base):
    """Plan, credit balance and subscription state for a single user.

    The UI only ever reads this row; all writes go through the reconciler.
    """
    __tablename__ = "user_entitlements"

    # Opaque identity from the auth provider
    user_id = Column(String(64), primary_key=True)

    # Plan: free | starter | pro | creator-monthly | creator-yearly
    plan = Column(String(32), nullable=False, default="free")
    credits = Column(Integer, nullable=False, default=0)

    # External IDs
    subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    subscription_product_id = Column(String(255), nullable=True)
    payment_customer_id = Column(String(255), nullable=True, index=True)

    # Status: active | past_due | cancelled | inactive | trialing
    subscription_status = Column(String(20), nullable=True)

    # Billing: monthly | annual
    billing_period = Column(String(20), nullable=True)

    subscription_started_at = Column(DateTime(timezone=True), nullable=True)
    subscription_ends_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_user_entitlements_credits_non_negative"),
    )
