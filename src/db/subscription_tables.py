"""Subscription tables — subscription history and the processed-webhook ledger."""
from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Float, Index, JSON, String

from src.db.tables import Base, utcnow


class SubscriptionHistoryRow(Base):
    """One row per processor subscription. Status is mutated in place; rows are never deleted."""
    __tablename__ = "subscription_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Natural key: a subscription belongs to exactly one user
    subscription_id = Column(String(255), nullable=False, unique=True)
    user_id = Column(String(64), nullable=False, index=True)

    product_id = Column(String(255), nullable=True)
    billing_period = Column(String(20), nullable=True)

    # Status: active | cancelled
    status = Column(String(20), nullable=False, default="active")

    amount_paid = Column(Float, nullable=True)
    currency = Column(String(3), default="USD")

    started_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)


class ProcessedEventRow(Base):
    """Append-only ledger of every distinct webhook payload already handled."""
    __tablename__ = "processed_webhook_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # SHA-256 of the raw request body
    event_hash = Column(String(64), nullable=False, unique=True)

    # Denormalized for inspection
    event_type = Column(String(100), nullable=False, index=True)
    subscription_id = Column(String(255), nullable=True, index=True)
    user_id = Column(String(64), nullable=True)

    # Signature gate decision: verified | unverified | mismatch
    signature_status = Column(String(20), nullable=False, default="unverified")

    # Transition outcome: applied | unresolved | conflict | ignored
    outcome = Column(String(20), nullable=True, index=True)
    detail = Column(String(500), nullable=True)

    # Parsed payload kept for manual reconciliation
    payload = Column(JSON, nullable=True)

    processed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_processed_webhook_events_outcome_time", "outcome", "processed_at"),
    )
