"""API models for entitlements, subscription history and webhook ledger entries."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Entitlement(BaseModel):
    """Read-only copy of a user's entitlement, as polled by the UI after checkout."""
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    plan: str = "free"
    credits: int = 0
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    billing_period: Optional[str] = None
    subscription_started_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    payment_customer_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class SubscriptionHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subscription_id: str
    user_id: str
    product_id: Optional[str] = None
    billing_period: Optional[str] = None
    status: str
    amount_paid: Optional[float] = None
    currency: Optional[str] = None
    started_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class ProcessedEvent(BaseModel):
    """Ledger entry, exposed to operators for manual reconciliation."""
    model_config = ConfigDict(from_attributes=True)

    event_hash: str
    event_type: str
    subscription_id: Optional[str] = None
    user_id: Optional[str] = None
    signature_status: str
    outcome: Optional[str] = None
    detail: Optional[str] = None
    payload: Optional[dict] = None
    processed_at: datetime


class WebhookAck(BaseModel):
    """Body returned to the payment processor. Always 200 unless rejected."""
    received: bool = True
    processed: Optional[str] = None
    outcome: str
    already_processed: bool = False
    signature: str
    processed_at: Optional[datetime] = None
    credits_assigned: Optional[int] = None
