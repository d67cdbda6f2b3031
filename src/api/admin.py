"""Admin API endpoints for billing reconciliation - protected by admin-only auth."""
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.engine import get_session
from src.db.repository import (
    EntitlementRepository,
    ProcessedEventRepository,
    SubscriptionHistoryRepository,
)
from src.models.billing import Entitlement, ProcessedEvent, SubscriptionHistoryEntry

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

# Outcomes an operator has to look at by hand
NEEDS_ATTENTION = ["unresolved", "conflict"]


def verify_admin_key(x_admin_key: str = Header(None)) -> None:
    """Verify admin API key from request header (timing-safe)."""
    expected_key = settings.ADMIN_API_KEY
    if not expected_key:
        raise HTTPException(503, "Admin endpoints disabled (ADMIN_API_KEY not set)")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected_key):
        raise HTTPException(403, "Invalid admin key")


@router.get("/webhooks/events")
async def list_webhook_events(
    outcome: Optional[str] = Query(None, description="applied | unresolved | conflict | ignored | all"),
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    _auth: None = Depends(verify_admin_key),
):
    """
    List processed webhook deliveries, newest first.

    Requires: X-Admin-Key header with valid admin API key.

    Defaults to the deliveries that need manual reconciliation
    (unresolvable identity or ownership conflict).
    """
    if outcome is None:
        outcomes = NEEDS_ATTENTION
    elif outcome == "all":
        outcomes = None
    else:
        outcomes = [outcome]
    rows = await ProcessedEventRepository(session).list_recent(outcomes, limit=limit)
    return {
        "count": len(rows),
        "events": [ProcessedEvent.model_validate(r).model_dump(mode="json") for r in rows],
    }


@router.get("/entitlements/{user_id}")
async def get_entitlement(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    _auth: None = Depends(verify_admin_key),
):
    """
    A user's entitlement row plus every subscription they have held.

    Requires: X-Admin-Key header with valid admin API key.
    """
    row = await EntitlementRepository(session).get(user_id)
    if row is None:
        raise HTTPException(404, "No entitlement for user")
    history = await SubscriptionHistoryRepository(session).list_for_user(user_id)
    return {
        "entitlement": Entitlement.model_validate(row).model_dump(mode="json"),
        "subscriptions": [SubscriptionHistoryEntry.model_validate(h).model_dump(mode="json") for h in history],
    }
