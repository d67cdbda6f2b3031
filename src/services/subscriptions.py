"""
Thumbnail Studio Subscription Service
---
Consumes payment-processor webhooks and serves the resulting entitlements.

Delivery pipeline (one database transaction per delivery):
    signature gate → parse → idempotency ledger → entitlement reconciler → commit

Endpoints:
- POST /api/v1/webhooks/payments  — payment processor webhook
- GET  /api/v1/subscriptions/me   — current user's entitlement (post-checkout polling)

Response policy: every recognized or ignored event is acknowledged with 200
so the processor never retries a logic outcome. 401 only for rejected
signatures (hardened mode), 400 for unparseable bodies, 500 only when the
database is unreachable.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.auth import require_user_id
from src.db.engine import get_session
from src.db.repository import EntitlementRepository
from src.middleware.metrics import metrics
from src.models.billing import Entitlement, WebhookAck
from src.services.idempotency import AlreadyProcessed, check_and_record, compute_event_hash
from src.services.reconciler import (
    IGNORED,
    EntitlementReconciler,
    EventFields,
    event_family,
)
from src.services.webhook_signature import SignatureGate, extract_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


# ── Errors ────────────────────────────────────────────────────────────────────

class WebhookRejected(Exception):
    status_code = 400


class MalformedEvent(WebhookRejected):
    status_code = 400


class SignatureRejected(WebhookRejected):
    status_code = 401


class StorageUnavailable(Exception):
    """The billing database could not be read or written; the processor should retry."""


# ── Parsing ───────────────────────────────────────────────────────────────────

ENVELOPE_KEYS = ("type", "event_type", "event", "data", "payload")


def parse_event(raw: bytes) -> tuple[Optional[str], dict]:
    """Split a delivery into (event_type, data).

    Accepts ``type | event_type | event`` and ``data | payload``. A typed event
    with neither data key is flat: its remaining keys are the data. A body
    with neither a type nor any data is malformed.
    """
    try:
        event = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedEvent("Invalid JSON payload") from exc
    if not isinstance(event, dict):
        raise MalformedEvent("Webhook body must be a JSON object")

    event_type = event.get("type") or event.get("event_type") or event.get("event")
    data = event.get("data")
    if data is None:
        data = event.get("payload")

    if not isinstance(event_type, str) or not event_type:
        if not isinstance(data, dict) or not data:
            raise MalformedEvent("Webhook body has no event type")
        event_type = None
    if data is None and event_type:
        # Flat event: the fields sit beside the type
        data = {k: v for k, v in event.items() if k not in ENVELOPE_KEYS}
    if not isinstance(data, dict):
        data = {}
    return event_type, data


# ── Delivery pipeline ─────────────────────────────────────────────────────────

async def handle_delivery(
    session: AsyncSession,
    raw: bytes,
    signature_header: str,
    *,
    secret: str,
    enforce: bool,
    product_map: dict[str, str],
) -> WebhookAck:
    """Run one webhook delivery through gate, ledger and engine."""
    decision = SignatureGate(secret, enforce).check(raw, signature_header)
    metrics.record_signature(decision.status)
    if not decision.accepted:
        raise SignatureRejected(decision.reason)

    event_type, data = parse_event(raw)
    family = event_family(event_type)
    if family is None:
        # Not ours to act on: acknowledged without touching the store
        logger.info("Ignoring webhook event type %r", event_type, extra={"event_type": event_type})
        metrics.record_webhook("unknown", IGNORED)
        return WebhookAck(processed=None, outcome=IGNORED, signature=decision.status)

    event_hash = compute_event_hash(raw)
    fields = EventFields.from_data(data, bare_id_is_subscription=event_type.startswith("subscription."))
    log_extra = {"event_type": event_type, "event_hash": event_hash, "signature": decision.status}

    try:
        ledger = await check_and_record(
            session,
            event_hash,
            event_type,
            fields.subscription_id,
            fields.user_id,
            signature_status=decision.status,
            payload=data,
        )
        if isinstance(ledger, AlreadyProcessed):
            await session.rollback()
            metrics.record_webhook(family, "duplicate")
            return WebhookAck(
                processed=None,
                outcome="duplicate",
                already_processed=True,
                signature=decision.status,
                processed_at=ledger.processed_at,
            )

        result = await EntitlementReconciler(session, product_map).apply(event_type, data)

        record = ledger.record
        record.outcome = result.outcome
        record.detail = result.detail[:500] if result.detail else None
        record.user_id = result.user_id or record.user_id
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Billing store failure while processing webhook", extra=log_extra)
        raise StorageUnavailable(str(exc)) from exc

    metrics.record_webhook(family, result.outcome)
    return WebhookAck(
        processed=event_type,
        outcome=result.outcome,
        signature=decision.status,
        credits_assigned=result.credits_assigned,
    )


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("/api/v1/webhooks/payments")
async def payment_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Handle payment-processor webhook events for the subscription lifecycle."""
    body = await request.body()
    try:
        ack = await handle_delivery(
            session,
            body,
            extract_signature(request.headers),
            secret=settings.WEBHOOK_SECRET,
            enforce=settings.WEBHOOK_ENFORCE_SIGNATURE,
            product_map=settings.PRODUCT_PLAN_MAP,
        )
    except SignatureRejected:
        raise HTTPException(401, "Invalid signature")
    except MalformedEvent as exc:
        raise HTTPException(400, str(exc))
    except StorageUnavailable:
        raise HTTPException(500, "Billing storage unavailable")
    return ack.model_dump(mode="json", exclude_none=True)


@router.get("/api/v1/subscriptions/me", response_model=Entitlement)
async def get_my_entitlement(
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Current user's plan, credits and subscription state.

    Users the reconciler has never seen are reported on the free plan.
    """
    row = await EntitlementRepository(session).get(user_id)
    if row is None:
        return Entitlement(user_id=user_id)
    return Entitlement.model_validate(row)
