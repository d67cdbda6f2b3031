"""Idempotency ledger for payment webhooks.

Every distinct raw payload is hashed and claimed in ``processed_webhook_events``
before the transition engine runs. Redelivery of the same bytes finds the
claim and becomes a no-op; a concurrent delivery of the same bytes loses the
unique-key race and is treated exactly like a redelivery.

The claim is made in the same database transaction as the state transition,
so both commit together or neither does.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.repository import ProcessedEventRepository
from src.db.subscription_tables import ProcessedEventRow

logger = logging.getLogger(__name__)


def compute_event_hash(raw_payload: bytes) -> str:
    """SHA-256 of the full raw body — payloads differing in any byte are distinct events."""
    return hashlib.sha256(raw_payload).hexdigest()


@dataclass(frozen=True)
class AlreadyProcessed:
    event_hash: str
    processed_at: Optional[datetime]


@dataclass(frozen=True)
class Recorded:
    record: ProcessedEventRow


LedgerResult = Union[AlreadyProcessed, Recorded]


async def check_and_record(
    session: AsyncSession,
    event_hash: str,
    event_type: str,
    subscription_id: Optional[str],
    user_id: Optional[str],
    *,
    signature_status: str = "unverified",
    payload: Optional[dict[str, Any]] = None,
) -> LedgerResult:
    """Dedupe check, then claim. Never raises on a duplicate."""
    repo = ProcessedEventRepository(session)

    existing = await repo.find_by_hash(event_hash)
    if existing is not None:
        logger.info(
            "Webhook redelivery ignored (first processed %s)", existing.processed_at,
            extra={"event_hash": event_hash, "event_type": event_type},
        )
        return AlreadyProcessed(event_hash, existing.processed_at)

    record = await repo.insert(
        event_hash,
        event_type=event_type,
        subscription_id=subscription_id,
        user_id=user_id,
        signature_status=signature_status,
        payload=payload,
    )
    if record is None:
        # Lost the race to a concurrent delivery of the same payload
        winner = await repo.find_by_hash(event_hash)
        logger.info(
            "Concurrent webhook delivery already claimed this payload",
            extra={"event_hash": event_hash, "event_type": event_type},
        )
        return AlreadyProcessed(event_hash, winner.processed_at if winner else None)

    return Recorded(record)
