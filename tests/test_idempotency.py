"""Tests for the processed-webhook ledger."""
from __future__ import annotations

import hashlib
from unittest.mock import AsyncMock, patch

import pytest

from src.db.repository import ProcessedEventRepository
from src.services.idempotency import (
    AlreadyProcessed,
    Recorded,
    check_and_record,
    compute_event_hash,
)


def test_hash_is_sha256_of_raw_bytes():
    raw = b'{"type":"subscription.active"}'
    assert compute_event_hash(raw) == hashlib.sha256(raw).hexdigest()


def test_whitespace_changes_hash():
    assert compute_event_hash(b'{"a":1}') != compute_event_hash(b'{"a": 1}')


@pytest.mark.asyncio
async def test_first_delivery_recorded(session):
    result = await check_and_record(
        session, "h1", "subscription.active", "sub_1", "user_a",
        signature_status="verified", payload={"subscription_id": "sub_1"},
    )
    assert isinstance(result, Recorded)
    assert result.record.event_hash == "h1"
    assert result.record.signature_status == "verified"
    await session.commit()


@pytest.mark.asyncio
async def test_second_delivery_is_already_processed(session):
    await check_and_record(session, "h2", "subscription.active", "sub_1", "user_a")
    await session.commit()

    again = await check_and_record(session, "h2", "subscription.active", "sub_1", "user_a")
    assert isinstance(again, AlreadyProcessed)
    assert again.event_hash == "h2"
    assert again.processed_at is not None


@pytest.mark.asyncio
async def test_uncommitted_claim_disappears_on_rollback(session):
    await check_and_record(session, "h3", "subscription.active", None, None)
    await session.rollback()

    assert await ProcessedEventRepository(session).find_by_hash("h3") is None
    result = await check_and_record(session, "h3", "subscription.active", None, None)
    assert isinstance(result, Recorded)


@pytest.mark.asyncio
async def test_lost_insert_race_reports_already_processed(session):
    """A concurrent delivery claimed the hash between our lookup and our insert."""
    await check_and_record(session, "h4", "subscription.renewed", "sub_1", "user_a")
    await session.commit()
    winner = await ProcessedEventRepository(session).find_by_hash("h4")

    with patch.object(
        ProcessedEventRepository, "find_by_hash", AsyncMock(side_effect=[None, winner]),
    ):
        result = await check_and_record(session, "h4", "subscription.renewed", "sub_1", "user_a")

    assert isinstance(result, AlreadyProcessed)
    assert result.processed_at == winner.processed_at
    # The failed insert only rolled back its savepoint
    assert await ProcessedEventRepository(session).find_by_hash("h4") is not None


@pytest.mark.asyncio
async def test_list_recent_filters_by_outcome(session):
    repo = ProcessedEventRepository(session)
    await repo.insert("a", event_type="subscription.active", outcome="applied")
    await repo.insert("b", event_type="subscription.active", outcome="conflict")
    await repo.insert("c", event_type="payment.failed", outcome="unresolved")
    await session.commit()

    flagged = await repo.list_recent(["conflict", "unresolved"])
    assert {r.event_hash for r in flagged} == {"b", "c"}
    assert len(await repo.list_recent()) == 3
    assert len(await repo.list_recent(limit=1)) == 1
