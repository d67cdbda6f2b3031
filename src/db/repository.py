"""Billing repositories — the only code that touches the three billing tables.

Each repository maps onto one collaborator store:
- entitlements: get / update (always bumps updated_at)
- subscription history: insert (unique on subscription_id) / update_where
- processed events: find_by_hash / insert (unique on event_hash)

Uniqueness violations are absorbed inside a SAVEPOINT so the caller's
transaction stays usable and can re-read whichever row won the race.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.subscription_tables import ProcessedEventRow, SubscriptionHistoryRow
from src.db.tables import utcnow
from src.db.user_tables import UserEntitlementRow


class EntitlementRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[UserEntitlementRow]:
        return await self.session.get(UserEntitlementRow, user_id)

    async def get_or_create(self, user_id: str) -> UserEntitlementRow:
        """Get the user's entitlement, creating a free one on first sight."""
        row = await self.get(user_id)
        if row is None:
            row = UserEntitlementRow(user_id=user_id, plan="free", credits=0, updated_at=utcnow())
            self.session.add(row)
            await self.session.flush()
        return row

    async def get_by_subscription_id(self, subscription_id: str) -> Optional[UserEntitlementRow]:
        result = await self.session.execute(
            select(UserEntitlementRow).where(UserEntitlementRow.subscription_id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def update(self, user_id: str, **fields: Any) -> Optional[UserEntitlementRow]:
        """Last-write-wins partial update. Returns None if the user has no row."""
        row = await self.get(user_id)
        if row is None:
            return None
        for name, value in fields.items():
            setattr(row, name, value)
        row.updated_at = utcnow()
        await self.session.flush()
        return row


class SubscriptionHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, subscription_id: str) -> Optional[SubscriptionHistoryRow]:
        result = await self.session.execute(
            select(SubscriptionHistoryRow).where(SubscriptionHistoryRow.subscription_id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[SubscriptionHistoryRow]:
        result = await self.session.execute(
            select(SubscriptionHistoryRow)
            .where(SubscriptionHistoryRow.user_id == user_id)
            .order_by(SubscriptionHistoryRow.created_at.desc())
        )
        return list(result.scalars().all())

    async def insert(self, **fields: Any) -> Optional[SubscriptionHistoryRow]:
        """Insert a history row. Returns None if the subscription_id is already recorded."""
        row = SubscriptionHistoryRow(**fields)
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError:
            return None
        return row

    async def update_where(
        self, subscription_id: str, status_filter: Optional[str], **fields: Any
    ) -> int:
        """Update rows for a subscription, optionally only those in ``status_filter``."""
        stmt = update(SubscriptionHistoryRow).where(
            SubscriptionHistoryRow.subscription_id == subscription_id
        )
        if status_filter is not None:
            stmt = stmt.where(SubscriptionHistoryRow.status == status_filter)
        result = await self.session.execute(
            stmt.values(**fields).execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0


class ProcessedEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_hash(self, event_hash: str) -> Optional[ProcessedEventRow]:
        result = await self.session.execute(
            select(ProcessedEventRow).where(ProcessedEventRow.event_hash == event_hash)
        )
        return result.scalar_one_or_none()

    async def insert(self, event_hash: str, **metadata: Any) -> Optional[ProcessedEventRow]:
        """Claim ``event_hash``. Returns None if another delivery already holds it."""
        row = ProcessedEventRow(event_hash=event_hash, processed_at=utcnow(), **metadata)
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError:
            return None
        return row

    async def list_recent(
        self, outcomes: Optional[list[str]] = None, limit: int = 50
    ) -> list[ProcessedEventRow]:
        stmt = select(ProcessedEventRow).order_by(ProcessedEventRow.processed_at.desc()).limit(limit)
        if outcomes:
            stmt = stmt.where(ProcessedEventRow.outcome.in_(outcomes))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
