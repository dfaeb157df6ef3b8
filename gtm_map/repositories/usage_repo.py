"""Repository helpers for usage tracking."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gtm_map.db.models.usage_counter import UsageCounter


class UsageRepo:
    """Reads and single-statement writes against ``usage_counters``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: UUID) -> UsageCounter | None:
        result = await self.session.execute(
            select(UsageCounter)
            .where(UsageCounter.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, counter: UsageCounter) -> UsageCounter:
        self.session.add(counter)
        await self.session.flush()
        return counter

    async def increment(
        self,
        user_id: UUID,
        amount: int,
        now: datetime,
        limit: Optional[int] = None,
    ) -> Optional[int]:
        """Add ``amount`` and return the new total.

        With ``limit`` the update only matches while ``used + amount <= limit``,
        so concurrent callers cannot overshoot; ``None`` means no row matched.
        """

        query = (
            update(UsageCounter)
            .where(UsageCounter.user_id == user_id)
            .values(used=UsageCounter.used + amount, updated_at=now)
            .returning(UsageCounter.used)
            .execution_options(synchronize_session=False)
        )
        if limit is not None:
            query = query.where(UsageCounter.used + amount <= limit)
        result = await self.session.execute(query)
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None

    async def reset(self, user_id: UUID, cycle_expires_at: datetime, now: datetime) -> bool:
        """Zero the counter and move the cycle boundary; ``False`` if no row."""

        result = await self.session.execute(
            update(UsageCounter)
            .where(UsageCounter.user_id == user_id)
            .values(used=0, cycle_expires_at=cycle_expires_at, updated_at=now)
            .returning(UsageCounter.user_id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None
