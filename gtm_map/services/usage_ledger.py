"""Durable per-user generation counters."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from gtm_map.core.clock import utcnow
from gtm_map.core.exceptions import NotFound
from gtm_map.db.models import UsageCounter
from gtm_map.store.base import BillingStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageSnapshot:
    used: int
    cycle_expires_at: datetime


class UsageLedger:
    """Thin layer over the store's usage operations."""

    def __init__(self, store: BillingStore) -> None:
        self.store = store

    async def get_usage(self, user_id: UUID) -> UsageSnapshot:
        counter = await self.store.get_usage(user_id)
        if counter is None:
            raise NotFound(user_id, "usage counter")
        return UsageSnapshot(used=counter.used, cycle_expires_at=counter.cycle_expires_at)

    async def open_cycle(
        self, user_id: UUID, cycle_expires_at: datetime, now: Optional[datetime] = None
    ) -> None:
        """Create the counter row, or zero it if one already exists."""

        now = now or utcnow()
        if await self.store.get_usage(user_id) is None:
            await self.store.add_usage(
                UsageCounter(
                    user_id=user_id,
                    used=0,
                    cycle_expires_at=cycle_expires_at,
                    updated_at=now,
                )
            )
        else:
            await self.store.reset_usage(user_id, cycle_expires_at, now)

    async def increment_usage(
        self,
        user_id: UUID,
        amount: int = 1,
        *,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        if amount < 1:
            raise ValueError("usage increments must be positive")
        return await self.store.increment_usage(user_id, amount, now or utcnow(), limit=limit)

    async def reset_usage(
        self, user_id: UUID, cycle_expires_at: datetime, now: Optional[datetime] = None
    ) -> None:
        await self.store.reset_usage(user_id, cycle_expires_at, now or utcnow())
        logger.info(f"Usage reset for user {user_id}; cycle ends {cycle_expires_at.isoformat()}")
