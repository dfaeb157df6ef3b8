"""Repository utilities for user subscriptions."""
from __future__ import annotations

import datetime as dt
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gtm_map.db.models.subscription import Subscription, SubscriptionStatus


class SubscriptionRepo:
    """Data-access helpers for :class:`Subscription`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: UUID, *, for_update: bool = False) -> Subscription | None:
        query = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_by_customer(self, stripe_customer_id: str) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.stripe_customer_id == stripe_customer_id
            )
        )
        return result.scalars().first()

    async def add(self, subscription: Subscription) -> Subscription:
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def save(self, subscription: Subscription) -> Subscription:
        merged = await self.session.merge(subscription)
        await self.session.flush()
        return merged

    async def list_expired_trials(self, now: dt.datetime) -> list[Subscription]:
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.status == SubscriptionStatus.TRIALING,
                Subscription.trial_expires_at <= now,
            )
        )
        return list(result.scalars().all())
