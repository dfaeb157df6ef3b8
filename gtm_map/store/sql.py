"""Relational store backed by the repository layer."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gtm_map.core.exceptions import AlreadyExists, NotFound
from gtm_map.db.models import BillingTransaction, Subscription, UsageCounter
from gtm_map.repositories import BillingEventRepo, SubscriptionRepo, UsageRepo
from gtm_map.store.base import BillingStore


class SqlBillingStore(BillingStore):
    """Store bound to the request's database session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.subscriptions = SubscriptionRepo(session)
        self.usage = UsageRepo(session)
        self.events = BillingEventRepo(session)

    async def get_subscription(
        self, user_id: UUID, *, for_update: bool = False
    ) -> Optional[Subscription]:
        return await self.subscriptions.get(user_id, for_update=for_update)

    async def get_subscription_by_customer(
        self, stripe_customer_id: str
    ) -> Optional[Subscription]:
        return await self.subscriptions.get_by_customer(stripe_customer_id)

    async def add_subscription(self, subscription: Subscription) -> Subscription:
        if await self.subscriptions.get(subscription.user_id) is not None:
            raise AlreadyExists(subscription.user_id)
        try:
            return await self.subscriptions.add(subscription)
        except IntegrityError as exc:
            # another request inserted the row after the lookup above
            await self.session.rollback()
            raise AlreadyExists(subscription.user_id) from exc

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        return await self.subscriptions.save(subscription)

    async def list_expired_trials(self, now: datetime) -> List[Subscription]:
        return await self.subscriptions.list_expired_trials(now)

    async def get_usage(self, user_id: UUID) -> Optional[UsageCounter]:
        return await self.usage.get(user_id)

    async def add_usage(self, counter: UsageCounter) -> UsageCounter:
        return await self.usage.add(counter)

    async def increment_usage(
        self,
        user_id: UUID,
        amount: int,
        now: datetime,
        limit: Optional[int] = None,
    ) -> Optional[int]:
        value = await self.usage.increment(user_id, amount, now, limit=limit)
        if value is None and await self.usage.get(user_id) is None:
            raise NotFound(user_id, "usage counter")
        return value

    async def reset_usage(
        self, user_id: UUID, cycle_expires_at: datetime, now: datetime
    ) -> None:
        if not await self.usage.reset(user_id, cycle_expires_at, now):
            raise NotFound(user_id, "usage counter")

    async def record_event(self, event_id: str, event_type: str, now: datetime) -> bool:
        return await self.events.record_event(event_id, event_type, now)

    async def record_transaction(self, transaction: BillingTransaction) -> bool:
        return await self.events.record_transaction(transaction)

    async def commit(self) -> None:
        await self.session.commit()
