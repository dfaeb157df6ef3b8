"""Process-local store used for demos and tests."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Set
from uuid import UUID

from gtm_map.core.exceptions import AlreadyExists, NotFound
from gtm_map.db.models import BillingTransaction, Subscription, SubscriptionStatus, UsageCounter
from gtm_map.store.base import BillingStore


def _copy(obj):
    model = type(obj)
    return model(**{column.key: getattr(obj, column.key) for column in model.__table__.columns})


class MemoryBillingStore(BillingStore):
    """Keeps rows in dictionaries; one lock guards every mutation."""

    def __init__(self) -> None:
        self._subscriptions: Dict[UUID, Subscription] = {}
        self._usage: Dict[UUID, UsageCounter] = {}
        self._events: Set[str] = set()
        self._transactions: Dict[str, BillingTransaction] = {}
        self._lock = asyncio.Lock()

    async def get_subscription(
        self, user_id: UUID, *, for_update: bool = False
    ) -> Optional[Subscription]:
        subscription = self._subscriptions.get(user_id)
        return _copy(subscription) if subscription is not None else None

    async def get_subscription_by_customer(
        self, stripe_customer_id: str
    ) -> Optional[Subscription]:
        for subscription in self._subscriptions.values():
            if subscription.stripe_customer_id == stripe_customer_id:
                return _copy(subscription)
        return None

    async def add_subscription(self, subscription: Subscription) -> Subscription:
        async with self._lock:
            if subscription.user_id in self._subscriptions:
                raise AlreadyExists(subscription.user_id)
            self._subscriptions[subscription.user_id] = _copy(subscription)
        return subscription

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        async with self._lock:
            self._subscriptions[subscription.user_id] = _copy(subscription)
        return subscription

    async def list_expired_trials(self, now: datetime) -> List[Subscription]:
        return [
            _copy(subscription)
            for subscription in self._subscriptions.values()
            if subscription.status == SubscriptionStatus.TRIALING
            and subscription.trial_expires_at is not None
            and subscription.trial_expires_at <= now
        ]

    async def get_usage(self, user_id: UUID) -> Optional[UsageCounter]:
        counter = self._usage.get(user_id)
        return _copy(counter) if counter is not None else None

    async def add_usage(self, counter: UsageCounter) -> UsageCounter:
        async with self._lock:
            self._usage[counter.user_id] = _copy(counter)
        return counter

    async def increment_usage(
        self,
        user_id: UUID,
        amount: int,
        now: datetime,
        limit: Optional[int] = None,
    ) -> Optional[int]:
        async with self._lock:
            counter = self._usage.get(user_id)
            if counter is None:
                raise NotFound(user_id, "usage counter")
            if limit is not None and counter.used + amount > limit:
                return None
            counter.used += amount
            counter.updated_at = now
            return counter.used

    async def reset_usage(
        self, user_id: UUID, cycle_expires_at: datetime, now: datetime
    ) -> None:
        async with self._lock:
            counter = self._usage.get(user_id)
            if counter is None:
                raise NotFound(user_id, "usage counter")
            counter.used = 0
            counter.cycle_expires_at = cycle_expires_at
            counter.updated_at = now

    async def record_event(self, event_id: str, event_type: str, now: datetime) -> bool:
        async with self._lock:
            if event_id in self._events:
                return False
            self._events.add(event_id)
            return True

    async def record_transaction(self, transaction: BillingTransaction) -> bool:
        async with self._lock:
            if transaction.stripe_invoice_id in self._transactions:
                return False
            self._transactions[transaction.stripe_invoice_id] = _copy(transaction)
            return True

    async def commit(self) -> None:
        return None
