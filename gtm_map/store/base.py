"""Abstract interface shared by the SQL and in-memory stores."""
from __future__ import annotations

import abc
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from gtm_map.db.models import BillingTransaction, Subscription, UsageCounter


class BillingStore(abc.ABC):
    """Persistence operations the billing services rely on.

    Implementations must make ``increment_usage`` a single atomic
    read-modify-write; every other method touches one row.
    """

    @abc.abstractmethod
    async def get_subscription(
        self, user_id: UUID, *, for_update: bool = False
    ) -> Optional[Subscription]:
        ...

    @abc.abstractmethod
    async def get_subscription_by_customer(
        self, stripe_customer_id: str
    ) -> Optional[Subscription]:
        ...

    @abc.abstractmethod
    async def add_subscription(self, subscription: Subscription) -> Subscription:
        """Insert a new row; raises ``AlreadyExists`` if the user has one."""

    @abc.abstractmethod
    async def save_subscription(self, subscription: Subscription) -> Subscription:
        ...

    @abc.abstractmethod
    async def list_expired_trials(self, now: datetime) -> List[Subscription]:
        ...

    @abc.abstractmethod
    async def get_usage(self, user_id: UUID) -> Optional[UsageCounter]:
        ...

    @abc.abstractmethod
    async def add_usage(self, counter: UsageCounter) -> UsageCounter:
        ...

    @abc.abstractmethod
    async def increment_usage(
        self,
        user_id: UUID,
        amount: int,
        now: datetime,
        limit: Optional[int] = None,
    ) -> Optional[int]:
        """Return the post-increment count, or ``None`` if ``limit`` blocked it.

        Raises ``NotFound`` when the user has no counter row.
        """

    @abc.abstractmethod
    async def reset_usage(
        self, user_id: UUID, cycle_expires_at: datetime, now: datetime
    ) -> None:
        """Raises ``NotFound`` when the user has no counter row."""

    @abc.abstractmethod
    async def record_event(self, event_id: str, event_type: str, now: datetime) -> bool:
        ...

    @abc.abstractmethod
    async def record_transaction(self, transaction: BillingTransaction) -> bool:
        ...

    @abc.abstractmethod
    async def commit(self) -> None:
        """Make pending writes durable."""
