"""
Trial lifecycle: start, expiry, restore and lapse
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta

from gtm_map.core.clock import utcnow
from gtm_map.db.models import Subscription, SubscriptionStatus
from gtm_map.services.entitlements import is_trial_expired
from gtm_map.services.usage_ledger import UsageLedger
from gtm_map.store.base import BillingStore


logger = logging.getLogger(__name__)


class TrialState:
    NO_TRIAL = "no_trial"
    TRIALING = "trialing"
    EXPIRED = "expired"
    CONVERTED = "converted"


class TrialLifecycleManager:
    """
    Owns the ``no_trial -> trialing -> {expired, converted}`` machine.

    ``expired`` is left only through :meth:`restore_trial`; ``converted``
    is entered by the subscription synchronizer via :meth:`close_trial`.
    """

    def __init__(
        self,
        store: BillingStore,
        *,
        trial_days: int = 14,
        trial_plan_id: str = "trial",
        free_plan_id: str = "free",
    ) -> None:
        self.store = store
        self.ledger = UsageLedger(store)
        self.trial_days = trial_days
        self.trial_plan_id = trial_plan_id
        self.free_plan_id = free_plan_id

    def trial_expiry(self, now: datetime) -> datetime:
        return now + relativedelta(days=self.trial_days)

    @staticmethod
    def is_expired(subscription: Subscription, now: datetime) -> bool:
        return is_trial_expired(subscription, now)

    def trial_state(self, subscription: Optional[Subscription], now: datetime) -> str:
        if subscription is None:
            return TrialState.NO_TRIAL
        if subscription.status == SubscriptionStatus.TRIALING:
            if self.is_expired(subscription, now):
                return TrialState.EXPIRED
            return TrialState.TRIALING
        if subscription.stripe_subscription_id is not None:
            return TrialState.CONVERTED
        return TrialState.EXPIRED

    async def start_trial(self, user_id: UUID, now: Optional[datetime] = None) -> Subscription:
        """
        Provision the one-time trial and its usage counter.

        Raises:
            AlreadyExists: the user already has a subscription row
        """
        now = now or utcnow()
        expires_at = self.trial_expiry(now)
        subscription = Subscription(
            user_id=user_id,
            plan_id=self.trial_plan_id,
            status=SubscriptionStatus.TRIALING,
            trial_expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        await self.store.add_subscription(subscription)
        await self.ledger.open_cycle(user_id, expires_at, now)
        logger.info(f"Trial started for user {user_id}; expires {expires_at.isoformat()}")
        return subscription

    async def restore_trial(self, user_id: UUID, now: Optional[datetime] = None) -> Subscription:
        """
        Put a user back on a fresh trial from any prior status.

        Support-only escape hatch: usage goes back to zero and the trial
        runs ``trial_days`` from ``now``.
        """
        now = now or utcnow()
        expires_at = self.trial_expiry(now)
        subscription = await self.store.get_subscription(user_id, for_update=True)
        if subscription is None:
            subscription = Subscription(user_id=user_id, created_at=now)
            previous = None
        else:
            previous = subscription.status
        subscription.plan_id = self.trial_plan_id
        subscription.status = SubscriptionStatus.TRIALING
        subscription.trial_expires_at = expires_at
        subscription.canceled_at = None
        subscription.updated_at = now
        if previous is None:
            await self.store.add_subscription(subscription)
        else:
            await self.store.save_subscription(subscription)
        await self.ledger.open_cycle(user_id, expires_at, now)
        logger.info(
            f"Trial restored for user {user_id} (was {previous or 'no_trial'}); "
            f"expires {expires_at.isoformat()}"
        )
        return subscription

    @staticmethod
    def close_trial(subscription: Subscription, now: datetime) -> None:
        """End a still-running trial at ``now`` (on conversion to paid)."""

        if subscription.trial_expires_at is not None and subscription.trial_expires_at > now:
            subscription.trial_expires_at = now

    async def lapse_expired_trials(self, now: Optional[datetime] = None) -> List[UUID]:
        """Move every expired trial onto the free plan."""

        now = now or utcnow()
        lapsed: List[UUID] = []
        for subscription in await self.store.list_expired_trials(now):
            subscription.status = SubscriptionStatus.FREE
            subscription.plan_id = self.free_plan_id
            subscription.updated_at = now
            await self.store.save_subscription(subscription)
            lapsed.append(subscription.user_id)
        if lapsed:
            logger.info(f"Lapsed {len(lapsed)} expired trials to the free plan")
        return lapsed
