"""Reconcile local subscription state with payment-provider lifecycle events."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from gtm_map.core.clock import utcnow
from gtm_map.core.exceptions import NotFound
from gtm_map.db.models import BillingTransaction, Subscription, SubscriptionStatus
from gtm_map.services.plan_catalog import PlanCatalog
from gtm_map.services.trials import TrialLifecycleManager
from gtm_map.services.usage_ledger import UsageLedger
from gtm_map.store.base import BillingStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutCompleted:
    user_id: UUID
    plan_id: str
    customer_ref: str
    subscription_ref: str
    period_end: datetime
    price_ref: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionRenewed:
    user_id: UUID
    subscription_ref: Optional[str]
    period_end: datetime


@dataclass(frozen=True)
class SubscriptionUpdated:
    user_id: UUID
    subscription_ref: str
    plan_id: str
    status: str
    period_end: Optional[datetime] = None
    price_ref: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionCanceled:
    user_id: UUID
    subscription_ref: Optional[str] = None


@dataclass(frozen=True)
class PaymentFailed:
    user_id: UUID


@dataclass(frozen=True)
class InvoicePaid:
    user_id: UUID
    invoice_ref: str
    amount: int
    currency: str
    invoice_pdf_url: Optional[str] = None
    billing_reason: Optional[str] = None


LifecycleEvent = Union[
    CheckoutCompleted,
    SubscriptionRenewed,
    SubscriptionUpdated,
    SubscriptionCanceled,
    PaymentFailed,
    InvoicePaid,
]


class SubscriptionSynchronizer:
    """Applies lifecycle events; every handler is safe to run twice."""

    def __init__(
        self,
        store: BillingStore,
        catalog: PlanCatalog,
        trials: TrialLifecycleManager,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.trials = trials
        self.ledger = UsageLedger(store)

    async def apply(self, event: LifecycleEvent, now: Optional[datetime] = None) -> bool:
        """Dispatch ``event``; returns ``False`` when it changed nothing."""

        now = now or utcnow()
        if isinstance(event, CheckoutCompleted):
            return await self.checkout_completed(event, now)
        if isinstance(event, SubscriptionRenewed):
            return await self.subscription_renewed(event, now)
        if isinstance(event, SubscriptionUpdated):
            return await self.subscription_updated(event, now)
        if isinstance(event, SubscriptionCanceled):
            return await self.subscription_canceled(event, now)
        if isinstance(event, PaymentFailed):
            return await self.payment_failed(event, now)
        if isinstance(event, InvoicePaid):
            return await self.invoice_paid(event, now)
        raise TypeError(f"Unsupported lifecycle event: {type(event).__name__}")

    async def _load(self, user_id: UUID) -> Subscription:
        subscription = await self.store.get_subscription(user_id, for_update=True)
        if subscription is None:
            raise NotFound(user_id, "subscription")
        return subscription

    async def checkout_completed(self, event: CheckoutCompleted, now: datetime) -> bool:
        plan = self.catalog.get(event.plan_id)
        subscription = await self._load(event.user_id)
        if (
            subscription.status == SubscriptionStatus.ACTIVE
            and subscription.stripe_subscription_id == event.subscription_ref
        ):
            logger.info(
                f"Checkout for {event.subscription_ref} already applied to user {event.user_id}"
            )
            return False

        previous = subscription.status
        subscription.plan_id = plan.id
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.stripe_customer_id = event.customer_ref
        subscription.stripe_subscription_id = event.subscription_ref
        subscription.stripe_price_id = event.price_ref or plan.stripe_price_id
        subscription.current_period_end = event.period_end
        subscription.canceled_at = None
        subscription.updated_at = now
        self.trials.close_trial(subscription, now)
        await self.store.save_subscription(subscription)
        await self.ledger.open_cycle(event.user_id, event.period_end, now)
        logger.info(
            f"User {event.user_id} moved {previous} -> active on plan {plan.id} "
            f"({event.subscription_ref})"
        )
        return True

    async def subscription_renewed(self, event: SubscriptionRenewed, now: datetime) -> bool:
        subscription = await self._load(event.user_id)
        usage = await self.ledger.get_usage(event.user_id)
        if usage.cycle_expires_at >= event.period_end:
            logger.info(
                f"Renewal to {event.period_end.isoformat()} already applied for user {event.user_id}"
            )
            return False

        subscription.current_period_end = event.period_end
        subscription.updated_at = now
        await self.store.save_subscription(subscription)
        await self.ledger.reset_usage(event.user_id, event.period_end, now)
        return True

    async def subscription_updated(self, event: SubscriptionUpdated, now: datetime) -> bool:
        plan = self.catalog.get(event.plan_id)
        subscription = await self._load(event.user_id)
        if subscription.stripe_subscription_id not in (None, event.subscription_ref):
            logger.warning(
                f"Ignoring update for {event.subscription_ref}; user {event.user_id} "
                f"is bound to {subscription.stripe_subscription_id}"
            )
            return False
        if event.status == SubscriptionStatus.ACTIVE and subscription.stripe_subscription_id is None:
            # activation goes through checkout so that usage gets a fresh cycle
            return False

        changed = (
            subscription.plan_id != plan.id
            or subscription.status != event.status
            or (
                event.period_end is not None
                and subscription.current_period_end != event.period_end
            )
        )
        if not changed:
            return False

        if subscription.plan_id != plan.id:
            logger.info(f"User {event.user_id} plan change {subscription.plan_id} -> {plan.id}")
        subscription.plan_id = plan.id
        subscription.status = event.status
        if event.price_ref:
            subscription.stripe_price_id = event.price_ref
        if event.period_end is not None:
            subscription.current_period_end = event.period_end
        if event.status == SubscriptionStatus.ACTIVE:
            self.trials.close_trial(subscription, now)
            subscription.canceled_at = None
        elif event.status == SubscriptionStatus.CANCELED and subscription.canceled_at is None:
            subscription.canceled_at = now
        subscription.updated_at = now
        await self.store.save_subscription(subscription)
        return True

    async def subscription_canceled(self, event: SubscriptionCanceled, now: datetime) -> bool:
        subscription = await self._load(event.user_id)
        if subscription.status == SubscriptionStatus.CANCELED:
            return False
        if (
            event.subscription_ref is not None
            and subscription.stripe_subscription_id not in (None, event.subscription_ref)
        ):
            logger.warning(
                f"Ignoring cancellation of stale subscription {event.subscription_ref} "
                f"for user {event.user_id}"
            )
            return False
        subscription.status = SubscriptionStatus.CANCELED
        subscription.canceled_at = now
        subscription.updated_at = now
        await self.store.save_subscription(subscription)
        logger.info(f"Subscription canceled for user {event.user_id}")
        return True

    async def payment_failed(self, event: PaymentFailed, now: datetime) -> bool:
        subscription = await self._load(event.user_id)
        if subscription.status == SubscriptionStatus.PAST_DUE:
            return False
        subscription.status = SubscriptionStatus.PAST_DUE
        subscription.updated_at = now
        await self.store.save_subscription(subscription)
        logger.warning(f"Payment failed for user {event.user_id}; marked past_due")
        return True

    async def invoice_paid(self, event: InvoicePaid, now: datetime) -> bool:
        return await self.store.record_transaction(
            BillingTransaction(
                user_id=event.user_id,
                stripe_invoice_id=event.invoice_ref,
                amount=event.amount,
                currency=event.currency,
                status="paid",
                invoice_pdf_url=event.invoice_pdf_url,
                billing_reason=event.billing_reason,
                created_at=now,
            )
        )
