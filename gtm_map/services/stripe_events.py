"""Translate verified Stripe webhook events into lifecycle events."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from gtm_map.core.exceptions import UnknownPlan
from gtm_map.db.models import SubscriptionStatus
from gtm_map.services.plan_catalog import PlanCatalog
from gtm_map.services.stripe_gateway import (
    StripeGateway,
    from_timestamp,
    stripe_field,
    subscription_details,
)
from gtm_map.services.subscription_sync import (
    CheckoutCompleted,
    InvoicePaid,
    LifecycleEvent,
    PaymentFailed,
    SubscriptionCanceled,
    SubscriptionRenewed,
    SubscriptionUpdated,
)
from gtm_map.store.base import BillingStore


logger = logging.getLogger(__name__)

# Stripe subscription status -> local status; anything else is ignored.
STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def _parse_user_id(value: Any) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        logger.warning(f"Ignoring malformed user reference {value!r}")
        return None


class StripeEventTranslator:
    """Maps raw event payloads onto the synchronizer's event types."""

    def __init__(
        self, gateway: StripeGateway, catalog: PlanCatalog, store: BillingStore
    ) -> None:
        self.gateway = gateway
        self.catalog = catalog
        self.store = store

    async def translate(self, event: Dict[str, Any]) -> List[LifecycleEvent]:
        event_type = stripe_field(event, "type")
        payload = stripe_field(stripe_field(event, "data", {}), "object", {})
        if event_type == "checkout.session.completed":
            return await self._checkout_completed(payload)
        if event_type == "customer.subscription.updated":
            return await self._subscription_updated(payload)
        if event_type == "customer.subscription.deleted":
            return await self._subscription_deleted(payload)
        if event_type == "invoice.paid":
            return await self._invoice_paid(payload)
        if event_type == "invoice.payment_failed":
            return await self._payment_failed(payload)
        logger.info(f"Unhandled Stripe event type {event_type}")
        return []

    async def _resolve_user(
        self, payload: Dict[str, Any], *candidates: Any
    ) -> Optional[UUID]:
        for candidate in candidates:
            user_id = _parse_user_id(candidate)
            if user_id is not None:
                return user_id
        customer_ref = stripe_field(payload, "customer")
        if customer_ref:
            subscription = await self.store.get_subscription_by_customer(customer_ref)
            if subscription is not None:
                return subscription.user_id
        logger.error(
            f"Cannot resolve user for Stripe object {stripe_field(payload, 'id')} "
            f"(customer {customer_ref})"
        )
        return None

    def _plan_for(self, plan_id: Optional[str], price_ref: Optional[str]) -> str:
        if plan_id and plan_id in self.catalog:
            return plan_id
        return self.catalog.by_price_id(price_ref).id

    async def _checkout_completed(self, session: Dict[str, Any]) -> List[LifecycleEvent]:
        if stripe_field(session, "mode") != "subscription":
            logger.info(f"Skipping non-subscription checkout {stripe_field(session, 'id')}")
            return []
        metadata = stripe_field(session, "metadata", {})
        user_id = await self._resolve_user(
            session,
            stripe_field(session, "client_reference_id"),
            stripe_field(metadata, "user_id"),
        )
        subscription_ref = stripe_field(session, "subscription")
        if user_id is None or not subscription_ref:
            return []

        details = await self.gateway.retrieve_subscription(subscription_ref)
        if details.period_end is None:
            logger.error(f"Subscription {subscription_ref} has no current period end")
            return []
        return [
            CheckoutCompleted(
                user_id=user_id,
                plan_id=self._plan_for(stripe_field(metadata, "plan_id"), details.price_ref),
                customer_ref=stripe_field(session, "customer") or details.customer_ref,
                subscription_ref=subscription_ref,
                price_ref=details.price_ref,
                period_end=details.period_end,
            )
        ]

    async def _subscription_updated(self, subscription: Dict[str, Any]) -> List[LifecycleEvent]:
        details = subscription_details(subscription)
        status = STATUS_MAP.get(details.status)
        if status is None:
            logger.info(
                f"Ignoring subscription {details.subscription_ref} in status {details.status}"
            )
            return []
        metadata = stripe_field(subscription, "metadata", {})
        user_id = await self._resolve_user(subscription, stripe_field(metadata, "user_id"))
        if user_id is None:
            return []
        try:
            plan_id = self._plan_for(stripe_field(metadata, "plan_id"), details.price_ref)
        except UnknownPlan:
            logger.error(
                f"Subscription {details.subscription_ref} uses unknown price {details.price_ref}"
            )
            raise
        return [
            SubscriptionUpdated(
                user_id=user_id,
                subscription_ref=details.subscription_ref,
                plan_id=plan_id,
                status=status,
                period_end=details.period_end,
                price_ref=details.price_ref,
            )
        ]

    async def _subscription_deleted(self, subscription: Dict[str, Any]) -> List[LifecycleEvent]:
        metadata = stripe_field(subscription, "metadata", {})
        user_id = await self._resolve_user(subscription, stripe_field(metadata, "user_id"))
        if user_id is None:
            return []
        return [
            SubscriptionCanceled(
                user_id=user_id, subscription_ref=stripe_field(subscription, "id")
            )
        ]

    async def _invoice_paid(self, invoice: Dict[str, Any]) -> List[LifecycleEvent]:
        metadata = stripe_field(stripe_field(invoice, "subscription_details", {}), "metadata", {})
        user_id = await self._resolve_user(invoice, stripe_field(metadata, "user_id"))
        if user_id is None:
            return []

        billing_reason = stripe_field(invoice, "billing_reason")
        events: List[LifecycleEvent] = [
            InvoicePaid(
                user_id=user_id,
                invoice_ref=stripe_field(invoice, "id"),
                amount=int(stripe_field(invoice, "amount_paid", 0)),
                currency=stripe_field(invoice, "currency", "gbp"),
                invoice_pdf_url=stripe_field(invoice, "invoice_pdf"),
                billing_reason=billing_reason,
            )
        ]
        if billing_reason == "subscription_cycle":
            lines = stripe_field(stripe_field(invoice, "lines", {}), "data", [])
            period = stripe_field(lines[0], "period", {}) if lines else {}
            period_end = from_timestamp(stripe_field(period, "end"))
            if period_end is None:
                logger.error(f"Renewal invoice {stripe_field(invoice, 'id')} has no period end")
            else:
                events.append(
                    SubscriptionRenewed(
                        user_id=user_id,
                        subscription_ref=stripe_field(invoice, "subscription"),
                        period_end=period_end,
                    )
                )
        return events

    async def _payment_failed(self, invoice: Dict[str, Any]) -> List[LifecycleEvent]:
        metadata = stripe_field(stripe_field(invoice, "subscription_details", {}), "metadata", {})
        user_id = await self._resolve_user(invoice, stripe_field(metadata, "user_id"))
        if user_id is None:
            return []
        return [PaymentFailed(user_id=user_id)]
