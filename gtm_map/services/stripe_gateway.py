"""Thin wrapper over the Stripe SDK calls the billing routes make."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import stripe
from starlette.concurrency import run_in_threadpool

from gtm_map.core.config import Settings
from gtm_map.core.exceptions import InvalidWebhookSignature, ProviderError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionDetails:
    subscription_ref: str
    customer_ref: Optional[str]
    status: str
    price_ref: Optional[str]
    period_end: Optional[datetime]


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def subscription_details(subscription: Any) -> SubscriptionDetails:
    """Read the fields we store from a Stripe subscription payload.

    Newer API versions moved ``current_period_end`` onto the subscription
    items, so both places are checked.
    """

    items = stripe_field(stripe_field(subscription, "items", {}), "data", [])
    first_item = items[0] if items else {}
    period_end = stripe_field(subscription, "current_period_end") or stripe_field(
        first_item, "current_period_end"
    )
    return SubscriptionDetails(
        subscription_ref=stripe_field(subscription, "id"),
        customer_ref=stripe_field(subscription, "customer"),
        status=stripe_field(subscription, "status", ""),
        price_ref=stripe_field(stripe_field(first_item, "price", {}), "id"),
        period_end=from_timestamp(period_end),
    )


class StripeGateway:
    """Checkout, portal and webhook verification against one Stripe account."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        *,
        api_version: Optional[str] = None,
        site_url: str = "http://localhost:3000",
        success_path: str = "/settings/billing?success=true",
        cancel_path: str = "/settings/billing?canceled=true",
        portal_return_path: str = "/settings/billing",
    ) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version
        self.site_url = site_url.rstrip("/")
        self.success_path = success_path
        self.cancel_path = cancel_path
        self.portal_return_path = portal_return_path

    @classmethod
    def from_settings(cls, config: Settings) -> "StripeGateway":
        return cls(
            config.stripe.secret_key or "",
            config.stripe.webhook_secret or "",
            api_version=config.stripe.api_version,
            site_url=config.SITE_URL,
            success_path=config.stripe.success_path,
            cancel_path=config.stripe.cancel_path,
            portal_return_path=config.stripe.portal_return_path,
        )

    def _request_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self.secret_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    async def _call(self, operation: str, func, **params) -> Any:
        try:
            return await run_in_threadpool(func, **params, **self._request_options())
        except stripe.StripeError as exc:
            logger.error(f"Stripe {operation} failed: {exc}")
            raise ProviderError("stripe", f"{operation}: {exc.user_message or exc}") from exc

    async def create_customer(self, user_id: UUID, email: Optional[str]) -> str:
        customer = await self._call(
            "customer.create",
            stripe.Customer.create,
            email=email,
            metadata={"user_id": str(user_id)},
        )
        logger.info(f"Created Stripe customer {customer['id']} for user {user_id}")
        return customer["id"]

    async def create_checkout_session(
        self,
        *,
        user_id: UUID,
        customer_ref: str,
        plan_id: str,
        price_ref: str,
    ) -> str:
        metadata = {"user_id": str(user_id), "plan_id": plan_id}
        session = await self._call(
            "checkout.create",
            stripe.checkout.Session.create,
            customer=customer_ref,
            mode="subscription",
            client_reference_id=str(user_id),
            line_items=[{"price": price_ref, "quantity": 1}],
            success_url=f"{self.site_url}{self.success_path}",
            cancel_url=f"{self.site_url}{self.cancel_path}",
            metadata=metadata,
            subscription_data={"metadata": metadata},
            locale="auto",
        )
        return session["url"]

    async def create_portal_session(self, customer_ref: str) -> str:
        session = await self._call(
            "portal.create",
            stripe.billing_portal.Session.create,
            customer=customer_ref,
            return_url=f"{self.site_url}{self.portal_return_path}",
        )
        return session["url"]

    async def retrieve_subscription(self, subscription_ref: str) -> SubscriptionDetails:
        subscription = await self._call(
            "subscription.retrieve", stripe.Subscription.retrieve, id=subscription_ref
        )
        return subscription_details(subscription)

    def verify_event(self, payload: bytes, signature: Optional[str]) -> stripe.Event:
        """Check the ``Stripe-Signature`` header and build the event.

        Raises:
            InvalidWebhookSignature: header missing, signature mismatch or
                a body that is not a JSON event
        """
        if not signature:
            raise InvalidWebhookSignature("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise InvalidWebhookSignature(f"Signature mismatch: {exc}") from exc
        except ValueError as exc:
            raise InvalidWebhookSignature(f"Malformed payload: {exc}") from exc
        if not stripe_field(event, "id") or not stripe_field(event, "type"):
            raise InvalidWebhookSignature("Payload is not a Stripe event")
        return event
