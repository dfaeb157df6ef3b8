"""Endpoints for plans, checkout, the billing portal and Stripe webhooks."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from gtm_map.api.deps import (
    get_catalog,
    get_gate,
    get_limiter,
    get_store,
    get_stripe_gateway,
    get_trials,
)
from gtm_map.auth.jwt import require_auth
from gtm_map.core.clock import utcnow
from gtm_map.core.exceptions import NotFound
from gtm_map.schemas.billing import CheckoutRequest, PlanList, RedirectResponse, WebhookAck
from gtm_map.schemas.generation import UsageRead
from gtm_map.services.entitlements import upgrade_plan
from gtm_map.services.gate import GenerationGate
from gtm_map.services.limits import RequestLimiter
from gtm_map.services.plan_catalog import PlanCatalog
from gtm_map.services.stripe_events import StripeEventTranslator
from gtm_map.services.stripe_gateway import StripeGateway
from gtm_map.services.subscription_sync import SubscriptionSynchronizer
from gtm_map.services.trials import TrialLifecycleManager
from gtm_map.store.base import BillingStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    store: BillingStore = Depends(get_store),
    catalog: PlanCatalog = Depends(get_catalog),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    trials: TrialLifecycleManager = Depends(get_trials),
):
    payload = await request.body()
    event = gateway.verify_event(payload, request.headers.get("stripe-signature"))
    event_id, event_type = event["id"], event["type"]

    now = utcnow()
    if not await store.record_event(event_id, event_type, now):
        logger.info(f"Stripe event {event_id} already processed")
        return WebhookAck(skipped=True)

    translator = StripeEventTranslator(gateway, catalog, store)
    synchronizer = SubscriptionSynchronizer(store, catalog, trials)
    applied = 0
    for lifecycle_event in await translator.translate(event):
        if await synchronizer.apply(lifecycle_event, now):
            applied += 1
    await store.commit()
    logger.info(f"Stripe event {event_id} ({event_type}) applied {applied} change(s)")
    return WebhookAck(applied=applied)


@router.get("/plans", response_model=PlanList)
async def list_plans(catalog: PlanCatalog = Depends(get_catalog)):
    return {"plans": [plan.as_public() for plan in catalog.all()]}


@router.get("/usage", response_model=UsageRead)
async def current_usage(
    auth=Depends(require_auth),
    gate: GenerationGate = Depends(get_gate),
):
    entitlement = await gate.check(auth["user_id"])
    return {
        **entitlement.as_dict(),
        "upgrade_plan": upgrade_plan(entitlement.plan_id, entitlement.status),
    }


@router.post("/checkout", response_model=RedirectResponse)
async def create_checkout(
    body: CheckoutRequest,
    auth=Depends(require_auth),
    store: BillingStore = Depends(get_store),
    catalog: PlanCatalog = Depends(get_catalog),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    limiter: RequestLimiter = Depends(get_limiter),
):
    user_id = auth["user_id"]
    await limiter.check_rate_limit(user_id)

    if body.plan_id not in catalog:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unknown plan",
        )
    plan = catalog.get(body.plan_id)
    if not plan.purchasable or not plan.stripe_price_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Plan is not available for purchase",
        )

    subscription = await store.get_subscription(user_id, for_update=True)
    if subscription is None:
        raise NotFound(user_id, "subscription")

    if not subscription.stripe_customer_id:
        subscription.stripe_customer_id = await gateway.create_customer(
            user_id, auth.get("email")
        )
        subscription.updated_at = utcnow()
        await store.save_subscription(subscription)
        await store.commit()

    url = await gateway.create_checkout_session(
        user_id=user_id,
        customer_ref=subscription.stripe_customer_id,
        plan_id=plan.id,
        price_ref=plan.stripe_price_id,
    )
    logger.info(f"Checkout session created for user {user_id} on plan {plan.id}")
    return {"url": url}


@router.post("/portal", response_model=RedirectResponse)
async def create_portal(
    auth=Depends(require_auth),
    store: BillingStore = Depends(get_store),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    limiter: RequestLimiter = Depends(get_limiter),
):
    user_id = auth["user_id"]
    await limiter.check_rate_limit(user_id)

    subscription = await store.get_subscription(user_id)
    if subscription is None or not subscription.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No billing account found",
        )
    url = await gateway.create_portal_session(subscription.stripe_customer_id)
    return {"url": url}
