"""Shared FastAPI dependencies."""
from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gtm_map.core.config import settings
from gtm_map.db.session import get_db
from gtm_map.services.gate import GenerationGate
from gtm_map.services.limits import RequestLimiter
from gtm_map.services.openai_service import ProspectGenerator
from gtm_map.services.plan_catalog import PlanCatalog
from gtm_map.services.stripe_gateway import StripeGateway
from gtm_map.services.trials import TrialLifecycleManager
from gtm_map.store.base import BillingStore


async def get_db_session(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[AsyncSession, None]:
    yield session


def get_store(
    request: Request, db: AsyncSession = Depends(get_db_session)
) -> BillingStore:
    return request.app.state.store_factory(db)


def get_catalog(request: Request) -> PlanCatalog:
    return request.app.state.catalog


def get_stripe_gateway(request: Request) -> StripeGateway:
    return request.app.state.stripe_gateway


def get_prospect_generator(request: Request) -> ProspectGenerator:
    return request.app.state.prospect_generator


def get_limiter(request: Request) -> RequestLimiter:
    return request.app.state.limiter


def get_trials(store: BillingStore = Depends(get_store)) -> TrialLifecycleManager:
    billing = settings.billing
    return TrialLifecycleManager(
        store,
        trial_days=billing.trial_days,
        trial_plan_id=billing.trial_plan_id,
        free_plan_id=billing.free_plan_id,
    )


def get_gate(
    store: BillingStore = Depends(get_store),
    catalog: PlanCatalog = Depends(get_catalog),
) -> GenerationGate:
    return GenerationGate(store, catalog, settings.billing.warning_ratio)
