"""Support-only trial administration."""
from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from gtm_map.api.deps import get_store, get_trials
from gtm_map.auth.jwt import require_admin
from gtm_map.core.clock import utcnow
from gtm_map.schemas.billing import LapseResult, TrialRead
from gtm_map.services.trials import TrialLifecycleManager
from gtm_map.store.base import BillingStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/users/{user_id}/trial/restore", response_model=TrialRead)
async def restore_trial(
    user_id: UUID,
    store: BillingStore = Depends(get_store),
    trials: TrialLifecycleManager = Depends(get_trials),
):
    now = utcnow()
    subscription = await trials.restore_trial(user_id, now)
    await store.commit()
    logger.warning(f"Admin restored trial for user {user_id}")
    return {"subscription": subscription, "trial_state": trials.trial_state(subscription, now)}


@router.post("/trials/lapse", response_model=LapseResult)
async def lapse_trials(
    store: BillingStore = Depends(get_store),
    trials: TrialLifecycleManager = Depends(get_trials),
):
    lapsed = await trials.lapse_expired_trials(utcnow())
    await store.commit()
    return {"lapsed": lapsed, "count": len(lapsed)}
