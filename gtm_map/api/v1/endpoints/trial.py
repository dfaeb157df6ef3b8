"""Self-service trial provisioning."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status

from gtm_map.api.deps import get_limiter, get_store, get_trials
from gtm_map.auth.jwt import require_auth
from gtm_map.core.clock import utcnow
from gtm_map.schemas.billing import TrialRead
from gtm_map.services.limits import RequestLimiter
from gtm_map.services.trials import TrialLifecycleManager
from gtm_map.store.base import BillingStore


router = APIRouter(prefix="/trial", tags=["trial"])


@router.post("/start", response_model=TrialRead, status_code=status.HTTP_201_CREATED)
async def start_trial(
    auth=Depends(require_auth),
    store: BillingStore = Depends(get_store),
    trials: TrialLifecycleManager = Depends(get_trials),
    limiter: RequestLimiter = Depends(get_limiter),
):
    user_id = auth["user_id"]
    await limiter.check_rate_limit(user_id)

    now = utcnow()
    subscription = await trials.start_trial(user_id, now)
    await store.commit()
    return {"subscription": subscription, "trial_state": trials.trial_state(subscription, now)}
