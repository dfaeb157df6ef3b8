"""Gated prospect generation."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from gtm_map.api.deps import get_gate, get_limiter, get_prospect_generator
from gtm_map.auth.jwt import require_auth
from gtm_map.schemas.generation import GenerateRequest, GenerateResponse
from gtm_map.services.entitlements import block_message, upgrade_plan
from gtm_map.services.gate import GenerationGate
from gtm_map.services.limits import RequestLimiter
from gtm_map.services.openai_service import ProspectGenerator


router = APIRouter(tags=["generation"])


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={status.HTTP_402_PAYMENT_REQUIRED: {"description": "Trial expired or quota used"}},
)
async def generate(
    body: GenerateRequest,
    auth=Depends(require_auth),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    limiter: RequestLimiter = Depends(get_limiter),
    gate: GenerationGate = Depends(get_gate),
    generator: ProspectGenerator = Depends(get_prospect_generator),
):
    user_id = auth["user_id"]

    await limiter.check_rate_limit(user_id)
    await limiter.ensure_idempotent(user_id, "generate", idempotency_key)

    async def _generate():
        return await generator.generate_prospects(
            body.icp.model_dump(), body.batch_size, body.exclude_domains
        )

    outcome = await gate.run(user_id, "generate", _generate)
    entitlement = outcome.entitlement
    suggestion = upgrade_plan(entitlement.plan_id, entitlement.status)

    if not outcome.allowed:
        await limiter.release_idempotency(user_id, "generate", idempotency_key)
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={
                "reason": entitlement.reason,
                "used": entitlement.used,
                "quota": entitlement.quota,
                "message": block_message(entitlement),
                "upgrade_plan": suggestion,
            },
        )

    return {
        "prospects": outcome.result,
        "usage": {**entitlement.as_dict(), "upgrade_plan": suggestion},
    }
