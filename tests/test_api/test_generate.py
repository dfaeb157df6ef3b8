"""
Generation endpoint tests: metering, blocking and request guards
"""
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi import status

from conftest import API_PREFIX, build_auth_header, seed_account
from gtm_map.api.deps import get_limiter
from gtm_map.core.clock import utcnow
from gtm_map.core.exceptions import ProviderError
from gtm_map.db.models import SubscriptionStatus
from gtm_map.services.limits import RequestLimiter


GENERATE_URL = f"{API_PREFIX}/generate"
BODY = {
    "icp": {
        "solution": "Automated payroll for hourly teams",
        "industries": ["Logistics"],
        "buyer_roles": ["COO"],
        "firmographics": {"size": "50-200", "geo": "UK"},
    },
    "batch_size": 3,
}


async def _trial_account(store, used=0, expires_in=timedelta(days=7)):
    now = utcnow()
    return await seed_account(
        store,
        plan_id="trial",
        status=SubscriptionStatus.TRIALING,
        used=used,
        trial_expires_at=now + expires_in,
        now=now,
    )


@pytest.mark.asyncio
async def test_generate_returns_prospects_and_usage(client, app_store, fake_generator):
    user_id = await _trial_account(app_store, used=7)

    response = await client.post(GENERATE_URL, json=BODY, headers=build_auth_header(user_id))

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert len(data["prospects"]) == 3
    assert data["usage"]["used"] == 8
    assert data["usage"]["remaining"] == 2
    assert data["usage"]["state"] == "warning"
    assert data["usage"]["upgrade_plan"] == "starter"
    assert fake_generator.calls == 1


@pytest.mark.asyncio
async def test_trial_quota_blocks_with_402(client, app_store, fake_generator):
    user_id = await _trial_account(app_store, used=10)

    response = await client.post(GENERATE_URL, json=BODY, headers=build_auth_header(user_id))

    assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
    data = response.json()
    assert data["reason"] == "quota_exhausted"
    assert (data["used"], data["quota"]) == (10, 10)
    assert data["upgrade_plan"] == "starter"
    assert "trial limit of 10" in data["message"]
    assert fake_generator.calls == 0


@pytest.mark.asyncio
async def test_expired_trial_blocks_with_402(client, app_store, fake_generator):
    user_id = await _trial_account(app_store, used=1, expires_in=-timedelta(minutes=1))

    response = await client.post(GENERATE_URL, json=BODY, headers=build_auth_header(user_id))

    assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
    assert response.json()["reason"] == "trial_expired"
    assert (await app_store.get_usage(user_id)).used == 1
    assert fake_generator.calls == 0


@pytest.mark.asyncio
async def test_paid_plan_suggests_pro(client, app_store):
    user_id = await seed_account(app_store, plan_id="starter", used=50, now=utcnow())

    response = await client.post(GENERATE_URL, json=BODY, headers=build_auth_header(user_id))

    assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
    assert response.json()["upgrade_plan"] == "pro"
    assert "starter limit of 50" in response.json()["message"]


@pytest.mark.asyncio
async def test_provider_failure_still_counts(client, app_store, fake_generator):
    user_id = await _trial_account(app_store, used=2)
    fake_generator.error = ProviderError("openai", "timeout")

    response = await client.post(GENERATE_URL, json=BODY, headers=build_auth_header(user_id))

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert response.json() == {"message": "Upstream provider unavailable, please retry"}
    assert (await app_store.get_usage(user_id)).used == 3


@pytest.mark.asyncio
async def test_unprovisioned_user_gets_conflict(client):
    response = await client.post(GENERATE_URL, json=BODY, headers=build_auth_header(uuid4()))

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json() == {"message": "Account setup incomplete"}


@pytest.mark.asyncio
async def test_duplicate_idempotency_key_is_rejected(client, app_store):
    user_id = await _trial_account(app_store)
    headers = {**build_auth_header(user_id), "Idempotency-Key": "abc-123"}

    first = await client.post(GENERATE_URL, json=BODY, headers=headers)
    second = await client.post(GENERATE_URL, json=BODY, headers=headers)

    assert first.status_code == status.HTTP_200_OK
    assert second.status_code == status.HTTP_409_CONFLICT
    assert (await app_store.get_usage(user_id)).used == 1


@pytest.mark.asyncio
async def test_blocked_request_does_not_spend_idempotency_key(client, app_store, fake_generator):
    user_id = await _trial_account(app_store, used=10)
    headers = {**build_auth_header(user_id), "Idempotency-Key": "retry-after-upgrade"}

    blocked = await client.post(GENERATE_URL, json=BODY, headers=headers)
    assert blocked.status_code == status.HTTP_402_PAYMENT_REQUIRED

    now = utcnow()
    await app_store.reset_usage(user_id, now + timedelta(days=30), now)
    retried = await client.post(GENERATE_URL, json=BODY, headers=headers)

    assert retried.status_code == status.HTTP_200_OK
    assert retried.json()["usage"]["used"] == 1
    assert fake_generator.calls == 1


@pytest.mark.asyncio
async def test_rate_limit(client, test_app, app_store, fake_redis):
    user_id = await _trial_account(app_store)
    limiter = RequestLimiter(fake_redis, rate_limit_rpm=1)
    test_app.dependency_overrides[get_limiter] = lambda: limiter
    headers = build_auth_header(user_id)

    await client.post(GENERATE_URL, json=BODY, headers=headers)
    response = await client.post(GENERATE_URL, json=BODY, headers=headers)

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert response.json() == {"message": "Rate limit exceeded"}


@pytest.mark.asyncio
async def test_invalid_batch_size_is_rejected(client, app_store):
    user_id = await _trial_account(app_store)

    response = await client.post(
        GENERATE_URL, json={**BODY, "batch_size": 0}, headers=build_auth_header(user_id)
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["message"] == "Invalid input data"


@pytest.mark.asyncio
async def test_bad_token_is_rejected(client):
    response = await client.post(
        GENERATE_URL, json=BODY, headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
