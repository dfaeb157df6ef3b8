"""
Trial provisioning and admin route tests
"""
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi import status

from conftest import API_PREFIX, build_auth_header, seed_account
from gtm_map.core.clock import utcnow
from gtm_map.db.models import SubscriptionStatus


ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.mark.asyncio
async def test_start_trial(client, app_store):
    user_id = uuid4()
    headers = build_auth_header(user_id)

    response = await client.post(f"{API_PREFIX}/trial/start", headers=headers)

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["trial_state"] == "trialing"
    assert data["subscription"]["plan_id"] == "trial"
    assert data["subscription"]["status"] == "trialing"
    assert (await app_store.get_usage(user_id)).used == 0

    usage = await client.get(f"{API_PREFIX}/billing/usage", headers=headers)
    assert (usage.json()["quota"], usage.json()["remaining"]) == (10, 10)


@pytest.mark.asyncio
async def test_trial_cannot_be_started_twice(client):
    headers = build_auth_header(uuid4())

    await client.post(f"{API_PREFIX}/trial/start", headers=headers)
    again = await client.post(f"{API_PREFIX}/trial/start", headers=headers)

    assert again.status_code == status.HTTP_409_CONFLICT
    assert again.json() == {"message": "Subscription already exists"}


@pytest.mark.asyncio
async def test_admin_routes_require_token(client):
    missing = await client.post(f"{API_PREFIX}/admin/trials/lapse")
    wrong = await client.post(
        f"{API_PREFIX}/admin/trials/lapse", headers={"X-Admin-Token": "nope"}
    )

    assert missing.status_code == status.HTTP_403_FORBIDDEN
    assert wrong.status_code == status.HTTP_403_FORBIDDEN
    assert wrong.json() == {"message": "Admin token required"}


@pytest.mark.asyncio
async def test_admin_restore_unblocks_expired_trial(client, app_store):
    now = utcnow()
    user_id = await seed_account(
        app_store,
        plan_id="trial",
        status=SubscriptionStatus.TRIALING,
        used=10,
        trial_expires_at=now - timedelta(days=2),
        now=now,
    )
    generate_body = {"icp": {"solution": "Fleet telematics"}, "batch_size": 2}
    blocked = await client.post(
        f"{API_PREFIX}/generate", json=generate_body, headers=build_auth_header(user_id)
    )
    assert blocked.json()["reason"] == "trial_expired"

    restored = await client.post(
        f"{API_PREFIX}/admin/users/{user_id}/trial/restore", headers=ADMIN_HEADERS
    )

    assert restored.status_code == status.HTTP_200_OK
    assert restored.json()["trial_state"] == "trialing"
    allowed = await client.post(
        f"{API_PREFIX}/generate", json=generate_body, headers=build_auth_header(user_id)
    )
    assert allowed.status_code == status.HTTP_200_OK
    assert allowed.json()["usage"]["used"] == 1


@pytest.mark.asyncio
async def test_admin_lapse_expired_trials(client, app_store):
    now = utcnow()
    expired = await seed_account(
        app_store,
        plan_id="trial",
        status=SubscriptionStatus.TRIALING,
        trial_expires_at=now - timedelta(hours=1),
        now=now,
    )
    await seed_account(
        app_store,
        plan_id="trial",
        status=SubscriptionStatus.TRIALING,
        trial_expires_at=now + timedelta(days=1),
        now=now,
    )

    response = await client.post(f"{API_PREFIX}/admin/trials/lapse", headers=ADMIN_HEADERS)

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"lapsed": [str(expired)], "count": 1}
    subscription = await app_store.get_subscription(expired)
    assert (subscription.status, subscription.plan_id) == (SubscriptionStatus.FREE, "free")
