"""
Pytest configuration for the application
"""
import hashlib
import hmac
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional
from uuid import UUID, uuid4

import httpx
import jwt
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gtm_map.core.config import settings

# Set test environment and override runtime settings to avoid external deps
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.store.backend_type = "memory"
settings.JWT_SECRET = "test-jwt-secret"
settings.ADMIN_API_TOKEN = "test-admin-token"
settings.OPENAI_API_KEY = "sk-test"
settings.stripe.secret_key = "sk_test_123"
settings.stripe.webhook_secret = "whsec_test_123"
for _plan in settings.billing.plans:
    if _plan.purchasable:
        _plan.stripe_price_id = f"price_{_plan.id}"

from gtm_map.api.deps import get_limiter, get_prospect_generator, get_stripe_gateway  # noqa: E402
from gtm_map.db.base import Base  # noqa: E402
from gtm_map.db.models import Subscription, SubscriptionStatus, UsageCounter  # noqa: E402
from gtm_map.db.session import get_db  # noqa: E402
from gtm_map.main import create_application  # noqa: E402
from gtm_map.repositories.plan_repo import PlanRepo  # noqa: E402
from gtm_map.services.limits import RequestLimiter  # noqa: E402
from gtm_map.services.plan_catalog import PlanCatalog  # noqa: E402
from gtm_map.services.stripe_gateway import StripeGateway, SubscriptionDetails  # noqa: E402
from gtm_map.store.base import BillingStore  # noqa: E402
from gtm_map.store.memory import MemoryBillingStore  # noqa: E402


API_PREFIX = f"{settings.API_PREFIX}/v1"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    """Minimal async Redis stub for rate limiting and idempotency tests."""

    def __init__(self) -> None:
        self.store: Dict[str, int | str] = {}

    async def incr(self, key: str) -> int:
        current = int(self.store.get(key, 0)) + 1
        self.store[key] = current
        return current

    async def expire(self, key: str, seconds: int) -> None:
        self.store.setdefault(f"{key}:ttl", seconds)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        if ex is not None:
            self.store[f"{key}:ttl"] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = [key for key in keys if self.store.pop(key, None) is not None]
        for key in keys:
            self.store.pop(f"{key}:ttl", None)
        return len(removed)

    async def aclose(self) -> None:
        return None


class FakeStripeGateway(StripeGateway):
    """Keeps signature verification real and records the network calls."""

    def __init__(self) -> None:
        super().__init__(
            settings.stripe.secret_key,
            settings.stripe.webhook_secret,
            site_url="http://test",
        )
        self.customers: List[Dict[str, Any]] = []
        self.checkouts: List[Dict[str, Any]] = []
        self.portals: List[str] = []
        self.subscriptions: Dict[str, SubscriptionDetails] = {}
        self.error: Optional[Exception] = None

    async def create_customer(self, user_id: UUID, email: Optional[str]) -> str:
        if self.error is not None:
            raise self.error
        customer_ref = f"cus_{len(self.customers) + 1}"
        self.customers.append({"id": customer_ref, "user_id": user_id, "email": email})
        return customer_ref

    async def create_checkout_session(self, *, user_id, customer_ref, plan_id, price_ref) -> str:
        if self.error is not None:
            raise self.error
        self.checkouts.append(
            {
                "user_id": user_id,
                "customer_ref": customer_ref,
                "plan_id": plan_id,
                "price_ref": price_ref,
            }
        )
        return f"https://checkout.stripe.test/{plan_id}"

    async def create_portal_session(self, customer_ref: str) -> str:
        self.portals.append(customer_ref)
        return f"https://billing.stripe.test/{customer_ref}"

    async def retrieve_subscription(self, subscription_ref: str) -> SubscriptionDetails:
        if self.error is not None:
            raise self.error
        return self.subscriptions[subscription_ref]


class FakeProspectGenerator:
    def __init__(self) -> None:
        self.calls = 0
        self.error: Optional[Exception] = None

    async def generate_prospects(self, icp, batch_size, exclude_domains=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [
            {
                "name": f"Company {i}",
                "domain": f"company{i}.test",
                "rationale": f"Matches {icp['solution']}",
                "confidence": 90 - i,
            }
            for i in range(batch_size)
        ]


def build_auth_header(user_id: UUID, email: str | None = "founder@example.com") -> Dict[str, str]:
    claims = {"sub": str(user_id)}
    if email:
        claims["email"] = email
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    return {"Authorization": f"Bearer {token}"}


def stripe_signature(payload: bytes, secret: str | None = None, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(
        (secret or settings.stripe.webhook_secret).encode("utf-8"), signed, hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


async def seed_account(
    store: BillingStore,
    user_id: UUID | None = None,
    *,
    plan_id: str = "starter",
    status: str = SubscriptionStatus.ACTIVE,
    used: int = 0,
    trial_expires_at: datetime | None = None,
    stripe_customer_id: str | None = None,
    stripe_subscription_id: str | None = None,
    cycle_expires_at: datetime | None = None,
    now: datetime = NOW,
) -> UUID:
    """Insert a subscription and its usage counter directly through the store."""

    user_id = user_id or uuid4()
    if status == SubscriptionStatus.ACTIVE and stripe_subscription_id is None:
        stripe_subscription_id = f"sub_{user_id.hex[:8]}"
    await store.add_subscription(
        Subscription(
            user_id=user_id,
            plan_id=plan_id,
            status=status,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            trial_expires_at=trial_expires_at,
            current_period_end=cycle_expires_at or now + timedelta(days=30),
            created_at=now,
            updated_at=now,
        )
    )
    await store.add_usage(
        UsageCounter(
            user_id=user_id,
            used=used,
            cycle_expires_at=cycle_expires_at or now + timedelta(days=30),
            updated_at=now,
        )
    )
    return user_id


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog.from_settings(settings)


@pytest.fixture
def memory_store() -> MemoryBillingStore:
    return MemoryBillingStore()


@pytest_asyncio.fixture
async def test_db_engine(tmp_path):
    """
    Create a throwaway SQLite database with every table and the plan rows.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_app.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        await PlanRepo(session).sync(
            plan.as_row() for plan in PlanCatalog.from_settings(settings).all()
        )
        await session.commit()

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_db_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(test_db_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture
def fake_generator() -> FakeProspectGenerator:
    return FakeProspectGenerator()


@pytest_asyncio.fixture
async def test_app(
    test_db_engine, fake_redis, fake_gateway, fake_generator
) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application on the in-memory store.
    """
    app = create_application()
    session_factory = async_sessionmaker(test_db_engine, expire_on_commit=False)

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            finally:
                await session.rollback()

    limiter = RequestLimiter(fake_redis, rate_limit_rpm=settings.limits.rate_limit_rpm)
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_limiter] = lambda: limiter
    app.dependency_overrides[get_stripe_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_prospect_generator] = lambda: fake_generator
    async with LifespanManager(app):
        yield app


@pytest.fixture
def app_store(test_app: FastAPI) -> BillingStore:
    """The store instance the running app reads and writes."""

    return test_app.state.store_factory(None)


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as client:
        yield client
