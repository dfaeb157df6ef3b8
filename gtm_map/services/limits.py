"""Per-user request guards for metered actions, backed by Redis."""
from __future__ import annotations

import logging
import time
from typing import Optional
from uuid import UUID

import redis.asyncio as redis
from fastapi import HTTPException, status

from gtm_map.core.config import Settings


logger = logging.getLogger(__name__)


class RequestLimiter:
    """
    Guards a metered action before it reaches the generation gate.

    Two checks run per request: a fixed one-minute window counting calls
    per user, and an ``Idempotency-Key`` claim scoped to the action so the
    same key can be reused across different actions. A claim is released
    when the gate turns the request away, which lets a client retry with
    the same key once it has upgraded or its cycle has reset.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        rate_limit_rpm: int = 60,
        idempotency_ttl_seconds: int = 60 * 30,
    ) -> None:
        self.client = client
        self.rate_limit_rpm = rate_limit_rpm
        self.idempotency_ttl_seconds = idempotency_ttl_seconds

    @classmethod
    def from_settings(cls, config: Settings) -> "RequestLimiter":
        client = redis.from_url(str(config.REDIS_URI), decode_responses=True)
        return cls(
            client,
            rate_limit_rpm=config.limits.rate_limit_rpm,
            idempotency_ttl_seconds=config.limits.idempotency_ttl_seconds,
        )

    @staticmethod
    def _claim_key(user_id: UUID, action: str, key: str) -> str:
        return f"idemp:{action}:{user_id}:{key}"

    async def check_rate_limit(self, user_id: UUID) -> None:
        window = int(time.time() // 60)
        counter = f"rl:{user_id}:{window}"
        calls = await self.client.incr(counter)
        if calls == 1:
            await self.client.expire(counter, 60)
        if calls > self.rate_limit_rpm:
            logger.info(f"Rate limit hit for user {user_id} ({calls} calls this minute)")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
            )

    async def ensure_idempotent(self, user_id: UUID, action: str, key: Optional[str]) -> None:
        """Claim ``key`` for ``action``; a second claim inside the TTL is a 409."""
        if not key:
            return
        claimed = await self.client.set(
            self._claim_key(user_id, action, key), "1", ex=self.idempotency_ttl_seconds, nx=True
        )
        if not claimed:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Duplicate request (idempotency)",
            )

    async def release_idempotency(self, user_id: UUID, action: str, key: Optional[str]) -> None:
        if key:
            await self.client.delete(self._claim_key(user_id, action, key))

    async def close(self) -> None:
        await self.client.aclose()
