"""Entitlement gate wrapped around every metered action."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from gtm_map.core.clock import utcnow
from gtm_map.core.exceptions import NotFound
from gtm_map.services.entitlements import (
    WARNING_RATIO,
    BlockReason,
    Entitlement,
    UsageState,
    evaluate,
)
from gtm_map.services.plan_catalog import PlanCatalog
from gtm_map.store.base import BillingStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateOutcome:
    allowed: bool
    entitlement: Entitlement
    result: Any = None

    @property
    def reason(self) -> Optional[str]:
        return None if self.allowed else self.entitlement.reason


class GenerationGate:
    """Check, charge, then run.

    The charge is committed before ``fn`` runs and is kept if ``fn``
    raises: usage is counted per attempt, not per success.
    """

    def __init__(
        self,
        store: BillingStore,
        catalog: PlanCatalog,
        warning_ratio: float = WARNING_RATIO,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.warning_ratio = warning_ratio

    async def check(self, user_id: UUID, now: Optional[datetime] = None) -> Entitlement:
        """Evaluate without charging (usage badge, pre-flight checks)."""

        subscription = await self.store.get_subscription(user_id)
        if subscription is None:
            raise NotFound(user_id, "subscription")
        usage = await self.store.get_usage(user_id)
        if usage is None:
            raise NotFound(user_id, "usage counter")
        return evaluate(
            subscription, usage, self.catalog, now or utcnow(), self.warning_ratio
        )

    async def run(
        self,
        user_id: UUID,
        action: str,
        fn: Callable[[], Awaitable[Any]],
        now: Optional[datetime] = None,
    ) -> GateOutcome:
        now = now or utcnow()
        entitlement = await self.check(user_id, now)
        log_extra = {"user_id": str(user_id), "action": action, "plan_id": entitlement.plan_id}

        if not entitlement.allowed:
            logger.info(
                f"Blocked {action} for user {user_id}: {entitlement.reason} "
                f"({entitlement.used}/{entitlement.quota})",
                extra=log_extra,
            )
            return GateOutcome(allowed=False, entitlement=entitlement)

        used = await self.store.increment_usage(
            user_id, 1, now, limit=entitlement.quota
        )
        if used is None:
            # another request took the last unit between evaluate and increment
            current = await self.store.get_usage(user_id)
            latest = current.used if current is not None else entitlement.quota
            blocked = replace(
                entitlement.with_used(latest, self.warning_ratio),
                allowed=False,
                state=UsageState.BLOCKED,
                reason=BlockReason.QUOTA_EXHAUSTED,
            )
            logger.info(f"Lost quota race for {action}, user {user_id}", extra=log_extra)
            return GateOutcome(allowed=False, entitlement=blocked)

        await self.store.commit()
        # with_used describes the next call; this one was admitted
        charged = replace(
            entitlement.with_used(used, self.warning_ratio), allowed=True, reason=None
        )
        if charged.state != UsageState.OK:
            logger.info(
                f"User {user_id} at {used}/{charged.quota} after {action}", extra=log_extra
            )

        result = await fn()
        return GateOutcome(allowed=True, entitlement=charged, result=result)
