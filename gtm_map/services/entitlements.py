"""Entitlement evaluation: can this user run one more generation?"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from gtm_map.db.models import Subscription, SubscriptionStatus, UsageCounter
from gtm_map.services.plan_catalog import PlanCatalog


WARNING_RATIO = 0.8


class UsageState:
    OK = "ok"
    WARNING = "warning"
    BLOCKED = "blocked"


class BlockReason:
    TRIAL_EXPIRED = "trial_expired"
    QUOTA_EXHAUSTED = "quota_exhausted"


@dataclass(frozen=True)
class Entitlement:
    """Outcome of an evaluation; ``reason`` is set only when blocked."""

    allowed: bool
    used: int
    quota: int
    remaining: int
    state: str
    plan_id: str
    status: str
    reason: Optional[str] = None
    cycle_expires_at: Optional[datetime] = None

    def with_used(self, used: int, warning_ratio: float = WARNING_RATIO) -> "Entitlement":
        """Recompute the numeric fields after a ledger change."""

        state, reason = _quota_state(used, self.quota, warning_ratio)
        return Entitlement(
            allowed=state != UsageState.BLOCKED,
            used=used,
            quota=self.quota,
            remaining=max(self.quota - used, 0),
            state=state,
            plan_id=self.plan_id,
            status=self.status,
            reason=reason,
            cycle_expires_at=self.cycle_expires_at,
        )

    def as_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "used": self.used,
            "quota": self.quota,
            "remaining": self.remaining,
            "state": self.state,
            "reason": self.reason,
            "plan_id": self.plan_id,
            "status": self.status,
            "cycle_expires_at": (
                self.cycle_expires_at.isoformat() if self.cycle_expires_at else None
            ),
        }


def upgrade_plan(plan_id: str, status: str) -> str:
    """Plan to suggest in upgrade prompts."""

    if plan_id in ("free", "trial") or status in (
        SubscriptionStatus.FREE,
        SubscriptionStatus.TRIALING,
    ):
        return "starter"
    return "pro"


def block_message(entitlement: Entitlement) -> str:
    if entitlement.reason == BlockReason.TRIAL_EXPIRED:
        return "Your free trial has ended. Upgrade to keep generating prospects."
    if entitlement.quota <= 0:
        return "Your plan does not include AI generations. Upgrade to start generating prospects."
    if entitlement.status == SubscriptionStatus.CANCELED and entitlement.used < entitlement.quota:
        return "Your subscription has ended. Resubscribe to keep generating prospects."
    label = "trial" if entitlement.status == SubscriptionStatus.TRIALING else entitlement.plan_id
    return (
        f"You've reached your {label} limit of {entitlement.quota} "
        "AI generations this month."
    )


def is_trial_expired(subscription: Subscription, now: datetime) -> bool:
    return (
        subscription.status == SubscriptionStatus.TRIALING
        and subscription.trial_expires_at is not None
        and now >= subscription.trial_expires_at
    )


def _quota_state(used: int, quota: int, warning_ratio: float) -> tuple[str, Optional[str]]:
    if quota <= 0 or used >= quota:
        return UsageState.BLOCKED, BlockReason.QUOTA_EXHAUSTED
    if used / quota >= warning_ratio:
        return UsageState.WARNING, None
    return UsageState.OK, None


def evaluate(
    subscription: Subscription,
    usage: UsageCounter,
    catalog: PlanCatalog,
    now: datetime,
    warning_ratio: float = WARNING_RATIO,
) -> Entitlement:
    """Pure evaluation of a subscription/usage pair.

    An expired trial blocks with ``trial_expired`` whatever the count.
    ``past_due`` keeps being evaluated against usage; ``canceled`` does
    too, but only until the paid cycle ends.
    Raises ``UnknownPlan`` if the subscription names a plan the catalog
    does not know.
    """

    plan = catalog.get(subscription.plan_id)
    used = usage.used
    quota = plan.quota
    remaining = max(quota - used, 0)

    if is_trial_expired(subscription, now):
        state, reason = UsageState.BLOCKED, BlockReason.TRIAL_EXPIRED
    elif subscription.status == SubscriptionStatus.CANCELED and now >= usage.cycle_expires_at:
        # leftover units lapse with the last paid cycle
        state, reason = UsageState.BLOCKED, BlockReason.QUOTA_EXHAUSTED
        remaining = 0
    else:
        state, reason = _quota_state(used, quota, warning_ratio)

    return Entitlement(
        allowed=state != UsageState.BLOCKED,
        used=used,
        quota=quota,
        remaining=remaining,
        state=state,
        plan_id=plan.id,
        status=subscription.status,
        reason=reason,
        cycle_expires_at=usage.cycle_expires_at,
    )
