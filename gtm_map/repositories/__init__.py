"""Repository layer package."""

from gtm_map.repositories.billing_event_repo import BillingEventRepo
from gtm_map.repositories.plan_repo import PlanRepo
from gtm_map.repositories.subscription_repo import SubscriptionRepo
from gtm_map.repositories.usage_repo import UsageRepo

__all__ = [
    "BillingEventRepo",
    "PlanRepo",
    "SubscriptionRepo",
    "UsageRepo",
]
