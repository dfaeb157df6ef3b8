"""Database models package exports."""

from gtm_map.db.models.billing_transaction import BillingTransaction
from gtm_map.db.models.plan import Plan
from gtm_map.db.models.stripe_event import StripeEvent
from gtm_map.db.models.subscription import Subscription, SubscriptionStatus
from gtm_map.db.models.usage_counter import UsageCounter

__all__ = [
    "BillingTransaction",
    "Plan",
    "StripeEvent",
    "Subscription",
    "SubscriptionStatus",
    "UsageCounter",
]
