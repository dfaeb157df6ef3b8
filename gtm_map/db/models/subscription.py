"""Subscription model linking users to plans."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from gtm_map.db.base import Base
from gtm_map.db.types import UTCDateTime


class SubscriptionStatus:
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    FREE = "free"

    ALL = frozenset({TRIALING, ACTIVE, PAST_DUE, CANCELED, FREE})


class Subscription(Base):
    """The single live plan/status record for a user."""

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(primary_key=True)
    plan_id: Mapped[str] = mapped_column(String, ForeignKey("plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String, unique=True, index=True, nullable=True
    )
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String, unique=True, nullable=True
    )
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    trial_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Subscription user={self.user_id} plan={self.plan_id} status={self.status}>"
