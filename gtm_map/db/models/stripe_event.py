"""Processed payment-provider webhook events."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from gtm_map.db.base import Base
from gtm_map.db.types import UTCDateTime


class StripeEvent(Base):
    """One row per webhook event id already applied."""

    __tablename__ = "stripe_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    received_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
