"""Per-user generation counter for the current cycle."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from gtm_map.db.base import Base
from gtm_map.db.types import UTCDateTime


class UsageCounter(Base):
    """Generations consumed since the cycle started."""

    __tablename__ = "usage_counters"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.user_id", ondelete="CASCADE"), primary_key=True
    )
    used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cycle_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (CheckConstraint("used >= 0", name="ck_usage_counters_used_non_negative"),)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<UsageCounter user={self.user_id} used={self.used}>"
