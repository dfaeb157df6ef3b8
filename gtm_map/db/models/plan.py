"""Billing plan model definition."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from gtm_map.db.base import Base


class Plan(Base):
    """Reference row for a plan tier, mirrored from deployment configuration."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    monthly_generation_quota: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="gbp")
    billing_cadence: Mapped[str] = mapped_column(
        String, nullable=False, default="monthly"
    )
    stripe_price_id: Mapped[Optional[str]] = mapped_column(
        String, unique=True, nullable=True
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Plan {self.id} quota={self.monthly_generation_quota}>"
