"""Paid invoices recorded from webhook deliveries."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from gtm_map.db.base import Base
from gtm_map.db.types import UTCDateTime


class BillingTransaction(Base):
    """An invoice the payment provider reported as paid."""

    __tablename__ = "billing_transactions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(index=True, nullable=False)
    stripe_invoice_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    invoice_pdf_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    billing_reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<BillingTransaction {self.stripe_invoice_id} user={self.user_id}>"
