"""Repository helpers for webhook bookkeeping tables."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gtm_map.db.models.billing_transaction import BillingTransaction
from gtm_map.db.models.stripe_event import StripeEvent


class BillingEventRepo:
    """Processed event ids and recorded invoices."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record_event(self, event_id: str, event_type: str, now: datetime) -> bool:
        """Mark an event as processed; ``False`` when it was seen before."""

        existing = await self.session.get(StripeEvent, event_id)
        if existing is not None:
            return False
        self.session.add(StripeEvent(id=event_id, type=event_type, received_at=now))
        await self.session.flush()
        return True

    async def record_transaction(self, transaction: BillingTransaction) -> bool:
        result = await self.session.execute(
            select(BillingTransaction.id).where(
                BillingTransaction.stripe_invoice_id == transaction.stripe_invoice_id
            )
        )
        if result.scalar_one_or_none() is not None:
            return False
        self.session.add(transaction)
        await self.session.flush()
        return True
