"""Repository utilities for subscription plans."""
from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gtm_map.db.models.plan import Plan


class PlanRepo:
    """Data-access helpers for :class:`Plan`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, plan_id: str) -> Plan | None:
        result = await self.session.execute(select(Plan).where(Plan.id == plan_id))
        return result.scalar_one_or_none()

    async def list_all(self) -> list[Plan]:
        result = await self.session.execute(select(Plan).order_by(Plan.price_cents))
        return list(result.scalars().all())

    async def sync(self, plans: Iterable[dict]) -> int:
        """Upsert configured plan rows so foreign keys resolve."""

        count = 0
        for values in plans:
            plan = await self.session.get(Plan, values["id"])
            if plan is None:
                plan = Plan(**values)
            else:
                for key, value in values.items():
                    setattr(plan, key, value)
            self.session.add(plan)
            count += 1
        await self.session.flush()
        return count
