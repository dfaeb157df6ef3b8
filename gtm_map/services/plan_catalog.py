"""Read-only lookup of plan entitlements."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional

from gtm_map.core.config import PlanConfig, Settings
from gtm_map.core.exceptions import ConfigurationError, UnknownPlan


@dataclass(frozen=True)
class PlanSpec:
    id: str
    name: str
    quota: int
    price_cents: int
    currency: str
    cadence: str
    stripe_price_id: Optional[str] = None
    purchasable: bool = False

    def as_row(self) -> dict:
        """Column values for the ``plans`` reference table."""

        return {
            "id": self.id,
            "name": self.name,
            "monthly_generation_quota": self.quota,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "billing_cadence": self.cadence,
            "stripe_price_id": self.stripe_price_id,
        }

    def as_public(self) -> dict:
        data = asdict(self)
        data.pop("stripe_price_id")
        return data


class PlanCatalog:
    """Immutable ``plan_id -> PlanSpec`` mapping built from configuration."""

    def __init__(self, plans: Iterable[PlanSpec]) -> None:
        self._plans: Dict[str, PlanSpec] = {}
        self._by_price: Dict[str, PlanSpec] = {}
        for plan in plans:
            if plan.id in self._plans:
                raise ConfigurationError(f"Duplicate plan id {plan.id!r}")
            self._plans[plan.id] = plan
            if plan.stripe_price_id:
                self._by_price[plan.stripe_price_id] = plan

    @classmethod
    def from_settings(cls, config: Settings) -> "PlanCatalog":
        catalog = cls(_spec_from_config(entry) for entry in config.billing.plans)
        for required in (config.billing.trial_plan_id, config.billing.free_plan_id):
            catalog.get(required)
        return catalog

    def get(self, plan_id: Optional[str]) -> PlanSpec:
        try:
            return self._plans[plan_id]  # type: ignore[index]
        except KeyError:
            raise UnknownPlan(plan_id) from None

    def by_price_id(self, stripe_price_id: Optional[str]) -> PlanSpec:
        try:
            return self._by_price[stripe_price_id]  # type: ignore[index]
        except KeyError:
            raise UnknownPlan(stripe_price_id) from None

    def all(self) -> List[PlanSpec]:
        return list(self._plans.values())

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans


def _spec_from_config(entry: PlanConfig) -> PlanSpec:
    return PlanSpec(
        id=entry.id,
        name=entry.name,
        quota=entry.monthly_generation_quota,
        price_cents=entry.price_cents,
        currency=entry.currency,
        cadence=entry.billing_cadence,
        stripe_price_id=entry.stripe_price_id,
        purchasable=entry.purchasable,
    )
