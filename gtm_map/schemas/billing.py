"""Pydantic schemas for billing, trial and admin routes"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    plan_id: str = Field(..., min_length=1, description="Paid plan to subscribe to")


class RedirectResponse(BaseModel):
    url: str


class PlanRead(BaseModel):
    id: str
    name: str
    quota: int
    price_cents: int
    currency: str
    cadence: str
    purchasable: bool


class PlanList(BaseModel):
    plans: List[PlanRead]


class SubscriptionRead(BaseModel):
    user_id: UUID
    plan_id: str
    status: str
    trial_expires_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TrialRead(BaseModel):
    subscription: SubscriptionRead
    trial_state: str


class LapseResult(BaseModel):
    lapsed: List[UUID]
    count: int


class WebhookAck(BaseModel):
    received: bool = True
    skipped: bool = False
    applied: int = 0
