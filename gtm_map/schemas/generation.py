"""Pydantic schemas for the gated generation endpoint"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Firmographics(BaseModel):
    size: Optional[str] = Field(default=None, description="Company size band")
    geo: Optional[str] = Field(default=None, description="Target geography")


class ICPProfile(BaseModel):
    """Ideal Customer Profile the prospects are generated against."""

    solution: str = Field(..., min_length=1, description="What the seller offers")
    workflows: List[str] = Field(default_factory=list)
    industries: List[str] = Field(default_factory=list)
    buyer_roles: List[str] = Field(default_factory=list)
    pains: List[str] = Field(default_factory=list)
    firmographics: Firmographics = Field(default_factory=Firmographics)


class GenerateRequest(BaseModel):
    icp: ICPProfile
    batch_size: int = Field(default=10, ge=1, le=100, description="Prospects to return")
    exclude_domains: List[str] = Field(
        default_factory=list, description="Domains the caller already has"
    )


class Prospect(BaseModel):
    name: str
    domain: str
    rationale: Optional[str] = None
    confidence: int = Field(ge=0, le=100)


class UsageRead(BaseModel):
    """Entitlement snapshot returned with gated responses."""

    used: int
    quota: int
    remaining: int
    state: str
    plan_id: str
    status: str
    reason: Optional[str] = None
    cycle_expires_at: Optional[datetime] = None
    upgrade_plan: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class GenerateResponse(BaseModel):
    prospects: List[Prospect]
    usage: UsageRead
