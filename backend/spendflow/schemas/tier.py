"""Pydantic schemas for the approval tier schedule."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class TierBandIn(BaseModel):
    name: str | None = None
    tier_order: int = Field(ge=1)
    min_amount: Decimal = Field(ge=0)
    max_amount: Decimal | None = None
    approver_role: str
    escalation_days: int | None = None


class TierScheduleIn(BaseModel):
    tiers: list[TierBandIn]


class TierUpdate(BaseModel):
    name: str | None = None
    escalation_days: int | None = None
    clear_escalation: bool = False


class TierOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    tier_order: int
    min_amount: Decimal
    max_amount: Decimal | None
    approver_role: str
    escalation_days: int | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TierResolutionOut(BaseModel):
    amount: Decimal
    tier_order: int
    tier_name: str
    approver_role: str
