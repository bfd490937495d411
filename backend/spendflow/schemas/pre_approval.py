"""Pydantic schemas for pre-approvals."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PreApprovalCreate(BaseModel):
    category_id: uuid.UUID
    estimated_amount: Decimal = Field(gt=0)
    purpose: str | None = None
    expires_at: datetime | None = None


class PreApprovalDecision(BaseModel):
    outcome: Literal["APPROVE", "REJECT"]
    reason: str | None = None


class PreApprovalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    pre_approval_number: str
    requester_id: uuid.UUID
    category_id: uuid.UUID
    estimated_amount: Decimal
    purpose: str | None
    status: str
    approver_id: uuid.UUID | None
    decided_at: datetime | None
    rejection_reason: str | None
    expires_at: datetime
    actual_amount: Decimal | None
    used_at: datetime | None
    created_at: datetime


class PreApprovalListResponse(BaseModel):
    items: list[PreApprovalOut]
    total: int
