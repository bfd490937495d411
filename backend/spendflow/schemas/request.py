"""Pydantic schemas for expense/voucher requests."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ─── Draft / amend input ───

class RequestCreate(BaseModel):
    kind: Literal["EXPENSE", "VOUCHER"] = "EXPENSE"
    category_id: uuid.UUID
    amount: Decimal = Field(gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str | None = None
    receipt_count: int = Field(default=0, ge=0)
    project_id: uuid.UUID | None = None


class ResubmitIn(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    receipt_count: int | None = Field(default=None, ge=0)
    comment: str | None = None


class CommentIn(BaseModel):
    comment: str | None = None


# ─── Output ───

class RequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_number: str
    kind: str
    requester_id: uuid.UUID
    category_id: uuid.UUID
    department_id: uuid.UUID | None
    project_id: uuid.UUID | None
    description: str | None
    currency: str
    amount: Decimal
    exchange_rate: Decimal | None
    base_currency_amount: Decimal | None
    receipt_count: int
    status: str
    current_tier: int | None
    approver_role_required: str | None
    assigned_approver_id: uuid.UUID | None
    submitted_at: datetime | None
    tier_entered_at: datetime | None
    pre_approval_id: uuid.UUID | None
    clarification_note: str | None
    rejection_reason: str | None
    version: int
    created_at: datetime
    updated_at: datetime


class RequestListResponse(BaseModel):
    items: list[RequestOut]
    total: int


class TimelineEntryOut(BaseModel):
    sequence: int
    action: str
    tier_level: int
    from_status: str
    to_status: str
    actor_id: uuid.UUID | None
    delegated_from_id: uuid.UUID | None
    was_delegated: bool
    was_escalated: bool
    is_emergency: bool
    emergency_reason: str | None
    comment: str | None
    budget_decision: str | None
    budget_note: str | None
    created_at: datetime


class TimelineResponse(BaseModel):
    request: RequestOut
    history: list[TimelineEntryOut]
