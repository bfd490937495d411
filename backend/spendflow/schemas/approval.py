"""Pydantic schemas for approval actions."""
from pydantic import BaseModel, Field

from spendflow.schemas.request import RequestOut


# ─── Decision request bodies ───

class ApproveIn(BaseModel):
    comment: str | None = None
    is_emergency_approval: bool = False
    emergency_reason: str | None = None


class RejectIn(BaseModel):
    reason: str = Field(min_length=1)


class ClarifyIn(BaseModel):
    question: str = Field(min_length=1)


# ─── Queue response ───

class ApprovalQueueResponse(BaseModel):
    items: list[RequestOut]
    total: int
