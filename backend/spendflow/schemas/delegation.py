"""Pydantic schemas for approver delegations."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DelegationIn(BaseModel):
    delegate_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    reason: str | None = None


class DelegationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    from_user_id: uuid.UUID
    to_user_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    reason: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime
