"""Approval tier schedule and approver delegation models."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from spendflow.db.base import Base, TimestampMixin, UUIDMixin


class ApprovalTier(Base, UUIDMixin, TimestampMixin):
    """An amount band (base currency) requiring a specific approver role.

    Tiers are never deleted; replacing the schedule deactivates the old rows.
    """

    __tablename__ = "approval_tiers"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tier_order: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)  # null = unbounded
    approver_role: Mapped[str] = mapped_column(String(50), nullable=False)
    escalation_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Delegation(Base, UUIDMixin, TimestampMixin):
    """Temporarily reassigns one user's approval authority to another."""

    __tablename__ = "approval_delegations"

    from_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    to_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
