"""Manual-intervention flags for pending requests that outlived their tier SLA."""
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from spendflow.db.base import Base, TimestampMixin, UUIDMixin


class EscalationAlert(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "escalation_alerts"

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approvable_requests.id"), nullable=False, index=True
    )
    tier_order: Mapped[int] = mapped_column(Integer, nullable=False)
    tier_entered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)  # ceiling_tier, budget_blocked
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="open")  # open, resolved
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
