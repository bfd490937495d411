"""Approvable requests (expenses and vouchers) and their approval history."""
import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendflow.db.base import Base, TimestampMixin, UUIDMixin, utcnow


class RequestKind(str, enum.Enum):
    EXPENSE = "EXPENSE"
    VOUCHER = "VOUCHER"


class RequestStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CLARIFICATION_REQUESTED = "CLARIFICATION_REQUESTED"
    RESUBMITTED = "RESUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    PAID = "PAID"


TERMINAL_STATUSES = frozenset({RequestStatus.REJECTED, RequestStatus.WITHDRAWN, RequestStatus.PAID})


class HistoryAction(str, enum.Enum):
    SUBMIT = "SUBMIT"
    RESUBMIT = "RESUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CLARIFY = "CLARIFY"
    ESCALATE = "ESCALATE"
    WITHDRAW = "WITHDRAW"
    PAY = "PAY"


class ApprovableRequest(Base, UUIDMixin, TimestampMixin):
    """An expense claim or cash-advance voucher moving through the approval chain.

    The role pool (``approver_role_required``) owns a pending request;
    ``assigned_approver_id`` is only set when delegation collapses the pool
    onto a single delegate.
    """

    __tablename__ = "approvable_requests"

    request_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default=RequestKind.EXPENSE.value)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("categories.id"), nullable=False, index=True
    )
    department_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    base_currency_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    receipt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=RequestStatus.DRAFT.value, index=True
    )
    current_tier: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approver_role_required: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    assigned_approver_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tier_entered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    pre_approval_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("pre_approvals.id"), nullable=True
    )
    clarification_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    history: Mapped[list["ApprovalHistory"]] = relationship(
        "ApprovalHistory",
        back_populates="request",
        order_by="ApprovalHistory.sequence",
    )

    __mapper_args__ = {"version_id_col": version}


class ApprovalHistory(Base, UUIDMixin):
    """Append-only record of one committed transition on a request."""

    __tablename__ = "approval_history"
    __table_args__ = (
        UniqueConstraint("request_id", "sequence", name="uq_approval_history_request_sequence"),
    )

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approvable_requests.id"), nullable=False, index=True
    )
    # Monotonic per request; orders rows committed within the same clock tick.
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    tier_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    from_status: Mapped[str] = mapped_column(String(30), nullable=False)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True  # null = system (escalation sweep)
    )
    delegated_from_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    budget_decision: Mapped[str | None] = mapped_column(String(10), nullable=True)  # ALLOW, WARN
    budget_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_emergency: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    emergency_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    request: Mapped["ApprovableRequest"] = relationship("ApprovableRequest", back_populates="history")
