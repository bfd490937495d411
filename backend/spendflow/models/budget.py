"""Budget envelopes consulted by the budget guard."""
import enum
import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from spendflow.db.base import Base, TimestampMixin, UUIDMixin


class BudgetEnforcement(str, enum.Enum):
    HARD_BLOCK = "HARD_BLOCK"
    SOFT_WARNING = "SOFT_WARNING"
    AUTO_ESCALATE = "AUTO_ESCALATE"


class BudgetScope(str, enum.Enum):
    DEPARTMENT = "department"
    PROJECT = "project"
    CATEGORY = "category"
    EMPLOYEE = "employee"


class Budget(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "budgets"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(20), nullable=False)
    scope_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    allocated: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    committed: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    spent: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    warning_threshold_pct: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("80")
    )
    enforcement: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BudgetEnforcement.SOFT_WARNING.value
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
