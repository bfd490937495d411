from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from spendflow.db.base import Base


class SequenceCounter(Base):
    """Named counter behind human-readable numbers such as EXP-2026-00042."""

    __tablename__ = "sequence_counters"

    scope: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
