"""Atomic increment-and-read counters for human-readable document numbers."""
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendflow.models.sequence import SequenceCounter

PREFIXES = {
    "EXPENSE": "EXP",
    "VOUCHER": "VCH",
    "PRE_APPROVAL": "PA",
}


def next_value(db: Session, scope: str) -> int:
    """Increment the named counter and return the new value.

    The row is locked for the rest of the caller's transaction, so two
    concurrent callers never read the same value. The first caller for a new
    scope inserts the row; a concurrent first insert fails on the primary key
    and the caller's command is rejected rather than handed a duplicate.
    """
    counter = db.execute(
        select(SequenceCounter).where(SequenceCounter.scope == scope).with_for_update()
    ).scalars().first()
    if counter is None:
        counter = SequenceCounter(scope=scope, value=0)
        db.add(counter)
    counter.value += 1
    db.flush()
    return counter.value


def next_number(db: Session, kind: str, now: datetime | None = None) -> str:
    """Return the next number for ``kind``, e.g. ``EXP-2026-00001``."""
    prefix = PREFIXES[kind]
    year = (now or datetime.now(timezone.utc)).year
    value = next_value(db, f"{prefix}-{year}")
    return f"{prefix}-{year}-{value:05d}"
