"""Shared fixtures: SQLite-backed sessions and small factories.

DATABASE_URL must point at SQLite before anything imports
``spendflow.db.session`` (which builds its engine at import time).
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import spendflow.models  # noqa: F401
from spendflow.core.seed import seed_approval_tiers
from spendflow.db.base import Base
from spendflow.models.approval_matrix import ApprovalTier
from spendflow.models.budget import Budget
from spendflow.models.category import Category
from spendflow.models.user import User

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

# Three-tier schedule used by the workflow tests: (order, min, max, role)
THREE_TIERS = [
    (1, Decimal("0"), Decimal("50000"), "APPROVER"),
    (2, Decimal("50000.01"), Decimal("200000"), "FINANCE"),
    (3, Decimal("200000.01"), None, "CEO"),
]


def _session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with _session_factory(engine)() as session:
        yield session


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite so two sessions get their own connections."""
    engine = create_engine(f"sqlite:///{tmp_path / 'spendflow.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def make_session(file_engine):
    factory = _session_factory(file_engine)
    sessions = []

    def _make():
        session = factory()
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        session.close()


# ─── Factories ────────────────────────────────────────────────────────────────

def add_user(db, role: str, name: str | None = None, manager: User | None = None,
             department_id: uuid.UUID | None = None, **fields) -> User:
    label = name or f"{role.lower()}-{uuid.uuid4().hex[:6]}"
    user = User(
        email=f"{label}@example.com",
        name=label,
        role=role,
        manager_id=manager.id if manager else None,
        department_id=department_id,
        is_active=True,
        **fields,
    )
    db.add(user)
    db.commit()
    return user


def add_category(db, code: str = "SUPPLIES", requires_receipt: bool = False,
                 requires_pre_approval: bool = False, max_amount: Decimal | None = None) -> Category:
    category = Category(
        code=code,
        name=code.title(),
        requires_receipt=requires_receipt,
        requires_pre_approval=requires_pre_approval,
        max_amount=max_amount,
        is_active=True,
    )
    db.add(category)
    db.commit()
    return category


def add_tiers(db, bands=THREE_TIERS, escalation_days: dict[int, int] | None = None) -> list[ApprovalTier]:
    escalation_days = escalation_days or {}
    tiers = [
        ApprovalTier(
            name=f"Tier {order}",
            tier_order=order,
            min_amount=low,
            max_amount=high,
            approver_role=role,
            escalation_days=escalation_days.get(order),
            is_active=True,
        )
        for order, low, high, role in bands
    ]
    db.add_all(tiers)
    db.commit()
    return tiers


def add_budget(db, scope_type: str, scope_id: uuid.UUID, allocated: Decimal,
               committed: Decimal = Decimal("0"), spent: Decimal = Decimal("0"),
               enforcement: str = "SOFT_WARNING", warning_threshold_pct: Decimal = Decimal("80")) -> Budget:
    budget = Budget(
        name=f"{scope_type} budget",
        scope_type=scope_type,
        scope_id=scope_id,
        allocated=allocated,
        committed=committed,
        spent=spent,
        warning_threshold_pct=warning_threshold_pct,
        enforcement=enforcement,
        start_date=(NOW - timedelta(days=180)).date(),
        end_date=(NOW + timedelta(days=180)).date(),
        is_active=True,
    )
    db.add(budget)
    db.commit()
    return budget


# ─── Composite fixtures ───────────────────────────────────────────────────────

@pytest.fixture
def seeded_tiers(db):
    return seed_approval_tiers(db)


@pytest.fixture
def org(db):
    """A small org: employee → approver → finance → ceo, plus an admin."""
    department_id = uuid.uuid4()
    ceo = add_user(db, "CEO", "ceo")
    finance = add_user(db, "FINANCE", "finance", manager=ceo)
    approver = add_user(db, "APPROVER", "approver", manager=finance)
    employee = add_user(db, "EMPLOYEE", "employee", manager=approver, department_id=department_id)
    admin = add_user(db, "ADMIN", "admin")
    return {
        "ceo": ceo,
        "finance": finance,
        "approver": approver,
        "employee": employee,
        "admin": admin,
        "department_id": department_id,
    }


@pytest.fixture
def category(db):
    return add_category(db)


@pytest.fixture
def tiers(db):
    return add_tiers(db)
