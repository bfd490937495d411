"""Seed script - creates dev users, categories and the default tier schedule.

Idempotent: checks for existing records before inserting.
Run: python scripts/seed.py   (from backend/, with DATABASE_URL set)
"""
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendflow.core.security import create_access_token
from spendflow.core.seed import seed_approval_tiers
from spendflow.db.session import SessionLocal
from spendflow.models.category import Category
from spendflow.models.user import User


# ─── Upsert helpers ───────────────────────────────────────────────────────────

def _upsert_user(db: Session, email: str, name: str, role: str, manager: User | None = None) -> User:
    user = db.execute(select(User).where(User.email == email)).scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(
        email=email, name=name, role=role, is_active=True,
        manager_id=manager.id if manager else None,
    )
    db.add(user)
    db.flush()
    print(f"  [new]  User {email} ({role})")
    return user


def _upsert_category(db: Session, code: str, name: str, requires_receipt: bool = True,
                     requires_pre_approval: bool = False,
                     max_amount: Decimal | None = None) -> Category:
    category = db.execute(select(Category).where(Category.code == code)).scalars().first()
    if category:
        print(f"  [skip] Category {code}")
        return category
    category = Category(
        code=code, name=name,
        requires_receipt=requires_receipt,
        requires_pre_approval=requires_pre_approval,
        max_amount=max_amount,
        is_active=True,
    )
    db.add(category)
    db.flush()
    print(f"  [new]  Category {code}")
    return category


def seed() -> None:
    with SessionLocal() as db:
        print("Users")
        ceo = _upsert_user(db, "ceo@example.com", "Chief Executive", "CEO")
        finance = _upsert_user(db, "finance@example.com", "Finance Lead", "FINANCE", ceo)
        approver = _upsert_user(db, "approver@example.com", "Team Lead", "APPROVER", finance)
        _upsert_user(db, "admin@example.com", "Admin User", "ADMIN")
        employee = _upsert_user(db, "employee@example.com", "Staff Member", "EMPLOYEE", approver)

        print("Categories")
        _upsert_category(db, "TRAVEL", "Travel", requires_pre_approval=True)
        _upsert_category(db, "MEALS", "Meals", max_amount=Decimal("15000"))
        _upsert_category(db, "SUPPLIES", "Office Supplies")
        _upsert_category(db, "PETTY", "Petty Cash", requires_receipt=False)
        db.commit()

        print("Approval tiers")
        seed_approval_tiers(db)

        print("\nDev tokens")
        for user in (employee, approver, finance, ceo):
            print(f"  {user.email}: {create_access_token(str(user.id), user.role)}")


if __name__ == "__main__":
    seed()
