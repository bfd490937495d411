"""Role directory lookups over the users table."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendflow.core.errors import NotFoundError, UnauthorizedApproverError
from spendflow.db.base import as_utc
from spendflow.models.user import User


def get_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    ).scalars().first()
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")
    return user


def is_locked(user: User, at: datetime | None = None) -> bool:
    at = at or datetime.now(timezone.utc)
    locked_until = as_utc(user.locked_until)
    return locked_until is not None and locked_until > at


def get_active_actor(db: Session, user_id: uuid.UUID, at: datetime | None = None) -> User:
    """Load the acting user, refusing inactive or locked-out accounts."""
    user = get_user(db, user_id)
    if not user.is_active or is_locked(user, at):
        raise UnauthorizedApproverError(f"User {user_id} is inactive or locked out.")
    return user


def has_role(db: Session, user_id: uuid.UUID, role: str) -> bool:
    user = db.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    ).scalars().first()
    return user is not None and user.role == role


def manager_of(db: Session, user_id: uuid.UUID) -> uuid.UUID | None:
    return db.execute(
        select(User.manager_id).where(User.id == user_id)
    ).scalar_one_or_none()


def users_with_role(db: Session, role: str, at: datetime | None = None) -> list[User]:
    """Active, unlocked users holding ``role``."""
    users = db.execute(
        select(User).where(
            User.role == role,
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        ).order_by(User.email)
    ).scalars().all()
    return [u for u in users if not is_locked(u, at)]
