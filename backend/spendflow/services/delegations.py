"""Delegation resolver: who currently holds an approver's authority.

Resolution is a single hop. If A delegates to B and B delegates to C,
A's effective approver is B; B's own delegation is never followed.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from spendflow.core.errors import (
    DelegationConflictError,
    InvalidStateError,
    NotFoundError,
    RequestValidationError,
    UnauthorizedApproverError,
)
from spendflow.db.base import as_utc
from spendflow.models.approval_matrix import Delegation
from spendflow.models.user import User
from spendflow.services import audit as audit_svc
from spendflow.services import directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolMember:
    """One user able to act for a role pool right now."""

    user_id: uuid.UUID
    delegated_from_id: uuid.UUID | None = None


def _now(at: datetime | None) -> datetime:
    return at or datetime.now(timezone.utc)


def active_delegation(db: Session, from_user_id: uuid.UUID, at: datetime | None = None) -> Delegation | None:
    at = _now(at)
    return db.execute(
        select(Delegation)
        .where(
            Delegation.from_user_id == from_user_id,
            Delegation.is_active.is_(True),
            Delegation.start_at <= at,
            Delegation.end_at >= at,
        )
        .order_by(Delegation.start_at.desc())
    ).scalars().first()


def effective_approver(db: Session, user_id: uuid.UUID, at: datetime | None = None) -> uuid.UUID:
    """Return the delegate covering ``at``, else ``user_id`` itself."""
    delegation = active_delegation(db, user_id, at)
    return delegation.to_user_id if delegation else user_id


def eligible_approvers(db: Session, role: str, at: datetime | None = None) -> list[PoolMember]:
    """Role → active holders → delegation override.

    A holder who has delegated drops out of the pool; their delegate joins it.
    Delegates that are inactive or locked out leave the authority with the
    delegator.
    """
    at = _now(at)
    pool: dict[uuid.UUID, PoolMember] = {}
    for holder in directory.users_with_role(db, role, at):
        target = effective_approver(db, holder.id, at)
        if target != holder.id:
            delegate = db.execute(select(User).where(User.id == target)).scalars().first()
            if delegate is None or not delegate.is_active or directory.is_locked(delegate, at):
                logger.warning(
                    "Delegate %s of %s is unavailable; authority stays with the delegator",
                    target, holder.id,
                )
                pool.setdefault(holder.id, PoolMember(holder.id))
                continue
            pool.setdefault(target, PoolMember(target, delegated_from_id=holder.id))
        else:
            pool[holder.id] = PoolMember(holder.id)
    return list(pool.values())


def resolve_authority(
    db: Session,
    actor: User,
    role: str,
    at: datetime | None = None,
) -> tuple[bool, uuid.UUID | None]:
    """Is ``actor`` in the ``role`` pool at ``at``?

    Returns (authorized, delegated_from_id).
    """
    for member in eligible_approvers(db, role, at):
        if member.user_id == actor.id:
            return True, member.delegated_from_id
    return False, None


def single_delegate(pool: list[PoolMember]) -> uuid.UUID | None:
    """The assignee when the whole pool collapses onto one delegate."""
    if len(pool) == 1 and pool[0].delegated_from_id is not None:
        return pool[0].user_id
    return None


# ─── Administration ───

def _snapshot(delegation: Delegation) -> dict:
    return {
        "from_user_id": str(delegation.from_user_id),
        "to_user_id": str(delegation.to_user_id),
        "start_at": as_utc(delegation.start_at).isoformat(),
        "end_at": as_utc(delegation.end_at).isoformat(),
        "is_active": delegation.is_active,
    }


def create_delegation(
    db: Session,
    actor_id: uuid.UUID,
    to_user_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    reason: str | None = None,
) -> Delegation:
    """Delegate the actor's approval authority for ``[start_at, end_at]``.

    Raises:
        RequestValidationError: self-delegation or a non-increasing window.
        NotFoundError: unknown delegate.
        UnauthorizedApproverError: inactive actor or delegate.
        DelegationConflictError: overlaps another active delegation of the actor.
    """
    start_at, end_at = as_utc(start_at), as_utc(end_at)
    actor = directory.get_active_actor(db, actor_id)
    if to_user_id == actor.id:
        raise RequestValidationError("You cannot delegate to yourself.")
    if end_at <= start_at:
        raise RequestValidationError("end_at must be after start_at.")

    delegate = directory.get_user(db, to_user_id)
    if not delegate.is_active:
        raise UnauthorizedApproverError(f"Delegate {to_user_id} is inactive.")

    overlapping = db.execute(
        select(Delegation.id).where(
            Delegation.from_user_id == actor.id,
            Delegation.is_active.is_(True),
            Delegation.start_at <= end_at,
            Delegation.end_at >= start_at,
        )
    ).first()
    if overlapping is not None:
        raise DelegationConflictError("You already have an active delegation for this time period.")

    delegation = Delegation(
        from_user_id=actor.id,
        to_user_id=to_user_id,
        start_at=start_at,
        end_at=end_at,
        reason=reason,
        is_active=True,
    )
    db.add(delegation)
    db.flush()

    audit_svc.log(
        db=db,
        action="delegation.created",
        entity_type="delegation",
        entity_id=delegation.id,
        actor_id=actor.id,
        actor_email=actor.email,
        after=_snapshot(delegation),
        notes=reason,
    )
    db.commit()
    logger.info("Delegation %s created: %s -> %s", delegation.id, actor.id, to_user_id)
    return delegation


def revoke_delegation(db: Session, actor_id: uuid.UUID, delegation_id: uuid.UUID) -> Delegation:
    actor = directory.get_active_actor(db, actor_id)
    delegation = db.execute(
        select(Delegation).where(Delegation.id == delegation_id)
    ).scalars().first()
    if delegation is None:
        raise NotFoundError(f"Delegation {delegation_id} not found.")
    if delegation.from_user_id != actor.id and actor.role != "ADMIN":
        raise UnauthorizedApproverError("You can only revoke your own delegations.")
    if not delegation.is_active:
        raise InvalidStateError("Delegation is already revoked.")

    before = _snapshot(delegation)
    delegation.is_active = False
    db.flush()
    audit_svc.log(
        db=db,
        action="delegation.revoked",
        entity_type="delegation",
        entity_id=delegation.id,
        actor_id=actor.id,
        actor_email=actor.email,
        before=before,
        after=_snapshot(delegation),
    )
    db.commit()
    logger.info("Delegation %s revoked by %s", delegation.id, actor.id)
    return delegation


def list_delegations(db: Session, user_id: uuid.UUID) -> list[Delegation]:
    """Active delegations from or to ``user_id``."""
    return list(
        db.execute(
            select(Delegation)
            .where(
                Delegation.is_active.is_(True),
                or_(Delegation.from_user_id == user_id, Delegation.to_user_id == user_id),
            )
            .order_by(Delegation.start_at)
        ).scalars().all()
    )
