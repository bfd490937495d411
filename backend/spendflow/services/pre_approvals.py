"""Pre-approval ledger: advance authorizations consumed by a matching expense.

A pre-approval is keyed by (requester_id, category_id). Decisions and
consumption are conditional UPDATEs on ``status`` so that two racing callers
can never both succeed.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from spendflow.core.config import settings
from spendflow.core.errors import (
    AlreadyUsedError,
    InvalidStateError,
    NotFoundError,
    RequestValidationError,
    UnauthorizedApproverError,
)
from spendflow.db.base import as_utc
from spendflow.models.category import Category
from spendflow.models.pre_approval import PreApproval, PreApprovalStatus
from spendflow.models.user import APPROVING_ROLES, User
from spendflow.services import audit as audit_svc
from spendflow.services import directory
from spendflow.services import notifications as notify_svc
from spendflow.services import sequence as sequence_svc

logger = logging.getLogger(__name__)

APPROVE = "APPROVE"
REJECT = "REJECT"

# Roles that may see every pre-approval, not just their own.
ORG_WIDE_ROLES = ("ADMIN", "FINANCE", "CEO")


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _payload(pre: PreApproval) -> dict:
    return {
        "pre_approval_number": pre.pre_approval_number,
        "status": pre.status,
        "estimated_amount": str(pre.estimated_amount),
        "expires_at": as_utc(pre.expires_at).isoformat(),
    }


def get_pre_approval(db: Session, pre_approval_id: uuid.UUID) -> PreApproval:
    pre = db.execute(
        select(PreApproval).where(PreApproval.id == pre_approval_id)
    ).scalars().first()
    if pre is None:
        raise NotFoundError(f"Pre-approval {pre_approval_id} not found.")
    return pre


def get_visible(db: Session, viewer: User, pre_approval_id: uuid.UUID) -> PreApproval:
    """Owner, org-wide roles, and the requester's manager while PENDING."""
    pre = get_pre_approval(db, pre_approval_id)
    if pre.requester_id == viewer.id or viewer.role in ORG_WIDE_ROLES:
        return pre
    if pre.status == PreApprovalStatus.PENDING.value and (
        directory.manager_of(db, pre.requester_id) == viewer.id or viewer.role in APPROVING_ROLES
    ):
        return pre
    raise UnauthorizedApproverError("You do not have access to this pre-approval.")


# ─── request ───

def request_pre_approval(
    db: Session,
    actor_id: uuid.UUID,
    category_id: uuid.UUID,
    estimated_amount: Decimal,
    purpose: str | None = None,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> PreApproval:
    """Create a PENDING pre-approval for the actor."""
    now = _now(now)
    actor = directory.get_active_actor(db, actor_id, now)

    if Decimal(estimated_amount) <= 0:
        raise RequestValidationError("estimated_amount must be positive.")
    category = db.execute(select(Category).where(Category.id == category_id)).scalars().first()
    if category is None or not category.is_active:
        raise NotFoundError(f"Category {category_id} not found.")

    if expires_at is None:
        expires_at = now + timedelta(days=settings.PRE_APPROVAL_EXPIRY_DAYS)
    elif as_utc(expires_at) <= now:
        raise RequestValidationError("expires_at must be in the future.")

    pre = PreApproval(
        pre_approval_number=sequence_svc.next_number(db, "PRE_APPROVAL", now),
        requester_id=actor.id,
        category_id=category_id,
        estimated_amount=Decimal(estimated_amount),
        purpose=purpose,
        status=PreApprovalStatus.PENDING.value,
        expires_at=as_utc(expires_at),
    )
    db.add(pre)
    db.flush()

    manager_id = actor.manager_id
    notification = notify_svc.enqueue(
        db,
        "pre_approval.requested",
        _payload(pre),
        pre_approval_id=pre.id,
        recipient_id=manager_id,
        recipient_role=None if manager_id else "APPROVER",
    )
    audit_svc.log(
        db=db,
        action="pre_approval.requested",
        entity_type="pre_approval",
        entity_id=pre.id,
        actor_id=actor.id,
        actor_email=actor.email,
        after=_payload(pre),
    )
    db.commit()
    logger.info("Pre-approval %s requested by %s", pre.pre_approval_number, actor.id)
    notify_svc.dispatch_safely(db, [notification.id])
    return pre


# ─── decide ───

def decide_pre_approval(
    db: Session,
    actor_id: uuid.UUID,
    pre_approval_id: uuid.UUID,
    outcome: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> PreApproval:
    """Approve or reject a PENDING pre-approval.

    Raises:
        InvalidStateError: not PENDING (including a decision that lost a race).
        RequestValidationError: REJECT without a reason, or unknown outcome.
        UnauthorizedApproverError: the requester themselves, or someone who is
            neither their manager nor an approver.
    """
    now = _now(now)
    if outcome not in (APPROVE, REJECT):
        raise RequestValidationError(f"Invalid outcome '{outcome}'. Must be APPROVE or REJECT.")
    reason = (reason or "").strip() or None
    if outcome == REJECT and not reason:
        raise RequestValidationError("Rejection reason is required.")

    actor = directory.get_active_actor(db, actor_id, now)
    pre = get_pre_approval(db, pre_approval_id)
    if pre.status != PreApprovalStatus.PENDING.value:
        raise InvalidStateError(f"Only pending pre-approvals can be decided (status={pre.status}).")
    if pre.requester_id == actor.id:
        raise UnauthorizedApproverError("You cannot decide your own pre-approval.")
    is_manager = directory.manager_of(db, pre.requester_id) == actor.id
    if not is_manager and actor.role not in APPROVING_ROLES:
        raise UnauthorizedApproverError("Only the requester's manager or an approver can decide.")

    new_status = PreApprovalStatus.APPROVED if outcome == APPROVE else PreApprovalStatus.REJECTED
    before = _payload(pre)
    result = db.execute(
        update(PreApproval)
        .where(
            PreApproval.id == pre.id,
            PreApproval.status == PreApprovalStatus.PENDING.value,
        )
        .values(
            status=new_status.value,
            approver_id=actor.id,
            decided_at=now,
            rejection_reason=reason if outcome == REJECT else None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidStateError("Pre-approval was decided by someone else.")
    db.refresh(pre)

    event = "pre_approval.approved" if outcome == APPROVE else "pre_approval.rejected"
    payload = _payload(pre)
    if reason:
        payload["reason"] = reason
    notification = notify_svc.enqueue(
        db, event, payload, pre_approval_id=pre.id, recipient_id=pre.requester_id
    )
    audit_svc.log(
        db=db,
        action=event,
        entity_type="pre_approval",
        entity_id=pre.id,
        actor_id=actor.id,
        actor_email=actor.email,
        before=before,
        after=payload,
        notes=reason,
    )
    db.commit()
    logger.info("Pre-approval %s %s by %s", pre.pre_approval_number, new_status.value, actor.id)
    notify_svc.dispatch_safely(db, [notification.id])
    return pre


# ─── match & consume ───

def find_valid_for(
    db: Session,
    requester_id: uuid.UUID,
    category_id: uuid.UUID,
    now: datetime | None = None,
) -> PreApproval | None:
    """Return an APPROVED, unexpired pre-approval for the pair, or None.

    Evaluated against the clock on every call; callers must not cache it.
    """
    now = _now(now)
    return db.execute(
        select(PreApproval)
        .where(
            PreApproval.requester_id == requester_id,
            PreApproval.category_id == category_id,
            PreApproval.status == PreApprovalStatus.APPROVED.value,
            PreApproval.expires_at >= now,
        )
        .order_by(PreApproval.expires_at)
        .limit(1)
    ).scalars().first()


def consume(
    db: Session,
    pre_approval_id: uuid.UUID,
    actual_amount: Decimal | None = None,
    now: datetime | None = None,
) -> PreApproval:
    """Atomically move APPROVED → USED inside the caller's transaction.

    Raises:
        AlreadyUsedError: another caller consumed it first.
        InvalidStateError: not APPROVED, or expired.
    """
    now = _now(now)
    result = db.execute(
        update(PreApproval)
        .where(
            PreApproval.id == pre_approval_id,
            PreApproval.status == PreApprovalStatus.APPROVED.value,
            PreApproval.expires_at >= now,
        )
        .values(
            status=PreApprovalStatus.USED.value,
            used_at=now,
            actual_amount=actual_amount,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.execute(
            select(PreApproval.status).where(PreApproval.id == pre_approval_id)
        ).scalar_one_or_none()
        if current is None:
            raise NotFoundError(f"Pre-approval {pre_approval_id} not found.")
        if current == PreApprovalStatus.USED.value:
            raise AlreadyUsedError(f"Pre-approval {pre_approval_id} has already been used.")
        if current == PreApprovalStatus.APPROVED.value:
            raise InvalidStateError(f"Pre-approval {pre_approval_id} has expired.")
        raise InvalidStateError(f"Pre-approval {pre_approval_id} is {current}, not APPROVED.")

    pre = get_pre_approval(db, pre_approval_id)
    db.refresh(pre)
    return pre


# ─── housekeeping & queries ───

def expire_stale(db: Session, now: datetime | None = None) -> int:
    """Mark PENDING/APPROVED pre-approvals past expires_at as EXPIRED."""
    now = _now(now)
    result = db.execute(
        update(PreApproval)
        .where(
            PreApproval.status.in_(
                [PreApprovalStatus.PENDING.value, PreApprovalStatus.APPROVED.value]
            ),
            PreApproval.expires_at < now,
        )
        .values(status=PreApprovalStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Expired %d stale pre-approvals", result.rowcount)
    return result.rowcount


def list_for_user(db: Session, viewer: User, status: str | None = None) -> list[PreApproval]:
    stmt = select(PreApproval)
    if viewer.role not in ORG_WIDE_ROLES:
        stmt = stmt.where(PreApproval.requester_id == viewer.id)
    if status:
        stmt = stmt.where(PreApproval.status == status)
    return list(db.execute(stmt.order_by(PreApproval.created_at.desc())).scalars().all())


def list_pending_for_manager(db: Session, manager_id: uuid.UUID) -> list[PreApproval]:
    stmt = (
        select(PreApproval)
        .join(User, User.id == PreApproval.requester_id)
        .where(
            PreApproval.status == PreApprovalStatus.PENDING.value,
            User.manager_id == manager_id,
        )
        .order_by(PreApproval.created_at)
    )
    return list(db.execute(stmt).scalars().all())
