"""Approval state machine for expenses and vouchers.

All functions accept a sync SQLAlchemy Session, so they are safe to call
from Celery tasks as well as API handlers.

Every committed transition writes, in one database transaction:
the request's new state (guarded by its ``version`` column), exactly one
ApprovalHistory row, one audit-log row and one notification outbox row.
Delivery of the notification happens after commit.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from spendflow.core.config import settings
from spendflow.core.errors import (
    BudgetExceededError,
    InvalidStateError,
    NoTierConfiguredError,
    NotFoundError,
    PreApprovalRequiredError,
    ReceiptRequiredError,
    RequestValidationError,
    SpendflowError,
    StaleStateError,
    TransitionFailedError,
    UnauthorizedApproverError,
)
from spendflow.db.base import as_utc
from spendflow.models.approval import (
    ApprovableRequest,
    ApprovalHistory,
    HistoryAction,
    RequestKind,
    RequestStatus,
)
from spendflow.models.approval_matrix import ApprovalTier
from spendflow.models.category import Category
from spendflow.models.notification import Notification
from spendflow.models.user import User
from spendflow.services import audit as audit_svc
from spendflow.services import budget_guard
from spendflow.services import delegations as delegation_svc
from spendflow.services import directory, fx
from spendflow.services import notifications as notify_svc
from spendflow.services import pre_approvals as pre_approval_svc
from spendflow.services import sequence as sequence_svc
from spendflow.services import tiers as tier_svc

logger = logging.getLogger(__name__)

ORG_WIDE_ROLES = ("ADMIN", "FINANCE", "CEO")
PAYMENT_ROLES = ("FINANCE",)
WITHDRAWABLE_STATUSES = (RequestStatus.SUBMITTED.value, RequestStatus.PENDING_APPROVAL.value)


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def snapshot(request: ApprovableRequest) -> dict:
    return {
        "status": request.status,
        "current_tier": request.current_tier,
        "approver_role_required": request.approver_role_required,
        "assigned_approver_id": str(request.assigned_approver_id) if request.assigned_approver_id else None,
        "currency": request.currency,
        "amount": str(request.amount),
        "base_currency_amount": str(request.base_currency_amount) if request.base_currency_amount is not None else None,
        "pre_approval_id": str(request.pre_approval_id) if request.pre_approval_id else None,
    }


def _payload(request: ApprovableRequest, **extra) -> dict:
    payload = {
        "request_id": str(request.id),
        "request_number": request.request_number,
        "kind": request.kind,
        "status": request.status,
        "amount": f"{request.currency} {request.amount}",
        "tier": request.current_tier,
        "approver_role": request.approver_role_required,
    }
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


# ─── Loading ───

def get_request(db: Session, request_id: uuid.UUID) -> ApprovableRequest:
    request = db.execute(
        select(ApprovableRequest).where(ApprovableRequest.id == request_id)
    ).scalars().first()
    if request is None:
        raise NotFoundError(f"Request {request_id} not found.")
    return request


def get_visible(db: Session, viewer: User, request_id: uuid.UUID) -> ApprovableRequest:
    """Owner, org-wide roles, and anyone in the request's current approver pool."""
    request = get_request(db, request_id)
    if request.requester_id == viewer.id or viewer.role in ORG_WIDE_ROLES:
        return request
    if request.approver_role_required:
        authorized, _ = delegation_svc.resolve_authority(db, viewer, request.approver_role_required)
        if authorized:
            return request
    raise UnauthorizedApproverError("You do not have access to this request.")


def _get_category(db: Session, category_id: uuid.UUID) -> Category:
    category = db.execute(select(Category).where(Category.id == category_id)).scalars().first()
    if category is None or not category.is_active:
        raise NotFoundError(f"Category {category_id} not found.")
    return category


# ─── Transaction plumbing ───

@contextmanager
def transition(db: Session):
    """Run one state transition as a single atomic write.

    Domain errors roll back and propagate. A version mismatch on the request
    becomes StaleStateError; any other storage failure becomes
    TransitionFailedError. A missing tier additionally alerts administrators
    in a transaction of its own.
    """
    try:
        yield
        db.commit()
    except NoTierConfiguredError as exc:
        db.rollback()
        notify_svc.alert_administrators(db, "config.no_tier", {"detail": exc.reason})
        raise
    except SpendflowError:
        db.rollback()
        raise
    except StaleDataError as exc:
        db.rollback()
        raise StaleStateError("The request was changed by someone else; re-fetch and retry.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Transition write failed: %s", exc)
        raise TransitionFailedError("The transition could not be recorded and was rolled back.") from exc


def _next_sequence(db: Session, request_id: uuid.UUID) -> int:
    current = db.execute(
        select(func.max(ApprovalHistory.sequence)).where(ApprovalHistory.request_id == request_id)
    ).scalar()
    return (current or 0) + 1


def record(
    db: Session,
    request: ApprovableRequest,
    *,
    action: HistoryAction,
    from_status: str,
    actor: User | None,
    now: datetime,
    event: str,
    audit_action: str,
    before: dict,
    tier_level: int | None = None,
    comment: str | None = None,
    delegated_from_id: uuid.UUID | None = None,
    evaluation: budget_guard.BudgetEvaluation | None = None,
    is_emergency: bool = False,
    emergency_reason: str | None = None,
    recipient_id: uuid.UUID | None = None,
    recipient_role: str | None = None,
) -> Notification:
    """Write the history, outbox and audit rows for one transition.

    Must run inside ``transition``; nothing here commits.
    """
    budget_decision = None
    budget_note = None
    if evaluation is not None and evaluation.decision != budget_guard.BudgetDecision.ALLOW:
        budget_decision = evaluation.decision.value
        budget_note = evaluation.message

    db.add(
        ApprovalHistory(
            request_id=request.id,
            sequence=_next_sequence(db, request.id),
            tier_level=tier_level if tier_level is not None else (request.current_tier or 0),
            action=action.value,
            from_status=from_status,
            to_status=request.status,
            actor_id=actor.id if actor else None,
            delegated_from_id=delegated_from_id,
            comment=comment,
            budget_decision=budget_decision,
            budget_note=budget_note,
            is_emergency=is_emergency,
            emergency_reason=emergency_reason,
            created_at=now,
        )
    )
    notification = notify_svc.enqueue(
        db,
        event,
        _payload(request, comment=comment, budget=budget_note),
        request_id=request.id,
        recipient_id=recipient_id,
        recipient_role=recipient_role,
    )
    audit_svc.log(
        db=db,
        action=audit_action,
        entity_type="request",
        entity_id=request.id,
        actor_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        before=before,
        after=snapshot(request),
        notes=emergency_reason or comment,
    )
    return notification


def enter_tier(db: Session, request: ApprovableRequest, tier: ApprovalTier, now: datetime) -> None:
    """Hand the request to ``tier``'s role pool."""
    request.current_tier = tier.tier_order
    request.approver_role_required = tier.approver_role
    request.tier_entered_at = now
    pool = delegation_svc.eligible_approvers(db, tier.approver_role, now)
    request.assigned_approver_id = delegation_svc.single_delegate(pool)


def _require_requester(request: ApprovableRequest, actor: User) -> None:
    if request.requester_id != actor.id:
        raise UnauthorizedApproverError("Only the requester can perform this action.")


def _require_status(request: ApprovableRequest, *allowed: RequestStatus) -> None:
    if request.status not in {s.value for s in allowed}:
        raise InvalidStateError(
            f"Request {request.request_number} is {request.status}; "
            f"expected {', '.join(s.value for s in allowed)}."
        )


def _require_approver(
    db: Session, request: ApprovableRequest, actor: User, now: datetime
) -> uuid.UUID | None:
    """Authorize ``actor`` against the request's role pool; returns delegated_from_id."""
    if request.requester_id == actor.id:
        raise UnauthorizedApproverError("You cannot act on your own request.")
    authorized, delegated_from_id = delegation_svc.resolve_authority(
        db, actor, request.approver_role_required, now
    )
    if not authorized:
        raise UnauthorizedApproverError(
            f"Tier {request.current_tier} requires role {request.approver_role_required}."
        )
    return delegated_from_id


def _price(request: ApprovableRequest, category: Category) -> None:
    """Recompute the base-currency amount and check the category limit."""
    amount = Decimal(request.amount)
    if amount <= 0:
        raise RequestValidationError("Amount must be positive.")
    base_amount, rate = fx.convert_to_base(amount, request.currency)
    if category.max_amount is not None and base_amount > Decimal(category.max_amount):
        raise RequestValidationError(
            f"Amount {base_amount} {settings.BASE_CURRENCY} exceeds the {category.name} "
            f"limit of {category.max_amount}."
        )
    request.base_currency_amount = base_amount
    request.exchange_rate = rate


# ─── create_draft ───

def create_draft(
    db: Session,
    actor_id: uuid.UUID,
    category_id: uuid.UUID,
    amount: Decimal,
    currency: str | None = None,
    kind: str = RequestKind.EXPENSE.value,
    description: str | None = None,
    receipt_count: int = 0,
    project_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> ApprovableRequest:
    """Create a DRAFT expense or voucher owned by the actor."""
    now = _now(now)
    actor = directory.get_active_actor(db, actor_id, now)
    if kind not in {k.value for k in RequestKind}:
        raise RequestValidationError(f"Unknown request kind '{kind}'.")
    if receipt_count < 0:
        raise RequestValidationError("receipt_count cannot be negative.")
    category = _get_category(db, category_id)

    request = ApprovableRequest(
        request_number=sequence_svc.next_number(db, kind, now),
        kind=kind,
        requester_id=actor.id,
        category_id=category.id,
        department_id=actor.department_id,
        project_id=project_id,
        description=description,
        currency=(currency or settings.BASE_CURRENCY).upper(),
        amount=Decimal(amount),
        receipt_count=receipt_count,
        status=RequestStatus.DRAFT.value,
    )
    _price(request, category)
    db.add(request)
    db.flush()

    audit_svc.log(
        db=db,
        action="request.created",
        entity_type="request",
        entity_id=request.id,
        actor_id=actor.id,
        actor_email=actor.email,
        after=snapshot(request),
    )
    db.commit()
    logger.info("Request %s drafted by %s", request.request_number, actor.id)
    return request


# ─── submit ───

def submit(
    db: Session,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    now: datetime | None = None,
) -> ApprovableRequest:
    """DRAFT/RESUBMITTED → PENDING_APPROVAL.

    Raises:
        ReceiptRequiredError: category needs a receipt and none is attached.
        PreApprovalRequiredError: category needs a valid pre-approval.
        BudgetExceededError: a HARD_BLOCK budget would go over 100%.
        NoTierConfiguredError: no active tier covers the amount.
    """
    now = _now(now)
    actor = directory.get_active_actor(db, actor_id, now)
    request = get_request(db, request_id)
    _require_requester(request, actor)
    _require_status(request, RequestStatus.DRAFT, RequestStatus.RESUBMITTED)
    category = _get_category(db, request.category_id)

    before = snapshot(request)
    from_status = request.status
    action = HistoryAction.RESUBMIT if from_status == RequestStatus.RESUBMITTED.value else HistoryAction.SUBMIT
    with transition(db):
        if category.requires_receipt and request.receipt_count < 1:
            raise ReceiptRequiredError(f"{category.name} expenses require at least one receipt.")
        _price(request, category)
        request.status = RequestStatus.SUBMITTED.value

        # A resubmitted request keeps the pre-approval it consumed the first time.
        if category.requires_pre_approval and request.pre_approval_id is None:
            pre = pre_approval_svc.find_valid_for(db, request.requester_id, request.category_id, now)
            if pre is None:
                raise PreApprovalRequiredError(
                    f"{category.name} requires an approved, unexpired pre-approval."
                )
            pre_approval_svc.consume(db, pre.id, actual_amount=request.base_currency_amount, now=now)
            request.pre_approval_id = pre.id

        tier = tier_svc.resolve_tier(db, request.base_currency_amount).tier
        evaluation = budget_guard.evaluate_request(db, request, on=now.date())
        if evaluation.decision == budget_guard.BudgetDecision.BLOCK:
            raise BudgetExceededError(evaluation.message)
        if evaluation.escalate:
            tier = tier_svc.bump_tier(db, tier)

        enter_tier(db, request, tier, now)
        request.status = RequestStatus.PENDING_APPROVAL.value
        request.submitted_at = now
        request.rejection_reason = None
        notification = record(
            db,
            request,
            action=action,
            from_status=from_status,
            actor=actor,
            now=now,
            event="request.submitted",
            audit_action="request.submitted",
            before=before,
            evaluation=evaluation,
            recipient_id=request.assigned_approver_id,
            recipient_role=None if request.assigned_approver_id else request.approver_role_required,
        )

    logger.info(
        "Request %s submitted at tier %s (%s)",
        request.request_number, request.current_tier, request.approver_role_required,
    )
    notify_svc.dispatch_safely(db, [notification.id])
    return request


# ─── approve ───

def approve(
    db: Session,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    comment: str | None = None,
    is_emergency: bool = False,
    emergency_reason: str | None = None,
    now: datetime | None = None,
) -> ApprovableRequest:
    """Approve at the current tier.

    At the highest active tier the request becomes APPROVED and its amount is
    committed against the covering budgets. Below it, the request moves to the
    next tier's role pool after the budget guard is re-run.

    An emergency approval (emergency roles only, with a reason) skips the
    remaining tiers and approves outright.
    """
    now = _now(now)
    actor = directory.get_active_actor(db, actor_id, now)
    request = get_request(db, request_id)
    _require_status(request, RequestStatus.PENDING_APPROVAL)

    delegated_from_id = None
    reason = None
    if is_emergency:
        if request.requester_id == actor.id:
            raise UnauthorizedApproverError("You cannot act on your own request.")
        if actor.role not in settings.emergency_roles:
            raise UnauthorizedApproverError(f"Role {actor.role} cannot make emergency approvals.")
        reason = (emergency_reason or "").strip()
        if len(reason) < settings.EMERGENCY_REASON_MIN_LENGTH:
            raise RequestValidationError(
                f"Emergency approvals need a reason of at least "
                f"{settings.EMERGENCY_REASON_MIN_LENGTH} characters."
            )
    else:
        delegated_from_id = _require_approver(db, request, actor, now)

    before = snapshot(request)
    from_status = request.status
    tier_level = request.current_tier
    evaluation = None
    with transition(db):
        upcoming = None if is_emergency else tier_svc.next_tier(db, request.current_tier)
        if upcoming is None:
            budget_guard.commit_request(db, request, on=now.date())
            request.status = RequestStatus.APPROVED.value
            request.assigned_approver_id = None
            event = "request.approved"
            recipient_id, recipient_role = request.requester_id, None
        else:
            evaluation = budget_guard.evaluate_request(db, request, on=now.date())
            if evaluation.decision == budget_guard.BudgetDecision.BLOCK:
                raise BudgetExceededError(evaluation.message)
            if evaluation.escalate:
                upcoming = tier_svc.bump_tier(db, upcoming)
            enter_tier(db, request, upcoming, now)
            event = "request.advanced"
            recipient_id = request.assigned_approver_id
            recipient_role = None if recipient_id else request.approver_role_required

        notification = record(
            db,
            request,
            action=HistoryAction.APPROVE,
            from_status=from_status,
            actor=actor,
            now=now,
            event=event,
            audit_action="request.emergency_approved" if is_emergency else "request.approved",
            before=before,
            tier_level=tier_level,
            comment=comment,
            delegated_from_id=delegated_from_id,
            evaluation=evaluation,
            is_emergency=is_emergency,
            emergency_reason=reason,
            recipient_id=recipient_id,
            recipient_role=recipient_role,
        )

    if is_emergency:
        logger.warning(
            "Emergency approval of %s by %s (%s): %s",
            request.request_number, actor.id, actor.role, reason,
        )
    else:
        logger.info(
            "Request %s approved at tier %s by %s -> %s",
            request.request_number, tier_level, actor.id, request.status,
        )
    notify_svc.dispatch_safely(db, [notification.id])
    return request


# ─── reject ───

def reject(
    db: Session,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    reason: str,
    now: datetime | None = None,
) -> ApprovableRequest:
    now = _now(now)
    reason = (reason or "").strip()
    if not reason:
        raise RequestValidationError("Rejection reason is required.")
    actor = directory.get_active_actor(db, actor_id, now)
    request = get_request(db, request_id)
    _require_status(request, RequestStatus.PENDING_APPROVAL)
    delegated_from_id = _require_approver(db, request, actor, now)

    before = snapshot(request)
    from_status = request.status
    with transition(db):
        request.status = RequestStatus.REJECTED.value
        request.rejection_reason = reason
        request.assigned_approver_id = None
        notification = record(
            db,
            request,
            action=HistoryAction.REJECT,
            from_status=from_status,
            actor=actor,
            now=now,
            event="request.rejected",
            audit_action="request.rejected",
            before=before,
            comment=reason,
            delegated_from_id=delegated_from_id,
            recipient_id=request.requester_id,
        )

    logger.info("Request %s rejected by %s", request.request_number, actor.id)
    notify_svc.dispatch_safely(db, [notification.id])
    return request


# ─── request_clarification ───

def request_clarification(
    db: Session,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    question: str,
    now: datetime | None = None,
) -> ApprovableRequest:
    now = _now(now)
    question = (question or "").strip()
    if not question:
        raise RequestValidationError("A clarification question is required.")
    actor = directory.get_active_actor(db, actor_id, now)
    request = get_request(db, request_id)
    _require_status(request, RequestStatus.PENDING_APPROVAL)
    delegated_from_id = _require_approver(db, request, actor, now)

    before = snapshot(request)
    from_status = request.status
    with transition(db):
        request.status = RequestStatus.CLARIFICATION_REQUESTED.value
        request.clarification_note = question
        notification = record(
            db,
            request,
            action=HistoryAction.CLARIFY,
            from_status=from_status,
            actor=actor,
            now=now,
            event="request.clarification_requested",
            audit_action="request.clarification_requested",
            before=before,
            comment=question,
            delegated_from_id=delegated_from_id,
            recipient_id=request.requester_id,
        )

    logger.info("Clarification requested on %s by %s", request.request_number, actor.id)
    notify_svc.dispatch_safely(db, [notification.id])
    return request


# ─── resubmit ───

def resubmit(
    db: Session,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    amount: Decimal | None = None,
    currency: str | None = None,
    receipt_count: int | None = None,
    comment: str | None = None,
    now: datetime | None = None,
) -> ApprovableRequest:
    """CLARIFICATION_REQUESTED → RESUBMITTED with optional amendments.

    The tier is cleared; the next ``submit`` resolves it from scratch.
    """
    now = _now(now)
    actor = directory.get_active_actor(db, actor_id, now)
    request = get_request(db, request_id)
    _require_requester(request, actor)
    _require_status(request, RequestStatus.CLARIFICATION_REQUESTED)
    if receipt_count is not None and receipt_count < 0:
        raise RequestValidationError("receipt_count cannot be negative.")
    category = _get_category(db, request.category_id)

    before = snapshot(request)
    from_status = request.status
    previous_role = request.approver_role_required
    tier_level = request.current_tier
    with transition(db):
        if amount is not None:
            request.amount = Decimal(amount)
        if currency:
            request.currency = currency.upper()
        if receipt_count is not None:
            request.receipt_count = receipt_count
        _price(request, category)
        request.status = RequestStatus.RESUBMITTED.value
        request.current_tier = None
        request.approver_role_required = None
        request.assigned_approver_id = None
        request.tier_entered_at = None
        notification = record(
            db,
            request,
            action=HistoryAction.RESUBMIT,
            from_status=from_status,
            actor=actor,
            now=now,
            event="request.resubmitted",
            audit_action="request.resubmitted",
            before=before,
            tier_level=tier_level,
            comment=comment,
            recipient_role=previous_role,
        )

    logger.info("Request %s resubmitted by %s", request.request_number, actor.id)
    notify_svc.dispatch_safely(db, [notification.id])
    return request


# ─── withdraw ───

def _approved_above_first_tier(db: Session, request: ApprovableRequest) -> bool:
    """True when an approval at tier 2+ exists since the latest submission."""
    last_submit = db.execute(
        select(func.max(ApprovalHistory.sequence)).where(
            ApprovalHistory.request_id == request.id,
            ApprovalHistory.action.in_([HistoryAction.SUBMIT.value, HistoryAction.RESUBMIT.value]),
            ApprovalHistory.to_status == RequestStatus.PENDING_APPROVAL.value,
        )
    ).scalar() or 0
    found = db.execute(
        select(ApprovalHistory.id).where(
            ApprovalHistory.request_id == request.id,
            ApprovalHistory.sequence > last_submit,
            ApprovalHistory.action.in_([HistoryAction.APPROVE.value, HistoryAction.ESCALATE.value]),
            ApprovalHistory.tier_level >= 2,
        )
    ).first()
    return found is not None


def withdraw(
    db: Session,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    comment: str | None = None,
    now: datetime | None = None,
) -> ApprovableRequest:
    now = _now(now)
    actor = directory.get_active_actor(db, actor_id, now)
    request = get_request(db, request_id)
    _require_requester(request, actor)
    if request.status not in WITHDRAWABLE_STATUSES:
        raise InvalidStateError(f"Request {request.request_number} is {request.status}; it cannot be withdrawn.")
    if _approved_above_first_tier(db, request):
        raise InvalidStateError("The request has tier 2 approvals and can no longer be withdrawn.")

    before = snapshot(request)
    from_status = request.status
    pool_role = request.approver_role_required
    with transition(db):
        request.status = RequestStatus.WITHDRAWN.value
        request.assigned_approver_id = None
        notification = record(
            db,
            request,
            action=HistoryAction.WITHDRAW,
            from_status=from_status,
            actor=actor,
            now=now,
            event="request.withdrawn",
            audit_action="request.withdrawn",
            before=before,
            comment=comment,
            recipient_id=None if pool_role else request.requester_id,
            recipient_role=pool_role,
        )

    logger.info("Request %s withdrawn by %s", request.request_number, actor.id)
    notify_svc.dispatch_safely(db, [notification.id])
    return request


# ─── mark_paid ───

def mark_paid(
    db: Session,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    comment: str | None = None,
    now: datetime | None = None,
) -> ApprovableRequest:
    """APPROVED → PAID; the budget amount moves from committed to spent."""
    now = _now(now)
    actor = directory.get_active_actor(db, actor_id, now)
    if actor.role not in PAYMENT_ROLES:
        raise UnauthorizedApproverError("Only FINANCE can mark requests as paid.")
    request = get_request(db, request_id)
    _require_status(request, RequestStatus.APPROVED)

    before = snapshot(request)
    from_status = request.status
    with transition(db):
        budget_guard.record_payment(db, request, on=now.date())
        request.status = RequestStatus.PAID.value
        notification = record(
            db,
            request,
            action=HistoryAction.PAY,
            from_status=from_status,
            actor=actor,
            now=now,
            event="request.paid",
            audit_action="request.paid",
            before=before,
            comment=comment,
            recipient_id=request.requester_id,
        )

    logger.info("Request %s marked paid by %s", request.request_number, actor.id)
    notify_svc.dispatch_safely(db, [notification.id])
    return request


# ─── Queries ───

def list_requests(db: Session, viewer: User, status: str | None = None) -> list[ApprovableRequest]:
    stmt = select(ApprovableRequest)
    if viewer.role not in ORG_WIDE_ROLES:
        stmt = stmt.where(ApprovableRequest.requester_id == viewer.id)
    if status:
        stmt = stmt.where(ApprovableRequest.status == status)
    return list(db.execute(stmt.order_by(ApprovableRequest.created_at.desc())).scalars().all())


def pending_for_actor(db: Session, actor: User, now: datetime | None = None) -> list[ApprovableRequest]:
    """PENDING_APPROVAL requests whose current role pool includes ``actor``."""
    now = _now(now)
    roles = db.execute(
        select(ApprovableRequest.approver_role_required)
        .where(ApprovableRequest.status == RequestStatus.PENDING_APPROVAL.value)
        .distinct()
    ).scalars().all()
    allowed = [
        role for role in roles
        if role and delegation_svc.resolve_authority(db, actor, role, now)[0]
    ]
    if not allowed:
        return []
    return list(
        db.execute(
            select(ApprovableRequest)
            .where(
                ApprovableRequest.status == RequestStatus.PENDING_APPROVAL.value,
                ApprovableRequest.approver_role_required.in_(allowed),
                ApprovableRequest.requester_id != actor.id,
            )
            .order_by(ApprovableRequest.submitted_at)
        ).scalars().all()
    )


def timeline(db: Session, request: ApprovableRequest) -> list[dict]:
    """History rows in commit order, with delegation/escalation/emergency markers."""
    rows = db.execute(
        select(ApprovalHistory)
        .where(ApprovalHistory.request_id == request.id)
        .order_by(ApprovalHistory.sequence)
    ).scalars().all()
    return [
        {
            "sequence": row.sequence,
            "action": row.action,
            "tier_level": row.tier_level,
            "from_status": row.from_status,
            "to_status": row.to_status,
            "actor_id": row.actor_id,
            "delegated_from_id": row.delegated_from_id,
            "was_delegated": row.delegated_from_id is not None,
            "was_escalated": row.action == HistoryAction.ESCALATE.value,
            "is_emergency": row.is_emergency,
            "emergency_reason": row.emergency_reason,
            "comment": row.comment,
            "budget_decision": row.budget_decision,
            "budget_note": row.budget_note,
            "created_at": as_utc(row.created_at),
        }
        for row in rows
    ]
