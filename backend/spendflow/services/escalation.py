"""Escalation sweep for pending requests that outlived their tier SLA.

A stalled request below the highest tier is approved-and-advanced by the
system (action ESCALATE, no actor). At the highest tier, or when the budget
guard blocks the hop, the request is left alone and an open EscalationAlert
plus a notification flag it for manual intervention.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spendflow.core.errors import SpendflowError, StaleStateError
from spendflow.db.base import as_utc
from spendflow.models.approval import ApprovableRequest, ApprovalHistory, HistoryAction, RequestStatus
from spendflow.models.approval_matrix import ApprovalTier
from spendflow.models.escalation_alert import EscalationAlert
from spendflow.services import budget_guard
from spendflow.services import notifications as notify_svc
from spendflow.services import tiers as tier_svc
from spendflow.services import workflow

logger = logging.getLogger(__name__)

AUTO_ESCALATED = "auto-escalated"

CEILING_TIER = "ceiling_tier"
BUDGET_BLOCKED = "budget_blocked"

ESCALATED = "escalated"
FLAGGED = "flagged"
SKIPPED = "skipped"
FAILED = "failed"


def tier_entered_at(db: Session, request: ApprovableRequest) -> datetime | None:
    """When the request entered its current tier.

    Falls back to the latest history row, then to ``submitted_at``.
    """
    if request.tier_entered_at is not None:
        return as_utc(request.tier_entered_at)
    latest = db.execute(
        select(func.max(ApprovalHistory.created_at)).where(ApprovalHistory.request_id == request.id)
    ).scalar()
    return as_utc(latest or request.submitted_at)


def find_stalled(db: Session, now: datetime) -> list[tuple[uuid.UUID, datetime]]:
    """(request_id, tier_entered_at) for every request past its tier's escalation_days."""
    rows = db.execute(
        select(ApprovableRequest, ApprovalTier.escalation_days)
        .join(
            ApprovalTier,
            and_(
                ApprovalTier.tier_order == ApprovableRequest.current_tier,
                ApprovalTier.is_active.is_(True),
            ),
        )
        .where(
            ApprovableRequest.status == RequestStatus.PENDING_APPROVAL.value,
            ApprovalTier.escalation_days.is_not(None),
        )
        .order_by(ApprovableRequest.submitted_at)
    ).all()

    stalled = []
    for request, escalation_days in rows:
        entered = tier_entered_at(db, request)
        if entered is not None and now - entered > timedelta(days=escalation_days):
            stalled.append((request.id, entered))
    return stalled


def _ensure_alert(
    db: Session,
    request: ApprovableRequest,
    entered: datetime,
    reason: str,
    description: str,
) -> EscalationAlert | None:
    """Open an alert unless one is already open for this request, tier and entry time.

    Returns:
        The created alert, or None if one already existed.
    """
    existing = db.execute(
        select(EscalationAlert).where(
            EscalationAlert.request_id == request.id,
            EscalationAlert.tier_order == request.current_tier,
            EscalationAlert.status == "open",
        )
    ).scalars().all()
    if any(as_utc(alert.tier_entered_at) == entered for alert in existing):
        return None

    alert = EscalationAlert(
        request_id=request.id,
        tier_order=request.current_tier,
        tier_entered_at=entered,
        reason=reason,
        description=description,
        status="open",
    )
    db.add(alert)
    db.flush()
    return alert


def _flag(db: Session, request: ApprovableRequest, entered: datetime, reason: str, description: str) -> bool:
    alert = _ensure_alert(db, request, entered, reason, description)
    if alert is None:
        return False
    notification = notify_svc.enqueue(
        db,
        "request.stalled",
        {
            "request_id": str(request.id),
            "request_number": request.request_number,
            "tier": request.current_tier,
            "reason": reason,
            "description": description,
        },
        request_id=request.id,
        recipient_role=request.approver_role_required,
    )
    db.commit()
    logger.warning("Request %s flagged for manual intervention: %s", request.request_number, description)
    notify_svc.dispatch_safely(db, [notification.id])
    return True


def escalate_request(
    db: Session,
    request_id: uuid.UUID,
    seen_entered_at: datetime,
    now: datetime | None = None,
) -> str:
    """Escalate or flag one stalled request.

    The request is re-read and its tier entry time compared with the one the
    sweep saw; anything that moved in between is skipped. The write goes
    through the same version guard as a human approval.
    """
    now = now or datetime.now(timezone.utc)
    request = db.execute(
        select(ApprovableRequest)
        .where(ApprovableRequest.id == request_id)
        .execution_options(populate_existing=True)
    ).scalars().first()
    if request is None or request.status != RequestStatus.PENDING_APPROVAL.value:
        return SKIPPED
    entered = tier_entered_at(db, request)
    if entered != seen_entered_at:
        return SKIPPED

    upcoming = tier_svc.next_tier(db, request.current_tier)
    if upcoming is None:
        flagged = _flag(
            db, request, entered, CEILING_TIER,
            f"{request.request_number} is stalled at the highest tier ({request.approver_role_required}).",
        )
        return FLAGGED if flagged else SKIPPED

    evaluation = budget_guard.evaluate_request(db, request, on=now.date())
    if evaluation.decision == budget_guard.BudgetDecision.BLOCK:
        flagged = _flag(
            db, request, entered, BUDGET_BLOCKED,
            f"{request.request_number} cannot be escalated: {evaluation.message}.",
        )
        return FLAGGED if flagged else SKIPPED
    if evaluation.escalate:
        upcoming = tier_svc.bump_tier(db, upcoming)

    before = workflow.snapshot(request)
    from_status = request.status
    tier_level = request.current_tier
    try:
        with workflow.transition(db):
            workflow.enter_tier(db, request, upcoming, now)
            notification = workflow.record(
                db,
                request,
                action=HistoryAction.ESCALATE,
                from_status=from_status,
                actor=None,
                now=now,
                event="request.escalated",
                audit_action="request.escalated",
                before=before,
                tier_level=tier_level,
                comment=AUTO_ESCALATED,
                evaluation=evaluation,
                recipient_id=request.assigned_approver_id,
                recipient_role=None if request.assigned_approver_id else request.approver_role_required,
            )
    except StaleStateError:
        logger.warning("Escalation of %s skipped: request changed concurrently", request_id)
        return SKIPPED

    logger.info(
        "Request %s auto-escalated from tier %s to tier %s",
        request.request_number, tier_level, request.current_tier,
    )
    notify_svc.dispatch_safely(db, [notification.id])
    return ESCALATED


def run_escalation_sweep(db: Session, now: datetime | None = None) -> dict:
    """Escalate or flag every stalled request once.

    A failure on one request is logged and rolled back; the sweep moves on.

    Returns counts: {"escalated": n, "flagged": n, "skipped": n, "failed": n}.
    """
    now = now or datetime.now(timezone.utc)
    stats = {ESCALATED: 0, FLAGGED: 0, SKIPPED: 0, FAILED: 0}
    for request_id, entered in find_stalled(db, now):
        try:
            outcome = escalate_request(db, request_id, entered, now)
        except (SpendflowError, SQLAlchemyError):
            db.rollback()
            logger.exception("Escalation of request %s failed", request_id)
            outcome = FAILED
        stats[outcome] += 1
    logger.info(
        "Escalation sweep complete: escalated=%d, flagged=%d, skipped=%d, failed=%d",
        stats[ESCALATED], stats[FLAGGED], stats[SKIPPED], stats[FAILED],
    )
    return stats
