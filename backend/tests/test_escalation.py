"""Tests for the escalation sweep.

Requests are submitted with a past ``now`` so that the sweep, run at NOW,
sees them as stalled.
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from spendflow.models.approval import ApprovableRequest, ApprovalHistory, HistoryAction, RequestStatus
from spendflow.models.escalation_alert import EscalationAlert
from spendflow.models.notification import Notification
from spendflow.services import budget_guard, escalation, workflow
from conftest import NOW, add_budget, add_category, add_tiers, add_user


@pytest.fixture
def sla_tiers(db):
    return add_tiers(db, escalation_days={1: 2, 2: 2, 3: 2})


def _stalled(db, org, category, amount="10000", days=3):
    submitted_at = NOW - timedelta(days=days)
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal(amount), now=submitted_at)
    return workflow.submit(db, org["employee"].id, request.id, now=submitted_at)


def _count(db, model, **filters):
    stmt = select(func.count()).select_from(model)
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return db.execute(stmt).scalar()


# ─── Detection ────────────────────────────────────────────────────────────────

def test_request_past_sla_is_stalled(db, org, category, sla_tiers):
    request = _stalled(db, org, category)
    [(request_id, entered)] = escalation.find_stalled(db, NOW)
    assert request_id == request.id
    assert entered == NOW - timedelta(days=3)


def test_exactly_at_sla_is_not_stalled(db, org, category, sla_tiers):
    _stalled(db, org, category, days=2)
    assert escalation.find_stalled(db, NOW) == []


def test_tier_without_escalation_days_never_stalls(db, org, category, tiers):
    _stalled(db, org, category, days=30)
    assert escalation.find_stalled(db, NOW) == []


# ─── Auto-escalation ──────────────────────────────────────────────────────────

def test_sweep_escalates_to_next_tier(db, org, category, sla_tiers):
    request = _stalled(db, org, category)

    stats = escalation.run_escalation_sweep(db, NOW)

    assert stats == {"escalated": 1, "flagged": 0, "skipped": 0, "failed": 0}
    db.refresh(request)
    assert request.status == RequestStatus.PENDING_APPROVAL.value
    assert request.current_tier == 2
    assert request.approver_role_required == "FINANCE"

    entry = workflow.timeline(db, request)[-1]
    assert entry["action"] == HistoryAction.ESCALATE.value
    assert entry["actor_id"] is None
    assert entry["tier_level"] == 1
    assert entry["comment"] == escalation.AUTO_ESCALATED
    assert entry["was_escalated"] is True


def test_second_sweep_is_a_no_op(db, org, category, sla_tiers):
    request = _stalled(db, org, category)
    escalation.run_escalation_sweep(db, NOW)

    stats = escalation.run_escalation_sweep(db, NOW)

    assert stats == {"escalated": 0, "flagged": 0, "skipped": 0, "failed": 0}
    assert _count(db, Notification, event_type="request.escalated", request_id=request.id) == 1


def test_changed_request_is_skipped(db, org, category, sla_tiers):
    request = _stalled(db, org, category)

    outcome = escalation.escalate_request(db, request.id, NOW - timedelta(days=10), NOW)

    assert outcome == escalation.SKIPPED
    db.refresh(request)
    assert request.current_tier == 1


def test_decided_request_is_skipped(db, org, category, sla_tiers):
    request = _stalled(db, org, category)
    [(request_id, entered)] = escalation.find_stalled(db, NOW)
    workflow.reject(db, org["approver"].id, request_id, reason="Out of policy", now=NOW)

    assert escalation.escalate_request(db, request_id, entered, NOW) == escalation.SKIPPED


# ─── Manual-intervention flags ────────────────────────────────────────────────

def test_highest_tier_is_flagged_not_approved(db, org, category, sla_tiers):
    request = _stalled(db, org, category, amount="250000")
    assert request.current_tier == 3

    stats = escalation.run_escalation_sweep(db, NOW)

    assert stats["flagged"] == 1
    db.refresh(request)
    assert request.status == RequestStatus.PENDING_APPROVAL.value
    alert = db.execute(select(EscalationAlert)).scalars().one()
    assert alert.reason == escalation.CEILING_TIER
    assert alert.tier_order == 3
    assert alert.status == "open"
    assert _count(db, Notification, event_type="request.stalled") == 1


def test_flag_is_raised_once(db, org, category, sla_tiers):
    _stalled(db, org, category, amount="250000")
    escalation.run_escalation_sweep(db, NOW)

    stats = escalation.run_escalation_sweep(db, NOW + timedelta(hours=1))

    assert stats == {"escalated": 0, "flagged": 0, "skipped": 1, "failed": 0}
    assert _count(db, EscalationAlert) == 1
    assert _count(db, Notification, event_type="request.stalled") == 1


def test_budget_blocked_hop_is_flagged(db, org, category, sla_tiers):
    budget = add_budget(db, "department", org["department_id"], Decimal("100000"), enforcement="HARD_BLOCK")
    request = _stalled(db, org, category)
    budget.committed = Decimal("95000")
    db.commit()

    stats = escalation.run_escalation_sweep(db, NOW)

    assert stats["flagged"] == 1
    db.refresh(request)
    assert request.current_tier == 1
    alert = db.execute(select(EscalationAlert)).scalars().one()
    assert alert.reason == escalation.BUDGET_BLOCKED


# ─── Celery task ──────────────────────────────────────────────────────────────

def test_task_runs_sweep_with_its_own_session(engine):
    from spendflow.workers.escalation_tasks import escalate_stalled_requests

    factory = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    with patch("spendflow.workers.escalation_tasks.SessionLocal", factory):
        result = escalate_stalled_requests()

    assert result == {"escalated": 0, "flagged": 0, "skipped": 0, "failed": 0}


def test_task_reports_errors_instead_of_raising():
    from spendflow.workers.escalation_tasks import escalate_stalled_requests

    broken = MagicMock(side_effect=RuntimeError("db unavailable"))
    with patch("spendflow.workers.escalation_tasks.SessionLocal", broken):
        result = escalate_stalled_requests()

    assert result == {"status": "error", "error": "db unavailable"}


# ─── Concurrency & isolation ──────────────────────────────────────────────────

def test_human_approval_during_escalation_wins(make_session):
    setup = make_session()
    add_tiers(setup, escalation_days={1: 2, 2: 2, 3: 2})
    approver = add_user(setup, "APPROVER", "approver")
    employee = add_user(setup, "EMPLOYEE", "employee", manager=approver)
    category = add_category(setup)
    submitted_at = NOW - timedelta(days=3)
    request = workflow.create_draft(setup, employee.id, category.id, Decimal("10000"), now=submitted_at)
    workflow.submit(setup, employee.id, request.id, now=submitted_at)

    sweeper, human = make_session(), make_session()
    [(request_id, entered)] = escalation.find_stalled(sweeper, NOW)

    evaluate = budget_guard.evaluate_request
    approved = []

    def approve_mid_escalation(db, *args, **kwargs):
        if not approved:
            approved.append(True)
            workflow.approve(human, approver.id, request_id, now=NOW)
        return evaluate(db, *args, **kwargs)

    with patch("spendflow.services.budget_guard.evaluate_request", side_effect=approve_mid_escalation):
        outcome = escalation.escalate_request(sweeper, request_id, entered, NOW)

    assert outcome == escalation.SKIPPED
    check = make_session()
    current = check.get(ApprovableRequest, request_id)
    assert current.current_tier == 2
    assert [e["action"] for e in workflow.timeline(check, current)] == ["SUBMIT", "APPROVE"]
    assert _count(check, ApprovalHistory, action=HistoryAction.ESCALATE.value) == 0
    assert _count(check, Notification, event_type="request.escalated") == 0


def test_one_failing_request_does_not_stop_the_sweep(db, org, category, sla_tiers):
    older = _stalled(db, org, category, days=4)
    newer = _stalled(db, org, category, days=3)

    record = workflow.record
    calls = []

    def fail_first(*args, **kwargs):
        calls.append(True)
        if len(calls) == 1:
            raise OperationalError("INSERT INTO approval_history", {}, Exception("locked"))
        return record(*args, **kwargs)

    with patch("spendflow.services.workflow.record", side_effect=fail_first):
        stats = escalation.run_escalation_sweep(db, NOW)

    assert stats == {"escalated": 1, "flagged": 0, "skipped": 0, "failed": 1}
    db.refresh(older)
    db.refresh(newer)
    assert older.current_tier == 1
    assert newer.current_tier == 2
