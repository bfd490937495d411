"""Tests for the notification outbox and collaborator failure handling."""
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from spendflow.core.errors import TransitionFailedError
from spendflow.models.approval import ApprovalHistory, RequestStatus
from spendflow.models.notification import Notification
from spendflow.services import notifications as notify_svc
from spendflow.services import workflow
from spendflow.services.email import render_subject
from conftest import NOW


def _draft(db, org, category):
    return workflow.create_draft(db, org["employee"].id, category.id, Decimal("1200"), now=NOW)


def _outbox(db, request_id):
    return db.execute(
        select(Notification).where(Notification.request_id == request_id)
    ).scalars().all()


# ─── Delivery ─────────────────────────────────────────────────────────────────

def test_submit_notifies_the_role_pool(db, org, category, tiers):
    request = _draft(db, org, category)

    with patch("spendflow.services.email.send_email") as mock_send:
        workflow.submit(db, org["employee"].id, request.id, now=NOW)

    [notification] = _outbox(db, request.id)
    assert notification.event_type == "request.submitted"
    assert notification.recipient_role == "APPROVER"
    assert notification.status == "sent"
    recipients, subject, _ = mock_send.call_args.args
    assert recipients == [org["approver"].email]
    assert subject.startswith(f"Approval needed: {request.request_number} (PKR 1200")


def test_delivery_failure_does_not_undo_the_transition(db, org, category, tiers):
    request = _draft(db, org, category)

    with patch("spendflow.services.email.send_email", side_effect=ConnectionError("smtp down")):
        submitted = workflow.submit(db, org["employee"].id, request.id, now=NOW)

    assert submitted.status == RequestStatus.PENDING_APPROVAL.value
    [notification] = _outbox(db, request.id)
    assert notification.status == "pending"
    assert notification.attempts == 1
    assert notification.last_error == "smtp down"


def test_notification_fails_after_max_attempts(db, org, category, tiers):
    request = _draft(db, org, category)

    with patch("spendflow.services.email.send_email", side_effect=ConnectionError("smtp down")):
        workflow.submit(db, org["employee"].id, request.id, now=NOW)
        retry = notify_svc.dispatch(db)
        final = notify_svc.dispatch(db)

    assert retry == {"sent": 0, "failed": 0, "retrying": 1}
    assert final == {"sent": 0, "failed": 1, "retrying": 0}
    [notification] = _outbox(db, request.id)
    assert notification.status == "failed"
    assert notification.attempts == 3

    assert notify_svc.dispatch(db) == {"sent": 0, "failed": 0, "retrying": 0}


def test_periodic_dispatch_delivers_leftovers(db, org, category, tiers):
    request = _draft(db, org, category)
    with patch("spendflow.services.email.send_email", side_effect=ConnectionError("smtp down")):
        workflow.submit(db, org["employee"].id, request.id, now=NOW)

    assert notify_svc.dispatch(db) == {"sent": 1, "failed": 0, "retrying": 0}
    [notification] = _outbox(db, request.id)
    assert notification.status == "sent"
    assert notification.sent_at is not None


def test_subject_falls_back_on_missing_fields():
    assert render_subject("request.approved", {}) == "Approved: {request_number}"
    assert render_subject("unknown.event", {"a": 1}) == "unknown.event"


# ─── Collaborator failure inside the transaction ──────────────────────────────

def test_audit_failure_rolls_back_the_transition(db, org, category, tiers):
    request = _draft(db, org, category)

    with patch(
        "spendflow.services.audit.log",
        side_effect=OperationalError("INSERT INTO audit_logs", {}, Exception("disk full")),
    ):
        with pytest.raises(TransitionFailedError):
            workflow.submit(db, org["employee"].id, request.id, now=NOW)

    db.refresh(request)
    assert request.status == RequestStatus.DRAFT.value
    assert request.current_tier is None
    assert db.execute(select(func.count()).select_from(ApprovalHistory)).scalar() == 0
    assert _outbox(db, request.id) == []


def test_outbox_failure_rolls_back_the_transition(db, org, category, tiers):
    request = workflow.submit(db, org["employee"].id, _draft(db, org, category).id, now=NOW)

    with patch(
        "spendflow.services.notifications.enqueue",
        side_effect=OperationalError("INSERT INTO notifications", {}, Exception("locked")),
    ):
        with pytest.raises(TransitionFailedError):
            workflow.approve(db, org["approver"].id, request.id, now=NOW)

    db.refresh(request)
    assert request.current_tier == 1
    assert len(workflow.timeline(db, request)) == 1
