"""Tests for the budget guard policy and its hooks in the state machine."""
import uuid
from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from spendflow.core.errors import BudgetExceededError
from spendflow.models.approval import HistoryAction, RequestStatus
from spendflow.models.budget import BudgetEnforcement
from spendflow.services import budget_guard, workflow
from spendflow.services.budget_guard import (
    BudgetDecision,
    BudgetLedger,
    BudgetUtilization,
    ScopeKey,
    classify,
)
from conftest import NOW, add_budget


def _utilization(allocated, committed="0", spent="0", enforcement="SOFT_WARNING", threshold="80"):
    return BudgetUtilization(
        scope_key=ScopeKey("department", uuid.uuid4()),
        budget_id=uuid.uuid4(),
        name="Ops",
        allocated=Decimal(allocated),
        committed=Decimal(committed),
        spent=Decimal(spent),
        warning_threshold_pct=Decimal(threshold),
        enforcement=enforcement,
    )


# ─── Policy ───────────────────────────────────────────────────────────────────

def test_below_threshold_allows():
    result = classify(_utilization("1000", committed="100"), Decimal("100"))
    assert result.decision == BudgetDecision.ALLOW
    assert result.utilization_pct == Decimal("20.00")


def test_threshold_is_inclusive():
    result = classify(_utilization("1000", committed="700"), Decimal("100"))
    assert result.decision == BudgetDecision.WARN
    assert result.utilization_pct == Decimal("80.00")


def test_exactly_full_hard_block_only_warns():
    result = classify(_utilization("1000", committed="900", enforcement="HARD_BLOCK"), Decimal("100"))
    assert result.decision == BudgetDecision.WARN


def test_over_full_hard_block_blocks():
    result = classify(_utilization("1000", committed="900", enforcement="HARD_BLOCK"), Decimal("100.01"))
    assert result.decision == BudgetDecision.BLOCK
    assert "Ops" in result.message


def test_overrun_that_rounds_to_full_still_blocks():
    result = classify(
        _utilization("1000000", committed="999990", enforcement="HARD_BLOCK"), Decimal("40"),
    )
    assert result.utilization_pct == Decimal("100.00")
    assert result.decision == BudgetDecision.BLOCK


def test_usage_that_rounds_up_to_threshold_is_allowed():
    result = classify(_utilization("100000", committed="79996"), Decimal("0"))
    assert result.utilization_pct == Decimal("80.00")
    assert result.decision == BudgetDecision.ALLOW


def test_submit_refuses_overrun_hidden_by_rounding(db, org, category, tiers):
    add_budget(db, "department", org["department_id"], Decimal("1000000"),
               committed=Decimal("999990"), enforcement=BudgetEnforcement.HARD_BLOCK.value)
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal("40"), now=NOW)

    with pytest.raises(BudgetExceededError):
        workflow.submit(db, org["employee"].id, request.id, now=NOW)

    db.refresh(request)
    assert request.status == RequestStatus.DRAFT.value


def test_auto_escalate_over_limit_asks_for_bump():
    result = classify(_utilization("1000", spent="1000", enforcement="AUTO_ESCALATE"), Decimal("1"))
    assert result.decision == BudgetDecision.WARN
    assert result.escalate is True
    assert "AUTO_ESCALATE" in result.message


def test_zero_allocation_is_over_limit():
    result = classify(_utilization("0", enforcement="HARD_BLOCK"), Decimal("1"))
    assert result.decision == BudgetDecision.BLOCK
    assert result.utilization_pct is None


def test_missing_budget_allows(db):
    result = budget_guard.evaluate(BudgetLedger(db), ScopeKey("project", uuid.uuid4()), Decimal("5"), NOW.date())
    assert result is budget_guard.NO_BUDGET
    assert result.message is None


@given(
    allocated=st.integers(min_value=0, max_value=10_000_000),
    used=st.integers(min_value=0, max_value=20_000_000),
    amount=st.integers(min_value=1, max_value=5_000_000),
)
def test_soft_warning_never_blocks(allocated, used, amount):
    result = classify(_utilization(allocated, committed=used), Decimal(amount))
    assert result.decision != BudgetDecision.BLOCK
    assert result.escalate is False


# ─── Submission ───────────────────────────────────────────────────────────────

def test_hard_block_at_capacity_refuses_submit(db, org, category, tiers):
    add_budget(db, "department", org["department_id"], Decimal("100000"),
               committed=Decimal("100000"), enforcement="HARD_BLOCK")
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal("1000"), now=NOW)

    with pytest.raises(BudgetExceededError):
        workflow.submit(db, org["employee"].id, request.id, now=NOW)

    db.refresh(request)
    assert request.status == RequestStatus.DRAFT.value
    assert workflow.timeline(db, request) == []


def test_soft_warning_is_recorded_in_history(db, org, category, tiers):
    add_budget(db, "department", org["department_id"], Decimal("100000"),
               committed=Decimal("90000"), enforcement="SOFT_WARNING")
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal("1000"), now=NOW)

    submitted = workflow.submit(db, org["employee"].id, request.id, now=NOW)

    assert submitted.status == RequestStatus.PENDING_APPROVAL.value
    [entry] = workflow.timeline(db, submitted)
    assert entry["action"] == HistoryAction.SUBMIT.value
    assert entry["budget_decision"] == "WARN"
    assert "91.00%" in entry["budget_note"]


def test_auto_escalate_bumps_the_starting_tier(db, org, category, tiers):
    add_budget(db, "category", category.id, Decimal("5000"),
               committed=Decimal("5000"), enforcement=BudgetEnforcement.AUTO_ESCALATE.value)
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal("10000"), now=NOW)

    submitted = workflow.submit(db, org["employee"].id, request.id, now=NOW)

    assert submitted.current_tier == 2
    assert submitted.approver_role_required == "FINANCE"


def test_most_severe_scope_wins(db, org, category, tiers):
    add_budget(db, "department", org["department_id"], Decimal("100000"))
    add_budget(db, "employee", org["employee"].id, Decimal("1000"), enforcement="HARD_BLOCK")
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal("2000"), now=NOW)

    result = budget_guard.evaluate_request(db, request, on=NOW.date())

    assert result.decision == BudgetDecision.BLOCK
    assert result.scope_key == ScopeKey("employee", org["employee"].id)


# ─── Ledger writes ────────────────────────────────────────────────────────────

def test_commit_request_refuses_to_overfill_hard_block(db, org, category):
    budget = add_budget(db, "department", org["department_id"], Decimal("10000"),
                        committed=Decimal("5000"), enforcement="HARD_BLOCK")
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal("6000"), now=NOW)

    with pytest.raises(BudgetExceededError):
        budget_guard.commit_request(db, request, on=NOW.date())
    db.rollback()

    db.refresh(budget)
    assert budget.committed == Decimal("5000")


def test_commit_and_pay_move_amount_through_the_ledger(db, org, category):
    budget = add_budget(db, "category", category.id, Decimal("10000"))
    request = workflow.create_draft(db, org["employee"].id, category.id, Decimal("2500"), now=NOW)

    budget_guard.commit_request(db, request, on=NOW.date())
    db.commit()
    db.refresh(budget)
    assert budget.committed == Decimal("2500")

    budget_guard.record_payment(db, request, on=NOW.date())
    db.commit()
    db.refresh(budget)
    assert budget.committed == Decimal("0")
    assert budget.spent == Decimal("2500")
