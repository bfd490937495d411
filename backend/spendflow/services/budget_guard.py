"""Budget guard: classifies a spend against the budget ledger.

Policy per enforcement mode, with
``utilization_pct = (committed + spent + amount) / allocated * 100``:

  HARD_BLOCK     BLOCK above 100%, WARN at/above the warning threshold.
  SOFT_WARNING   never blocks; WARN at/above the threshold.
  AUTO_ESCALATE  WARN at/above the threshold; above 100% also asks the
                 state machine to bump the request one tier.

A scope without a budget is ALLOW with no warning.
"""
import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from spendflow.core.errors import BudgetExceededError
from spendflow.models.approval import ApprovableRequest
from spendflow.models.budget import Budget, BudgetEnforcement, BudgetScope

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class BudgetDecision(str, enum.Enum):
    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"


_SEVERITY = {BudgetDecision.ALLOW: 0, BudgetDecision.WARN: 1, BudgetDecision.BLOCK: 2}


@dataclass(frozen=True)
class ScopeKey:
    scope_type: str
    scope_id: uuid.UUID

    def __str__(self) -> str:
        return f"{self.scope_type}:{self.scope_id}"


@dataclass(frozen=True)
class BudgetUtilization:
    scope_key: ScopeKey
    budget_id: uuid.UUID
    name: str
    allocated: Decimal
    committed: Decimal
    spent: Decimal
    warning_threshold_pct: Decimal
    enforcement: str

    @property
    def available(self) -> Decimal:
        return self.allocated - self.committed - self.spent


@dataclass(frozen=True)
class BudgetEvaluation:
    decision: BudgetDecision
    utilization_pct: Decimal | None = None
    scope_key: ScopeKey | None = None
    budget_name: str | None = None
    escalate: bool = False

    @property
    def message(self) -> str | None:
        if self.scope_key is None:
            return None
        pct = "n/a" if self.utilization_pct is None else f"{self.utilization_pct}%"
        note = f"Budget '{self.budget_name}' ({self.scope_key}) at {pct}"
        if self.escalate:
            note += "; tier bumped by AUTO_ESCALATE"
        return note


NO_BUDGET = BudgetEvaluation(decision=BudgetDecision.ALLOW)


class BudgetLedger:
    """Read model over the budgets table."""

    def __init__(self, db: Session):
        self.db = db

    def _covering(self, scope_key: ScopeKey, on: date):
        return (
            select(Budget)
            .where(
                Budget.is_active.is_(True),
                Budget.scope_type == scope_key.scope_type,
                Budget.scope_id == scope_key.scope_id,
                Budget.start_date <= on,
                Budget.end_date >= on,
            )
            .order_by(Budget.start_date.desc())
        )

    def get_utilization(self, scope_key: ScopeKey, on: date | None = None) -> BudgetUtilization | None:
        on = on or datetime.now(timezone.utc).date()
        budget = self.db.execute(self._covering(scope_key, on)).scalars().first()
        if budget is None:
            return None
        return BudgetUtilization(
            scope_key=scope_key,
            budget_id=budget.id,
            name=budget.name,
            allocated=Decimal(budget.allocated),
            committed=Decimal(budget.committed),
            spent=Decimal(budget.spent),
            warning_threshold_pct=Decimal(budget.warning_threshold_pct),
            enforcement=budget.enforcement,
        )

    def budgets_for(self, scope_keys: list[ScopeKey], on: date | None = None) -> list[Budget]:
        on = on or datetime.now(timezone.utc).date()
        found = []
        for key in scope_keys:
            budget = self.db.execute(self._covering(key, on)).scalars().first()
            if budget is not None:
                found.append(budget)
        return found


# ─── Policy ───

def classify(utilization: BudgetUtilization, amount: Decimal) -> BudgetEvaluation:
    """Apply the enforcement policy to one budget."""
    used = utilization.committed + utilization.spent + Decimal(amount)
    if utilization.allocated > 0:
        # Decisions use exact amounts; pct is rounded for display only.
        pct = (used / utilization.allocated * HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        over_limit = used > utilization.allocated
        over_threshold = used * HUNDRED >= utilization.warning_threshold_pct * utilization.allocated
    else:
        # Zero allocation: any spend is over the limit.
        pct = None
        over_limit = used > 0
        over_threshold = over_limit

    mode = utilization.enforcement
    escalate = False
    if mode == BudgetEnforcement.HARD_BLOCK.value and over_limit:
        decision = BudgetDecision.BLOCK
    elif mode == BudgetEnforcement.AUTO_ESCALATE.value and over_limit:
        decision = BudgetDecision.WARN
        escalate = True
    elif over_threshold or over_limit:
        decision = BudgetDecision.WARN
    else:
        decision = BudgetDecision.ALLOW

    return BudgetEvaluation(
        decision=decision,
        utilization_pct=pct,
        scope_key=utilization.scope_key,
        budget_name=utilization.name,
        escalate=escalate,
    )


def evaluate(ledger: BudgetLedger, scope_key: ScopeKey, amount: Decimal, on: date | None = None) -> BudgetEvaluation:
    utilization = ledger.get_utilization(scope_key, on)
    if utilization is None:
        return NO_BUDGET
    return classify(utilization, amount)


def scope_keys_for(request: ApprovableRequest) -> list[ScopeKey]:
    keys = []
    if request.department_id:
        keys.append(ScopeKey(BudgetScope.DEPARTMENT.value, request.department_id))
    if request.project_id:
        keys.append(ScopeKey(BudgetScope.PROJECT.value, request.project_id))
    keys.append(ScopeKey(BudgetScope.CATEGORY.value, request.category_id))
    keys.append(ScopeKey(BudgetScope.EMPLOYEE.value, request.requester_id))
    return keys


def _more_severe(a: BudgetEvaluation, b: BudgetEvaluation) -> bool:
    if _SEVERITY[a.decision] != _SEVERITY[b.decision]:
        return _SEVERITY[a.decision] > _SEVERITY[b.decision]
    if a.escalate != b.escalate:
        return a.escalate
    return (a.utilization_pct or Decimal("0")) > (b.utilization_pct or Decimal("0"))


def evaluate_request(
    db: Session,
    request: ApprovableRequest,
    on: date | None = None,
    ledger: BudgetLedger | None = None,
) -> BudgetEvaluation:
    """Evaluate every budget covering the request; return the most severe result."""
    ledger = ledger or BudgetLedger(db)
    amount = Decimal(request.base_currency_amount)
    worst = NO_BUDGET
    escalate = False
    for key in scope_keys_for(request):
        result = evaluate(ledger, key, amount, on)
        escalate = escalate or result.escalate
        if _more_severe(result, worst):
            worst = result
    if escalate and not worst.escalate:
        worst = BudgetEvaluation(
            decision=worst.decision,
            utilization_pct=worst.utilization_pct,
            scope_key=worst.scope_key,
            budget_name=worst.budget_name,
            escalate=True,
        )
    if worst.decision == BudgetDecision.WARN:
        logger.warning("Budget warning for %s: %s", request.request_number, worst.message)
    return worst


# ─── Ledger writes ───

def commit_request(db: Session, request: ApprovableRequest, on: date | None = None) -> None:
    """Add a fully approved request's amount to each covering budget's committed.

    HARD_BLOCK envelopes are incremented with a conditional UPDATE that only
    matches while the envelope still has room, so two approvals racing for
    the last of a budget cannot both land.
    """
    amount = Decimal(request.base_currency_amount)
    for budget in BudgetLedger(db).budgets_for(scope_keys_for(request), on):
        stmt = update(Budget).where(Budget.id == budget.id)
        if budget.enforcement == BudgetEnforcement.HARD_BLOCK.value:
            stmt = stmt.where(Budget.committed + Budget.spent + amount <= Budget.allocated)
        result = db.execute(
            stmt.values(committed=Budget.committed + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise BudgetExceededError(
                f"Budget '{budget.name}' cannot absorb {amount}; it was consumed by another approval."
            )
        db.refresh(budget)


def record_payment(db: Session, request: ApprovableRequest, on: date | None = None) -> None:
    """Move a paid request's amount from committed to spent."""
    amount = Decimal(request.base_currency_amount)
    for budget in BudgetLedger(db).budgets_for(scope_keys_for(request), on):
        db.execute(
            update(Budget)
            .where(Budget.id == budget.id)
            .values(committed=Budget.committed - amount, spent=Budget.spent + amount)
            .execution_options(synchronize_session=False)
        )
        db.refresh(budget)
