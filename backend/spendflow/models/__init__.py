from spendflow.models.user import User
from spendflow.models.category import Category
from spendflow.models.approval_matrix import ApprovalTier, Delegation
from spendflow.models.pre_approval import PreApproval, PreApprovalStatus
from spendflow.models.approval import (
    ApprovableRequest,
    ApprovalHistory,
    HistoryAction,
    RequestKind,
    RequestStatus,
)
from spendflow.models.budget import Budget, BudgetEnforcement, BudgetScope
from spendflow.models.audit import AuditLog
from spendflow.models.notification import Notification
from spendflow.models.escalation_alert import EscalationAlert
from spendflow.models.sequence import SequenceCounter

__all__ = [
    "User",
    "Category",
    "ApprovalTier", "Delegation",
    "PreApproval", "PreApprovalStatus",
    "ApprovableRequest", "ApprovalHistory", "HistoryAction", "RequestKind", "RequestStatus",
    "Budget", "BudgetEnforcement", "BudgetScope",
    "AuditLog",
    "Notification",
    "EscalationAlert",
    "SequenceCounter",
]
