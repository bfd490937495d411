"""Domain error taxonomy for the approval engine.

Every error carries a machine-readable ``kind`` and a human-readable
``reason``. The API layer maps them to JSON responses with ``status_code``.
"""


class SpendflowError(Exception):
    """Base class for all approval-engine errors."""

    kind = "error"
    status_code = 400

    def __init__(self, reason: str | None = None):
        self.reason = reason or self.__class__.__doc__ or self.kind
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.reason}


# ─── Configuration errors ───

class NoTierConfiguredError(SpendflowError):
    """No active approval tier covers the amount."""

    kind = "no_tier_configured"
    status_code = 500


class TierConfigurationError(SpendflowError):
    """The approval tier schedule is not a gap-free partition."""

    kind = "tier_configuration"
    status_code = 422


# ─── Policy violations ───

class RequestValidationError(SpendflowError):
    """The command is missing or carries invalid input."""

    kind = "validation"
    status_code = 422


class NotFoundError(SpendflowError):
    """The referenced record does not exist."""

    kind = "not_found"
    status_code = 404


class InvalidStateError(SpendflowError):
    """The record is not in a state that allows this action."""

    kind = "invalid_state"
    status_code = 409


class UnauthorizedApproverError(SpendflowError):
    """The actor is not allowed to perform this action."""

    kind = "unauthorized_approver"
    status_code = 403


class BudgetExceededError(SpendflowError):
    """The amount exceeds a hard-blocked budget."""

    kind = "budget_exceeded"
    status_code = 422


class PreApprovalRequiredError(SpendflowError):
    """The category requires an approved, unexpired pre-approval."""

    kind = "pre_approval_required"
    status_code = 422


class ReceiptRequiredError(SpendflowError):
    """The category requires at least one receipt."""

    kind = "receipt_required"
    status_code = 422


class AlreadyUsedError(SpendflowError):
    """The pre-approval has already been consumed."""

    kind = "already_used"
    status_code = 409


class DelegationConflictError(SpendflowError):
    """An active delegation already covers part of this window."""

    kind = "delegation_conflict"
    status_code = 409


# ─── Concurrency / collaborator failures ───

class StaleStateError(SpendflowError):
    """The record changed since it was read; re-fetch and retry."""

    kind = "stale_state"
    status_code = 409


class TransitionFailedError(SpendflowError):
    """A collaborator write failed; the transition was rolled back."""

    kind = "collaborator_failure"
    status_code = 503
