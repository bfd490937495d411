"""Pre-approval endpoints."""
import uuid

from fastapi import APIRouter, Query, Request, status

from spendflow.core.config import settings
from spendflow.core.deps import CurrentUser, DbSession
from spendflow.core.limiter import limiter
from spendflow.schemas.pre_approval import (
    PreApprovalCreate,
    PreApprovalDecision,
    PreApprovalListResponse,
    PreApprovalOut,
)
from spendflow.services import pre_approvals as pre_approval_svc

router = APIRouter()


@router.post(
    "",
    response_model=PreApprovalOut,
    status_code=status.HTTP_201_CREATED,
    summary="Request a pre-approval",
)
def create_pre_approval(body: PreApprovalCreate, db: DbSession, current_user: CurrentUser):
    pre = pre_approval_svc.request_pre_approval(
        db,
        current_user.id,
        category_id=body.category_id,
        estimated_amount=body.estimated_amount,
        purpose=body.purpose,
        expires_at=body.expires_at,
    )
    return PreApprovalOut.model_validate(pre)


@router.get("", response_model=PreApprovalListResponse, summary="List pre-approvals visible to the caller")
def list_pre_approvals(
    db: DbSession,
    current_user: CurrentUser,
    status_filter: str | None = Query(None, alias="status"),
):
    items = [
        PreApprovalOut.model_validate(p)
        for p in pre_approval_svc.list_for_user(db, current_user, status_filter)
    ]
    return PreApprovalListResponse(items=items, total=len(items))


@router.get(
    "/pending",
    response_model=PreApprovalListResponse,
    summary="Pending pre-approvals from the caller's direct reports",
)
def list_pending_pre_approvals(db: DbSession, current_user: CurrentUser):
    items = [
        PreApprovalOut.model_validate(p)
        for p in pre_approval_svc.list_pending_for_manager(db, current_user.id)
    ]
    return PreApprovalListResponse(items=items, total=len(items))


@router.get("/{pre_approval_id}", response_model=PreApprovalOut, summary="Get a pre-approval")
def get_pre_approval(pre_approval_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    return PreApprovalOut.model_validate(pre_approval_svc.get_visible(db, current_user, pre_approval_id))


@router.post(
    "/{pre_approval_id}/decision",
    response_model=PreApprovalOut,
    summary="Approve or reject a pending pre-approval",
)
@limiter.limit(settings.RATE_LIMIT_APPROVALS)
def decide_pre_approval(
    request: Request,
    pre_approval_id: uuid.UUID,
    body: PreApprovalDecision,
    db: DbSession,
    current_user: CurrentUser,
):
    pre = pre_approval_svc.decide_pre_approval(
        db, current_user.id, pre_approval_id, body.outcome, body.reason
    )
    return PreApprovalOut.model_validate(pre)
