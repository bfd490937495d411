"""Expense and voucher request endpoints.

  POST /requests                         - create a DRAFT
  GET  /requests                         - own requests (org-wide for ADMIN/FINANCE/CEO)
  GET  /requests/{id}                    - request detail
  GET  /requests/{id}/timeline           - approval history with markers
  POST /requests/{id}/submit
  POST /requests/{id}/resubmit
  POST /requests/{id}/withdraw
  POST /requests/{id}/pay                - FINANCE
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Query, status

from spendflow.core.deps import CurrentUser, DbSession, require_role
from spendflow.models.user import User
from spendflow.schemas.request import (
    CommentIn,
    RequestCreate,
    RequestListResponse,
    RequestOut,
    ResubmitIn,
    TimelineEntryOut,
    TimelineResponse,
)
from spendflow.services import workflow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=RequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft expense or voucher",
)
def create_request(body: RequestCreate, db: DbSession, current_user: CurrentUser):
    request = workflow.create_draft(
        db,
        actor_id=current_user.id,
        category_id=body.category_id,
        amount=body.amount,
        currency=body.currency,
        kind=body.kind,
        description=body.description,
        receipt_count=body.receipt_count,
        project_id=body.project_id,
    )
    return RequestOut.model_validate(request)


@router.get("", response_model=RequestListResponse, summary="List requests visible to the caller")
def list_requests(
    db: DbSession,
    current_user: CurrentUser,
    status_filter: str | None = Query(None, alias="status"),
):
    items = [RequestOut.model_validate(r) for r in workflow.list_requests(db, current_user, status_filter)]
    return RequestListResponse(items=items, total=len(items))


@router.get("/{request_id}", response_model=RequestOut, summary="Get a request")
def get_request(request_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    return RequestOut.model_validate(workflow.get_visible(db, current_user, request_id))


@router.get("/{request_id}/timeline", response_model=TimelineResponse, summary="Approval timeline")
def get_timeline(request_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    request = workflow.get_visible(db, current_user, request_id)
    return TimelineResponse(
        request=RequestOut.model_validate(request),
        history=[TimelineEntryOut(**row) for row in workflow.timeline(db, request)],
    )


@router.post("/{request_id}/submit", response_model=RequestOut, summary="Submit for approval")
def submit_request(request_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    return RequestOut.model_validate(workflow.submit(db, current_user.id, request_id))


@router.post(
    "/{request_id}/resubmit",
    response_model=RequestOut,
    summary="Amend and resubmit after a clarification request",
)
def resubmit_request(request_id: uuid.UUID, body: ResubmitIn, db: DbSession, current_user: CurrentUser):
    request = workflow.resubmit(
        db,
        current_user.id,
        request_id,
        amount=body.amount,
        currency=body.currency,
        receipt_count=body.receipt_count,
        comment=body.comment,
    )
    return RequestOut.model_validate(request)


@router.post("/{request_id}/withdraw", response_model=RequestOut, summary="Withdraw a pending request")
def withdraw_request(
    request_id: uuid.UUID,
    db: DbSession,
    current_user: CurrentUser,
    body: CommentIn | None = None,
):
    comment = body.comment if body else None
    return RequestOut.model_validate(workflow.withdraw(db, current_user.id, request_id, comment))


@router.post("/{request_id}/pay", response_model=RequestOut, summary="Mark an approved request paid (FINANCE)")
def pay_request(
    request_id: uuid.UUID,
    db: DbSession,
    current_user: User = Depends(require_role("FINANCE")),
    body: CommentIn | None = None,
):
    comment = body.comment if body else None
    return RequestOut.model_validate(workflow.mark_paid(db, current_user.id, request_id, comment))
