"""Approval action endpoints (rate limited).

  GET  /approvals/pending                - queue for the caller's role pools
  POST /approvals/{request_id}/approve
  POST /approvals/{request_id}/reject
  POST /approvals/{request_id}/clarify
"""
import logging
import uuid

from fastapi import APIRouter, Request

from spendflow.core.config import settings
from spendflow.core.deps import CurrentUser, DbSession
from spendflow.core.limiter import limiter
from spendflow.schemas.approval import ApprovalQueueResponse, ApproveIn, ClarifyIn, RejectIn
from spendflow.schemas.request import RequestOut
from spendflow.services import workflow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/pending",
    response_model=ApprovalQueueResponse,
    summary="Requests awaiting the caller's approval",
)
def list_pending(db: DbSession, current_user: CurrentUser):
    items = [RequestOut.model_validate(r) for r in workflow.pending_for_actor(db, current_user)]
    return ApprovalQueueResponse(items=items, total=len(items))


@router.post("/{request_id}/approve", response_model=RequestOut, summary="Approve at the current tier")
@limiter.limit(settings.RATE_LIMIT_APPROVALS)
def approve_request(
    request: Request,
    request_id: uuid.UUID,
    body: ApproveIn,
    db: DbSession,
    current_user: CurrentUser,
):
    updated = workflow.approve(
        db,
        current_user.id,
        request_id,
        comment=body.comment,
        is_emergency=body.is_emergency_approval,
        emergency_reason=body.emergency_reason,
    )
    return RequestOut.model_validate(updated)


@router.post("/{request_id}/reject", response_model=RequestOut, summary="Reject with a reason")
@limiter.limit(settings.RATE_LIMIT_APPROVALS)
def reject_request(
    request: Request,
    request_id: uuid.UUID,
    body: RejectIn,
    db: DbSession,
    current_user: CurrentUser,
):
    return RequestOut.model_validate(workflow.reject(db, current_user.id, request_id, body.reason))


@router.post("/{request_id}/clarify", response_model=RequestOut, summary="Ask the requester a question")
@limiter.limit(settings.RATE_LIMIT_APPROVALS)
def clarify_request(
    request: Request,
    request_id: uuid.UUID,
    body: ClarifyIn,
    db: DbSession,
    current_user: CurrentUser,
):
    updated = workflow.request_clarification(db, current_user.id, request_id, body.question)
    return RequestOut.model_validate(updated)
