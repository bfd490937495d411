"""Approver delegation endpoints."""
import uuid

from fastapi import APIRouter, status

from spendflow.core.deps import CurrentUser, DbSession
from spendflow.schemas.delegation import DelegationIn, DelegationOut
from spendflow.services import delegations as delegation_svc

router = APIRouter()


@router.get("", response_model=list[DelegationOut], summary="Active delegations from or to the caller")
def list_delegations(db: DbSession, current_user: CurrentUser):
    return [DelegationOut.model_validate(d) for d in delegation_svc.list_delegations(db, current_user.id)]


@router.post(
    "",
    response_model=DelegationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Delegate the caller's approval authority",
)
def create_delegation(body: DelegationIn, db: DbSession, current_user: CurrentUser):
    delegation = delegation_svc.create_delegation(
        db,
        current_user.id,
        to_user_id=body.delegate_id,
        start_at=body.start_at,
        end_at=body.end_at,
        reason=body.reason,
    )
    return DelegationOut.model_validate(delegation)


@router.delete(
    "/{delegation_id}",
    response_model=DelegationOut,
    summary="Revoke a delegation (delegator or ADMIN)",
)
def revoke_delegation(delegation_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    return DelegationOut.model_validate(
        delegation_svc.revoke_delegation(db, current_user.id, delegation_id)
    )
