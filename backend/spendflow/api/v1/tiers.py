"""Approval tier schedule endpoints."""
import uuid
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from spendflow.core.deps import CurrentUser, DbSession, require_role
from spendflow.models.user import User
from spendflow.schemas.tier import TierOut, TierResolutionOut, TierScheduleIn, TierUpdate
from spendflow.services import tiers as tier_svc
from spendflow.services.tiers import TIER_CONFIG_ROLES

router = APIRouter()

TierAdmin = Annotated[User, Depends(require_role(*TIER_CONFIG_ROLES))]


@router.get("", response_model=list[TierOut], summary="Active approval tiers")
def list_tiers(db: DbSession, current_user: CurrentUser):
    return [TierOut.model_validate(t) for t in tier_svc.active_tiers(db)]


@router.get("/resolve", response_model=TierResolutionOut, summary="Which tier covers an amount")
def resolve_tier(
    db: DbSession,
    current_user: CurrentUser,
    amount: Decimal = Query(..., ge=0, description="Base-currency amount"),
):
    resolution = tier_svc.resolve_tier(db, amount)
    return TierResolutionOut(
        amount=tier_svc.quantize_amount(amount),
        tier_order=resolution.tier.tier_order,
        tier_name=resolution.tier.name,
        approver_role=resolution.required_role,
    )


@router.put("", response_model=list[TierOut], summary="Replace the tier schedule (ADMIN, CEO)")
def replace_schedule(body: TierScheduleIn, db: DbSession, current_user: TierAdmin):
    created = tier_svc.replace_tier_schedule(
        db, current_user, [band.model_dump() for band in body.tiers]
    )
    return [TierOut.model_validate(t) for t in created]


@router.patch("/{tier_id}", response_model=TierOut, summary="Rename a tier or change its escalation SLA")
def update_tier(tier_id: uuid.UUID, body: TierUpdate, db: DbSession, current_user: TierAdmin):
    tier = tier_svc.update_tier(
        db,
        current_user,
        tier_id,
        name=body.name,
        escalation_days=body.escalation_days,
        clear_escalation=body.clear_escalation,
    )
    return TierOut.model_validate(tier)
