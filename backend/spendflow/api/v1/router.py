from fastapi import APIRouter

from spendflow.api.v1 import approvals, delegations, pre_approvals, requests, tiers

api_router = APIRouter()

api_router.include_router(requests.router, prefix="/requests", tags=["requests"])
api_router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
api_router.include_router(pre_approvals.router, prefix="/pre-approvals", tags=["pre-approvals"])
api_router.include_router(delegations.router, prefix="/delegations", tags=["delegations"])
api_router.include_router(tiers.router, prefix="/approval-tiers", tags=["approval-tiers"])
