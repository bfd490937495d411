"""HTTP-level tests for the approval engine API.

The DB session dependency is overridden with the test session; the current
user is swapped per call through ``act_as``.
"""
import uuid

import pytest
from httpx import AsyncClient, ASGITransport

from spendflow.core.deps import get_current_user
from spendflow.core.security import create_access_token
from spendflow.db.session import get_session
from spendflow.main import app


@pytest.fixture
def api(db):
    """Yields ``act_as(user)``; the override returns whoever was set last."""
    current = {}

    def _session_override():
        yield db

    def _user_override():
        return current["user"]

    def act_as(user):
        current["user"] = user

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_current_user] = _user_override
    yield act_as
    app.dependency_overrides.clear()


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ─── Request lifecycle ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_submit_approve_flow(api, org, category, tiers):
    async with _client() as client:
        api(org["employee"])
        created = await client.post(
            "/api/v1/requests",
            json={"category_id": str(category.id), "amount": "10000", "description": "Laptop stand"},
        )
        assert created.status_code == 201
        request_id = created.json()["id"]
        assert created.json()["status"] == "DRAFT"

        submitted = await client.post(f"/api/v1/requests/{request_id}/submit")
        assert submitted.status_code == 200
        assert submitted.json()["approver_role_required"] == "APPROVER"

        api(org["approver"])
        queue = await client.get("/api/v1/approvals/pending")
        assert queue.json()["total"] == 1

        approved = await client.post(f"/api/v1/approvals/{request_id}/approve", json={"comment": "fine"})
        assert approved.status_code == 200
        body = approved.json()
        assert body["status"] == "PENDING_APPROVAL"
        assert body["current_tier"] == 2
        assert body["approver_role_required"] == "FINANCE"

        api(org["employee"])
        timeline = await client.get(f"/api/v1/requests/{request_id}/timeline")
    assert [e["action"] for e in timeline.json()["history"]] == ["SUBMIT", "APPROVE"]


@pytest.mark.asyncio
async def test_wrong_role_gets_structured_403(api, org, category, tiers):
    async with _client() as client:
        api(org["employee"])
        created = await client.post(
            "/api/v1/requests", json={"category_id": str(category.id), "amount": "75000"},
        )
        request_id = created.json()["id"]
        await client.post(f"/api/v1/requests/{request_id}/submit")

        api(org["approver"])
        response = await client.post(f"/api/v1/approvals/{request_id}/approve", json={})

    assert response.status_code == 403
    assert response.json()["kind"] == "unauthorized_approver"
    assert "FINANCE" in response.json()["detail"]


@pytest.mark.asyncio
async def test_reject_without_reason_is_422(api, org, category, tiers):
    async with _client() as client:
        api(org["approver"])
        response = await client.post(f"/api/v1/approvals/{uuid.uuid4()}/reject", json={"reason": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_request_is_404(api, org):
    async with _client() as client:
        api(org["finance"])
        response = await client.get(f"/api/v1/requests/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_missing_tier_is_500_with_kind(api, org, category):
    async with _client() as client:
        api(org["employee"])
        created = await client.post(
            "/api/v1/requests", json={"category_id": str(category.id), "amount": "10"},
        )
        response = await client.post(f"/api/v1/requests/{created.json()['id']}/submit")
    assert response.status_code == 500
    assert response.json()["kind"] == "no_tier_configured"


@pytest.mark.asyncio
async def test_pay_is_finance_only(api, org):
    async with _client() as client:
        api(org["ceo"])
        response = await client.post(f"/api/v1/requests/{uuid.uuid4()}/pay")
    assert response.status_code == 403


# ─── Tier administration ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_resolve_endpoint_uses_seeded_tiers(api, org, seeded_tiers):
    async with _client() as client:
        api(org["employee"])
        at_boundary = await client.get("/api/v1/approval-tiers/resolve", params={"amount": "25000"})
        above = await client.get("/api/v1/approval-tiers/resolve", params={"amount": "25001"})

    assert at_boundary.json()["tier_order"] == 1
    assert above.json()["tier_order"] == 2
    assert above.json()["approver_role"] == "APPROVER"


@pytest.mark.asyncio
async def test_employee_cannot_replace_tiers(api, org, seeded_tiers):
    payload = {"tiers": [{"tier_order": 1, "min_amount": "0", "max_amount": None, "approver_role": "CEO"}]}
    async with _client() as client:
        api(org["employee"])
        response = await client.put("/api/v1/approval-tiers", json=payload)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_replaces_tiers_and_gaps_are_rejected(api, org, seeded_tiers):
    gap = {"tiers": [
        {"tier_order": 1, "min_amount": "0", "max_amount": "100", "approver_role": "APPROVER"},
        {"tier_order": 2, "min_amount": "200", "max_amount": None, "approver_role": "CEO"},
    ]}
    ok = {"tiers": [
        {"tier_order": 1, "min_amount": "0", "max_amount": "100", "approver_role": "APPROVER"},
        {"tier_order": 2, "min_amount": "100.01", "max_amount": None, "approver_role": "CEO"},
    ]}
    async with _client() as client:
        api(org["admin"])
        rejected = await client.put("/api/v1/approval-tiers", json=gap)
        replaced = await client.put("/api/v1/approval-tiers", json=ok)
        listed = await client.get("/api/v1/approval-tiers")

    assert rejected.status_code == 422
    assert rejected.json()["kind"] == "tier_configuration"
    assert replaced.status_code == 200
    assert [t["tier_order"] for t in listed.json()] == [1, 2]


# ─── Delegations & pre-approvals ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_overlapping_delegation_is_409(api, org):
    window = {
        "delegate_id": str(org["finance"].id),
        "start_at": "2099-01-01T00:00:00Z",
        "end_at": "2099-01-10T00:00:00Z",
    }
    async with _client() as client:
        api(org["approver"])
        first = await client.post("/api/v1/delegations", json=window)
        second = await client.post("/api/v1/delegations", json={**window, "delegate_id": str(org["ceo"].id)})
        revoked = await client.delete(f"/api/v1/delegations/{first.json()['id']}")

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["kind"] == "delegation_conflict"
    assert revoked.status_code == 200


@pytest.mark.asyncio
async def test_pre_approval_request_and_decision(api, org, category):
    async with _client() as client:
        api(org["employee"])
        created = await client.post(
            "/api/v1/pre-approvals",
            json={"category_id": str(category.id), "estimated_amount": "5000", "purpose": "Conference"},
        )
        pre_id = created.json()["id"]

        api(org["approver"])
        pending = await client.get("/api/v1/pre-approvals/pending")
        decided = await client.post(f"/api/v1/pre-approvals/{pre_id}/decision", json={"outcome": "APPROVE"})

    assert created.status_code == 201
    assert [p["id"] for p in pending.json()["items"]] == [pre_id]
    assert decided.json()["status"] == "APPROVED"


# ─── Authentication ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_missing_token_is_401(db):
    def _session_override():
        yield db

    app.dependency_overrides[get_session] = _session_override
    try:
        async with _client() as client:
            response = await client.get("/api/v1/requests")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_resolves_user(db, org):
    def _session_override():
        yield db

    token = create_access_token(str(org["employee"].id), org["employee"].role)
    app.dependency_overrides[get_session] = _session_override
    try:
        async with _client() as client:
            ok = await client.get("/api/v1/requests", headers={"Authorization": f"Bearer {token}"})
            bad = await client.get("/api/v1/requests", headers={"Authorization": "Bearer not-a-jwt"})
    finally:
        app.dependency_overrides.clear()

    assert ok.status_code == 200
    assert ok.json() == {"items": [], "total": 0}
    assert bad.status_code == 401
