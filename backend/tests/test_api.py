"""API tests for the workflow and approval-matrix endpoints.

The sync session dependency is overridden with the in-memory test session
and the current user with whichever user the test sets, so the full stack
(routing, schemas, services, error mapping) runs against a real database.
"""
import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.deps import get_current_user
from app.core.limiter import limiter
from app.db.session import get_sync_session
from app.main import app


@pytest.fixture
def api(db_session, monkeypatch):
    """Dict holding the acting user; set ``api["user"]`` before each call."""
    monkeypatch.setattr(limiter, "enabled", False)
    state = {"user": None}

    def override_sync_session():
        yield db_session

    async def override_current_user():
        return state["user"]

    app.dependency_overrides[get_sync_session] = override_sync_session
    app.dependency_overrides[get_current_user] = override_current_user
    try:
        yield state
    finally:
        app.dependency_overrides.clear()


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


PO = {
    "reference_id": "PO-1",
    "reference_code": "PO-2026-0001",
    "category": "purchase_order",
    "amount": "5000",
}


# ─── Workflows ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_workflow_round_trip(api, po_matrix):
    lead, finance = po_matrix["lead"], po_matrix["finance"]
    api["user"] = lead

    async with _client() as client:
        created = await client.post("/api/v1/workflows", json=PO)
        assert created.status_code == 201
        body = created.json()
        assert body["auto_approved"] is False
        assert body["action_count"] == 2
        workflow_id = body["workflow_id"]

        detail = (await client.get(f"/api/v1/workflows/{workflow_id}")).json()
        assert detail["status"] == "pending"
        assert detail["initiated_by"] == str(lead.id)
        assert [a["role_code"] for a in detail["actions"]] == ["BUYER_LEAD", "FIN_MGR"]

        queue = (await client.get("/api/v1/workflows/pending")).json()
        assert queue["total"] == 1
        assert queue["items"][0]["level"] == 1
        assert queue["items"][0]["total_levels"] == 2

        first = await client.post(f"/api/v1/workflows/{workflow_id}/approve", json={"comments": "fine"})
        assert first.status_code == 200
        assert first.json()["next_level"] == 2

        api["user"] = finance
        check = (await client.get(f"/api/v1/workflows/{workflow_id}/can-approve")).json()
        assert check["can_approve"] is True

        second = await client.post(f"/api/v1/workflows/{workflow_id}/approve", json={})
        assert second.json()["completed"] is True
        assert second.json()["status"] == "approved"

        by_doc = await client.get("/api/v1/workflows/by-document/PO-1", params={"category": "purchase_order"})
        assert by_doc.json()["id"] == workflow_id
        assert by_doc.json()["status"] == "approved"


@pytest.mark.asyncio
async def test_auto_approval_is_reported(api, po_matrix):
    api["user"] = po_matrix["lead"]
    async with _client() as client:
        response = await client.post("/api/v1/workflows", json={**PO, "amount": "10000"})
    assert response.status_code == 201
    assert response.json()["auto_approved"] is True
    assert response.json()["reason"] == "no_matching_rule"
    assert response.json()["workflow_id"] is None


@pytest.mark.asyncio
async def test_engine_errors_map_to_http_codes(api, po_matrix):
    api["user"] = po_matrix["finance"]
    async with _client() as client:
        workflow_id = (await client.post("/api/v1/workflows", json=PO)).json()["workflow_id"]

        forbidden = await client.post(f"/api/v1/workflows/{workflow_id}/approve", json={})
        assert forbidden.status_code == 403
        assert forbidden.json()["error"] == "ApprovalPermissionError"

        duplicate = await client.post("/api/v1/workflows", json=PO)
        assert duplicate.status_code == 409

        negative = await client.post("/api/v1/workflows", json={**PO, "reference_id": "PO-2", "amount": "-0.01"})
        assert negative.status_code == 422
        assert negative.json()["error"] == "InvalidInputError"

        sub_cent = await client.post("/api/v1/workflows", json={**PO, "reference_id": "PO-3", "amount": "9999.995"})
        assert sub_cent.status_code == 422

        missing = await client.get(f"/api/v1/workflows/{uuid.uuid4()}")
        assert missing.status_code == 404

        no_doc = await client.get("/api/v1/workflows/by-document/PO-404")
        assert no_doc.status_code == 404


@pytest.mark.asyncio
async def test_reject_requires_comments(api, po_matrix):
    api["user"] = po_matrix["lead"]
    async with _client() as client:
        workflow_id = (await client.post("/api/v1/workflows", json=PO)).json()["workflow_id"]

        no_body = await client.post(f"/api/v1/workflows/{workflow_id}/reject", json={})
        assert no_body.status_code == 422

        blank = await client.post(f"/api/v1/workflows/{workflow_id}/reject", json={"comments": "  "})
        assert blank.status_code == 422

        rejected = await client.post(f"/api/v1/workflows/{workflow_id}/reject", json={"comments": "No budget"})
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"

        again = await client.post(f"/api/v1/workflows/{workflow_id}/approve", json={})
        assert again.status_code == 409


# ─── Approval matrix ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_matrix_writes_need_admin_or_manager(api, make_user):
    api["user"] = make_user(role="buyer")
    async with _client() as client:
        response = await client.post("/api/v1/approval-matrix/roles", json={"code": "CFO", "name": "CFO"})
        assert response.status_code == 403

        listed = await client.get("/api/v1/approval-matrix/roles")
        assert listed.status_code == 200


@pytest.mark.asyncio
async def test_admin_builds_and_inspects_a_rule(api, admin):
    api["user"] = admin
    async with _client() as client:
        role = await client.post(
            "/api/v1/approval-matrix/roles",
            json={"code": "FIN_MGR", "name": "Finance Manager", "hierarchy_level": 2},
        )
        assert role.status_code == 201
        role_id = role.json()["id"]

        rule = await client.post(
            "/api/v1/approval-matrix/rules",
            json={
                "name": "Capex",
                "category": "capex",
                "min_amount": "0",
                "escalation_hours": 48,
                "approvers": [{"role_id": role_id, "sequence_order": 1}],
            },
        )
        assert rule.status_code == 201
        body = rule.json()
        assert body["currency"] == "AED"
        assert body["version"] == 1
        assert body["approvers"][0]["role"]["code"] == "FIN_MGR"
        rule_id = body["id"]

        simulated = (await client.post(
            "/api/v1/approval-matrix/simulate", json={"category": "capex", "amount": "75000"}
        )).json()
        assert simulated["reason"] == "approval_required"
        assert simulated["steps"][0]["role_code"] == "FIN_MGR"

        matched = (await client.post(
            "/api/v1/approval-matrix/match", json={"category": "capex", "amount": "1"}
        )).json()
        assert matched["rule"]["id"] == rule_id

        updated = await client.patch(f"/api/v1/approval-matrix/rules/{rule_id}", json={"escalation_hours": 12})
        assert updated.json()["version"] == 2

        versions = (await client.get("/api/v1/approval-matrix/versions")).json()
        assert [v["version_number"] for v in versions] == [2, 1]

        exported = (await client.get("/api/v1/approval-matrix/export")).json()
        assert exported["rules"][0]["escalation_hours"] == 12

        deleted = await client.delete(f"/api/v1/approval-matrix/rules/{rule_id}")
        assert deleted.status_code == 204
        gone = await client.get(f"/api/v1/approval-matrix/rules/{rule_id}")
        assert gone.status_code == 404


@pytest.mark.asyncio
async def test_invalid_rule_payload(api, admin):
    api["user"] = admin
    async with _client() as client:
        bad_band = await client.post(
            "/api/v1/approval-matrix/rules",
            json={"name": "x", "category": "capex", "min_amount": "100", "max_amount": "50"},
        )
        bad_step = await client.post(
            "/api/v1/approval-matrix/rules",
            json={"name": "x", "category": "capex", "approvers": [{"role_id": str(uuid.uuid4()), "sequence_order": 0}]},
        )
    assert bad_band.status_code == 422
    assert bad_step.status_code == 422


@pytest.mark.asyncio
async def test_user_approver_registration(api, admin, make_role, make_user):
    make_role("CFO")
    cfo = make_user(role="finance")
    api["user"] = admin
    async with _client() as client:
        created = await client.post(
            "/api/v1/approval-matrix/user-approvers",
            json={"user_id": str(cfo.id), "approver_role": "CFO", "modules": ["capex"], "max_approval_amount": "1000000"},
        )
        assert created.status_code == 201
        registration_id = created.json()["id"]

        listed = (await client.get("/api/v1/approval-matrix/user-approvers", params={"user_id": str(cfo.id)})).json()
        assert [r["approver_role"] for r in listed] == ["CFO"]

        removed = await client.delete(f"/api/v1/approval-matrix/user-approvers/{registration_id}")
        assert removed.json()["is_active"] is False


# ─── Delegation ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_users_manage_only_their_own_delegation(api, make_user):
    owner, deputy, stranger = make_user(), make_user(), make_user()
    payload = {"delegate_id": str(deputy.id), "valid_from": "2026-01-01"}

    async with _client() as client:
        api["user"] = stranger
        denied = await client.put(f"/api/v1/users/{owner.id}/delegation", json=payload)
        assert denied.status_code == 403

        api["user"] = owner
        created = await client.put(f"/api/v1/users/{owner.id}/delegation", json=payload)
        assert created.status_code == 200
        assert created.json()["delegate_id"] == str(deputy.id)

        removed = await client.delete(f"/api/v1/users/{owner.id}/delegation")
        assert removed.status_code == 204
        missing = await client.delete(f"/api/v1/users/{owner.id}/delegation")
        assert missing.status_code == 404
