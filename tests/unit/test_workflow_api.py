"""Tests for the workflow and approval flow HTTP API."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from hrflow.core.config import get_settings
from hrflow.services.audit import get_audit_logger
from hrflow.services.workflow import (
    PersistenceFailure,
    get_flow_catalog,
    get_organization_directory,
)
from hrflow.services.workflow.engine import get_workflow_engine

EMP = {"X-User-Id": "emp"}
MGR = {"X-User-Id": "mgr"}
HEAD = {"X-User-Id": "head"}

LEAVE = {
    "category": "leave_request",
    "title": "Annual leave",
    "requester_id": "emp",
    "requester_name": "Erin Walsh",
    "department": "Engineering",
    "details": {"days": 3},
}


@pytest.fixture
def api(app, client, engine, audit):
    """Client whose endpoints use the test engine."""
    app.dependency_overrides[get_workflow_engine] = lambda: engine
    app.dependency_overrides[get_audit_logger] = lambda: audit
    yield client
    app.dependency_overrides.clear()


def create_and_submit(api) -> dict:
    request = api.post("/api/v1/workflows", json=LEAVE, headers=EMP).json()
    return api.post(f"/api/v1/workflows/{request['id']}/submit", headers=EMP).json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestWorkflowEndpoints:
    """Tests for /workflows."""

    def test_create_request(self, api):
        response = api.post("/api/v1/workflows", json=LEAVE, headers=EMP)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "WF-0001"
        assert data["status"] == "draft"
        assert data["progress"] == 0
        assert data["active_step_id"] == "WF-0001-S1"
        assert [s["approver_id"] for s in data["approval_steps"]] == ["mgr", "head"]

    def test_missing_user_header(self, api):
        response = api.post("/api/v1/workflows", json=LEAVE)

        assert response.status_code == 400
        assert response.json()["detail"] == "X-User-Id header is required"

    def test_invalid_payload(self, api):
        response = api.post("/api/v1/workflows", json={**LEAVE, "title": ""}, headers=EMP)
        assert response.status_code == 422

    def test_approval_flow(self, api):
        request = create_and_submit(api)
        assert request["status"] == "pending"

        response = api.post(
            f"/api/v1/workflows/{request['id']}/approve",
            json={"step_id": "WF-0001-S1", "comment": "Enjoy"},
            headers=MGR,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "partially_approved"
        assert data["progress"] == 50
        assert data["active_step_id"] == "WF-0001-S2"

    def test_approve_by_wrong_user(self, api):
        request = create_and_submit(api)

        response = api.post(
            f"/api/v1/workflows/{request['id']}/approve",
            json={"step_id": "WF-0001-S1"},
            headers=HEAD,
        )

        assert response.status_code == 400
        assert "not the approver" in response.json()["detail"]

    def test_unknown_request(self, api):
        assert api.get("/api/v1/workflows/WF-9999").status_code == 404

        response = api.post(
            "/api/v1/workflows/WF-9999/approve", json={"step_id": "S1"}, headers=MGR
        )
        assert response.status_code == 404

    def test_reject_requires_reason(self, api):
        request = create_and_submit(api)

        response = api.post(
            f"/api/v1/workflows/{request['id']}/reject",
            json={"step_id": "WF-0001-S1", "reason": ""},
            headers=MGR,
        )
        assert response.status_code == 422

    def test_return_and_cancel(self, api):
        request = create_and_submit(api)
        base = f"/api/v1/workflows/{request['id']}"

        returned = api.post(
            f"{base}/return",
            json={"step_id": "WF-0001-S1", "reason": "Wrong dates"},
            headers=MGR,
        ).json()
        assert returned["status"] == "returned"
        assert returned["return_reason"] == "Wrong dates"

        cancelled = api.post(f"{base}/cancel", json={"reason": "Trip off"}, headers=EMP)
        assert cancelled.json()["status"] == "cancelled"

        again = api.post(f"{base}/cancel", json={"reason": "Again"}, headers=EMP)
        assert again.status_code == 400

    def test_delegate_step(self, api):
        request = create_and_submit(api)

        response = api.post(
            f"/api/v1/workflows/{request['id']}/delegate",
            json={
                "step_id": "WF-0001-S1",
                "delegate_to_id": "gm",
                "delegate_name": "Grace Obi",
                "reason": "Travelling",
            },
            headers=MGR,
        )

        assert response.status_code == 200
        assert response.json()["approval_steps"][0]["approver_id"] == "gm"
        delegated = api.get("/api/v1/workflows/delegated", headers={"X-User-Id": "gm"})
        assert [r["id"] for r in delegated.json()] == [request["id"]]

    def test_listings(self, api):
        submitted = create_and_submit(api)
        api.post("/api/v1/workflows", json={**LEAVE, "title": "Later"}, headers=EMP)

        pending = api.get("/api/v1/workflows", params={"status": "pending"}).json()
        assert [r["id"] for r in pending] == [submitted["id"]]

        mine = api.get("/api/v1/workflows/mine", headers=EMP).json()
        assert len(mine) == 2

        awaiting = api.get("/api/v1/workflows/pending", headers=MGR).json()
        assert [r["id"] for r in awaiting] == [submitted["id"]]

        stats = api.get("/api/v1/workflows/stats", params={"requester_id": "emp"}).json()
        assert stats["total"] == 2
        assert stats["draft"] == 1
        assert stats["pending"] == 1

    def test_bulk_approve(self, api):
        first = create_and_submit(api)
        second = create_and_submit(api)

        response = api.post(
            "/api/v1/workflows/bulk-approve",
            json={"request_ids": [first["id"], second["id"], "WF-9999"]},
            headers=MGR,
        )

        assert response.status_code == 200
        result = response.json()
        assert result["processed"] == [first["id"], second["id"]]
        assert result["skipped"] == ["WF-9999"]

    def test_escalation_endpoints(self, api, clock):
        request = create_and_submit(api)
        base = f"/api/v1/workflows/{request['id']}"

        deadline = (clock.now + timedelta(hours=2)).isoformat()
        updated = api.put(
            f"{base}/escalation-deadline",
            json={"step_id": "WF-0001-S1", "deadline": deadline},
        )
        assert updated.status_code == 200

        assert api.post("/api/v1/workflows/check-escalation").json()["escalated_count"] == 0
        clock.advance(hours=2)
        result = api.post("/api/v1/workflows/check-escalation").json()

        assert result["escalated_requests"] == [request["id"]]
        assert api.get(base).json()["status"] == "escalated"

    def test_audit_trail(self, api):
        request = create_and_submit(api)

        entries = api.get(f"/api/v1/workflows/{request['id']}/audit").json()

        assert [e["action"] for e in entries] == ["create", "submit"]

    def test_delegate_settings(self, api, clock):
        payload = {
            "delegate_to_id": "deputy",
            "delegate_name": "Dana Cruz",
            "start_date": clock.now.isoformat(),
            "end_date": (clock.now + timedelta(days=5)).isoformat(),
        }

        saved = api.put("/api/v1/workflows/delegates/me", json=payload, headers=MGR)
        assert saved.status_code == 200
        assert saved.json()["user_id"] == "mgr"
        assert len(api.get("/api/v1/workflows/delegates").json()) == 1

        invalid = api.put(
            "/api/v1/workflows/delegates/me",
            json={**payload, "delegate_to_id": "mgr"},
            headers=MGR,
        )
        assert invalid.status_code == 400

        assert api.delete("/api/v1/workflows/delegates/me", headers=MGR).status_code == 204
        assert api.delete("/api/v1/workflows/delegates/me", headers=MGR).status_code == 404


class TestApprovalFlowEndpoints:
    """Tests for /approval-flows."""

    PURCHASES = {
        "name": "Purchases",
        "category": "purchase_request",
        "mode": "custom",
        "step_templates": [
            {
                "step_number": 1,
                "name": "Manager",
                "approvers": [{"id": "mgr", "name": "Mark Reyes"}],
            }
        ],
        "conditions": [{"field": "amount", "operator": "gte", "value": 1000}],
    }

    def test_list_and_stats(self, api):
        flows = api.get("/api/v1/approval-flows").json()
        assert [f["name"] for f in flows] == ["Leave approval"]

        stats = api.get("/api/v1/approval-flows/stats").json()
        assert stats["organization"] == 1

    def test_crud(self, api):
        created = api.post("/api/v1/approval-flows", json=self.PURCHASES)
        assert created.status_code == 201
        flow_id = created.json()["id"]

        patched = api.patch(f"/api/v1/approval-flows/{flow_id}", json={"priority": 4})
        assert patched.json()["priority"] == 4

        copy = api.post(f"/api/v1/approval-flows/{flow_id}/duplicate")
        assert copy.status_code == 201
        assert copy.json()["name"] == "Purchases (copy)"

        listed = api.get(
            "/api/v1/approval-flows", params={"category": "purchase_request"}
        ).json()
        assert len(listed) == 2

        assert api.delete(f"/api/v1/approval-flows/{flow_id}").status_code == 204
        assert api.delete(f"/api/v1/approval-flows/{flow_id}").status_code == 404
        assert api.get(f"/api/v1/approval-flows/{flow_id}").status_code == 404

    def test_invalid_custom_flow(self, api):
        response = api.post(
            "/api/v1/approval-flows", json={**self.PURCHASES, "step_templates": []}
        )
        assert response.status_code == 400

    def test_selection_preview(self, api):
        api.post("/api/v1/approval-flows", json=self.PURCHASES)

        matched = api.post(
            "/api/v1/approval-flows/select",
            json={"category": "purchase_request", "request_fields": {"amount": 2500}},
        )
        unmatched = api.post(
            "/api/v1/approval-flows/select",
            json={"category": "purchase_request", "request_fields": {"amount": 10}},
        )

        assert matched.json()["name"] == "Purchases"
        assert unmatched.json() is None

    def test_route_preview(self, api):
        flow_id = api.get("/api/v1/approval-flows").json()[0]["id"]

        route = api.get(
            f"/api/v1/approval-flows/{flow_id}/resolve", params={"requester_id": "emp"}
        ).json()
        assert [s["approvers"][0]["id"] for s in route["steps"]] == ["mgr", "head"]

        degraded = api.get(
            f"/api/v1/approval-flows/{flow_id}/resolve", params={"requester_id": "ghost"}
        ).json()
        assert degraded["degraded"] is True


class TestAuditEndpoints:
    """Tests for /audit."""

    def test_search_and_stats(self, api):
        request = create_and_submit(api)
        api.post(
            f"/api/v1/workflows/{request['id']}/approve",
            json={"step_id": "WF-0001-S1"},
            headers=MGR,
        )

        entries = api.get("/api/v1/audit/entries").json()
        assert [e["action"] for e in entries] == ["approve", "submit", "create"]

        filtered = api.get(
            "/api/v1/audit/entries", params={"action": ["create", "approve"]}
        ).json()
        assert [e["action"] for e in filtered] == ["approve", "create"]

        stats = api.get("/api/v1/audit/stats").json()
        assert stats["total_entries"] == 3
        assert stats["unique_requests"] == 1


class TestStoreOutage:
    """Tests for read endpoints while the request store is down."""

    @pytest.fixture
    def store_down(self, store, monkeypatch):
        failure = AsyncMock(side_effect=PersistenceFailure("database unavailable"))
        monkeypatch.setattr(store, "fetch_requests", failure)
        monkeypatch.setattr(store, "list_delegate_settings", failure)

    @pytest.mark.parametrize(
        "path",
        [
            "/api/v1/workflows/mine",
            "/api/v1/workflows/pending",
            "/api/v1/workflows/delegated",
            "/api/v1/workflows/stats",
        ],
    )
    def test_listing_reports_unavailable(self, api, store_down, path):
        response = api.get(path, headers=EMP)

        assert response.status_code == 503
        assert response.json()["detail"] == "database unavailable"


class TestSeededApp:
    """Tests for the app singletons seeded from configured files."""

    MEMBERS = [
        {"id": "gm", "name": "Grace Obi", "roles": ["general_manager"]},
        {
            "id": "head",
            "name": "Hana Sato",
            "manager_id": "gm",
            "department": "Engineering",
            "roles": ["department_head"],
        },
        {"id": "mgr", "name": "Mark Reyes", "manager_id": "head", "department": "Engineering"},
        {"id": "emp", "name": "Erin Walsh", "manager_id": "mgr", "department": "Engineering"},
    ]
    FLOWS = [
        {
            "name": "Expense approval",
            "category": "expense_claim",
            "mode": "organization",
            "organization_levels": 1,
            "is_default": True,
        }
    ]

    @pytest.fixture
    def seed_files(self, tmp_path, monkeypatch):
        members = tmp_path / "members.json"
        members.write_text(json.dumps(self.MEMBERS), encoding="utf-8")
        flows = tmp_path / "flows.json"
        flows.write_text(json.dumps(self.FLOWS), encoding="utf-8")
        monkeypatch.setenv("ORGANIZATION_MEMBERS_FILE", str(members))
        monkeypatch.setenv("APPROVAL_FLOWS_FILE", str(flows))
        get_settings.cache_clear()
        yield members, flows
        get_settings.cache_clear()

    @pytest.fixture
    def seeded_client(self, seed_files):
        from hrflow.main import create_app

        return TestClient(create_app())

    def test_organization_flow_names_approvers(self, seeded_client):
        flows = seeded_client.get("/api/v1/approval-flows").json()
        assert [f["name"] for f in flows] == ["Expense approval"]

        created = seeded_client.post(
            "/api/v1/approval-flows",
            json={
                "name": "Leave approval",
                "category": "leave_request",
                "mode": "organization",
                "organization_levels": 2,
                "is_default": True,
            },
        )
        assert created.status_code == 201

        response = seeded_client.post("/api/v1/workflows", json=LEAVE, headers=EMP)

        assert response.status_code == 201
        request = response.json()
        assert request["action_required"] is False
        assert [s["approver_id"] for s in request["approval_steps"]] == ["mgr", "head"]
        assert request["approval_steps"][0]["approver_name"] == "Mark Reyes"

        submitted = seeded_client.post(
            f"/api/v1/workflows/{request['id']}/submit", headers=EMP
        )
        assert submitted.json()["status"] == "pending"

    def test_malformed_members_file(self, seed_files):
        members, _ = seed_files
        members.write_text(json.dumps({"id": "emp"}), encoding="utf-8")

        with pytest.raises(ValueError, match="must hold a JSON list"):
            get_organization_directory()

    def test_missing_seed_files_start_empty(self, seed_files):
        members, flows = seed_files
        members.unlink()
        flows.unlink()

        assert get_organization_directory().is_empty()
        assert get_flow_catalog().list_flows() == []
