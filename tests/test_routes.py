import pytest
from fastapi.testclient import TestClient

from conftest import FakeBackend, make_record, make_token
from fleetdesk.api import deps
from fleetdesk.core.errors import AuthExpired
from fleetdesk.main import app
from fleetdesk.schemas.access import FieldSetting
from fleetdesk.services.approval_workflow import WorkflowRegistry

USERS = {
    "editor-1": {"role": "editor", "organization": "Org A", "organizations": ["Org A"]},
    "viewer-1": {"role": "user", "organization": "Org A"},
    "multi-1": {"role": "editor", "organizations": ["X", "Y"]},
    "admin-1": {"role": "admin"},
    "member-1": {"role": "user", "organization": "Org B", "organizations": ["Org C", "Org A"]},
}


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(
        [make_record("a"), make_record("b", organization="Org B"), make_record("c", waarde=0)],
        users=USERS,
        configs={
            "Org A": {"waarde": FieldSetting(visible=True, required=True)},
            "X": {"notitie": FieldSetting(visible=False)},
            "Y": {"notitie": FieldSetting(visible=True)},
        },
    )


@pytest.fixture
def client(backend):
    registry = WorkflowRegistry()
    app.dependency_overrides[deps.get_backend_client] = lambda: backend
    app.dependency_overrides[deps.get_workflow_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(subject_id: str = "editor-1") -> dict:
    return {"Authorization": f"Bearer {make_token(subject_id)}"}


def test_health_live_is_enveloped(client):
    response = client.get("/api/v1/health/live", headers={"X-Request-ID": "req-42"})
    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "ok"
    assert body["data"]["status"] == "ok"
    assert body["details"] == {}
    assert response.headers["x-request-id"] == "req-42"


def test_pending_requires_a_session(client):
    response = client.get("/api/v1/pending")
    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "unauthorized"
    assert body["data"] is None
    assert body["details"]["dismiss_after_seconds"] == 8


def test_malformed_token_is_unauthorized(client):
    response = client.get("/api/v1/pending", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_pending_requires_update_permission(client):
    response = client.get("/api/v1/pending", headers=_auth("viewer-1"))
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


def test_pending_overview_is_scoped_to_the_operator(client):
    response = client.get("/api/v1/pending", headers=_auth())
    assert response.status_code == 200
    data = response.json()["data"]

    assert sorted(item["object"]["id"] for item in data["items"]) == ["a", "c"]
    assert data["stats"]["total"] == 2
    assert data["field_config"] == {"waarde": {"visible": True, "required": True}}


def test_admin_sees_every_organization_unrestricted(client):
    data = client.get("/api/v1/pending", headers=_auth("admin-1")).json()["data"]
    assert len(data["items"]) == 3
    assert data["field_config"] is None


def test_approve_route(client, backend):
    response = client.post("/api/v1/pending/a/approve", headers=_auth())
    assert response.status_code == 200
    assert response.json()["details"] == {"dismiss_after_seconds": 5}
    data = response.json()["data"]
    assert data["status"] == "Approved"
    assert data["dismiss_after_seconds"] == 5
    assert backend.mutations() == [("approve_object", "a", None)]


def test_approve_blocked_object_is_unprocessable(client, backend):
    response = client.post("/api/v1/pending/c/approve", headers=_auth())
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "approval_blocked"
    assert body["details"]["violations"][0]["code"] == "premium_zero"
    assert backend.mutations() == []


def test_object_of_other_organization_is_not_found(client):
    response = client.post("/api/v1/pending/b/approve", headers=_auth())
    assert response.status_code == 404


def test_decline_without_reason_is_rejected(client, backend):
    response = client.post("/api/v1/pending/a/decline", headers=_auth(), json={"reason": "   "})
    assert response.status_code == 422
    assert response.json()["code"] == "reason_required"
    assert backend.mutations() == []


def test_bulk_decline_is_refused(client):
    response = client.post("/api/v1/pending/bulk-decline", headers=_auth(), json={"object_ids": ["a"]})
    assert response.status_code == 400
    assert response.json()["code"] == "bulk_decline_unsupported"


def test_selection_then_bulk_approve(client, backend):
    client.get("/api/v1/pending", headers=_auth())
    selected = client.post(
        "/api/v1/pending/selection",
        headers=_auth(),
        json={"action": "select_all"},
    ).json()["data"]["selected_ids"]
    assert sorted(selected) == ["a", "c"]

    data = client.post("/api/v1/pending/bulk-approve", headers=_auth(), json={}).json()["data"]
    assert data["succeeded"] == ["a"]
    assert [failure["object_id"] for failure in data["failed"]] == ["c"]


def test_toggle_without_object_id_is_rejected(client):
    response = client.post("/api/v1/pending/selection", headers=_auth(), json={"action": "toggle"})
    assert response.status_code == 422
    assert response.json()["code"] == "object_id_required"


def test_expired_session_surfaces_as_session_expired(client, backend):
    backend.list_error = AuthExpired()
    response = client.get("/api/v1/pending", headers=_auth())
    assert response.status_code == 403
    assert response.json()["code"] == "session_expired"


def test_rejection_audit_route(client, backend):
    backend.records = [
        make_record("r", status="Rejected", rejectionAudit={"reason": "Te hoge waarde", "rulesEvaluated": []})
    ]
    response = client.get("/api/v1/pending/r/rejection-audit", headers=_auth())
    assert response.status_code == 200
    assert response.json()["data"]["lines"] == [{"kind": "reason", "text": "Te hoge waarde", "passed": None}]


def test_premium_preview_route(client):
    response = client.post(
        "/api/v1/premiums/preview",
        headers=_auth(),
        json={
            "base_value": "10000",
            "premium": {"method": "percentage", "percentage": "5"},
            "own_risk": {"method": "fixed", "fixed_amount": "137"},
        },
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["premium"] == "50.00"
    assert data["own_risk"] == "150"
    assert data["approvable"] is True


def test_field_config_merges_memberships(client):
    response = client.get("/api/v1/access/field-config", headers=_auth("multi-1"))
    data = response.json()["data"]
    assert data["scope"] == {"kind": "all_memberships"}
    assert data["unrestricted"] is False
    assert data["fields"] == {"notitie": {"visible": True, "required": False}}


def test_field_config_for_foreign_organization_is_unrestricted(client):
    response = client.get("/api/v1/access/field-config", params={"organization": "Z"}, headers=_auth("multi-1"))
    data = response.json()["data"]
    assert data["unrestricted"] is True
    assert data["fields"] == {}


def test_organization_access_route(client):
    data = client.get("/api/v1/access/organizations/Org B", headers=_auth()).json()["data"]
    assert data == {"organization": "Org B", "accessible": False}


def test_openapi_schema_is_not_enveloped(client):
    body = client.get("/openapi.json").json()
    assert "openapi" in body
    assert "code" not in body


def test_me_lists_primary_organization_first(client):
    data = client.get("/api/v1/access/me", headers=_auth("member-1")).json()["data"]
    assert data["primary_organization"] == "Org B"
    assert data["organizations"] == ["Org B", "Org A", "Org C"]


def test_premium_preview_with_period_and_long_percentage(client):
    response = client.post(
        "/api/v1/premiums/preview",
        headers=_auth(),
        json={
            "base_value": "10000",
            "premium": {"method": "percentage", "percentage": "2.12345"},
            "own_risk": {"method": "fixed", "fixed_amount": "250"},
            "insurance_start_date": "2026-01-01",
            "insurance_end_date": "2026-07-02",
        },
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["premium_config"]["percentage"] == "2.123"
    assert data["premium"] == "21.23"
    assert data["insured_days"] == 182
    assert data["period_premium"] == "10.59"


def test_overview_reports_missing_fields_and_status_totals(client, backend):
    backend.records.append(make_record("d", status="Rejected", waarde=5000))
    data = client.get("/api/v1/pending", headers=_auth()).json()["data"]
    items = {item["object"]["id"]: item for item in data["items"]}

    assert items["c"]["missing_fields"] == ["waarde"]
    assert items["a"]["missing_fields"] == []
    assert items["d"]["editable"] is False
    assert data["stats"]["rejected_count"] == 1
    assert data["stats"]["total_value"] == "20000"


def test_expired_directory_session_drops_review_state(backend):
    registry = WorkflowRegistry()
    app.dependency_overrides[deps.get_backend_client] = lambda: backend
    app.dependency_overrides[deps.get_workflow_registry] = lambda: registry
    try:
        client = TestClient(app)
        assert client.get("/api/v1/pending", headers=_auth()).status_code == 200
        assert len(registry) == 1

        backend.user_failures["editor-1"] = AuthExpired()
        response = client.get("/api/v1/pending", headers=_auth())
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403
    assert response.json()["code"] == "session_expired"
    assert len(registry) == 0
