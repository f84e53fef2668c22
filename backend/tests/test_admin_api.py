from unittest.mock import AsyncMock

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError, ProgrammingError

from app.dependencies import get_authorization_runtime, get_current_identity
from app.main import app
from app.services.authz import runtime as authz_runtime
from tests.authz_helpers import FakeRoleStore, FakeRoleStoreBackend, make_runtime, store_error


async def _identity_from_header(request: Request) -> str:
    identity = request.headers.get("x-test-identity")
    if identity:
        request.state.identity = identity
    return await get_current_identity(request)


@pytest.fixture
def api_backend() -> FakeRoleStoreBackend:
    backend = FakeRoleStoreBackend()
    backend.seed("root", "super_admin")
    backend.seed("mod", "moderator", ["favorites.manage"])
    return backend


@pytest.fixture
def client(api_backend: FakeRoleStoreBackend):
    runtime = make_runtime(api_backend)
    app.dependency_overrides[get_current_identity] = _identity_from_header
    app.dependency_overrides[get_authorization_runtime] = lambda: runtime
    # No context manager: the lifespan would connect to Postgres
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(identity: str) -> dict[str, str]:
    return {"X-Test-Identity": identity}


def test_missing_identity_is_401(client: TestClient) -> None:
    response = client.get("/admin/me/permissions")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_ERROR"


def test_my_permissions_is_advisory_projection(client: TestClient) -> None:
    response = client.get("/admin/me/permissions", headers=_as("mod"))

    assert response.status_code == 200
    body = response.json()
    assert body["identity"] == "mod"
    assert body["tier"] == "moderator"
    assert body["is_admin"] is False
    assert body["permissions"] == ["dashboard.view", "favorites.manage"]


def test_identity_without_grant_gets_empty_projection(client: TestClient) -> None:
    body = client.get("/admin/me/permissions", headers=_as("stranger")).json()

    assert body["tier"] is None
    assert body["permissions"] == []


def test_moderator_is_forbidden_from_grant_listing(client: TestClient) -> None:
    response = client.get("/admin/roles", headers=_as("mod"))

    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "PERMISSION_DENIED"
    assert error["details"] == {"required": "admins.view", "reason": "forbidden"}


def test_store_outage_is_503_with_retry_after(client: TestClient, api_backend) -> None:
    api_backend.read_error = store_error()

    response = client.get("/admin/roles", headers=_as("root"))

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"


def test_missing_tables_surface_as_store_unavailable(client: TestClient, api_backend) -> None:
    api_backend.read_error = ProgrammingError(
        "SELECT admin_grants", {}, Exception("relation \"admin_grants\" does not exist")
    )

    response = client.get("/admin/roles", headers=_as("root"))

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"


def test_grant_lifecycle(client: TestClient, api_backend) -> None:
    created = client.post(
        "/admin/roles",
        headers=_as("root"),
        json={
            "identity": "u2",
            "tier": "admin",
            "permissions": ["users.edit", "admins.view"],
            "ip_allow_list": ["10.0.0.1"],
            "reason": "onboarding",
        },
    )
    assert created.status_code == 201
    assert created.json()["ip_allow_list"] == ["10.0.0.1/32"]
    assert created.json()["explicit_permissions"] == ["admins.view", "users.edit"]

    updated = client.put(
        "/admin/roles/u2",
        headers=_as("root"),
        json={"ip_allow_list": None, "reason": "remote work"},
    )
    assert updated.status_code == 200
    assert updated.json()["ip_allow_list"] == []
    assert updated.json()["updated_by"] == "root"

    own = client.get("/admin/roles/u2", headers=_as("u2"))
    assert own.status_code == 200
    assert own.json()["tier"] == "admin"

    listing = client.get("/admin/roles", headers=_as("u2"))
    assert {grant["identity"] for grant in listing.json()} == {"root", "mod", "u2"}

    revoked = client.request(
        "DELETE", "/admin/roles/u2", headers=_as("root"), json={"reason": "offboarding"}
    )
    assert revoked.status_code == 200
    assert revoked.json()["identity"] == "u2"

    missing = client.get("/admin/roles/u2", headers=_as("root"))
    assert missing.status_code == 404

    audit = client.get("/admin/audit", headers=_as("root"), params={"target_identity": "u2"})
    assert [record["action"] for record in audit.json()] == ["revoke", "update", "create"]
    assert audit.json()[0]["reason"] == "offboarding"


def test_other_grant_requires_admins_view(client: TestClient) -> None:
    response = client.get("/admin/roles/root", headers=_as("mod"))

    assert response.status_code == 403


def test_admin_cannot_modify_super_admin(client: TestClient, api_backend) -> None:
    api_backend.seed("u2", "admin", ["admins.view"])

    response = client.put("/admin/roles/root", headers=_as("u2"), json={"active": False})

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "TARGET_PROTECTED"
    assert api_backend.audit == []


def test_invalid_permission_set_is_400(client: TestClient, api_backend) -> None:
    response = client.post(
        "/admin/roles",
        headers=_as("root"),
        json={"identity": "u2", "tier": "moderator", "permissions": ["admins.create"]},
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_PERMISSION_SET"
    assert len(error["details"]) == 1
    assert [row.identity for row in api_backend.grants] == ["root", "mod"]


def test_duplicate_grant_is_409(client: TestClient) -> None:
    response = client.post(
        "/admin/roles", headers=_as("root"), json={"identity": "mod", "tier": "admin"}
    )

    assert response.status_code == 409


def test_concurrent_insert_of_same_identity_is_409(client: TestClient, monkeypatch) -> None:
    unique_violation = IntegrityError("INSERT INTO admin_grants", {}, Exception("duplicate key"))
    monkeypatch.setattr(FakeRoleStore, "add_grant", AsyncMock(side_effect=unique_violation))

    response = client.post(
        "/admin/roles", headers=_as("root"), json={"identity": "u2", "tier": "admin"}
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT_ERROR"


@pytest.mark.parametrize(
    "payload",
    [
        {"identity": "u2", "tier": "owner"},
        {"identity": "u2", "tier": "admin", "ip_allow_list": ["not-a-network"]},
        {"identity": "u2", "tier": "admin", "expires_at": "2030-01-01T00:00:00"},
    ],
)
def test_malformed_body_is_422(client: TestClient, payload) -> None:
    response = client.post("/admin/roles", headers=_as("root"), json=payload)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_audit_requires_view_logs(client: TestClient, api_backend) -> None:
    api_backend.seed("u2", "admin")

    assert client.get("/admin/audit", headers=_as("u2")).status_code == 403
    assert client.get("/admin/audit", headers=_as("root")).status_code == 200


def test_audit_date_filters_must_carry_timezone(client: TestClient) -> None:
    naive = client.get(
        "/admin/audit", headers=_as("root"), params={"from_date": "2026-01-01T00:00:00"}
    )
    assert naive.status_code == 422
    assert naive.json()["error"]["code"] == "VALIDATION_ERROR"

    aware = client.get(
        "/admin/audit",
        headers=_as("root"),
        params={"from_date": "2026-01-01T00:00:00Z", "to_date": "2026-01-02T00:00:00+02:00"},
    )
    assert aware.status_code == 200
    assert aware.json() == []


def test_cache_endpoints_are_super_admin_only(client: TestClient) -> None:
    client.get("/admin/me/permissions", headers=_as("mod"))

    assert client.get("/admin/cache/stats", headers=_as("mod")).status_code == 403

    stats = client.get("/admin/cache/stats", headers=_as("root"))
    assert stats.status_code == 200
    assert stats.json()["total"] >= 1

    flushed = client.post("/admin/cache/flush", headers=_as("root"))
    assert flushed.json() == {"status": "flushed"}
    # The guard check for this request repopulates root's entry
    assert client.get("/admin/cache/stats", headers=_as("root")).json()["total"] == 1


def test_permission_registry_listing(client: TestClient) -> None:
    body = client.get("/admin/permissions", headers=_as("root")).json()

    assert body["legacy_map_version"] == 1
    assert set(body["tiers"]) == {"moderator", "admin", "super_admin"}
    keys = {key for category in body["categories"] for key in category["permissions"]}
    assert "favorites.manage" in keys


def test_health_reports_runtime_state() -> None:
    authz_runtime._reset_for_testing()
    client = TestClient(app)

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json() == {"status": "error"}
