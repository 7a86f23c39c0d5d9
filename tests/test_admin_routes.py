"""
tests/test_admin_routes.py -- Integration tests for /api/v1/admin routes.

Coverage:
  - Role gate: USER 403, MODERATOR read-only, ADMIN full access
  - PATCH role/status through the state machine guards [M4]
  - DELETE with self-guard and audit trail
  - GET detail includes the 10 most recent audit entries, newest first
  - Stats counters
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.models import AuditAction, Role
from conftest import auth_headers


def _verified_user(client: TestClient, email: str) -> tuple[str, str]:
    """Register + verify an account over HTTP; return (account_id, bearer token)."""
    reg = client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": "user-password-1", "accept_terms": True},
    ).json()
    client.post("/api/v1/auth/verify", json={"email": email, "code": reg["verification_code"]})
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": "user-password-1"})
    client.cookies.clear()
    return reg["user"]["id"], resp.json()["access_token"]


class TestRoleGate:
    def test_unauthenticated_is_401(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/admin/users").status_code == 401

    def test_user_is_403(self, api_client) -> None:
        client, _, _ = api_client
        _, token = _verified_user(client, "user@example.com")
        resp = client.get("/api/v1/admin/users", headers=auth_headers(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_moderator_can_read_but_not_write(self, api_client) -> None:
        client, _, _ = api_client
        mod_id, mod_token = _verified_user(client, "mod@example.com")
        target_id, _ = _verified_user(client, "target@example.com")
        client.app.state.store.update_account(mod_id, role=Role.MODERATOR)
        headers = auth_headers(mod_token)

        assert client.get("/api/v1/admin/users", headers=headers).status_code == 200
        assert client.get(f"/api/v1/admin/users/{target_id}", headers=headers).status_code == 200
        assert client.get("/api/v1/admin/stats", headers=headers).status_code == 200
        assert client.patch(f"/api/v1/admin/users/{target_id}", json={"status": "SUSPENDED"}, headers=headers).status_code == 403
        assert client.delete(f"/api/v1/admin/users/{target_id}", headers=headers).status_code == 403

    def test_role_is_read_from_store_not_token(self, api_client) -> None:
        client, admin_token, _ = api_client
        user_id, user_token = _verified_user(client, "user@example.com")
        client.patch(f"/api/v1/admin/users/{user_id}", json={"role": "ADMIN"}, headers=auth_headers(admin_token))
        # Token still says USER; the store says ADMIN.
        assert client.get("/api/v1/admin/users", headers=auth_headers(user_token)).status_code == 200


class TestAdminUsers:
    def test_list_newest_first(self, api_client) -> None:
        client, token, admin_id = api_client
        user_id, _ = _verified_user(client, "user@example.com")
        resp = client.get("/api/v1/admin/users", headers=auth_headers(token))
        assert resp.status_code == 200
        ids = [u["id"] for u in resp.json()]
        assert set(ids) == {admin_id, user_id}

    def test_detail_includes_recent_activity(self, api_client) -> None:
        client, token, _ = api_client
        user_id, _ = _verified_user(client, "user@example.com")
        for _ in range(12):
            client.post("/api/v1/auth/login", json={"email": "user@example.com", "password": "wrong-password"})

        resp = client.get(f"/api/v1/admin/users/{user_id}", headers=auth_headers(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["email"] == "user@example.com"
        activity = data["recent_activity"]
        assert len(activity) == 10
        assert all(entry["action"] == AuditAction.LOGIN.value for entry in activity)
        assert activity[0]["outcome"] == "failure"
        assert activity[0]["id"] > activity[-1]["id"]

    def test_detail_unknown_is_404(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.get("/api/v1/admin/users/missing", headers=auth_headers(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_suspend_blocks_login(self, api_client) -> None:
        client, token, admin_id = api_client
        user_id, _ = _verified_user(client, "user@example.com")
        resp = client.patch(
            f"/api/v1/admin/users/{user_id}", json={"status": "SUSPENDED"}, headers=auth_headers(token)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "SUSPENDED"

        login = client.post("/api/v1/auth/login", json={"email": "user@example.com", "password": "user-password-1"})
        assert login.status_code == 403

        event = [
            e for e in client.app.state.store.list_audit(account_id=user_id) if e.action == AuditAction.USER_UPDATED
        ][-1]
        assert event.account_id == admin_id

    def test_activating_unverified_is_400(self, api_client) -> None:
        client, token, _ = api_client
        reg = client.post(
            "/api/v1/auth/register",
            json={"email": "pending@example.com", "password": "user-password-1", "accept_terms": True},
        ).json()
        resp = client.patch(
            f"/api/v1/admin/users/{reg['user']['id']}", json={"status": "ACTIVE"}, headers=auth_headers(token)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_status_transition"

    def test_self_suspend_is_403(self, api_client) -> None:
        client, token, admin_id = api_client
        resp = client.patch(f"/api/v1/admin/users/{admin_id}", json={"status": "SUSPENDED"}, headers=auth_headers(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "self_status_change"
        assert client.get("/api/v1/auth/me", headers=auth_headers(token)).json()["status"] == "ACTIVE"

    def test_self_demote_is_403(self, api_client) -> None:
        client, token, admin_id = api_client
        resp = client.patch(f"/api/v1/admin/users/{admin_id}", json={"role": "USER"}, headers=auth_headers(token))
        assert resp.status_code == 403

    def test_invalid_role_is_422(self, api_client) -> None:
        client, token, _ = api_client
        user_id, _ = _verified_user(client, "user@example.com")
        resp = client.patch(f"/api/v1/admin/users/{user_id}", json={"role": "ROOT"}, headers=auth_headers(token))
        assert resp.status_code == 422

    def test_empty_patch_is_400(self, api_client) -> None:
        client, token, _ = api_client
        user_id, _ = _verified_user(client, "user@example.com")
        resp = client.patch(f"/api/v1/admin/users/{user_id}", json={}, headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_input"


class TestAdminDelete:
    def test_delete(self, api_client) -> None:
        client, token, admin_id = api_client
        user_id, user_token = _verified_user(client, "user@example.com")
        resp = client.delete(f"/api/v1/admin/users/{user_id}", headers=auth_headers(token))
        assert resp.status_code == 204
        assert client.get(f"/api/v1/admin/users/{user_id}", headers=auth_headers(token)).status_code == 404
        assert client.get("/api/v1/auth/me", headers=auth_headers(user_token)).status_code == 401

        deleted = client.app.state.store.list_audit(account_id=user_id)[-1]
        assert deleted.action == AuditAction.USER_DELETED
        assert deleted.account_id == admin_id

    def test_self_delete_is_403(self, api_client) -> None:
        client, token, admin_id = api_client
        resp = client.delete(f"/api/v1/admin/users/{admin_id}", headers=auth_headers(token))
        assert resp.status_code == 403
        assert client.get("/api/v1/auth/me", headers=auth_headers(token)).status_code == 200

    def test_delete_unknown_is_404(self, api_client) -> None:
        client, token, _ = api_client
        assert client.delete("/api/v1/admin/users/missing", headers=auth_headers(token)).status_code == 404


class TestStats:
    def test_stats_counts(self, api_client) -> None:
        client, token, _ = api_client
        user_id, _ = _verified_user(client, "user@example.com")
        client.post(
            "/api/v1/auth/register",
            json={"email": "pending@example.com", "password": "user-password-1", "accept_terms": True},
        )
        client.patch(f"/api/v1/admin/users/{user_id}", json={"status": "SUSPENDED"}, headers=auth_headers(token))

        resp = client.get("/api/v1/admin/stats", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json() == {
            "total_users": 3,
            "active_users": 1,
            "suspended_users": 1,
            "admin_count": 1,
            "recent_users": 3,
        }
