"""
Tests for the HTTP surface.
"""

import json

from fastapi.testclient import TestClient

from adminbase.db.models import AuditLog, SystemSetting


class TestAuthEndpoints:
    """Test authentication-related API endpoints."""

    def test_register_success(self, client: TestClient):
        """Test successful user registration."""
        response = client.post(
            "/auth/register",
            json={"username": "newuser", "email": "newuser@example.com", "password": "securepass123"},
        )
        assert response.status_code == 201
        user = response.json()["user"]
        assert user["username"] == "newuser"
        assert user["role"] == "client"
        assert "password_hash" not in user

    def test_register_duplicate(self, client: TestClient, test_user):
        """Test registration with an existing username fails."""
        response = client.post(
            "/auth/register",
            json={"username": "alice", "email": "other@example.com", "password": "securepass123"},
        )
        assert response.status_code == 409

    def test_login_success(self, client: TestClient, test_user):
        """Test successful login."""
        response = client.post("/auth/login", json={"identifier": "alice", "password": "testpass123"})
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"] and data["refresh_token"]
        assert data["user"]["id"] == test_user.id

    def test_login_failures_are_uniform(self, client: TestClient, test_user):
        """Test wrong password and unknown user return the same response."""
        wrong = client.post("/auth/login", json={"identifier": "alice", "password": "wrongpassword"})
        unknown = client.post("/auth/login", json={"identifier": "ghost", "password": "wrongpassword"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_deactivated_login_matches_wrong_password(self, client: TestClient, db, test_user):
        """Test a deactivated account is refused like any bad credential."""
        test_user.is_active = False
        test_user.save()
        blocked = client.post("/auth/login", json={"identifier": "alice", "password": "testpass123"})
        wrong = client.post("/auth/login", json={"identifier": "alice", "password": "wrongpassword"})
        assert blocked.status_code == wrong.status_code == 401
        assert blocked.json() == wrong.json()

    def test_me_requires_token(self, client: TestClient):
        """Test protected endpoints reject missing tokens."""
        response = client.get("/auth/me")
        assert response.status_code == 401

    def test_me(self, client: TestClient, user_headers):
        response = client.get("/auth/me", headers=user_headers)
        assert response.status_code == 200
        assert response.json()["username"] == "alice"

    def test_logout_ends_session(self, client: TestClient, user_headers):
        """Test the token stops working after logout."""
        assert client.post("/auth/logout", headers=user_headers).json() == {"logged_out": True}
        assert client.get("/auth/me", headers=user_headers).status_code == 401
        assert client.post("/auth/logout", headers=user_headers).json() == {"logged_out": False}

    def test_refresh_rotation(self, client: TestClient, test_user):
        login = client.post("/auth/login", json={"identifier": "alice", "password": "testpass123"}).json()

        rotated = client.post("/auth/refresh", json={"refresh_token": login["refresh_token"]})
        assert rotated.status_code == 200
        replay = client.post("/auth/refresh", json={"refresh_token": login["refresh_token"]})
        assert replay.status_code == 401

        headers = {"Authorization": f"Bearer {rotated.json()['access_token']}"}
        assert client.get("/auth/me", headers=headers).status_code == 200

    def test_security_headers(self, client: TestClient):
        response = client.get("/")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestAdminEndpoints:
    """Test admin API endpoints."""

    def test_admin_routes_require_admin(self, client: TestClient, user_headers):
        """Test non-admin users are refused."""
        assert client.get("/admin/sessions", headers=user_headers).status_code == 403
        assert client.get("/admin/audit-logs", headers=user_headers).status_code == 403

    def test_deactivate_user_is_audited_and_ends_sessions(self, client: TestClient, db, admin_headers, user_headers, test_user, test_admin):
        """Test deactivation is attributed to the admin and logs the user out."""
        response = client.patch(f"/admin/users/{test_user.id}", headers=admin_headers, json={"is_active": False})
        assert response.status_code == 200
        assert not response.json()["is_active"]

        assert client.get("/auth/me", headers=user_headers).status_code == 401

        entry = (
            AuditLog.query(db)
            .where("resource_type", "users")
            .where("resource_id", str(test_user.id))
            .where("action", "update")
            .first()
        )
        assert entry.user_id == test_admin.id
        changes = json.loads(entry.changes)
        assert changes["is_active"]["to"] is False
        metadata = json.loads(entry.metadata)
        assert metadata["method"] == "PATCH"
        assert metadata["path"] == f"/admin/users/{test_user.id}"
        assert metadata["actor_role"] == "admin"

    def test_update_missing_user(self, client: TestClient, admin_headers):
        response = client.patch("/admin/users/9999", headers=admin_headers, json={"display_name": "x"})
        assert response.status_code == 404

    def test_audit_log_listing(self, client: TestClient, admin_headers, test_user):
        client.patch(f"/admin/users/{test_user.id}", headers=admin_headers, json={"display_name": "Alice A."})

        listing = client.get("/admin/audit-logs", headers=admin_headers, params={"resource_type": "users"})
        assert listing.status_code == 200
        assert any(log["changes"].get("display_name") for log in listing.json())

        history = client.get(f"/admin/audit-logs/users/{test_user.id}", headers=admin_headers)
        assert history.status_code == 200
        assert history.json()[0]["resource_id"] == str(test_user.id)

    def test_sessions_listing_has_no_token_material(self, client: TestClient, admin_headers):
        data = client.get("/admin/sessions", headers=admin_headers).json()
        assert len(data["sessions"]) == 1
        assert "token_hash" not in data["sessions"][0]
        assert "token_hash" not in data["refresh_tokens"][0]

    def test_settings_roundtrip(self, client: TestClient, db, admin_headers):
        response = client.put("/admin/settings/enable_ip_check", headers=admin_headers, json={"value": "0"})
        assert response.status_code == 200
        assert client.get("/admin/settings/enable_ip_check", headers=admin_headers).json() == {
            "name": "enable_ip_check",
            "value": "0",
        }
        assert SystemSetting.get_bool(db, "enable_ip_check", True) is False
