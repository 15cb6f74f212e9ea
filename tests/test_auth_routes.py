"""
Tests for the session lifecycle over HTTP.

register → login → refresh (rotating) → logout, plus /verify.
"""

import bcrypt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from conftest import PASSWORD, RecordingSmsSender, bearer, make_settings
from leasepilot.api.app import create_app
from leasepilot.config import DEV_JWT_SECRET
from leasepilot.storage.schema import users


# =============================================================================
# Register / Login
# =============================================================================


class TestRegister:
    def test_creates_manager_and_starts_session(self, client):
        response = client.post(
            "/api/auth/register",
            json={"email": "Owner@Example.com", "password": PASSWORD, "name": " Owner "},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["user"]["email"] == "owner@example.com"
        assert body["user"]["name"] == "Owner"
        assert body["user"]["role"] == "manager"
        assert "password_hash" not in body["user"]
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 15 * 60
        assert response.cookies.get("access_token") == body["access_token"]
        assert response.cookies.get("refresh_token") == body["refresh_token"]

    def test_duplicate_email_any_case(self, client, register_manager):
        register_manager("owner@example.com")

        response = client.post(
            "/api/auth/register",
            json={"email": "OWNER@example.com", "password": PASSWORD, "name": "Again"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "An account with this email already exists"

    @pytest.mark.parametrize(
        "password, reason",
        [
            ("Sh0rt", "at least 8 characters"),
            ("lettersonly", "one letter and one digit"),
            ("12345678", "one letter and one digit"),
            ("a1" * 40, "at most 72 bytes"),
        ],
    )
    def test_weak_passwords(self, client, password, reason):
        response = client.post(
            "/api/auth/register",
            json={"email": "owner@example.com", "password": password, "name": "Owner"},
        )

        assert response.status_code == 400
        assert reason in response.json()["detail"]

    def test_invalid_email_is_a_validation_error(self, client):
        response = client.post(
            "/api/auth/register",
            json={"email": "not-an-email", "password": PASSWORD, "name": "Owner"},
        )

        assert response.status_code == 422


class TestLogin:
    def test_login_case_insensitive(self, client, register_manager):
        registered = register_manager("owner@example.com")

        response = client.post("/api/auth/login", json={"email": "OWNER@EXAMPLE.COM", "password": PASSWORD})

        assert response.status_code == 200
        assert response.json()["user"]["id"] == registered["user"]["id"]

    def test_wrong_password_and_unknown_email_look_the_same(self, client, register_manager):
        register_manager("owner@example.com")

        wrong = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "Wrong1234"})
        unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"detail": "Invalid email or password"}

    def test_unknown_email_still_checks_a_hash(self, client, register_manager, monkeypatch):
        register_manager("owner@example.com")
        calls = []
        checkpw = bcrypt.checkpw

        def counting_checkpw(password, hashed):
            calls.append(hashed)
            return checkpw(password, hashed)

        monkeypatch.setattr(bcrypt, "checkpw", counting_checkpw)

        client.post("/api/auth/login", json={"email": "owner@example.com", "password": "Wrong1234"})
        known = len(calls)
        client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "Wrong1234"})

        assert known == 1
        assert len(calls) == 2

    def test_demo_login_reuses_account(self, client):
        first = client.post("/api/auth/demo")
        second = client.post("/api/auth/demo")

        assert first.status_code == second.status_code == 200
        assert first.json()["user"]["name"] == "Demo Manager"
        assert first.json()["user"]["id"] == second.json()["user"]["id"]


# =============================================================================
# Refresh / Logout
# =============================================================================


class TestRefresh:
    def test_rotation_via_body(self, client, register_manager):
        session = register_manager()

        rotated = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})
        client.cookies.clear()
        replayed = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})

        assert rotated.status_code == 200
        assert rotated.json()["refresh_token"] != session["refresh_token"]
        assert replayed.status_code == 401

    def test_rotation_via_cookie(self, client):
        client.post(
            "/api/auth/register",
            json={"email": "owner@example.com", "password": PASSWORD, "name": "Owner"},
        )

        response = client.post("/api/auth/refresh")

        assert response.status_code == 200
        assert response.cookies.get("refresh_token") == response.json()["refresh_token"]

    def test_new_access_token_works(self, client, register_manager):
        session = register_manager()

        rotated = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]}).json()
        client.cookies.clear()

        assert client.get("/api/auth/verify", headers=bearer(rotated["access_token"])).status_code == 200

    def test_missing_token(self, client):
        response = client.post("/api/auth/refresh")

        assert response.status_code == 401
        # Dead session cookies are cleared on the error response.
        assert "refresh_token=" in response.headers.get("set-cookie", "")


class TestLogout:
    def test_logout_revokes_refresh_token(self, client, register_manager):
        session = register_manager()

        response = client.post("/api/auth/logout", json={"refresh_token": session["refresh_token"]})
        refreshed = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert refreshed.status_code == 401

    def test_logout_is_idempotent(self, client):
        assert client.post("/api/auth/logout").json() == {"ok": True}
        assert client.post("/api/auth/logout", json={"refresh_token": "unknown"}).json() == {"ok": True}


# =============================================================================
# Verify
# =============================================================================


class TestVerify:
    def test_manager(self, client, register_manager):
        session = register_manager()

        response = client.get("/api/auth/verify", headers=session["headers"])

        assert response.status_code == 200
        body = response.json()
        assert body["user"]["email"] == "owner@example.com"
        assert body["scope"]["kind"] == "owner"
        assert body["scope"]["value"] == session["user"]["id"]
        assert body["permissions"]["can_manage_properties"] is True

    def test_cookie_session(self, client):
        client.post(
            "/api/auth/register",
            json={"email": "owner@example.com", "password": PASSWORD, "name": "Owner"},
        )

        assert client.get("/api/auth/verify").status_code == 200

    def test_unauthenticated(self, client):
        response = client.get("/api/auth/verify")

        assert response.status_code == 401
        assert response.json() == {"detail": "Not authenticated"}
        assert response.headers["www-authenticate"] == "Bearer"


# =============================================================================
# Production
# =============================================================================


class TestProduction:
    def _client(self, tmp_path, database, **overrides):
        settings = make_settings(tmp_path, environment="production", **overrides)
        return TestClient(create_app(settings=settings, database=database, sms_sender=RecordingSmsSender()))

    def test_demo_is_hidden(self, tmp_path, database):
        client = self._client(tmp_path, database)

        assert client.post("/api/auth/demo").status_code == 404

    def test_dev_signing_key_fails_closed(self, tmp_path, database):
        client = self._client(tmp_path, database, jwt_secret_key=DEV_JWT_SECRET)

        response = client.post(
            "/api/auth/register",
            json={"email": "owner@example.com", "password": PASSWORD, "name": "Owner"},
        )

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
        with database.connect() as conn:
            assert conn.execute(select(func.count()).select_from(users)).scalar_one() == 0
