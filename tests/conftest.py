"""
Shared fixtures: an in-memory database, an app wired to it, and helpers
for the three kinds of accounts.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from leasepilot.api.app import create_app
from leasepilot.config import Settings
from leasepilot.integrations.sms import SmsResult
from leasepilot.storage import Database, LocalFileStorage

TEST_SECRET = "test-signing-key-0123456789abcdef0123456789"
PASSWORD = "Secret123"


class RecordingSmsSender:
    """Collects messages instead of sending them."""

    def __init__(self, fail_with: str | None = None):
        self.sent: list[tuple[str, str]] = []
        self.fail_with = fail_with

    @property
    def configured(self) -> bool:
        return True

    async def send(self, to: str, body: str) -> SmsResult:
        if self.fail_with:
            return SmsResult(success=False, error=self.fail_with)
        self.sent.append((to, body))
        return SmsResult(success=True, sid=f"SM{len(self.sent):04d}")


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "environment": "test",
        "database_url": "sqlite://",
        "jwt_secret_key": TEST_SECRET,
        "bcrypt_rounds": 10,
        "upload_dir": str(tmp_path / "uploads"),
        "max_upload_bytes": 1024 * 1024,
        "sentry_dsn": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def database():
    """Fresh in-memory database with every table created."""
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def sms_sender():
    return RecordingSmsSender()


@pytest.fixture
def file_storage(settings):
    return LocalFileStorage(settings.upload_dir, settings.upload_url_prefix)


@pytest.fixture
def app(settings, database, sms_sender, file_storage):
    return create_app(
        settings=settings,
        database=database,
        sms_sender=sms_sender,
        file_storage=file_storage,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


# =============================================================================
# Account helpers
# =============================================================================


@pytest.fixture
def register_manager(client):
    """Register a manager and return {"user", "access_token", "refresh_token", "headers"}."""

    def _register(email: str = "owner@example.com", name: str = "Owner", password: str = PASSWORD):
        response = client.post(
            "/api/auth/register",
            json={"email": email, "password": password, "name": name},
        )
        assert response.status_code == 201, response.text
        session = response.json()
        session["headers"] = bearer(session["access_token"])
        # Tests pass credentials explicitly; no session rides along in cookies.
        client.cookies.clear()
        return session

    return _register


@pytest.fixture
def login(client):
    def _login(email: str, password: str = PASSWORD):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        session = response.json()
        session["headers"] = bearer(session["access_token"])
        client.cookies.clear()
        return session

    return _login


@pytest.fixture
def create_property(client):
    def _create(headers, name: str = "Maple Court", **fields):
        response = client.post("/api/properties", json={"name": name, **fields}, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_tenant(client):
    def _create(headers, property_id=None, first_name: str = "Tina", last_name: str = "Tenant", **fields):
        payload = {"first_name": first_name, "last_name": last_name, "property_id": property_id, **fields}
        response = client.post("/api/tenants", json=payload, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_contractor(client):
    def _create(headers, name: str = "Pat Plumber", **fields):
        response = client.post("/api/contractors", json={"name": name, **fields}, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def portal_login(client, login):
    """Invite a tenant or contractor record and sign in as the new account."""

    def _invite(headers, kind: str, record_id: int, email: str, password: str = PASSWORD):
        response = client.post(
            f"/api/{kind}s/{record_id}/invite",
            json={"email": email, "password": password},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return login(email, password)

    return _invite
