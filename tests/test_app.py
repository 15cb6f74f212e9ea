"""Tests for app wiring: health, error rendering, notifications, Sentry filters."""

from fastapi import HTTPException

from leasepilot.auth.errors import ConfigurationError, InvalidCredentials
from leasepilot.integrations.sentry import _filter_events, _filter_transactions, init_sentry


class TestHealth:
    def test_health_needs_no_auth(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "connected"


class TestErrorRendering:
    def test_configuration_error_is_generic(self, app, client):
        @app.get("/api/broken")
        def broken():
            raise ConfigurationError("JWT_SECRET_KEY is not set")

        response = client.get("/api/broken")

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}

    def test_http_errors_keep_detail_shape(self, app, client):
        @app.get("/api/teapot")
        def teapot():
            raise HTTPException(status_code=418, detail="Short and stout")

        assert client.get("/api/teapot").json() == {"detail": "Short and stout"}

    def test_unknown_route(self, client):
        assert client.get("/api/nothing-here").status_code == 404


class TestNotifications:
    def test_create_list_and_mark_read(self, client, register_manager):
        alice = register_manager("alice@example.com", "Alice")
        bob = register_manager("bob@example.com", "Bob")

        created = client.post(
            "/api/notifications", json={"title": "Lease ending", "message": "Unit 4B"}, headers=alice["headers"]
        )
        note = created.json()

        assert created.status_code == 201
        assert note["read"] is False
        assert client.get("/api/notifications", headers=bob["headers"]).json() == []
        assert client.patch(f"/api/notifications/{note['id']}/read", headers=bob["headers"]).status_code == 404

        marked = client.patch(f"/api/notifications/{note['id']}/read", headers=alice["headers"])

        assert marked.json()["read"] is True
        assert [n["title"] for n in client.get("/api/notifications", headers=alice["headers"]).json()] == [
            "Lease ending"
        ]


class TestSentryFilters:
    def test_disabled_without_dsn(self, settings):
        assert init_sentry(settings) is False

    def test_expected_client_errors_are_dropped(self):
        hint = {"exc_info": (InvalidCredentials, InvalidCredentials(), None)}

        assert _filter_events({"message": "x"}, hint) is None

    def test_credentials_are_scrubbed(self):
        event = {"request": {"headers": {"Authorization": "Bearer abc", "Cookie": "refresh_token=r", "Accept": "*/*"}}}

        filtered = _filter_events(event, {})

        assert filtered["request"]["headers"] == {
            "Authorization": "[Filtered]",
            "Cookie": "[Filtered]",
            "Accept": "*/*",
        }

    def test_health_transactions_are_skipped(self):
        assert _filter_transactions({"transaction": "/api/health"}, {}) is None
        assert _filter_transactions({"transaction": "leasepilot.api.app.health"}, {}) is None
        assert _filter_transactions({"transaction": "/api/properties"}, {}) is not None
