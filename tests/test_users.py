"""Tests for account self-service."""

from pathlib import Path

from sqlalchemy import func, select

from conftest import PASSWORD
from leasepilot.storage.schema import properties, refresh_tokens


class TestProfile:
    def test_get_and_update(self, client, register_manager):
        session = register_manager()

        me = client.get("/api/users/me", headers=session["headers"]).json()
        updated = client.put(
            "/api/users/me", json={"name": "Renamed", "email": "New@Example.com"}, headers=session["headers"]
        )

        assert me["email"] == "owner@example.com"
        assert updated.status_code == 200
        assert updated.json()["name"] == "Renamed"
        assert updated.json()["email"] == "new@example.com"

    def test_email_in_use(self, client, register_manager):
        register_manager("taken@example.com", "Taken")
        session = register_manager()

        response = client.put("/api/users/me", json={"email": "TAKEN@example.com"}, headers=session["headers"])

        assert response.status_code == 400
        assert response.json() == {"detail": "Email already in use"}


class TestPassword:
    def test_change_signs_out_other_sessions(self, client, register_manager, login):
        session = register_manager()

        response = client.put(
            "/api/users/me/password",
            json={"current_password": PASSWORD, "new_password": "Better456"},
            headers=session["headers"],
        )
        stale = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})

        assert response.status_code == 200
        assert stale.status_code == 401
        assert login("owner@example.com", "Better456")["user"]["id"] == session["user"]["id"]

    def test_wrong_current_password(self, client, register_manager):
        session = register_manager()

        response = client.put(
            "/api/users/me/password",
            json={"current_password": "Wrong1234", "new_password": "Better456"},
            headers=session["headers"],
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Current password is incorrect"}

    def test_weak_new_password(self, client, register_manager):
        session = register_manager()

        response = client.put(
            "/api/users/me/password",
            json={"current_password": PASSWORD, "new_password": "weak"},
            headers=session["headers"],
        )

        assert response.status_code == 400


class TestAvatar:
    def test_upload(self, client, register_manager, settings):
        session = register_manager()

        response = client.post(
            "/api/users/me/avatar",
            files={"file": ("me.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
            headers=session["headers"],
        )

        assert response.status_code == 200
        url = response.json()["avatar_url"]
        assert url.startswith(f"/uploads/avatars/{session['user']['id']}-")
        assert url.endswith(".png")
        stored = Path(settings.upload_dir) / url.removeprefix("/uploads/")
        assert stored.read_bytes() == b"\x89PNG\r\n\x1a\nfake"

    def test_rejects_non_images(self, client, register_manager):
        session = register_manager()

        response = client.post(
            "/api/users/me/avatar",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=session["headers"],
        )

        assert response.status_code == 400

    def test_rejects_large_files(self, client, register_manager, settings):
        session = register_manager()

        response = client.post(
            "/api/users/me/avatar",
            files={"file": ("big.jpg", b"\xff" * (settings.max_upload_bytes + 1), "image/jpeg")},
            headers=session["headers"],
        )

        assert response.status_code == 400
        assert response.json() == {"detail": "Image must be under 1MB"}


class TestDeleteAccount:
    def test_delete_removes_owned_rows(self, client, database, register_manager, create_property):
        session = register_manager()
        create_property(session["headers"])

        response = client.delete("/api/users/me", headers=session["headers"])

        assert response.status_code == 200
        assert "access_token=" in response.headers.get("set-cookie", "")
        with database.connect() as conn:
            assert conn.execute(select(func.count()).select_from(properties)).scalar_one() == 0
            assert conn.execute(select(func.count()).select_from(refresh_tokens)).scalar_one() == 0
