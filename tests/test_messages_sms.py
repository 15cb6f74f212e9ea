"""
Tests for manager messaging, maintenance assignment texts and the SMS
integration.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import RecordingSmsSender, make_settings
from leasepilot.api.app import create_app
from leasepilot.integrations.sms import MAX_SMS_LENGTH, TRIAL_ACCOUNT_HINT, TwilioSmsSender


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def setup(register_manager, create_property, create_tenant, create_contractor, portal_login):
    manager = register_manager()
    prop = create_property(manager["headers"], "Maple Court")
    tenant = create_tenant(manager["headers"], prop["id"], unit="3C", phone="555-222-3333")
    tina = portal_login(manager["headers"], "tenant", tenant["id"], "tina@example.com")
    return {
        "manager": manager,
        "headers": manager["headers"],
        "tenant": tenant,
        "tina": tina,
        "plumber": create_contractor(manager["headers"], "Pat Plumber", phone="(555) 123-4567"),
        "painter": create_contractor(manager["headers"], "Paula Painter"),
    }


def _request(client, tina_headers, subject="Leaky faucet", priority="normal"):
    response = client.post(
        "/api/tenant/maintenance", json={"subject": subject, "priority": priority}, headers=tina_headers
    )
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# Maintenance assignment
# =============================================================================


class TestAssignment:
    def test_assigning_texts_the_contractor(self, client, setup, sms_sender):
        request = _request(client, setup["tina"]["headers"], "Burst pipe", priority="emergency")

        response = client.patch(
            f"/api/maintenance-requests/{request['id']}",
            json={"assigned_contractor_id": setup["plumber"]["id"], "status": "in_progress"},
            headers=setup["headers"],
        )

        assert response.status_code == 200
        assert response.json()["contractor_name"] == "Pat Plumber"
        assert response.json()["status"] == "in_progress"
        assert len(sms_sender.sent) == 1
        to, body = sms_sender.sent[0]
        assert to == "(555) 123-4567"
        assert '"Burst pipe" [EMERGENCY]' in body
        assert "Maple Court Unit 3C" in body

    def test_contractor_without_phone(self, client, setup, sms_sender):
        request = _request(client, setup["tina"]["headers"])

        response = client.patch(
            f"/api/maintenance-requests/{request['id']}",
            json={"assigned_contractor_id": setup["painter"]["id"]},
            headers=setup["headers"],
        )

        assert response.status_code == 200
        assert sms_sender.sent == []

    def test_sms_failure_does_not_fail_the_update(self, tmp_path, database, file_storage, setup):
        failing = TestClient(
            create_app(
                settings=make_settings(tmp_path),
                database=database,
                sms_sender=RecordingSmsSender(fail_with="Twilio is down"),
                file_storage=file_storage,
            )
        )
        request = _request(failing, setup["tina"]["headers"])

        response = failing.patch(
            f"/api/maintenance-requests/{request['id']}",
            json={"assigned_contractor_id": setup["plumber"]["id"]},
            headers=setup["headers"],
        )

        assert response.status_code == 200

    def test_foreign_contractor(self, client, setup, register_manager, create_contractor):
        other = register_manager("other@example.com", "Other")
        foreign = create_contractor(other["headers"], "Foreign Fixer", phone="5550001111")
        request = _request(client, setup["tina"]["headers"])

        response = client.patch(
            f"/api/maintenance-requests/{request['id']}",
            json={"assigned_contractor_id": foreign["id"]},
            headers=setup["headers"],
        )

        assert response.status_code == 400
        assert response.json() == {"detail": "Contractor not found"}

    def test_foreign_request_and_empty_patch(self, client, setup, register_manager):
        other = register_manager("other@example.com", "Other")
        request = _request(client, setup["tina"]["headers"])

        foreign = client.patch(
            f"/api/maintenance-requests/{request['id']}", json={"status": "completed"}, headers=other["headers"]
        )
        empty = client.patch(f"/api/maintenance-requests/{request['id']}", json={}, headers=setup["headers"])

        assert foreign.status_code == 404
        assert empty.status_code == 400


# =============================================================================
# Contractor portal
# =============================================================================


class TestContractorPortal:
    def test_jobs_and_messages(self, client, setup, portal_login, sms_sender):
        pat = portal_login(setup["headers"], "contractor", setup["plumber"]["id"], "pat@example.com")
        request = _request(client, setup["tina"]["headers"])
        client.patch(
            f"/api/maintenance-requests/{request['id']}",
            json={"assigned_contractor_id": setup["plumber"]["id"]},
            headers=setup["headers"],
        )

        jobs = client.get("/api/contractor/jobs", headers=pat["headers"]).json()
        assert [j["id"] for j in jobs] == [request["id"]]
        assert jobs[0]["property_name"] == "Maple Court"

        root = client.post(
            "/api/messages",
            json={
                "recipient_type": "contractor",
                "recipient_id": setup["plumber"]["id"],
                "subject": "Access code",
                "body": "Gate code is 1234",
                "send_sms": True,
            },
            headers=setup["headers"],
        ).json()
        assert sms_sender.sent[-1] == ("(555) 123-4567", "Access code\n\nGate code is 1234")

        reply = client.post(
            "/api/contractor/messages", json={"parent_message_id": root["id"], "body": "Thanks"}, headers=pat["headers"]
        )
        assert reply.status_code == 201

        threads = client.get("/api/contractor/messages", headers=pat["headers"]).json()
        assert threads[0]["replies"][0]["body"] == "Thanks"
        profile = client.get("/api/contractor/profile", headers=pat["headers"]).json()
        assert profile["contractor"]["name"] == "Pat Plumber"

    def test_other_contractors_jobs_are_hidden(self, client, setup, portal_login):
        paula = portal_login(setup["headers"], "contractor", setup["painter"]["id"], "paula@example.com")
        request = _request(client, setup["tina"]["headers"])
        client.patch(
            f"/api/maintenance-requests/{request['id']}",
            json={"assigned_contractor_id": setup["plumber"]["id"]},
            headers=setup["headers"],
        )

        assert client.get("/api/contractor/jobs", headers=paula["headers"]).json() == []


# =============================================================================
# Manager messages
# =============================================================================


class TestManagerMessages:
    def test_recipient_must_be_in_scope(self, client, setup, register_manager):
        other = register_manager("other@example.com", "Other")

        response = client.post(
            "/api/messages",
            json={"recipient_type": "tenant", "recipient_id": setup["tenant"]["id"], "subject": "Hi"},
            headers=other["headers"],
        )

        assert response.status_code == 404
        assert response.json() == {"detail": "Tenant not found"}

    def test_blank_subject(self, client, setup):
        response = client.post(
            "/api/messages",
            json={"recipient_type": "tenant", "recipient_id": setup["tenant"]["id"], "subject": "  "},
            headers=setup["headers"],
        )

        assert response.status_code == 422

    def test_reply_only_on_own_threads(self, client, setup, register_manager, sms_sender):
        root = client.post(
            "/api/messages",
            json={"recipient_type": "tenant", "recipient_id": setup["tenant"]["id"], "subject": "Rent"},
            headers=setup["headers"],
        ).json()
        other = register_manager("other@example.com", "Other")

        own = client.post(
            "/api/messages/reply",
            json={"reply_to_message_id": root["id"], "body": "Reminder", "send_sms": True},
            headers=setup["headers"],
        )
        foreign = client.post(
            "/api/messages/reply",
            json={"reply_to_message_id": root["id"], "body": "Hijack"},
            headers=other["headers"],
        )
        missing = client.post(
            "/api/messages/reply",
            json={"reply_to_message_id": 9999, "body": "Hello"},
            headers=setup["headers"],
        )

        assert own.status_code == 201
        assert own.json()["subject"] == "Re: Rent"
        assert sms_sender.sent[-1] == ("555-222-3333", "Reminder")
        assert foreign.status_code == 403
        assert foreign.json() == {"detail": "You can only reply to your own threads"}
        assert missing.status_code == 404

    def test_filter_by_recipient_type(self, client, setup):
        for recipient_type, recipient_id in (("tenant", setup["tenant"]["id"]), ("contractor", setup["plumber"]["id"])):
            client.post(
                "/api/messages",
                json={"recipient_type": recipient_type, "recipient_id": recipient_id, "subject": recipient_type},
                headers=setup["headers"],
            )

        threads = client.get("/api/messages", params={"recipient_type": "contractor"}, headers=setup["headers"]).json()

        assert [t["subject"] for t in threads] == ["contractor"]
        assert threads[0]["contractor_name"] == "Pat Plumber"


# =============================================================================
# SMS routes
# =============================================================================


class TestSmsRoutes:
    def test_status(self, client, setup):
        assert client.get("/api/sms/status", headers=setup["headers"]).json() == {"configured": True}

    def test_send(self, client, setup, sms_sender):
        response = client.post(
            "/api/sms/send", json={"to": "5551234567", "body": "Hello"}, headers=setup["headers"]
        )

        assert response.json() == {"success": True, "sid": "SM0001"}
        assert sms_sender.sent == [("5551234567", "Hello")]

    @pytest.mark.parametrize(
        "payload, detail",
        [
            ({"body": "Hello"}, "Phone number (to) is required"),
            ({"to": "5551234567", "body": "  "}, "Message (body) is required"),
        ],
    )
    def test_send_requires_fields(self, client, setup, payload, detail):
        response = client.post("/api/sms/send", json=payload, headers=setup["headers"])

        assert response.status_code == 400
        assert response.json() == {"detail": detail}

    def test_send_to_contractor(self, client, setup, sms_sender):
        default = client.post(f"/api/sms/send-to-contractor/{setup['plumber']['id']}", headers=setup["headers"])
        no_phone = client.post(f"/api/sms/send-to-contractor/{setup['painter']['id']}", headers=setup["headers"])
        missing = client.post("/api/sms/send-to-contractor/9999", headers=setup["headers"])

        assert default.status_code == 200
        assert sms_sender.sent[0][1].startswith("Hi, this is your property manager")
        assert no_phone.status_code == 400
        assert no_phone.json() == {"detail": "This contractor has no phone number on file"}
        assert missing.status_code == 404

    def test_send_to_tenant_with_body(self, client, setup, sms_sender):
        response = client.post(
            f"/api/sms/send-to-tenant/{setup['tenant']['id']}", json={"body": "Rent is due"}, headers=setup["headers"]
        )

        assert response.status_code == 200
        assert sms_sender.sent == [("555-222-3333", "Rent is due")]

    def test_provider_error_is_a_400(self, tmp_path, database, file_storage, setup):
        failing = TestClient(
            create_app(
                settings=make_settings(tmp_path),
                database=database,
                sms_sender=RecordingSmsSender(fail_with="Invalid 'To' number"),
                file_storage=file_storage,
            )
        )

        response = failing.post("/api/sms/send", json={"to": "1", "body": "Hi"}, headers=setup["headers"])

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid 'To' number"}

    def test_portal_accounts_cannot_text(self, client, setup):
        response = client.post(
            "/api/sms/send", json={"to": "5551234567", "body": "Hi"}, headers=setup["tina"]["headers"]
        )

        assert response.status_code == 403


# =============================================================================
# Twilio sender
# =============================================================================


class TestTwilioSender:
    def _sender(self, handler, **overrides):
        values = {"account_sid": "AC123", "auth_token": "secret", "from_number": "+15550000000"}
        values.update(overrides)
        return TwilioSmsSender(**values, transport=httpx.MockTransport(handler))

    def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = dict(httpx.QueryParams(request.content.decode()))
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(201, json={"sid": "SM42"})

        result = asyncio.run(self._sender(handler).send("(555) 123-4567", "x" * (MAX_SMS_LENGTH + 10)))

        assert result.success
        assert result.sid == "SM42"
        assert seen["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert seen["form"]["To"] == "+15551234567"
        assert seen["form"]["From"] == "+15550000000"
        assert len(seen["form"]["Body"]) == MAX_SMS_LENGTH
        assert seen["auth"].startswith("Basic ")

    def test_trial_account_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"message": "The number is unverified. Trial accounts cannot send"})

        result = asyncio.run(self._sender(handler).send("5551234567", "Hi"))

        assert not result.success
        assert result.error == TRIAL_ACCOUNT_HINT

    def test_provider_message_is_passed_through(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"message": "Invalid 'To' Phone Number"})

        result = asyncio.run(self._sender(handler).send("5551234567", "Hi"))

        assert result.error == "Invalid 'To' Phone Number"

    def test_not_configured_never_calls_out(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        sender = self._sender(handler, auth_token="")
        result = asyncio.run(sender.send("5551234567", "Hi"))

        assert not sender.configured
        assert not result.success
        assert "not configured" in result.error

    def test_missing_from_number(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = asyncio.run(self._sender(handler, from_number=" ").send("5551234567", "Hi"))

        assert result.error == "TWILIO_PHONE_NUMBER is not set"
