"""
End-to-end walk through one portfolio: a manager sets things up, a tenant
reports a problem, a contractor gets the job.
"""

from conftest import PASSWORD, bearer


def test_full_lifecycle(client, sms_sender):
    # Manager signs up and builds a portfolio.
    registered = client.post(
        "/api/auth/register",
        json={"email": "owner@example.com", "password": PASSWORD, "name": "Olivia Owner"},
    )
    assert registered.status_code == 201
    manager = bearer(registered.json()["access_token"])
    client.cookies.clear()

    prop = client.post(
        "/api/properties",
        json={"name": "Harbor View", "address": "12 Dock Rd", "city": "Portland", "rent": 1850},
        headers=manager,
    ).json()
    tenant = client.post(
        "/api/tenants",
        json={"first_name": "Tina", "last_name": "Tenant", "property_id": prop["id"], "unit": "4B"},
        headers=manager,
    ).json()
    contractor = client.post(
        "/api/contractors",
        json={"name": "Pat Plumber", "company": "Pat & Sons", "phone": "555 123 4567", "specialty": "plumbing"},
        headers=manager,
    ).json()

    # Portal accounts.
    invited = client.post(
        f"/api/tenants/{tenant['id']}/invite",
        json={"email": "tina@example.com", "password": PASSWORD},
        headers=manager,
    )
    assert invited.status_code == 201
    client.post(
        f"/api/contractors/{contractor['id']}/invite",
        json={"email": "pat@example.com", "password": PASSWORD},
        headers=manager,
    )

    tina_login = client.post("/api/auth/login", json={"email": "tina@example.com", "password": PASSWORD})
    tina = bearer(tina_login.json()["access_token"])
    pat = bearer(
        client.post("/api/auth/login", json={"email": "pat@example.com", "password": PASSWORD}).json()["access_token"]
    )
    client.cookies.clear()

    verified = client.get("/api/auth/verify", headers=tina).json()
    assert verified["user"]["role"] == "tenant"
    assert verified["scope"] == {
        "role": "tenant",
        "kind": "linked_tenant",
        "value": tenant["id"],
        "capabilities": sorted(verified["permissions"]),
    }

    # Tenant reports a leak.
    request = client.post(
        "/api/tenant/maintenance",
        json={"subject": "Leak under sink", "priority": "emergency", "issue_type": "plumbing"},
        headers=tina,
    ).json()
    assert request["status"] == "open"

    # Manager triages and assigns; the contractor is texted.
    queue = client.get("/api/maintenance-requests", params={"property_id": prop["id"]}, headers=manager).json()
    assert [r["id"] for r in queue] == [request["id"]]

    assigned = client.patch(
        f"/api/maintenance-requests/{request['id']}",
        json={"status": "in_progress", "assigned_contractor_id": contractor["id"]},
        headers=manager,
    ).json()
    assert assigned["assigned_contractor_id"] == contractor["id"]
    assert sms_sender.sent[0][0] == "555 123 4567"

    # Both portals see the assignment.
    jobs = client.get("/api/contractor/jobs", headers=pat).json()
    assert jobs[0]["subject"] == "Leak under sink"
    assert jobs[0]["tenant_unit"] == "4B"

    mine = client.get(f"/api/tenant/maintenance/{request['id']}", headers=tina).json()
    assert mine["status"] == "in_progress"
    assert mine["contractor_name"] == "Pat Plumber"
    assert mine["contractor_company"] == "Pat & Sons"

    # Manager closes it out and books the expense.
    client.patch(f"/api/maintenance-requests/{request['id']}", json={"status": "completed"}, headers=manager)
    expense = client.post(
        "/api/transactions",
        json={"type": "expense", "description": "Sink repair", "amount": 240, "property_id": prop["id"]},
        headers=manager,
    )
    assert expense.status_code == 201

    # Session ends.
    logout = client.post("/api/auth/logout", json={"refresh_token": tina_login.json()["refresh_token"]})
    assert logout.json() == {"ok": True}
    assert client.post("/api/auth/refresh", json={"refresh_token": tina_login.json()["refresh_token"]}).status_code == 401
