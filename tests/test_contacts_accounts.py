def _account(client, headers, **kw):
    payload = {"name": "Hotel Aurora", "account_type": "company", "email": "Events@Aurora.example"}
    payload.update(kw)
    r = client.post("/api/accounts", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json


def test_account_create_validates(client, admin):
    r = client.post("/api/accounts", json={"name": ""}, headers=admin)
    assert r.status_code == 400
    assert "Name is required." in r.json["details"]

    r = client.post("/api/accounts", json={"name": "X", "account_type": "alien"}, headers=admin)
    assert r.status_code == 400


def test_account_create_and_search(client, admin):
    acct = _account(client, admin)
    assert acct["email"] == "events@aurora.example"
    assert acct["status"] == "active"

    r = client.get("/api/accounts?q=aurora")
    assert r.status_code == 200
    assert r.json["total"] == 1
    assert r.json["accounts"][0]["id"] == acct["id"]


def test_contact_links_to_account_as_primary(client, admin):
    acct = _account(client, admin)
    r = client.post(
        "/api/contacts",
        json={"first_name": "Dana", "last_name": "Reyes", "email": "dana@example.com", "account_id": acct["id"]},
        headers=admin,
    )
    assert r.status_code == 201
    contact = r.json
    assert contact["accounts"] == [{"account_id": acct["id"], "name": "Hotel Aurora", "role": None, "is_primary": True}]

    r = client.get(f"/api/accounts/{acct['id']}")
    assert r.status_code == 200
    assert [c["id"] for c in r.json["contacts"]] == [contact["id"]]
    assert r.json["opportunities"] == []


def test_contact_primary_link_moves(client, admin):
    a1 = _account(client, admin, name="First Co")
    a2 = _account(client, admin, name="Second Co")
    r = client.post("/api/contacts", json={"first_name": "Sam", "account_id": a1["id"]}, headers=admin)
    cid = r.json["id"]

    r = client.post(f"/api/contacts/{cid}/accounts", json={"account_id": a2["id"], "is_primary": True}, headers=admin)
    assert r.status_code == 201
    primary = {ln["account_id"]: ln["is_primary"] for ln in r.json["accounts"]}
    assert primary == {a1["id"]: False, a2["id"]: True}

    r = client.delete(f"/api/contacts/{cid}/accounts/{a1['id']}", headers=admin)
    assert r.status_code == 200
    assert [ln["account_id"] for ln in r.json["accounts"]] == [a2["id"]]

    r = client.delete(f"/api/contacts/{cid}/accounts/{a1['id']}", headers=admin)
    assert r.status_code == 409


def test_contact_requires_a_name(client, admin):
    r = client.post("/api/contacts", json={"email": "x@example.com"}, headers=admin)
    assert r.status_code == 400


def test_contact_link_unknown_account(client, admin):
    r = client.post("/api/contacts", json={"first_name": "Pat"}, headers=admin)
    r = client.post(f"/api/contacts/{r.json['id']}/accounts", json={"account_id": 999}, headers=admin)
    assert r.status_code == 400


def test_account_update_and_delete(client, admin):
    acct = _account(client, admin)
    r = client.patch(f"/api/accounts/{acct['id']}", json={"status": "inactive"}, headers=admin)
    assert r.status_code == 200
    assert r.json["status"] == "inactive"

    assert client.delete(f"/api/accounts/{acct['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/accounts/{acct['id']}").status_code == 404


def _contact(client, headers, **kw):
    r = client.post("/api/contacts", json=kw, headers=headers)
    assert r.status_code == 201, r.json
    return r.json


def test_account_merge_moves_records(client, admin):
    keep = _account(client, admin, email=None)
    dupe = _account(client, admin, name="Aurora Hotel", phone="555-0142")
    shared = _contact(client, admin, first_name="Dana", account_id=dupe["id"])
    client.post(f"/api/contacts/{shared['id']}/accounts", json={"account_id": keep["id"]}, headers=admin)
    only_dupe = _contact(client, admin, first_name="Lee", account_id=dupe["id"])
    event = client.post("/api/events", json={"name": "Gala", "account_id": dupe["id"]}, headers=admin).json
    opp = client.post("/api/opportunities", json={"name": "Gala booth", "account_id": dupe["id"]}, headers=admin).json
    task = client.post(
        "/api/tasks", json={"title": "Call venue", "entity_type": "account", "entity_id": dupe["id"]}, headers=admin
    ).json

    r = client.post(
        "/api/accounts/merge",
        json={"survivor_id": keep["id"], "duplicate_id": dupe["id"], "notes": "Same hotel"},
        headers=admin,
    )
    assert r.status_code == 200, r.json
    body = r.json
    assert body["merged_account_id"] == dupe["id"]
    assert body["transferred"]["events"] == 1
    assert body["transferred"]["opportunities"] == 1
    assert body["transferred"]["tasks"] == 1
    assert body["transferred"]["contact_links"] == 1
    assert body["account"]["email"] == "events@aurora.example"
    assert body["account"]["phone"] == "555-0142"
    assert sorted(c["name"] for c in body["account"]["contacts"]) == ["Dana", "Lee"]

    assert client.get(f"/api/accounts/{dupe['id']}").status_code == 404
    assert client.get(f"/api/events/{event['id']}").json["account_id"] == keep["id"]
    assert client.get(f"/api/opportunities/{opp['id']}").json["account_id"] == keep["id"]
    assert client.get(f"/api/tasks/{task['id']}").json["entity_id"] == keep["id"]
    dana = client.get(f"/api/contacts/{shared['id']}").json
    assert dana["accounts"] == [{"account_id": keep["id"], "name": "Hotel Aurora", "role": None, "is_primary": True}]
    assert client.get(f"/api/contacts/{only_dupe['id']}").json["accounts"][0]["account_id"] == keep["id"]

    audit = client.get("/api/admin/audit?action=account.merge").json["audit_events"]
    assert len(audit) == 1
    assert audit[0]["entity_id"] == str(keep["id"])
    assert audit[0]["reason"] == "Same hotel"


def test_merge_validation(client, admin):
    acct = _account(client, admin)
    r = client.post("/api/accounts/merge", json={"survivor_id": acct["id"]}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/accounts/merge", json={"survivor_id": acct["id"], "duplicate_id": acct["id"]}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/accounts/merge", json={"survivor_id": acct["id"], "duplicate_id": 999}, headers=admin)
    assert r.status_code == 404
    r = client.post(
        "/api/contacts/merge",
        json={"survivor_id": 1, "duplicate_id": 2, "merged_data": {"email": "not-an-email"}},
        headers=admin,
    )
    assert r.status_code == 400


def test_contact_merge_moves_records(client, admin):
    home = _account(client, admin)
    other = _account(client, admin, name="Pier 9")
    keep = _contact(client, admin, first_name="Dana", last_name="Reyes", account_id=home["id"])
    dupe = _contact(
        client, admin, first_name="Dana", last_name="R.", email="dana@example.com", account_id=other["id"]
    )
    event = client.post("/api/events", json={"name": "Launch", "contact_id": dupe["id"]}, headers=admin).json

    r = client.post(
        "/api/contacts/merge",
        json={"survivor_id": keep["id"], "duplicate_id": dupe["id"], "merged_data": {"title": "Planner"}},
        headers=admin,
    )
    assert r.status_code == 200, r.json
    contact = r.json["contact"]
    assert contact["email"] == "dana@example.com"
    assert contact["title"] == "Planner"
    assert contact["last_name"] == "Reyes"
    assert r.json["transferred"]["events"] == 1
    links = {a["account_id"]: a["is_primary"] for a in contact["accounts"]}
    assert links == {home["id"]: True, other["id"]: False}

    assert client.get(f"/api/contacts/{dupe['id']}").status_code == 404
    assert client.get(f"/api/events/{event['id']}").json["contact_id"] == keep["id"]


def test_merge_needs_delete_permission(client, admin, login):
    a = _account(client, admin)
    b = _account(client, admin, name="Other")
    client.post("/auth/logout")
    staff = login("staff@example.com")
    r = client.post("/api/accounts/merge", json={"survivor_id": a["id"], "duplicate_id": b["id"]}, headers=staff)
    assert r.status_code == 403
