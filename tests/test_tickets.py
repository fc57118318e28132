def _ticket(client, headers, title="Calendar is slow", **kw):
    r = client.post("/api/tickets", json={"title": title, **kw}, headers=headers)
    assert r.status_code == 201, r.json
    return r.json


def test_ticket_defaults_and_validation(client, admin, user_ids):
    assert client.post("/api/tickets", json={"title": " "}, headers=admin).status_code == 400
    assert client.post("/api/tickets", json={"title": "X", "priority": "urgent"}, headers=admin).status_code == 400

    t = _ticket(client, admin)
    assert (t["status"], t["ticket_type"], t["priority"], t["votes"]) == ("new", "bug", "medium", 0)
    assert t["reported_by"] == user_ids["admin@example.com"]


def test_resolve_once(client, admin):
    t = _ticket(client, admin)
    r = client.post(f"/api/tickets/{t['id']}/resolve", json={"resolution_notes": "Added an index"}, headers=admin)
    assert r.status_code == 200
    assert r.json["status"] == "resolved"
    assert r.json["resolved_at"] is not None
    assert r.json["resolution_notes"] == "Added an index"

    r = client.post(f"/api/tickets/{t['id']}/resolve", headers=admin)
    assert r.status_code == 409
    assert r.json["message"] == "Ticket is already resolved."


def test_reopening_clears_resolution(client, admin):
    t = _ticket(client, admin)
    r = client.patch(f"/api/tickets/{t['id']}", json={"status": "closed"}, headers=admin)
    assert r.json["resolved_at"] is not None
    r = client.patch(f"/api/tickets/{t['id']}", json={"status": "in_progress"}, headers=admin)
    assert r.json["resolved_at"] is None
    assert r.json["resolved_by"] is None


def test_votes_and_sorting(client, admin, login):
    first = _ticket(client, admin, "Dark mode", ticket_type="feature")
    second = _ticket(client, admin, "Export to CSV", ticket_type="feature")
    client.post(f"/api/tickets/{second['id']}/vote", headers=admin)
    client.post("/auth/logout")

    staff = login("staff@example.com")
    r = client.post(f"/api/tickets/{second['id']}/vote", headers=staff)
    assert r.status_code == 200
    assert r.json["votes"] == 2
    assert client.post(f"/api/tickets/{first['id']}/resolve", headers=staff).status_code == 403

    r = client.get("/api/tickets?sort=votes&ticket_type=feature")
    assert [t["title"] for t in r.json["tickets"]] == ["Export to CSV", "Dark mode"]
