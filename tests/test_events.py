def test_event_types_unique_per_tenant(client, admin, login):
    r = client.post("/api/event-types", json={"name": "Wedding"}, headers=admin)
    assert r.status_code == 201
    assert r.json["is_active"] is True
    assert client.post("/api/event-types", json={"name": "wedding"}, headers=admin).status_code == 409
    client.post("/auth/logout")

    other = login("other@example.com")
    assert client.post("/api/event-types", json={"name": "Wedding"}, headers=other).status_code == 201


def test_event_create_validates_dates(client, admin):
    r = client.post(
        "/api/events",
        json={"name": "Gala", "start_date": "2030-03-10", "end_date": "2030-03-09"},
        headers=admin,
    )
    assert r.status_code == 400
    assert r.json["message"] == "end_date cannot be before start_date."

    r = client.post("/api/events", json={"name": "Gala", "status": "maybe"}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/events", json={"name": "Gala", "account_id": 999}, headers=admin)
    assert r.status_code == 400


def test_event_update_checks_existing_start(client, admin):
    event = client.post("/api/events", json={"name": "Gala", "start_date": "2030-03-10"}, headers=admin).json
    assert event["status"] == "planning"
    r = client.patch(f"/api/events/{event['id']}", json={"end_date": "2030-03-01"}, headers=admin)
    assert r.status_code == 400

    r = client.patch(f"/api/events/{event['id']}", json={"end_date": "2030-03-12", "status": "confirmed"}, headers=admin)
    assert r.status_code == 200
    assert r.json["status"] == "confirmed"
    assert r.json["end_date"] == "2030-03-12"


def test_event_dates(client, admin):
    event = client.post("/api/events", json={"name": "Expo"}, headers=admin).json
    assert client.post(f"/api/events/{event['id']}/dates", json={}, headers=admin).status_code == 400

    r = client.post(
        f"/api/events/{event['id']}/dates",
        json={"event_date": "2030-04-02", "start_time": "10:00", "end_time": "16:00"},
        headers=admin,
    )
    assert r.status_code == 201
    second = r.json
    client.post(f"/api/events/{event['id']}/dates", json={"event_date": "2030-04-01"}, headers=admin)

    detail = client.get(f"/api/events/{event['id']}").json
    assert [d["event_date"] for d in detail["event_dates"]] == ["2030-04-01", "2030-04-02"]

    assert client.delete(f"/api/events/{event['id']}/dates/{second['id']}", headers=admin).status_code == 200
    assert client.delete(f"/api/events/{event['id']}/dates/{second['id']}", headers=admin).status_code == 404


def test_staff_assignment(client, admin, user_ids):
    role = client.post("/api/staff-roles", json={"name": "Attendant", "default_hourly_rate": "22.50"}, headers=admin).json
    event = client.post("/api/events", json={"name": "Expo"}, headers=admin).json
    payload = {"user_id": user_ids["staff@example.com"], "staff_role_id": role["id"]}

    r = client.post(f"/api/events/{event['id']}/staff", json=payload, headers=admin)
    assert r.status_code == 201
    assert r.json["hourly_rate"] == 22.5
    assert r.json["status"] == "assigned"
    assert client.post(f"/api/events/{event['id']}/staff", json=payload, headers=admin).status_code == 409

    detail = client.get(f"/api/events/{event['id']}").json
    assert [a["staff_role_name"] for a in detail["staff_assignments"]] == ["Attendant"]

    r = client.post(f"/api/events/{event['id']}/staff", json={"user_id": payload["user_id"], "staff_role_id": 999}, headers=admin)
    assert r.status_code == 400
    assert client.post(f"/api/events/{event['id']}/staff", json={}, headers=admin).status_code == 400


def test_calendar_requires_range(client, admin):
    client.post("/api/events", json={"name": "In", "start_date": "2030-05-30", "end_date": "2030-06-02"}, headers=admin)
    client.post("/api/events", json={"name": "Out", "start_date": "2030-07-01"}, headers=admin)
    client.post("/api/events", json={"name": "Undated"}, headers=admin)

    assert client.get("/api/events/calendar?from=2030-06-01").status_code == 400
    r = client.get("/api/events/calendar?from=2030-06-01&to=2030-06-30")
    assert r.status_code == 200
    assert [e["name"] for e in r.json["events"]] == ["In"]
    assert r.json["events"][0]["end_date"] == "2030-06-02"


def test_event_list_and_delete(client, admin):
    for name, day in (("Later", "2030-09-01"), ("Sooner", "2030-08-01")):
        client.post("/api/events", json={"name": name, "start_date": day}, headers=admin)
    r = client.get("/api/events")
    assert [e["name"] for e in r.json["events"]] == ["Sooner", "Later"]
    assert client.get("/api/events?from=2030-08-15").json["total"] == 1

    event_id = r.json["events"][0]["id"]
    assert client.delete(f"/api/events/{event_id}", headers=admin).status_code == 200
    assert client.get(f"/api/events/{event_id}").status_code == 404
