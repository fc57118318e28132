from datetime import date
from types import SimpleNamespace

from app.crm.modules.inventory.service import item_availability


def _item(client, headers, name, **kw):
    r = client.post("/api/inventory", json={"item_name": name, **kw}, headers=headers)
    assert r.status_code == 201, r.json
    return r.json


def _event(client, headers):
    r = client.post("/api/events", json={"name": "Expo", "start_date": "2030-06-20", "end_date": "2030-06-22"}, headers=headers)
    return r.json


def test_item_validation(client, admin):
    assert client.post("/api/inventory", json={"category": "booth"}, headers=admin).status_code == 400
    assert client.post("/api/inventory", json={"item_name": "Booth", "status": "lost"}, headers=admin).status_code == 400
    assert client.post("/api/inventory", json={"item_name": "Booth", "event_id": 999}, headers=admin).status_code == 400

    item = _item(client, admin, "Booth A", category="booth", serial_number="SN-1")
    assert (item["status"], item["assignment_type"]) == ("available", "none")


def test_checkout_and_checkin(client, admin):
    item = _item(client, admin, "Booth A")
    event = _event(client, admin)

    r = client.post(f"/api/inventory/{item['id']}/checkout", json={}, headers=admin)
    assert r.status_code == 400

    r = client.post(
        f"/api/inventory/{item['id']}/checkout",
        json={"event_id": event["id"], "assigned_to_id": "7", "assigned_to_name": "Sam"},
        headers=admin,
    )
    assert r.status_code == 200
    assert r.json["status"] == "in_use"
    assert r.json["assignment_type"] == "event_checkout"
    assert r.json["expected_return_date"] == "2030-06-22"
    assert r.json["assigned_to_type"] == "user"

    again = client.post(f"/api/inventory/{item['id']}/checkout", json={"event_id": event["id"]}, headers=admin)
    assert again.status_code == 409

    r = client.post(f"/api/inventory/{item['id']}/checkin", json={"notes": "Screen scratched"}, headers=admin)
    assert r.status_code == 200
    assert r.json["status"] == "available"
    assert r.json["event_id"] is None
    assert r.json["assigned_to_name"] is None
    assert r.json["notes"] == "Screen scratched"

    assert client.post(f"/api/inventory/{item['id']}/checkin", headers=admin).status_code == 409


def test_out_of_service_items_cannot_check_out(client, admin):
    item = _item(client, admin, "Printer", status="maintenance")
    event = _event(client, admin)
    r = client.post(f"/api/inventory/{item['id']}/checkout", json={"event_id": event["id"]}, headers=admin)
    assert r.status_code == 409
    assert r.json["message"] == "Item is maintenance and cannot be checked out."


def test_availability_report(client, admin):
    event = _event(client, admin)
    booth_a = _item(client, admin, "Booth A")
    client.post(f"/api/inventory/{booth_a['id']}/checkout", json={"event_id": event["id"]}, headers=admin)
    _item(client, admin, "Booth B")
    _item(client, admin, "Printer", status="maintenance")
    _item(client, admin, "Backdrop", assignment_type="long_term_staff", assigned_to_name="Sam")

    assert client.get("/api/inventory/availability?start_date=2030-06-20").status_code == 400
    assert client.get("/api/inventory/availability?start_date=2030-06-25&end_date=2030-06-20").status_code == 400

    r = client.get("/api/inventory/availability?start_date=2030-06-20&end_date=2030-06-25")
    assert r.status_code == 200
    body = r.json
    assert [i["item_name"] for i in body["available"]] == ["Booth B"]
    reasons = {i["item_name"]: i["unavailable_reason"] for i in body["unavailable"]}
    assert reasons == {
        "Backdrop": "Assigned to Sam (long-term)",
        "Booth A": "Returns 2030-06-22 (assigned)",
        "Printer": "Item is maintenance",
    }
    booth = next(i for i in body["unavailable"] if i["item_name"] == "Booth A")
    assert booth["returns_during_period"] is True
    assert booth["event_name"] == "Expo"
    assert body["summary"] == {
        "total": 4,
        "available": 1,
        "unavailable": 3,
        "start_date": "2030-06-20",
        "end_date": "2030-06-25",
    }


def test_item_back_before_window_is_available():
    item = SimpleNamespace(
        assignment_type="event_checkout",
        assigned_to_name=None,
        expected_return_date=date(2030, 6, 1),
        event_id=3,
        status="in_use",
    )
    ok, reason, extra = item_availability(item, None, date(2030, 6, 10), date(2030, 6, 12))
    assert ok is True
    assert reason is None
    assert extra == {}


def test_booked_item_without_return_date():
    item = SimpleNamespace(
        assignment_type="none", assigned_to_name=None, expected_return_date=None, event_id=3, status="available"
    )
    event = SimpleNamespace(name="Gala", start_date=date(2030, 6, 11))
    ok, reason, _ = item_availability(item, event, date(2030, 6, 10), date(2030, 6, 12))
    assert ok is False
    assert reason == "Booked for Gala on 2030-06-11"
