from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from app.crm.modules.opportunities.service import apply_stage, opportunity_stats


def _opp(client, headers, **kw):
    payload = {"name": "Smith Wedding", "amount": "2500"}
    payload.update(kw)
    r = client.post("/api/opportunities", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json


def test_create_defaults_and_validation(client, admin, user_ids):
    opp = _opp(client, admin)
    assert opp["stage"] == "prospecting"
    assert opp["status"] == "open"
    assert opp["amount"] == 2500.0
    assert opp["owner_id"] == user_ids["admin@example.com"]

    assert client.post("/api/opportunities", json={"name": "X", "stage": "won"}, headers=admin).status_code == 400
    assert client.post("/api/opportunities", json={"name": "X", "probability": 120}, headers=admin).status_code == 400
    r = client.post("/api/opportunities", json={"name": "X", "event_dates": [{"event_date": "soon"}]}, headers=admin)
    assert r.status_code == 400


def test_stage_changes_close_and_reopen(client, admin):
    opp = _opp(client, admin, probability=40)
    r = client.patch(f"/api/opportunities/{opp['id']}", json={"stage": "closed_won"}, headers=admin)
    assert r.json["status"] == "won"
    assert r.json["probability"] == 100
    assert r.json["actual_close_date"] == date.today().isoformat()

    r = client.patch(f"/api/opportunities/{opp['id']}", json={"stage": "negotiation"}, headers=admin)
    assert r.json["status"] == "open"
    assert r.json["actual_close_date"] is None

    r = client.patch(f"/api/opportunities/{opp['id']}", json={"stage": "closed_lost"}, headers=admin)
    assert (r.json["status"], r.json["probability"]) == ("lost", 0)


def test_apply_stage_keeps_given_close_date():
    opp = SimpleNamespace(stage="proposal", status="open", probability=50, actual_close_date=None)
    apply_stage(opp, "closed_won", date(2026, 1, 5))
    assert opp.actual_close_date == date(2026, 1, 5)


def test_line_items_drive_amount(client, admin):
    opp = _opp(client, admin)
    r = client.post(f"/api/opportunities/{opp['id']}/line-items", json={"description": "Booth", "quantity": 2, "unit_price": "600"}, headers=admin)
    assert r.status_code == 201
    assert r.json["amount"] == 1200.0

    r = client.patch(f"/api/opportunities/{opp['id']}", json={"amount": "99"}, headers=admin)
    assert r.json["amount"] == 1200.0

    item_id = r.json["line_items"][0]["id"]
    r = client.delete(f"/api/opportunities/{opp['id']}/line-items/{item_id}", headers=admin)
    assert r.json["amount"] == 0.0


def test_stats():
    today = date(2026, 6, 17)
    created = datetime(2026, 6, 1, 9, 0)

    def opp(stage, amount, **kw):
        row = dict(stage=stage, amount=Decimal(amount), created_at=created, actual_close_date=None, expected_close_date=None)
        row.update(kw)
        return SimpleNamespace(**row)

    opps = [
        opp("prospecting", "1000", expected_close_date=today + timedelta(days=3)),
        opp("proposal", "500"),
        opp("closed_won", "3000", actual_close_date=date(2026, 6, 11)),
        opp("closed_won", "1000", actual_close_date=date(2026, 6, 15)),
        opp("closed_lost", "800", actual_close_date=date(2025, 12, 1)),
    ]
    stats = opportunity_stats(opps, period="month", today=today)
    assert stats["byStage"]["closed_won"] == {"count": 2, "value": 4000.0}
    assert stats["openPipeline"] == {"count": 2, "value": 1500.0}
    assert stats["won"] == {"count": 2, "value": 4000.0}
    assert stats["lost"]["count"] == 0
    assert stats["winRate"] == 100
    assert stats["avgDaysToClose"] == 12
    assert stats["avgDealSize"] == 2000.0
    assert stats["closingSoon"]["count"] == 1

    everything = opportunity_stats(opps, period="all", today=today)
    assert everything["winRate"] == 67


def test_stats_endpoint_validates_period(client, admin):
    _opp(client, admin)
    assert client.get("/api/opportunities/stats?period=decade").status_code == 400
    r = client.get("/api/opportunities/stats?period=all")
    assert r.status_code == 200
    assert r.json["newOpps"] == 1


def test_convert_requires_a_date(client, admin):
    opp = _opp(client, admin)
    r = client.post(f"/api/opportunities/{opp['id']}/convert-to-event", headers=admin)
    assert r.status_code == 400
    assert client.get(f"/api/opportunities/{opp['id']}").json["is_converted"] is False


def test_convert_to_event(client, admin):
    account = client.post("/api/accounts", json={"name": "Smith Family"}, headers=admin).json
    opp = _opp(
        client,
        admin,
        account_id=account["id"],
        event_dates=[{"event_date": "2030-06-21"}, {"event_date": "2030-06-20", "start_time": "17:00"}],
    )
    quote = client.post(
        "/api/quotes",
        json={"opportunity_id": opp["id"], "line_items": [{"description": "Booth", "unit_price": "2500"}]},
        headers=admin,
    ).json
    client.post(f"/api/quotes/{quote['id']}/accept", headers=admin)

    r = client.post(f"/api/opportunities/{opp['id']}/convert-to-event", headers=admin)
    assert r.status_code == 201, r.json
    event = r.json["event"]
    assert event["name"] == "Smith Wedding"
    assert event["status"] == "scheduled"
    assert (event["start_date"], event["end_date"]) == ("2030-06-20", "2030-06-21")
    assert event["account_id"] == account["id"]
    assert len(r.json["event_dates"]) == 2
    assert r.json["invoice"]["total"] == 2500.0
    assert r.json["invoice"]["due_date"] == "2030-07-20"
    assert r.json["workflows"]["workflows_found"] == 0
    assert r.json["message"] == "Opportunity converted to event 'Smith Wedding'."

    converted = client.get(f"/api/opportunities/{opp['id']}").json
    assert converted["is_converted"] is True
    assert converted["stage"] == "closed_won"
    assert converted["converted_event_id"] == event["id"]

    assert client.post(f"/api/opportunities/{opp['id']}/convert-to-event", headers=admin).status_code == 409


def test_convert_with_fallback_date_converts_lead(client, admin):
    lead = client.post(
        "/api/leads",
        json={"first_name": "Ana", "last_name": "Diaz", "company": "Diaz Events", "email": "ana@example.com"},
        headers=admin,
    ).json
    opp = _opp(client, admin, name="Diaz Party", lead_id=lead["id"])

    r = client.post(
        f"/api/opportunities/{opp['id']}/convert-to-event",
        json={"event_date": "2030-02-14", "start_time": "18:30"},
        headers=admin,
    )
    assert r.status_code == 201, r.json
    assert r.json["invoice"] is None
    assert r.json["event"]["start_time"] == "18:30:00"
    assert r.json["event"]["account_id"] is not None

    lead = client.get(f"/api/leads/{lead['id']}").json
    assert lead["is_converted"] is True
    assert lead["converted_opportunity_id"] == opp["id"]
