import pytest


@pytest.fixture()
def setup(client, admin, user_ids):
    et = client.post("/api/event-types", json={"name": "Wedding"}, headers=admin).json
    tpl = client.post(
        "/api/task-templates",
        json={"name": "Kickoff", "default_title": "Kickoff for {{event.name}}", "default_due_in_days": 2},
        headers=admin,
    ).json
    return {"event_type_id": et["id"], "template_id": tpl["id"], "user_id": user_ids["admin@example.com"]}


def _payload(setup, **kw):
    payload = {
        "name": "Wedding kickoff",
        "trigger_type": "event_created",
        "event_type_ids": [setup["event_type_id"]],
        "actions": [
            {"action_type": "create_task", "task_template_id": setup["template_id"], "assigned_to_user_id": setup["user_id"]}
        ],
    }
    payload.update(kw)
    return payload


def test_create_workflow_and_fire_on_event(client, admin, setup):
    r = client.post("/api/workflows", json=_payload(setup), headers=admin)
    assert r.status_code == 201, r.json
    wf = r.json
    assert wf["warnings"] == []
    assert [a["action_type"] for a in wf["actions"]] == ["create_task"]

    r = client.post(
        "/api/events",
        json={"name": "Lee Wedding", "start_date": "2030-05-01", "event_type_id": setup["event_type_id"]},
        headers=admin,
    )
    assert r.status_code == 201
    assert r.json["workflows"]["workflows_executed"] == 1
    event_id = r.json["id"]

    detail = client.get(f"/api/events/{event_id}").json
    assert [t["title"] for t in detail["tasks"]] == ["Kickoff for Lee Wedding"]

    r = client.get(f"/api/workflows/{wf['id']}/executions")
    assert r.json["total"] == 1
    assert r.json["executions"][0]["status"] == "completed"


def test_workflow_validation(client, admin, setup):
    r = client.post("/api/workflows", json=_payload(setup, name="", event_type_ids=[]), headers=admin)
    assert r.status_code == 400
    assert "Name is required." in r.json["details"]
    assert "event_created workflows require at least one event type." in r.json["details"]

    r = client.post("/api/workflows", json=_payload(setup, actions=[]), headers=admin)
    assert r.status_code == 400
    assert r.json["message"] == "At least one action is required."

    bad_task = [{"action_type": "create_task", "task_template_id": setup["template_id"], "assigned_to_user_id": 9999}]
    r = client.post("/api/workflows", json=_payload(setup, actions=bad_task), headers=admin)
    assert r.status_code == 400
    assert "assigned user" in r.json["message"]

    r = client.post(
        "/api/workflows",
        json=_payload(setup, trigger_type="event_date_approaching", trigger_config={"days_before": 0}),
        headers=admin,
    )
    assert r.status_code == 400

    r = client.post(
        "/api/workflows",
        json=_payload(setup, conditions=[{"field": "event.status", "operator": "like", "value": "x"}]),
        headers=admin,
    )
    assert r.status_code == 400
    assert r.json["message"] == "Condition 1: Unknown condition operator: like"


def test_user_from_other_tenant_is_not_assignable(client, admin, setup, user_ids):
    actions = [{"action_type": "send_notification", "assigned_to_user_id": user_ids["other@example.com"]}]
    r = client.post("/api/workflows", json=_payload(setup, actions=actions), headers=admin)
    assert r.status_code == 400


def test_inactive_template_is_a_warning(client, admin, setup):
    client.patch(f"/api/task-templates/{setup['template_id']}", json={"is_active": False}, headers=admin)
    r = client.post("/api/workflows", json=_payload(setup), headers=admin)
    assert r.status_code == 201
    assert r.json["warnings"] == ["Action 1: task template 'Kickoff' is inactive."]


def test_duplicate_name_conflicts(client, admin, setup):
    assert client.post("/api/workflows", json=_payload(setup), headers=admin).status_code == 201
    r = client.post("/api/workflows", json=_payload(setup, name="WEDDING KICKOFF"), headers=admin)
    assert r.status_code == 409


def test_update_toggle_delete(client, admin, setup):
    wf = client.post("/api/workflows", json=_payload(setup), headers=admin).json

    r = client.patch(f"/api/workflows/{wf['id']}", json={"description": "First touch"}, headers=admin)
    assert r.status_code == 200
    assert r.json["description"] == "First touch"
    assert len(r.json["actions"]) == 1

    r = client.patch(
        f"/api/workflows/{wf['id']}",
        json={"actions": [{"action_type": "call_webhook", "config": {"url": "ftp://nope"}}]},
        headers=admin,
    )
    assert r.status_code == 400

    r = client.post(f"/api/workflows/{wf['id']}/toggle", headers=admin)
    assert r.json["is_active"] is False
    r = client.get("/api/workflows?active=1")
    assert r.json["workflows"] == []

    assert client.delete(f"/api/workflows/{wf['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/workflows/{wf['id']}").status_code == 404


def test_apply_to_existing_events(client, admin, setup):
    for name, day in (("Past", "2020-01-01"), ("Future A", "2030-01-01"), ("Future B", "2030-02-01")):
        client.post("/api/events", json={"name": name, "start_date": day, "event_type_id": setup["event_type_id"]}, headers=admin)
    wf = client.post("/api/workflows", json=_payload(setup), headers=admin).json

    r = client.get(f"/api/workflows/{wf['id']}/apply-to-existing")
    assert r.status_code == 200
    assert [e["name"] for e in r.json["events"]] == ["Future A", "Future B"]

    r = client.post(f"/api/workflows/{wf['id']}/apply-to-existing", headers=admin)
    assert r.status_code == 200

    r = client.get(f"/api/workflows/{wf['id']}/apply-to-existing")
    assert r.json["count"] == 0


def test_apply_to_existing_only_for_event_created(client, admin, setup):
    wf = client.post(
        "/api/workflows",
        json=_payload(setup, name="Week out", trigger_type="event_date_approaching", trigger_config={"days_before": 7}),
        headers=admin,
    ).json
    r = client.get(f"/api/workflows/{wf['id']}/apply-to-existing")
    assert r.status_code == 400


def test_item_types_crud(client, admin):
    r = client.post(
        "/api/design-item-types",
        json={"name": "Backdrop", "default_design_days": 5, "default_production_days": 3},
        headers=admin,
    )
    assert r.status_code == 201
    backdrop = r.json
    assert backdrop["default_shipping_days"] == 0

    assert client.post("/api/design-item-types", json={"name": "backdrop"}, headers=admin).status_code == 409
    assert client.post("/api/design-item-types", json={"name": "X", "default_design_days": -1}, headers=admin).status_code == 400

    r = client.patch(f"/api/design-item-types/{backdrop['id']}", json={"is_active": False}, headers=admin)
    assert r.status_code == 200
    assert r.json["is_active"] is False

    r = client.post("/api/operations-item-types", json={"name": "Venue COI", "due_date_days": 14}, headers=admin)
    assert r.status_code == 201
    r = client.get("/api/operations-item-types")
    assert [t["name"] for t in r.json["operations_item_types"]] == ["Venue COI"]

    assert client.delete(f"/api/design-item-types/{backdrop['id']}", headers=admin).status_code == 200
    assert client.get("/api/design-item-types").json["design_item_types"] == []


def test_workflow_edit_needs_permission(client, login):
    headers = login("staff@example.com")
    r = client.post("/api/workflows", json={"name": "x"}, headers=headers)
    assert r.status_code == 403


def test_send_email_recipient_type_is_normalized_on_save(client, admin, setup):
    actions = [
        {"action_type": "send_email", "assigned_to_user_id": setup["user_id"], "config": {"subject": "Booked"}},
        {"action_type": "send_email", "config": {"recipient_type": " custom ", "recipient_email": "ops@example.com"}},
    ]
    r = client.post("/api/workflows", json=_payload(setup, actions=actions), headers=admin)
    assert r.status_code == 201, r.json
    assert [a["config"]["recipient_type"] for a in r.json["actions"]] == ["assigned_user", "custom"]

    r = client.post(
        "/api/events",
        json={"name": "Lee Wedding", "start_date": "2030-05-01", "event_type_id": setup["event_type_id"]},
        headers=admin,
    )
    assert [e["status"] for e in r.json["workflows"]["executions"]] == ["completed"]
