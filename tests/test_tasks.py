from datetime import date, timedelta


def test_task_create_validates(client, admin):
    r = client.post("/api/tasks", json={"title": ""}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/tasks", json={"title": "X", "priority": "whenever"}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/tasks", json={"title": "X", "entity_type": "planet"}, headers=admin)
    assert r.status_code == 400


def test_task_lifecycle_sets_completed_at(client, admin):
    r = client.post("/api/tasks", json={"title": "Pack props", "priority": "high"}, headers=admin)
    assert r.status_code == 201
    task = r.json
    assert task["status"] == "pending"
    assert task["workflows"]["workflows_found"] == 0

    r = client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"}, headers=admin)
    assert r.status_code == 200
    assert r.json["completed_at"] is not None
    assert "workflows" in r.json

    r = client.patch(f"/api/tasks/{task['id']}", json={"status": "in_progress"}, headers=admin)
    assert r.json["completed_at"] is None

    r = client.patch(f"/api/tasks/{task['id']}", json={"title": "Pack all props"}, headers=admin)
    assert "workflows" not in r.json


def test_my_tasks_dashboard(client, admin, user_ids):
    me = user_ids["admin@example.com"]
    today = date.today()
    for title, due in (("late", today - timedelta(days=2)), ("now", today), ("soon", today + timedelta(days=3))):
        client.post("/api/tasks", json={"title": title, "due_date": due.isoformat(), "assigned_to": me}, headers=admin)
    client.post("/api/tasks", json={"title": "someone else", "assigned_to": user_ids["staff@example.com"]}, headers=admin)

    r = client.get("/api/tasks/my")
    assert r.status_code == 200
    assert r.json["counts"] == {"overdue": 1, "due_today": 1, "upcoming": 1, "open": 3, "completed": 0}
    assert [t["title"] for t in r.json["overdue"]] == ["late"]


def test_task_list_filters(client, admin):
    client.post("/api/tasks", json={"title": "A", "entity_type": "account", "entity_id": 1}, headers=admin)
    client.post("/api/tasks", json={"title": "B", "status": "completed"}, headers=admin)
    r = client.get("/api/tasks?status=completed")
    assert [t["title"] for t in r.json["tasks"]] == ["B"]
    r = client.get("/api/tasks?entity_type=account&entity_id=1")
    assert [t["title"] for t in r.json["tasks"]] == ["A"]


def test_task_created_workflow_via_api(client, admin, user_ids):
    r = client.post(
        "/api/workflows",
        json={
            "name": "Ping on design tasks",
            "trigger_type": "task_created",
            "trigger_config": {"departments": ["design"]},
            "actions": [
                {
                    "action_type": "send_notification",
                    "assigned_to_user_id": user_ids["admin@example.com"],
                    "config": {"title": "New design task: {{task.title}}"},
                }
            ],
        },
        headers=admin,
    )
    assert r.status_code == 201, r.json

    r = client.post("/api/tasks", json={"title": "Logo overlay", "department": "design"}, headers=admin)
    assert r.json["workflows"]["workflows_executed"] == 1

    r = client.get("/api/notifications")
    assert r.json["unread"] == 1
    note = r.json["notifications"][0]
    assert note["title"] == "New design task: Logo overlay"
    assert note["link"] == f"/tasks/{note['entity_id']}"

    r = client.post(f"/api/notifications/{note['id']}/read", headers=admin)
    assert r.json["is_read"] is True
    assert client.get("/api/notifications").json["unread"] == 0


def test_notifications_are_per_user(client, login, user_ids):
    admin = login()
    client.post(
        "/api/workflows",
        json={
            "name": "Tell staff",
            "trigger_type": "task_created",
            "actions": [{"action_type": "send_notification", "assigned_to_user_id": user_ids["staff@example.com"]}],
        },
        headers=admin,
    )
    client.post("/api/tasks", json={"title": "Anything"}, headers=admin)
    assert client.get("/api/notifications").json["notifications"] == []
    client.post("/auth/logout")

    login("staff@example.com")
    r = client.get("/api/notifications")
    assert len(r.json["notifications"]) == 1
    assert r.json["notifications"][0]["title"] == "Workflow Notification"


def test_task_templates(client, admin):
    r = client.post("/api/task-templates", json={"name": "Call"}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/task-templates", json={"name": "Call", "default_title": "Call client", "default_priority": "high"}, headers=admin)
    assert r.status_code == 201
    assert r.json["default_priority"] == "high"
    r = client.get("/api/task-templates")
    assert [t["name"] for t in r.json["task_templates"]] == ["Call"]
