from datetime import date, timedelta

from app.crm.modules.events.models import (
    DesignItemType,
    EventDesignItem,
    EventOperationsItem,
    EventStaffAssignment,
    EventType,
    OperationsItemType,
    StaffRole,
)
from app.crm.modules.events.service import create_event
from app.crm.modules.tasks.models import Notification, Task, TaskTemplate
from app.crm.modules.workflows import actions as workflow_actions
from app.crm.modules.workflows.cron import run_event_date_triggers
from app.crm.modules.workflows.engine import (
    trigger_event_created,
    trigger_task_created,
    trigger_task_status_changed,
)
from app.crm.modules.workflows.models import Workflow, WorkflowAction, WorkflowExecution

EVENT_DAY = date(2026, 6, 20)


def _event_type(s, name="Wedding"):
    et = EventType(tenant_id="acme", name=name, is_active=True, display_order=0)
    s.add(et)
    s.flush()
    return et


def _template(s, **kw):
    values = {"name": "Kickoff call", "default_title": "Call about {{event.name}}", "default_due_in_days": 3}
    values.update(kw)
    tpl = TaskTemplate(tenant_id="acme", is_active=True, **values)
    s.add(tpl)
    s.flush()
    return tpl


def _workflow(s, name, actions, **kw):
    wf = Workflow(tenant_id="acme", name=name, trigger_type=kw.pop("trigger_type", "event_created"), is_active=True, **kw)
    wf.actions = [WorkflowAction(execution_order=i, **a) for i, a in enumerate(actions)]
    s.add(wf)
    s.flush()
    return wf


def _event(s, event_type, **kw):
    payload = {"name": "Smith Wedding", "start_date": EVENT_DAY.isoformat(), "event_type_id": event_type.id}
    payload.update(kw)
    return create_event(s, payload, None)


def test_event_created_runs_matching_workflow_once(tenant_session, user_ids):
    s = tenant_session
    et = _event_type(s)
    other = _event_type(s, "Corporate")
    tpl = _template(s)
    wf = _workflow(
        s,
        "Wedding kickoff",
        [{"action_type": "create_task", "task_template_id": tpl.id, "assigned_to_user_id": user_ids["admin@example.com"]}],
        event_type_ids=[et.id],
    )
    _workflow(
        s,
        "Corporate kickoff",
        [{"action_type": "create_task", "task_template_id": tpl.id, "assigned_to_user_id": user_ids["admin@example.com"]}],
        event_type_ids=[other.id],
    )
    event = _event(s, et)

    summary = trigger_event_created(s, event)
    assert summary["workflows_found"] == 1
    assert summary["workflows_executed"] == 1
    assert summary["executions"][0]["status"] == "completed"
    assert summary["executions"][0]["tasks_created"] == 1

    task = s.get(Task, summary["created_task_ids"][0])
    assert task.title == "Call about Smith Wedding"
    assert task.due_date == date.today() + timedelta(days=3)
    assert task.auto_created is True
    assert (task.entity_type, task.entity_id) == ("event", event.id)
    assert task.workflow_id == wf.id
    assert task.workflow_execution_id == summary["executions"][0]["execution_id"]

    again = trigger_event_created(s, event)
    assert again["workflows_skipped"] == 1
    assert again["executions"][0]["reason"] == "already_executed"
    assert s.query(Task).filter(Task.workflow_id == wf.id).count() == 1


def test_event_without_type_runs_nothing(tenant_session):
    s = tenant_session
    event = create_event(s, {"name": "Untyped", "start_date": EVENT_DAY.isoformat()}, None)
    assert trigger_event_created(s, event) == {
        "workflows_found": 0,
        "workflows_executed": 0,
        "workflows_skipped": 0,
        "created_task_ids": [],
        "executions": [],
    }


def test_inactive_workflow_is_ignored(tenant_session, user_ids):
    s = tenant_session
    et = _event_type(s)
    tpl = _template(s)
    wf = _workflow(
        s,
        "Off",
        [{"action_type": "create_task", "task_template_id": tpl.id, "assigned_to_user_id": user_ids["admin@example.com"]}],
        event_type_ids=[et.id],
    )
    wf.is_active = False
    assert trigger_event_created(s, _event(s, et))["workflows_found"] == 0


def test_conditions_not_met_records_skipped_execution(tenant_session, user_ids):
    s = tenant_session
    et = _event_type(s)
    tpl = _template(s)
    wf = _workflow(
        s,
        "Confirmed only",
        [{"action_type": "create_task", "task_template_id": tpl.id, "assigned_to_user_id": user_ids["admin@example.com"]}],
        event_type_ids=[et.id],
        conditions=[{"field": "event.status", "operator": "equals", "value": "confirmed"}],
    )
    event = _event(s, et)

    summary = trigger_event_created(s, event)
    entry = summary["executions"][0]
    assert entry["status"] == "skipped"
    assert entry["reason"] == "conditions_not_met"
    execution = s.get(WorkflowExecution, entry["execution_id"])
    assert execution.status == "skipped"
    assert execution.conditions_passed is False
    assert execution.condition_results[0]["actual"] == "planning"
    assert s.query(Task).filter(Task.workflow_id == wf.id).count() == 0

    # a skipped run does not block a later one
    event.status = "confirmed"
    assert trigger_event_created(s, event)["executions"][0]["status"] == "completed"


def test_partial_and_failed_runs(tenant_session, user_ids):
    s = tenant_session
    et = _event_type(s)
    tpl = _template(s)
    _workflow(
        s,
        "Half broken",
        [
            {"action_type": "create_task", "task_template_id": tpl.id, "assigned_to_user_id": user_ids["admin@example.com"]},
            {"action_type": "create_design_item"},
        ],
        event_type_ids=[et.id],
    )
    _workflow(s, "All broken", [{"action_type": "create_ops_item"}], event_type_ids=[et.id])
    event = _event(s, et)

    summary = trigger_event_created(s, event)
    by_name = {e["workflow_name"]: e for e in summary["executions"]}
    assert by_name["Half broken"]["status"] == "partial"
    assert "design item type" in by_name["Half broken"]["error"]
    assert by_name["All broken"]["status"] == "failed"

    execution = s.get(WorkflowExecution, by_name["Half broken"]["execution_id"])
    assert (execution.actions_executed, execution.actions_successful, execution.actions_failed) == (2, 1, 1)

    # failed runs may be retried, partial ones may not
    again = {e["workflow_name"]: e for e in trigger_event_created(s, event)["executions"]}
    assert again["Half broken"]["status"] == "skipped"
    assert again["All broken"]["status"] == "failed"


def test_failed_flush_is_contained_to_its_action(tenant_session, user_ids, monkeypatch):
    def broken_notification(s, action, ctx):
        s.add(Notification(tenant_id="acme", user_id=action.assigned_to_user_id, title=None, is_read=False))
        s.flush()

    monkeypatch.setitem(workflow_actions.ACTION_EXECUTORS, "send_notification", broken_notification)
    s = tenant_session
    admin_id = user_ids["admin@example.com"]
    et = _event_type(s)
    tpl = _template(s)
    create_task = {"action_type": "create_task", "task_template_id": tpl.id, "assigned_to_user_id": admin_id}
    _workflow(
        s,
        "Notify first",
        [{"action_type": "send_notification", "assigned_to_user_id": admin_id}, create_task],
        event_type_ids=[et.id],
    )
    _workflow(s, "Task only", [create_task], event_type_ids=[et.id])
    event = _event(s, et)

    summary = trigger_event_created(s, event)
    by_name = {e["workflow_name"]: e for e in summary["executions"]}
    assert by_name["Notify first"]["status"] == "partial"
    assert by_name["Notify first"]["tasks_created"] == 1
    assert by_name["Task only"]["status"] == "completed"
    s.flush()

    assert s.query(Notification).count() == 0
    assert s.query(Task).filter(Task.entity_id == event.id).count() == 2
    assert s.query(WorkflowExecution).count() == 2
    assert event.name == "Smith Wedding"


def test_design_and_ops_item_deadlines(tenant_session):
    s = tenant_session
    et = _event_type(s)
    backdrop = DesignItemType(
        tenant_id="acme",
        name="Backdrop",
        default_design_days=5,
        default_production_days=3,
        default_shipping_days=2,
        client_approval_buffer_days=4,
        is_active=True,
    )
    coi = OperationsItemType(tenant_id="acme", name="Venue COI", due_date_days=10, is_active=True)
    s.add_all([backdrop, coi])
    s.flush()
    _workflow(
        s,
        "Prep",
        [
            {"action_type": "create_design_item", "design_item_type_id": backdrop.id},
            {"action_type": "create_ops_item", "operations_item_type_id": coi.id},
        ],
        event_type_ids=[et.id],
    )
    event = _event(s, et)
    summary = trigger_event_created(s, event)
    assert summary["executions"][0]["status"] == "completed"

    item = s.query(EventDesignItem).filter(EventDesignItem.event_id == event.id).one()
    assert item.design_deadline == EVENT_DAY - timedelta(days=14)
    assert item.item_name == "Backdrop"
    assert item.workflow_execution_id == summary["executions"][0]["execution_id"]
    ops = s.query(EventOperationsItem).filter(EventOperationsItem.event_id == event.id).one()
    assert ops.due_date == EVENT_DAY - timedelta(days=10)


def test_design_item_needs_event_date(tenant_session):
    s = tenant_session
    et = _event_type(s)
    backdrop = DesignItemType(tenant_id="acme", name="Backdrop", default_design_days=5, is_active=True)
    s.add(backdrop)
    s.flush()
    _workflow(s, "Prep", [{"action_type": "create_design_item", "design_item_type_id": backdrop.id}], event_type_ids=[et.id])
    event = create_event(s, {"name": "TBD", "event_type_id": et.id}, None)
    entry = trigger_event_created(s, event)["executions"][0]
    assert entry["status"] == "failed"
    assert "Event date is required" in entry["error"]


def test_assign_role_notification_and_email(tenant_session, user_ids):
    s = tenant_session
    staff_id = user_ids["staff@example.com"]
    et = _event_type(s)
    role = StaffRole(tenant_id="acme", name="Booth Attendant", is_active=True)
    s.add(role)
    s.flush()
    actions = [
        {"action_type": "assign_event_role", "staff_role_id": role.id, "assigned_to_user_id": staff_id},
        {"action_type": "send_notification", "assigned_to_user_id": staff_id, "config": {"title": "New: {{event.name}}"}},
        {"action_type": "send_email", "assigned_to_user_id": staff_id, "config": {"recipient_type": "assigned_user", "subject": "Hi"}},
        {"action_type": "send_email", "config": {"recipient_type": "custom", "recipient_email": "ops@example.com"}},
    ]
    _workflow(s, "Staffing A", actions, event_type_ids=[et.id])
    _workflow(s, "Staffing B", actions[:1], event_type_ids=[et.id])
    event = _event(s, et)

    summary = trigger_event_created(s, event)
    assert [e["status"] for e in summary["executions"]] == ["completed", "completed"]
    assert s.query(EventStaffAssignment).filter(EventStaffAssignment.event_id == event.id).count() == 1

    note = s.query(Notification).filter(Notification.user_id == staff_id).one()
    assert note.title == "New: Smith Wedding"
    assert note.link == f"/events/{event.id}"

    execution = s.get(WorkflowExecution, summary["executions"][0]["execution_id"])
    emails = [r["output"] for r in execution.action_results if r["action_type"] == "send_email"]
    assert [e["recipient_email"] for e in emails] == ["staff@example.com", "ops@example.com"]


def test_event_contact_email_without_address_fails(tenant_session):
    s = tenant_session
    et = _event_type(s)
    _workflow(s, "Mail client", [{"action_type": "send_email", "config": {"recipient_type": "event_contact"}}], event_type_ids=[et.id])
    entry = trigger_event_created(s, _event(s, et))["executions"][0]
    assert entry["status"] == "failed"
    assert "recipient" in entry["error"]


def test_call_webhook_posts_event(tenant_session, monkeypatch):
    calls = []

    def fake_post(self, url, body, headers=None):
        calls.append((url, body))
        return {"status": 204, "body": ""}

    monkeypatch.setattr(workflow_actions.WebhookClient, "post_json", fake_post)
    s = tenant_session
    et = _event_type(s)
    _workflow(
        s, "Notify CRM", [{"action_type": "call_webhook", "config": {"url": "https://hooks.example.com/x"}}], event_type_ids=[et.id]
    )
    event = _event(s, et)
    assert trigger_event_created(s, event)["executions"][0]["status"] == "completed"
    url, body = calls[0]
    assert url == "https://hooks.example.com/x"
    assert body["trigger"] == {"type": "event_created", "entity_type": "event", "entity_id": event.id}
    assert body["entity"]["name"] == "Smith Wedding"


def _manual_task(s, **kw):
    task = Task(tenant_id="acme", title="Check props", status="pending", priority="medium", auto_created=False, **kw)
    s.add(task)
    s.flush()
    return task


def test_task_created_filters_and_skips_auto_tasks(tenant_session, user_ids):
    s = tenant_session
    _workflow(
        s,
        "Route design tasks",
        [{"action_type": "assign_task", "assigned_to_user_id": user_ids["staff@example.com"]}],
        trigger_type="task_created",
        trigger_config={"departments": ["design"]},
    )
    design = _manual_task(s, department="design")
    sales = _manual_task(s, department="sales")

    assert trigger_task_created(s, design)["workflows_executed"] == 1
    assert design.assigned_to == user_ids["staff@example.com"]
    assert trigger_task_created(s, sales)["workflows_found"] == 0

    auto = _manual_task(s, department="design")
    auto.auto_created = True
    assert trigger_task_created(s, auto)["workflows_found"] == 0


def test_task_status_changed_matches_transition_and_repeats(tenant_session, user_ids):
    s = tenant_session
    _workflow(
        s,
        "Completion ping",
        [{"action_type": "send_notification", "assigned_to_user_id": user_ids["admin@example.com"], "config": {"title": "{{task.title}} done"}}],
        trigger_type="task_status_changed",
        trigger_config={"to_status": "completed"},
    )
    task = _manual_task(s)

    task.status = "in_progress"
    assert trigger_task_status_changed(s, task, "pending")["workflows_found"] == 0

    task.status = "completed"
    summary = trigger_task_status_changed(s, task, "in_progress")
    assert summary["executions"][0]["status"] == "completed"

    task.status = "in_progress"
    trigger_task_status_changed(s, task, "completed")
    task.status = "completed"
    assert trigger_task_status_changed(s, task, "in_progress")["executions"][0]["status"] == "completed"
    titles = [n.title for n in s.query(Notification).all()]
    assert titles == ["Check props done", "Check props done"]


def test_assign_task_rejects_event_trigger(tenant_session, user_ids):
    s = tenant_session
    et = _event_type(s)
    _workflow(s, "Wrong", [{"action_type": "assign_task", "assigned_to_user_id": user_ids["admin@example.com"]}], event_type_ids=[et.id])
    entry = trigger_event_created(s, _event(s, et))["executions"][0]
    assert entry["status"] == "failed"


def test_event_date_approaching_via_scheduler(app, user_ids):
    from app.crm.tenancy import tenant_session_scope

    today = date(2026, 6, 13)
    with app.app_context():
        with tenant_session_scope(app, "acme") as s:
            et = _event_type(s)
            tpl = _template(s, default_title="One week out: {{event.name}}")
            _workflow(
                s,
                "Week out",
                [{"action_type": "create_task", "task_template_id": tpl.id, "assigned_to_user_id": user_ids["admin@example.com"]}],
                trigger_type="event_date_approaching",
                trigger_config={"days_before": 7},
            )
            _event(s, et)
            _event(s, et, name="Later Party", start_date="2026-07-20")

        result = run_event_date_triggers(app, days_list=[1, 7], today=today)
        assert result["success"] is True
        assert result["tenants_processed"] == 2
        assert result["triggers_processed"] == 4
        assert result["events_processed"] == 1
        assert result["workflows_executed"] == 1

        again = run_event_date_triggers(app, tenant_ids=["acme"], days_list=[7], today=today)
        assert again["workflows_executed"] == 0

        with tenant_session_scope(app, "acme") as s:
            titles = [t.title for t in s.query(Task).all()]
    assert titles == ["One week out: Smith Wedding"]
