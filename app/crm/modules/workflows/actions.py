"""
Workflow action executors.

Each executor takes (session, action, context) and returns an ActionResult. An executor
signals failure by raising ActionError (or any other exception); `execute_action` turns
that into a failed result so one broken action never stops the rest of the workflow.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from flask import current_app, has_app_context

from app.crm.modules.workflows.conditions import get_path
from app.crm.modules.workflows.webhook_client import WebhookClient

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.events.models import Event
    from app.crm.modules.workflows.models import Workflow, WorkflowAction

logger = logging.getLogger(__name__)

ACTION_TYPES = (
    "create_task",
    "create_design_item",
    "create_ops_item",
    "assign_event_role",
    "assign_task",
    "send_email",
    "send_notification",
    "call_webhook",
)
RECIPIENT_TYPES = ("assigned_user", "event_contact", "custom")

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


class ActionError(RuntimeError):
    pass


@dataclass
class ActionContext:
    workflow: "Workflow"
    trigger_type: str
    entity_type: str  # "event" or "task"
    entity: Any
    data: dict[str, Any]  # condition/template context: {entity_type: {...}, "previous": {...}}
    user: "User | None" = None
    execution_id: int | None = None


@dataclass
class ActionResult:
    success: bool
    action_id: int | None
    action_type: str
    error: str | None = None
    created_task_id: int | None = None
    created_design_item_id: int | None = None
    created_ops_item_id: int | None = None
    created_assignment_id: int | None = None
    created_notification_id: int | None = None
    output: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, {})}


# ---------- Helpers ----------


def render_template(text: str | None, data: dict[str, Any]) -> str:
    """Replace {{dotted.path}} placeholders with values from the context; unknown paths become ''."""
    if not text:
        return ""

    def _sub(m: re.Match) -> str:
        value = get_path(data, m.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_sub, text)


def email_recipient_type(config: dict[str, Any]) -> str:
    """send_email recipient type; blank means the action's assigned user."""
    return str(config.get("recipient_type") or "").strip() or "assigned_user"


def _app_user(s: "Session", user_id: int | None) -> "User | None":
    from app.crm.db import db_session
    from app.crm.models import User

    if user_id is None:
        return None
    u = db_session().get(User, user_id)
    app_tenant_id = s.info.get("app_tenant_id")
    if u is None or (app_tenant_id and u.tenant_id != app_tenant_id):
        return None
    return u


def resolve_event(s: "Session", ctx: ActionContext) -> "Event":
    """The event a workflow acts on: the trigger itself, or the event a triggering task points at."""
    from app.crm.modules.events.models import Event
    from app.crm.utils import tenant_get

    if ctx.entity_type == "event":
        return ctx.entity
    task = ctx.entity
    if task.entity_type != "event" or task.entity_id is None:
        raise ActionError("Task is not associated with an event")
    event = tenant_get(s, Event, task.entity_id)
    if event is None:
        raise ActionError(f"Event not found: {task.entity_id}")
    return event


def _require_event_date(event: "Event") -> date:
    if event.start_date is None:
        raise ActionError("Event date is required for timeline calculations")
    return event.start_date


# ---------- Executors ----------


def _create_task(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    from app.crm.modules.tasks.models import Task, TaskTemplate
    from app.crm.utils import tenant_get

    if not action.task_template_id:
        raise ActionError("create_task requires a task template")
    if not action.assigned_to_user_id:
        raise ActionError("create_task requires an assigned user")
    template = tenant_get(s, TaskTemplate, action.task_template_id)
    if template is None:
        raise ActionError(f"Task template not found: {action.task_template_id}")

    due = None
    if template.default_due_in_days is not None:
        due = date.today() + timedelta(days=template.default_due_in_days)
    now = datetime.utcnow()
    task = Task(
        tenant_id=ctx.workflow.tenant_id,
        title=render_template(template.default_title, ctx.data) or template.default_title,
        description=render_template(template.default_description, ctx.data) or None,
        status="pending",
        priority=template.default_priority or "medium",
        due_date=due,
        assigned_to=action.assigned_to_user_id,
        created_by=ctx.user.id if ctx.user else ctx.workflow.created_by,
        entity_type=ctx.entity_type,
        entity_id=ctx.entity.id,
        department=template.department,
        task_type=template.task_type,
        auto_created=True,
        workflow_id=ctx.workflow.id,
        workflow_execution_id=ctx.execution_id,
        created_at=now,
        updated_at=now,
    )
    s.add(task)
    s.flush()
    return ActionResult(True, action.id, action.action_type, created_task_id=task.id, output={"title": task.title})


def _create_design_item(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    from app.crm.modules.events.models import DesignItemType, EventDesignItem
    from app.crm.utils import tenant_get

    if not action.design_item_type_id:
        raise ActionError("create_design_item requires a design item type")
    event = resolve_event(s, ctx)
    item_type = tenant_get(s, DesignItemType, action.design_item_type_id)
    if item_type is None:
        raise ActionError(f"Design item type not found: {action.design_item_type_id}")
    event_day = _require_event_date(event)

    deadline = event_day - timedelta(days=item_type.lead_time_days)
    item = EventDesignItem(
        tenant_id=ctx.workflow.tenant_id,
        event_id=event.id,
        design_item_type_id=item_type.id,
        item_name=item_type.name,
        description=f"Auto-created from workflow: {ctx.workflow.name}",
        quantity=1,
        status="pending",
        assigned_designer_id=action.assigned_to_user_id,
        design_deadline=deadline,
        auto_created=True,
        workflow_id=ctx.workflow.id,
        workflow_execution_id=ctx.execution_id,
        created_at=datetime.utcnow(),
    )
    s.add(item)
    s.flush()
    return ActionResult(
        True,
        action.id,
        action.action_type,
        created_design_item_id=item.id,
        output={"design_deadline": deadline.isoformat(), "lead_time_days": item_type.lead_time_days},
    )


def _create_ops_item(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    from app.crm.modules.events.models import EventOperationsItem, OperationsItemType
    from app.crm.utils import tenant_get

    if not action.operations_item_type_id:
        raise ActionError("create_ops_item requires an operations item type")
    event = resolve_event(s, ctx)
    item_type = tenant_get(s, OperationsItemType, action.operations_item_type_id)
    if item_type is None:
        raise ActionError(f"Operations item type not found: {action.operations_item_type_id}")
    event_day = _require_event_date(event)

    due = event_day - timedelta(days=item_type.due_date_days or 0)
    item = EventOperationsItem(
        tenant_id=ctx.workflow.tenant_id,
        event_id=event.id,
        operations_item_type_id=item_type.id,
        item_name=item_type.name,
        description=f"Auto-created from workflow: {ctx.workflow.name}",
        status="pending",
        assigned_to_id=action.assigned_to_user_id,
        due_date=due,
        auto_created=True,
        workflow_id=ctx.workflow.id,
        workflow_execution_id=ctx.execution_id,
        created_at=datetime.utcnow(),
    )
    s.add(item)
    s.flush()
    return ActionResult(True, action.id, action.action_type, created_ops_item_id=item.id, output={"due_date": due.isoformat()})


def _assign_event_role(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    from app.crm.modules.events.service import assign_staff, find_staff_assignment

    if not action.staff_role_id or not action.assigned_to_user_id:
        raise ActionError("assign_event_role requires a staff role and a user")
    event = resolve_event(s, ctx)
    existing = find_staff_assignment(s, event.id, action.assigned_to_user_id, action.staff_role_id)
    if existing is not None:
        return ActionResult(
            True, action.id, action.action_type, created_assignment_id=existing.id, output={"already_existed": True}
        )
    assignment = assign_staff(
        s,
        event,
        {"user_id": action.assigned_to_user_id, "staff_role_id": action.staff_role_id},
        ctx.user,
        audit=False,
    )
    return ActionResult(True, action.id, action.action_type, created_assignment_id=assignment.id)


def _assign_task(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    if not action.assigned_to_user_id:
        raise ActionError("assign_task requires an assigned user")
    if ctx.entity_type != "task":
        raise ActionError("assign_task only works with task triggers")
    task = ctx.entity
    previous = task.assigned_to
    task.assigned_to = action.assigned_to_user_id
    task.updated_at = datetime.utcnow()
    s.flush()
    return ActionResult(
        True, action.id, action.action_type, output={"task_id": task.id, "previous_assignee": previous, "assigned_to": task.assigned_to}
    )


def _send_email(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.contacts.models import Contact
    from app.crm.utils import tenant_get

    config = action.config or {}
    recipient_type = email_recipient_type(config)
    if recipient_type not in RECIPIENT_TYPES:
        raise ActionError(f"send_email has an invalid recipient_type: {recipient_type}")

    email = name = None
    if recipient_type == "assigned_user":
        u = _app_user(s, action.assigned_to_user_id)
        if u is not None:
            email, name = u.email, u.full_name
    elif recipient_type == "event_contact":
        event = resolve_event(s, ctx)
        contact = tenant_get(s, Contact, event.contact_id)
        if contact is not None and contact.email:
            email, name = contact.email, contact.full_name
        else:
            account = tenant_get(s, Account, event.account_id)
            if account is not None and account.email:
                email, name = account.email, account.name
    else:
        email = config.get("recipient_email") or config.get("custom_email")
        name = config.get("recipient_name")
    if not email:
        raise ActionError("Could not determine email recipient")

    subject = render_template(config.get("subject"), ctx.data)
    body = render_template(config.get("body"), ctx.data)
    logger.info(
        "workflow email queued workflow_id=%s to=%s subject=%r entity=%s:%s",
        ctx.workflow.id,
        email,
        subject,
        ctx.entity_type,
        ctx.entity.id,
    )
    return ActionResult(
        True,
        action.id,
        action.action_type,
        output={"recipient_email": email, "recipient_name": name, "subject": subject, "body": body, "queued": True},
    )


def _send_notification(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    from app.crm.modules.tasks.models import Notification

    if not action.assigned_to_user_id:
        raise ActionError("send_notification requires an assigned user")
    config = action.config or {}
    link = config.get("link") or (f"/events/{ctx.entity.id}" if ctx.entity_type == "event" else f"/tasks/{ctx.entity.id}")
    notification = Notification(
        tenant_id=ctx.workflow.tenant_id,
        user_id=action.assigned_to_user_id,
        title=render_template(config.get("title"), ctx.data) or "Workflow Notification",
        message=render_template(config.get("message"), ctx.data) or "You have a new notification",
        priority=config.get("priority") or "normal",
        link=link,
        is_read=False,
        entity_type=ctx.entity_type,
        entity_id=ctx.entity.id,
        workflow_id=ctx.workflow.id,
        created_at=datetime.utcnow(),
    )
    s.add(notification)
    s.flush()
    return ActionResult(True, action.id, action.action_type, created_notification_id=notification.id, output={"link": link})


def _call_webhook(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    config = action.config or {}
    url = str(config.get("url") or "")
    if not url.startswith(("http://", "https://")):
        raise ActionError("call_webhook requires an http(s) url")
    timeout = current_app.config.get("WEBHOOK_TIMEOUT_SECONDS", 10) if has_app_context() else 10
    client = WebhookClient(timeout_seconds=timeout)
    body = {
        "workflow": {"id": ctx.workflow.id, "name": ctx.workflow.name},
        "trigger": {"type": ctx.trigger_type, "entity_type": ctx.entity_type, "entity_id": ctx.entity.id},
        "entity": ctx.data.get(ctx.entity_type),
    }
    response = client.post_json(url, body, headers=config.get("headers") or None)
    return ActionResult(True, action.id, action.action_type, output={"status": response["status"]})


ACTION_EXECUTORS: dict[str, Callable[["Session", "WorkflowAction", ActionContext], ActionResult]] = {
    "create_task": _create_task,
    "create_design_item": _create_design_item,
    "create_ops_item": _create_ops_item,
    "assign_event_role": _assign_event_role,
    "assign_task": _assign_task,
    "send_email": _send_email,
    "send_notification": _send_notification,
    "call_webhook": _call_webhook,
}


def execute_action(s: "Session", action: "WorkflowAction", ctx: ActionContext) -> ActionResult:
    executor = ACTION_EXECUTORS.get(action.action_type)
    if executor is None:
        return ActionResult(False, action.id, action.action_type, error=f"Unknown action type: {action.action_type}")
    logger.debug("workflow %s running action %s (%s)", ctx.workflow.id, action.id, action.action_type)
    try:
        # SAVEPOINT per action
        with s.begin_nested():
            return executor(s, action, ctx)
    except Exception as e:
        logger.warning("workflow %s action %s (%s) failed: %s", ctx.workflow.id, action.id, action.action_type, e)
        return ActionResult(False, action.id, action.action_type, error=str(e))
