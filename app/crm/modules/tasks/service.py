from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import clean, parse_bool, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.tasks.models import Notification, Task, TaskTemplate


VALID_STATUSES = ("pending", "in_progress", "completed", "cancelled")
VALID_PRIORITIES = ("low", "medium", "high", "urgent")
ENTITY_TYPES = ("event", "opportunity", "account", "contact", "lead", "invoice")


def validate_template_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Name is required.")
    if not partial or "default_title" in payload:
        if not clean(payload.get("default_title")):
            errors.append("default_title is required.")
    priority = clean(payload.get("default_priority"))
    if priority and priority not in VALID_PRIORITIES:
        errors.append(f"Invalid default_priority. Must be one of: {', '.join(VALID_PRIORITIES)}")
    try:
        days = parse_int(payload.get("default_due_in_days"))
    except ValueError:
        errors.append("default_due_in_days must be an integer.")
    else:
        if days is not None and days < 0:
            errors.append("default_due_in_days cannot be negative.")
    return errors


def save_template(s: "Session", payload: dict, user: "User", template: "TaskTemplate | None" = None) -> "TaskTemplate":
    from app.crm.modules.tasks.models import TaskTemplate

    creating = template is None
    if creating:
        template = TaskTemplate(tenant_id=tenant_id_of(s), created_at=datetime.utcnow(), is_active=True, default_priority="medium")
        s.add(template)
    for field in ("name", "default_title"):
        if clean(payload.get(field)):
            setattr(template, field, clean(payload.get(field)))
    for field in ("default_description", "department", "task_type"):
        if field in payload:
            setattr(template, field, clean(payload.get(field)))
    if clean(payload.get("default_priority")):
        template.default_priority = clean(payload.get("default_priority"))
    if "default_due_in_days" in payload:
        template.default_due_in_days = parse_int(payload.get("default_due_in_days"))
    if "is_active" in payload:
        template.is_active = parse_bool(payload.get("is_active"), default=True)
    s.flush()
    record_event(
        s,
        actor=user,
        action="task_template.create" if creating else "task_template.update",
        entity_type="TaskTemplate",
        entity_id=str(template.id),
        metadata={"name": template.name, "is_active": template.is_active},
    )
    return template


def delete_template(s: "Session", template: "TaskTemplate", user: "User") -> None:
    record_event(s, actor=user, action="task_template.delete", entity_type="TaskTemplate", entity_id=str(template.id), metadata={"name": template.name})
    s.delete(template)


# ---------- Tasks ----------


def validate_task_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        if not clean(payload.get("title")):
            errors.append("Title is required.")
    status = clean(payload.get("status"))
    if status and status not in VALID_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
    priority = clean(payload.get("priority"))
    if priority and priority not in VALID_PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(VALID_PRIORITIES)}")
    entity_type = clean(payload.get("entity_type"))
    if entity_type and entity_type not in ENTITY_TYPES:
        errors.append(f"Invalid entity_type. Must be one of: {', '.join(ENTITY_TYPES)}")
    try:
        parse_date(payload.get("due_date"))
    except ValueError:
        errors.append("due_date must be YYYY-MM-DD.")
    for field in ("assigned_to", "entity_id"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    return errors


def _sync_completed_at(task: "Task", previous_status: str | None) -> None:
    if task.status == "completed" and previous_status != "completed":
        task.completed_at = datetime.utcnow()
    elif task.status != "completed":
        task.completed_at = None


def create_task(s: "Session", payload: dict, user: "User") -> tuple["Task", dict[str, Any]]:
    """Create a task; returns the task and the task_created workflow summary."""
    from app.crm.modules.tasks.models import Task
    from app.crm.modules.workflows.engine import trigger_task_created

    now = datetime.utcnow()
    task = Task(
        tenant_id=tenant_id_of(s),
        title=clean(payload.get("title")) or "",
        description=clean(payload.get("description")),
        status=clean(payload.get("status")) or "pending",
        priority=clean(payload.get("priority")) or "medium",
        due_date=parse_date(payload.get("due_date")),
        assigned_to=parse_int(payload.get("assigned_to")),
        created_by=user.id,
        entity_type=clean(payload.get("entity_type")),
        entity_id=parse_int(payload.get("entity_id")),
        department=clean(payload.get("department")),
        task_type=clean(payload.get("task_type")),
        auto_created=False,
        created_at=now,
        updated_at=now,
    )
    _sync_completed_at(task, None)
    s.add(task)
    s.flush()
    record_event(
        s,
        actor=user,
        action="task.create",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title, "assigned_to": task.assigned_to, "entity": f"{task.entity_type}:{task.entity_id}"},
    )
    return task, trigger_task_created(s, task, user)


def update_task(
    s: "Session", task: "Task", payload: dict, user: "User", reason: str | None = None
) -> tuple["Task", dict[str, Any] | None]:
    """Apply edits; returns the task and the task_status_changed summary when the status moved."""
    from app.crm.modules.workflows.engine import trigger_task_status_changed

    previous_status = task.status
    changes: dict[str, Any] = {}

    def _set(field, new_val):
        old_val = getattr(task, field)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
            setattr(task, field, new_val)

    for field in ("title", "status", "priority"):
        if field in payload and clean(payload.get(field)):
            _set(field, clean(payload.get(field)))
    for field in ("description", "department", "task_type", "entity_type"):
        if field in payload:
            _set(field, clean(payload.get(field)))
    for field in ("assigned_to", "entity_id"):
        if field in payload:
            _set(field, parse_int(payload.get(field)))
    if "due_date" in payload:
        _set("due_date", parse_date(payload.get("due_date")))

    summary = None
    if changes:
        _sync_completed_at(task, previous_status)
        task.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="task.update",
            entity_type="Task",
            entity_id=str(task.id),
            reason=reason,
            metadata={"changes": changes},
        )
        if task.status != previous_status:
            s.flush()
            summary = trigger_task_status_changed(s, task, previous_status, user)
    return task, summary


def delete_task(s: "Session", task: "Task", user: "User") -> None:
    record_event(s, actor=user, action="task.delete", entity_type="Task", entity_id=str(task.id), metadata={"title": task.title})
    s.delete(task)


def my_tasks_dashboard(tasks: list["Task"], today: date | None = None) -> dict[str, Any]:
    """Bucket open tasks for the current user's dashboard."""
    from app.crm.utils import serialize

    today = today or date.today()
    horizon = today + timedelta(days=7)
    open_tasks = [t for t in tasks if t.status not in ("completed", "cancelled")]
    overdue = [t for t in open_tasks if t.due_date and t.due_date < today]
    due_today = [t for t in open_tasks if t.due_date == today]
    upcoming = [t for t in open_tasks if t.due_date and today < t.due_date <= horizon]
    return {
        "overdue": [serialize(t) for t in overdue],
        "due_today": [serialize(t) for t in due_today],
        "upcoming": [serialize(t) for t in upcoming],
        "counts": {
            "overdue": len(overdue),
            "due_today": len(due_today),
            "upcoming": len(upcoming),
            "open": len(open_tasks),
            "completed": sum(1 for t in tasks if t.status == "completed"),
        },
    }


def mark_notification_read(s: "Session", notification: "Notification") -> "Notification":
    notification.is_read = True
    return notification
