"""
Workflow definitions: validation, CRUD with nested actions, and the lookup tables the
actions point at (design-item types, operations-item types).

Validation returns (errors, warnings). Errors block the save; warnings (an inactive
template or item type) are handed back to the caller alongside the saved workflow.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.crm.audit import record_event
from app.crm.modules.workflows.actions import ACTION_TYPES, RECIPIENT_TYPES, _app_user, email_recipient_type
from app.crm.modules.workflows.conditions import validate_condition
from app.crm.modules.workflows.engine import TRIGGER_TYPES, execute_workflow, has_successful_execution
from app.crm.tenancy import tenant_id_of
from app.crm.utils import ConflictError, clean, parse_bool, parse_int, tenant_get

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.events.models import DesignItemType, Event, OperationsItemType
    from app.crm.modules.workflows.models import Workflow


_ACTION_ID_FIELDS = (
    "task_template_id",
    "assigned_to_user_id",
    "design_item_type_id",
    "operations_item_type_id",
    "staff_role_id",
)


def _int_list(value: Any) -> list[int]:
    if value in (None, ""):
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [int(v) for v in value]


def _validate_action(s: "Session", index: int, action: Any, errors: list[str], warnings: list[str]) -> None:
    from app.crm.modules.events.models import DesignItemType, OperationsItemType, StaffRole
    from app.crm.modules.tasks.models import TaskTemplate

    label = f"Action {index + 1}"
    if not isinstance(action, dict):
        errors.append(f"{label}: must be an object.")
        return
    action_type = clean(action.get("action_type"))
    if action_type not in ACTION_TYPES:
        errors.append(f"{label}: invalid action_type. Must be one of: {', '.join(ACTION_TYPES)}")
        return

    ids = {}
    for field in _ACTION_ID_FIELDS:
        try:
            ids[field] = parse_int(action.get(field))
        except ValueError:
            errors.append(f"{label}: {field} must be an integer.")
            ids[field] = None
    config = action.get("config") or {}
    if not isinstance(config, dict):
        errors.append(f"{label}: config must be an object.")
        config = {}

    if action_type == "create_task":
        template = tenant_get(s, TaskTemplate, ids["task_template_id"])
        if template is None:
            errors.append(f"{label}: create_task requires an existing task template.")
        elif not template.is_active:
            warnings.append(f"{label}: task template '{template.name}' is inactive.")
        if _app_user(s, ids["assigned_to_user_id"]) is None:
            errors.append(f"{label}: create_task requires an assigned user.")

    elif action_type == "create_design_item":
        item_type = tenant_get(s, DesignItemType, ids["design_item_type_id"])
        if item_type is None:
            errors.append(f"{label}: create_design_item requires an existing design item type.")
        elif not item_type.is_active:
            warnings.append(f"{label}: design item type '{item_type.name}' is inactive.")

    elif action_type == "create_ops_item":
        item_type = tenant_get(s, OperationsItemType, ids["operations_item_type_id"])
        if item_type is None:
            errors.append(f"{label}: create_ops_item requires an existing operations item type.")
        elif not item_type.is_active:
            warnings.append(f"{label}: operations item type '{item_type.name}' is inactive.")

    elif action_type == "assign_event_role":
        if tenant_get(s, StaffRole, ids["staff_role_id"]) is None:
            errors.append(f"{label}: assign_event_role requires an existing staff role.")
        if _app_user(s, ids["assigned_to_user_id"]) is None:
            errors.append(f"{label}: assign_event_role requires a user.")

    elif action_type in ("assign_task", "send_notification"):
        if _app_user(s, ids["assigned_to_user_id"]) is None:
            errors.append(f"{label}: {action_type} requires a user.")

    elif action_type == "call_webhook":
        url = clean(config.get("url")) or ""
        if not url.lower().startswith(("http://", "https://")):
            errors.append(f"{label}: call_webhook requires an http(s) url.")

    elif action_type == "send_email":
        recipient_type = email_recipient_type(config)
        if recipient_type not in RECIPIENT_TYPES:
            errors.append(f"{label}: invalid recipient_type. Must be one of: {', '.join(RECIPIENT_TYPES)}")
        elif recipient_type == "custom" and not (clean(config.get("recipient_email")) or clean(config.get("custom_email"))):
            errors.append(f"{label}: send_email with a custom recipient requires recipient_email.")
        elif recipient_type == "assigned_user" and _app_user(s, ids["assigned_to_user_id"]) is None:
            errors.append(f"{label}: send_email to assigned_user requires a user.")


def validate_workflow(
    s: "Session", payload: dict, *, current: "Workflow | None" = None
) -> tuple[list[str], list[str]]:
    """Full validation of a create/update payload (merged over `current` for updates)."""
    from app.crm.modules.events.models import EventType

    errors: list[str] = []
    warnings: list[str] = []

    def pick(field: str, default: Any = None) -> Any:
        if field in payload:
            return payload.get(field)
        return getattr(current, field, default) if current is not None else default

    name = clean(pick("name"))
    if not name:
        errors.append("Name is required.")

    trigger_type = clean(pick("trigger_type")) or "event_created"
    if trigger_type not in TRIGGER_TYPES:
        errors.append(f"Invalid trigger_type. Must be one of: {', '.join(TRIGGER_TYPES)}")

    trigger_config = pick("trigger_config") or {}
    if not isinstance(trigger_config, dict):
        errors.append("trigger_config must be an object.")
        trigger_config = {}

    if trigger_type == "event_created":
        try:
            type_ids = _int_list(pick("event_type_ids"))
        except (TypeError, ValueError):
            errors.append("event_type_ids must be a list of integers.")
        else:
            if not type_ids:
                errors.append("event_created workflows require at least one event type.")
            for type_id in type_ids:
                event_type = tenant_get(s, EventType, type_id)
                if event_type is None:
                    errors.append(f"Event type not found: {type_id}")
                elif not event_type.is_active:
                    warnings.append(f"Event type '{event_type.name}' is inactive.")

    if trigger_type == "event_date_approaching":
        try:
            days_before = parse_int(trigger_config.get("days_before"))
        except ValueError:
            days_before = None
        if days_before is None or days_before <= 0:
            errors.append("event_date_approaching workflows require a positive days_before.")

    conditions = pick("conditions") or []
    if not isinstance(conditions, list):
        errors.append("conditions must be a list.")
    else:
        for i, condition in enumerate(conditions):
            errors.extend(f"Condition {i + 1}: {e}" for e in validate_condition(condition))

    if "actions" in payload or current is None:
        actions = payload.get("actions") or []
        if not isinstance(actions, list) or not actions:
            errors.append("At least one action is required.")
        else:
            for i, action in enumerate(actions):
                _validate_action(s, i, action, errors, warnings)

    return errors, warnings


def _name_taken(s: "Session", name: str, exclude_id: int | None = None) -> bool:
    from app.crm.modules.workflows.models import Workflow

    q = select(func.count(Workflow.id)).where(Workflow.tenant_id == tenant_id_of(s), func.lower(Workflow.name) == name.lower())
    if exclude_id is not None:
        q = q.where(Workflow.id != exclude_id)
    return (s.execute(q).scalar() or 0) > 0


def _build_actions(workflow: "Workflow", actions: list[dict]) -> None:
    from app.crm.modules.workflows.models import WorkflowAction

    ordered = sorted(
        enumerate(actions),
        key=lambda pair: (parse_int(pair[1].get("execution_order"), pair[0]), pair[0]),
    )

    def _config(a: dict) -> dict:
        config = dict(a.get("config") or {})
        if clean(a.get("action_type")) == "send_email":
            config["recipient_type"] = email_recipient_type(config)
        return config

    workflow.actions = [
        WorkflowAction(
            action_type=clean(a.get("action_type")),
            execution_order=order,
            task_template_id=parse_int(a.get("task_template_id")),
            assigned_to_user_id=parse_int(a.get("assigned_to_user_id")),
            design_item_type_id=parse_int(a.get("design_item_type_id")),
            operations_item_type_id=parse_int(a.get("operations_item_type_id")),
            staff_role_id=parse_int(a.get("staff_role_id")),
            config=_config(a),
            created_at=datetime.utcnow(),
        )
        for order, (_, a) in enumerate(ordered)
    ]


def create_workflow(s: "Session", payload: dict, user: "User") -> "Workflow":
    from app.crm.modules.workflows.models import Workflow

    name = clean(payload.get("name")) or ""
    if _name_taken(s, name):
        raise ConflictError(f"A workflow named '{name}' already exists.")
    now = datetime.utcnow()
    workflow = Workflow(
        tenant_id=tenant_id_of(s),
        name=name,
        description=clean(payload.get("description")),
        trigger_type=clean(payload.get("trigger_type")) or "event_created",
        event_type_ids=_int_list(payload.get("event_type_ids")),
        trigger_config=dict(payload.get("trigger_config") or {}),
        conditions=list(payload.get("conditions") or []),
        is_active=parse_bool(payload.get("is_active"), default=True),
        created_by=user.id,
        created_at=now,
        updated_at=now,
    )
    _build_actions(workflow, payload.get("actions") or [])
    s.add(workflow)
    s.flush()
    record_event(
        s,
        actor=user,
        action="workflow.create",
        entity_type="Workflow",
        entity_id=str(workflow.id),
        metadata={"name": workflow.name, "trigger_type": workflow.trigger_type, "actions": len(workflow.actions)},
    )
    return workflow


def update_workflow(s: "Session", workflow: "Workflow", payload: dict, user: "User") -> "Workflow":
    changes: dict[str, Any] = {}
    name = clean(payload.get("name"))
    if name and name != workflow.name:
        if _name_taken(s, name, workflow.id):
            raise ConflictError(f"A workflow named '{name}' already exists.")
        changes["name"] = {"old": workflow.name, "new": name}
        workflow.name = name

    if "description" in payload:
        new_val = clean(payload.get("description"))
        if new_val != workflow.description:
            changes["description"] = {"old": workflow.description, "new": new_val}
            workflow.description = new_val
    if "trigger_type" in payload and clean(payload.get("trigger_type")) != workflow.trigger_type:
        changes["trigger_type"] = {"old": workflow.trigger_type, "new": clean(payload.get("trigger_type"))}
        workflow.trigger_type = clean(payload.get("trigger_type"))
    if "event_type_ids" in payload:
        new_val = _int_list(payload.get("event_type_ids"))
        if new_val != (workflow.event_type_ids or []):
            changes["event_type_ids"] = {"old": workflow.event_type_ids, "new": new_val}
            workflow.event_type_ids = new_val
    for field in ("trigger_config", "conditions"):
        if field in payload:
            new_val = payload.get(field) or ({} if field == "trigger_config" else [])
            if new_val != getattr(workflow, field):
                changes[field] = {"old": getattr(workflow, field), "new": new_val}
                setattr(workflow, field, new_val)
    if "is_active" in payload:
        new_val = parse_bool(payload.get("is_active"))
        if new_val != workflow.is_active:
            changes["is_active"] = {"old": workflow.is_active, "new": new_val}
            workflow.is_active = new_val

    if "actions" in payload:
        changes["actions"] = {"old": len(workflow.actions), "new": len(payload.get("actions") or [])}
        workflow.actions = []
        s.flush()
        _build_actions(workflow, payload.get("actions") or [])

    if changes:
        workflow.updated_at = datetime.utcnow()
        s.flush()
        record_event(
            s,
            actor=user,
            action="workflow.update",
            entity_type="Workflow",
            entity_id=str(workflow.id),
            metadata={"changes": changes},
        )
    return workflow


def toggle_workflow(s: "Session", workflow: "Workflow", user: "User") -> "Workflow":
    workflow.is_active = not workflow.is_active
    workflow.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="workflow.toggle",
        entity_type="Workflow",
        entity_id=str(workflow.id),
        metadata={"is_active": workflow.is_active},
    )
    return workflow


def delete_workflow(s: "Session", workflow: "Workflow", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="workflow.delete",
        entity_type="Workflow",
        entity_id=str(workflow.id),
        metadata={"name": workflow.name},
    )
    s.delete(workflow)


# ---------- Apply to existing events ----------


def pending_events(s: "Session", workflow: "Workflow", today: date | None = None) -> list["Event"]:
    """Future events of the workflow's types that it has not yet run against."""
    from app.crm.modules.events.models import Event

    if workflow.trigger_type != "event_created":
        raise ValueError("Only event_created workflows can be applied to existing events.")
    type_ids = [int(x) for x in (workflow.event_type_ids or [])]
    if not type_ids:
        return []
    today = today or date.today()
    events = (
        s.query(Event)
        .filter(
            Event.tenant_id == tenant_id_of(s),
            Event.event_type_id.in_(type_ids),
            Event.start_date.is_not(None),
            Event.start_date >= today,
        )
        .order_by(Event.start_date.asc(), Event.id.asc())
        .all()
    )
    return [e for e in events if not has_successful_execution(s, workflow.id, "event", e.id)]


def apply_to_existing(s: "Session", workflow: "Workflow", user: "User", today: date | None = None) -> list[dict[str, Any]]:
    results = []
    for event in pending_events(s, workflow, today):
        with s.begin_nested():
            entry = execute_workflow(s, workflow, "event", event, trigger_type="event_created", user=user)
        entry.pop("created_task_ids", None)
        results.append({"event_id": event.id, "event_name": event.name, **entry})
    return results


# ---------- Design / operations item types ----------


def validate_item_type_payload(payload: dict, *, kind: str, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Name is required.")
    int_fields = (
        ("default_design_days", "default_production_days", "default_shipping_days", "client_approval_buffer_days")
        if kind == "design"
        else ("due_date_days",)
    )
    for field in int_fields:
        try:
            value = parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
            continue
        if value is not None and value < 0:
            errors.append(f"{field} cannot be negative.")
    return errors


def save_item_type(s: "Session", model, payload: dict, user: "User", row=None):
    """Create or update a DesignItemType / OperationsItemType row."""
    creating = row is None
    name = clean(payload.get("name"))
    if name:
        q = select(func.count(model.id)).where(model.tenant_id == tenant_id_of(s), func.lower(model.name) == name.lower())
        if not creating:
            q = q.where(model.id != row.id)
        if (s.execute(q).scalar() or 0) > 0:
            raise ConflictError(f"An item type named '{name}' already exists.")
    if creating:
        row = model(tenant_id=tenant_id_of(s), name=name, created_at=datetime.utcnow())
        s.add(row)
    elif name:
        row.name = name
    for field in ("description", "category"):
        if field in payload:
            setattr(row, field, clean(payload.get(field)))
    for field in (
        "default_design_days",
        "default_production_days",
        "default_shipping_days",
        "client_approval_buffer_days",
        "due_date_days",
    ):
        if hasattr(row, field) and (field in payload or creating):
            setattr(row, field, parse_int(payload.get(field), 0))
    if "is_active" in payload or creating:
        row.is_active = parse_bool(payload.get("is_active"), default=True)
    s.flush()
    prefix = "design_item_type" if model.__name__ == "DesignItemType" else "operations_item_type"
    record_event(
        s,
        actor=user,
        action=f"{prefix}.create" if creating else f"{prefix}.update",
        entity_type=model.__name__,
        entity_id=str(row.id),
        metadata={"name": row.name, "is_active": row.is_active},
    )
    return row


def delete_item_type(s: "Session", row: "DesignItemType | OperationsItemType", user: "User") -> None:
    prefix = "design_item_type" if type(row).__name__ == "DesignItemType" else "operations_item_type"
    record_event(
        s, actor=user, action=f"{prefix}.delete", entity_type=type(row).__name__, entity_id=str(row.id), metadata={"name": row.name}
    )
    s.delete(row)
