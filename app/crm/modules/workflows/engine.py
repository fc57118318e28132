"""
Workflow engine: match active workflows to a trigger, evaluate conditions, run actions
in execution_order and record a WorkflowExecution for every run.

Status of a finished run:
    failed    no action succeeded
    partial   at least one action failed
    completed every action succeeded
    skipped   conditions did not pass (no actions run)

A workflow that already has a completed/partial run for the same entity is not run
again (except for task_status_changed, where a task may legitimately revisit a status).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.crm.audit import record_event
from app.crm.modules.workflows.actions import ActionContext, execute_action
from app.crm.modules.workflows.conditions import evaluate_conditions
from app.crm.tenancy import tenant_id_of
from app.crm.utils import serialize

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.events.models import Event
    from app.crm.modules.tasks.models import Task
    from app.crm.modules.workflows.models import Workflow

logger = logging.getLogger(__name__)

TRIGGER_TYPES = ("event_created", "task_created", "task_status_changed", "event_date_approaching")
EVENT_DATE_TRIGGER_DAYS = (1, 3, 7, 14, 30)
_REPEATABLE_TRIGGERS = ("task_status_changed",)


def _empty_summary() -> dict[str, Any]:
    return {
        "workflows_found": 0,
        "workflows_executed": 0,
        "workflows_skipped": 0,
        "created_task_ids": [],
        "executions": [],
    }


def has_successful_execution(s: "Session", workflow_id: int, entity_type: str, entity_id: int) -> bool:
    from app.crm.modules.workflows.models import WorkflowExecution

    row = s.execute(
        select(WorkflowExecution.id)
        .where(
            WorkflowExecution.tenant_id == tenant_id_of(s),
            WorkflowExecution.workflow_id == workflow_id,
            WorkflowExecution.trigger_entity_type == entity_type,
            WorkflowExecution.trigger_entity_id == entity_id,
            WorkflowExecution.status.in_(("completed", "partial")),
        )
        .limit(1)
    ).first()
    return row is not None


def _active_workflows(s: "Session", trigger_type: str) -> list["Workflow"]:
    from app.crm.modules.workflows.models import Workflow

    return (
        s.query(Workflow)
        .filter(Workflow.tenant_id == tenant_id_of(s), Workflow.trigger_type == trigger_type, Workflow.is_active.is_(True))
        .order_by(Workflow.id.asc())
        .all()
    )


def execute_workflow(
    s: "Session",
    workflow: "Workflow",
    entity_type: str,
    entity: Any,
    *,
    trigger_type: str | None = None,
    previous: dict[str, Any] | None = None,
    user: "User | None" = None,
) -> dict[str, Any]:
    """Run one workflow against one entity; returns the per-workflow summary entry."""
    from app.crm.modules.workflows.models import WorkflowExecution

    trigger_type = trigger_type or workflow.trigger_type
    base = {"workflow_id": workflow.id, "workflow_name": workflow.name}

    if trigger_type not in _REPEATABLE_TRIGGERS and has_successful_execution(s, workflow.id, entity_type, entity.id):
        logger.info("workflow %s already executed for %s %s; skipping", workflow.id, entity_type, entity.id)
        return {**base, "execution_id": None, "status": "skipped", "tasks_created": 0, "reason": "already_executed"}

    data = {entity_type: serialize(entity), "previous": previous or {}}
    passed, condition_results = evaluate_conditions(workflow.conditions, data)

    now = datetime.utcnow()
    execution = WorkflowExecution(
        tenant_id=workflow.tenant_id,
        workflow_id=workflow.id,
        trigger_type=trigger_type,
        trigger_entity_type=entity_type,
        trigger_entity_id=entity.id,
        status="running" if passed else "skipped",
        started_at=now,
        conditions_evaluated=bool(workflow.conditions),
        conditions_passed=passed,
        condition_results=[r.to_dict() for r in condition_results],
        created_task_ids=[],
        action_results=[],
        triggered_by=user.id if user else None,
    )
    s.add(execution)
    s.flush()

    if not passed:
        execution.completed_at = datetime.utcnow()
        logger.info("workflow %s conditions not met for %s %s", workflow.id, entity_type, entity.id)
        return {**base, "execution_id": execution.id, "status": "skipped", "tasks_created": 0, "reason": "conditions_not_met"}

    ctx = ActionContext(
        workflow=workflow,
        trigger_type=trigger_type,
        entity_type=entity_type,
        entity=entity,
        data=data,
        user=user,
        execution_id=execution.id,
    )
    results = [execute_action(s, action, ctx) for action in sorted(workflow.actions, key=lambda a: a.execution_order)]
    _stamp_created_rows(s, execution.id, results)

    successful = sum(1 for r in results if r.success)
    failed = len(results) - successful
    if successful == 0:
        status = "failed"
    elif failed:
        status = "partial"
    else:
        status = "completed"

    created_task_ids = [r.created_task_id for r in results if r.created_task_id]
    execution.status = status
    execution.actions_executed = len(results)
    execution.actions_successful = successful
    execution.actions_failed = failed
    execution.created_task_ids = created_task_ids
    execution.action_results = [r.to_dict() for r in results]
    execution.completed_at = datetime.utcnow()
    errors = [r for r in results if not r.success]
    if errors:
        execution.error_message = f"{len(errors)} action(s) failed: {errors[0].error}"
        execution.error_details = {"failed_actions": [r.to_dict() for r in errors]}
    s.flush()

    record_event(
        s,
        actor=user,
        action="workflow.execute",
        entity_type="Workflow",
        entity_id=str(workflow.id),
        metadata={
            "execution_id": execution.id,
            "trigger_type": trigger_type,
            "trigger_entity": f"{entity_type}:{entity.id}",
            "status": status,
            "actions_successful": successful,
            "actions_failed": failed,
        },
    )
    if status != "completed":
        logger.warning("workflow %s finished %s for %s %s", workflow.id, status, entity_type, entity.id)

    entry = {**base, "execution_id": execution.id, "status": status, "tasks_created": len(created_task_ids)}
    if errors:
        entry["error"] = execution.error_message
    entry["created_task_ids"] = created_task_ids
    return entry


def _stamp_created_rows(s: "Session", execution_id: int, results) -> None:
    from app.crm.modules.events.models import EventDesignItem, EventOperationsItem
    from app.crm.modules.tasks.models import Task

    for model, attr in (
        (Task, "created_task_id"),
        (EventDesignItem, "created_design_item_id"),
        (EventOperationsItem, "created_ops_item_id"),
    ):
        for r in results:
            row_id = getattr(r, attr)
            if row_id:
                row = s.get(model, row_id)
                if row is not None:
                    row.workflow_execution_id = execution_id


def run_workflows(
    s: "Session",
    workflows: list["Workflow"],
    entity_type: str,
    entity: Any,
    *,
    trigger_type: str,
    previous: dict[str, Any] | None = None,
    user: "User | None" = None,
) -> dict[str, Any]:
    summary = _empty_summary()
    summary["workflows_found"] = len(workflows)
    for wf in workflows:
        try:
            with s.begin_nested():
                entry = execute_workflow(s, wf, entity_type, entity, trigger_type=trigger_type, previous=previous, user=user)
        except Exception as e:
            logger.exception("workflow %s raised while handling %s %s", wf.id, entity_type, entity.id)
            entry = {
                "workflow_id": wf.id,
                "workflow_name": wf.name,
                "execution_id": None,
                "status": "failed",
                "tasks_created": 0,
                "error": str(e),
            }
        if entry["status"] == "skipped":
            summary["workflows_skipped"] += 1
        else:
            summary["workflows_executed"] += 1
        summary["created_task_ids"].extend(entry.pop("created_task_ids", []))
        summary["executions"].append(entry)
    return summary


# ---------- Triggers ----------


def trigger_event_created(s: "Session", event: "Event", user: "User | None" = None) -> dict[str, Any]:
    if event.event_type_id is None:
        return _empty_summary()
    workflows = [
        wf for wf in _active_workflows(s, "event_created") if event.event_type_id in [int(x) for x in (wf.event_type_ids or [])]
    ]
    return run_workflows(s, workflows, "event", event, trigger_type="event_created", user=user)


def _task_filters_match(config: dict, task: "Task") -> bool:
    task_types = config.get("task_types") or []
    if task_types and task.task_type not in task_types:
        return False
    departments = config.get("departments") or []
    if departments and task.department not in departments:
        return False
    return True


def trigger_task_created(s: "Session", task: "Task", user: "User | None" = None) -> dict[str, Any]:
    if task.auto_created:
        return _empty_summary()
    workflows = [wf for wf in _active_workflows(s, "task_created") if _task_filters_match(wf.trigger_config or {}, task)]
    return run_workflows(s, workflows, "task", task, trigger_type="task_created", user=user)


def trigger_task_status_changed(
    s: "Session", task: "Task", previous_status: str | None, user: "User | None" = None
) -> dict[str, Any]:
    if task.auto_created or previous_status == task.status:
        return _empty_summary()
    workflows = []
    for wf in _active_workflows(s, "task_status_changed"):
        config = wf.trigger_config or {}
        if config.get("from_status") and config["from_status"] != previous_status:
            continue
        if config.get("to_status") and config["to_status"] != task.status:
            continue
        if _task_filters_match(config, task):
            workflows.append(wf)
    return run_workflows(
        s, workflows, "task", task, trigger_type="task_status_changed", previous={"status": previous_status}, user=user
    )


def trigger_event_date_approaching(s: "Session", event: "Event", days: int, user: "User | None" = None) -> dict[str, Any]:
    workflows = []
    for wf in _active_workflows(s, "event_date_approaching"):
        try:
            days_before = int((wf.trigger_config or {}).get("days_before"))
        except (TypeError, ValueError):
            continue
        if days_before == days:
            workflows.append(wf)
    return run_workflows(s, workflows, "event", event, trigger_type="event_date_approaching", user=user)
