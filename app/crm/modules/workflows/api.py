from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func

from app.crm.modules.events.models import DesignItemType, OperationsItemType
from app.crm.modules.workflows.cron import run_event_date_triggers
from app.crm.modules.workflows.models import Workflow, WorkflowExecution
from app.crm.modules.workflows.service import (
    apply_to_existing,
    create_workflow,
    delete_item_type,
    delete_workflow,
    pending_events,
    save_item_type,
    toggle_workflow,
    update_workflow,
    validate_item_type_payload,
    validate_workflow,
)
from app.crm.rbac import current_user, require_permission
from app.crm.security import validate_cron_secret
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    json_error,
    page_args,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("workflows", __name__)

_ITEM_TYPES = {
    "design-item-types": (DesignItemType, "design", "design_item_types"),
    "operations-item-types": (OperationsItemType, "operations", "operations_item_types"),
}


def workflow_to_dict(wf: Workflow) -> dict:
    data = serialize(wf)
    data["actions"] = [serialize(a) for a in wf.actions]
    return data


def _validated(s, payload: dict, current: Workflow | None = None):
    errors, warnings = validate_workflow(s, payload, current=current)
    if errors:
        return None, json_error("bad_request", errors[0] if len(errors) == 1 else "Validation failed.", 400, details=errors, warnings=warnings)
    return warnings, None


# ---------- Workflows ----------
@bp.get("/workflows")
@require_permission("workflows.view")
def workflows_list():
    s = tenant_db()
    q = s.query(Workflow).filter(Workflow.tenant_id == current_tenant_id())
    trigger = (request.args.get("trigger_type") or "").strip()
    if trigger:
        q = q.filter(Workflow.trigger_type == trigger)
    if request.args.get("active") in ("1", "true"):
        q = q.filter(Workflow.is_active.is_(True))
    rows = q.order_by(Workflow.name.asc()).all()
    return jsonify({"workflows": [workflow_to_dict(w) for w in rows]})


@bp.get("/workflows/<int:workflow_id>")
@require_permission("workflows.view")
def workflow_detail(workflow_id: int):
    s = tenant_db()
    return jsonify(workflow_to_dict(tenant_get_or_404(s, Workflow, workflow_id)))


@bp.post("/workflows")
@require_permission("workflows.create")
def workflow_create():
    s = tenant_db()
    payload = request_payload()
    warnings, err = _validated(s, payload)
    if err:
        return err
    try:
        wf = create_workflow(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify({**workflow_to_dict(wf), "warnings": warnings}), 201


@bp.route("/workflows/<int:workflow_id>", methods=["PATCH", "PUT"])
@require_permission("workflows.edit")
def workflow_update(workflow_id: int):
    s = tenant_db()
    wf = tenant_get_or_404(s, Workflow, workflow_id)
    payload = request_payload()
    warnings, err = _validated(s, payload, current=wf)
    if err:
        return err
    try:
        update_workflow(s, wf, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify({**workflow_to_dict(wf), "warnings": warnings})


@bp.delete("/workflows/<int:workflow_id>")
@require_permission("workflows.delete")
def workflow_delete(workflow_id: int):
    s = tenant_db()
    wf = tenant_get_or_404(s, Workflow, workflow_id)
    delete_workflow(s, wf, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/workflows/<int:workflow_id>/toggle")
@require_permission("workflows.edit")
def workflow_toggle(workflow_id: int):
    s = tenant_db()
    wf = tenant_get_or_404(s, Workflow, workflow_id)
    toggle_workflow(s, wf, current_user())
    s.commit()
    return jsonify(workflow_to_dict(wf))


@bp.get("/workflows/<int:workflow_id>/executions")
@require_permission("workflows.view")
def workflow_executions(workflow_id: int):
    s = tenant_db()
    wf = tenant_get_or_404(s, Workflow, workflow_id)
    limit, offset = page_args()
    q = s.query(WorkflowExecution).filter(
        WorkflowExecution.tenant_id == current_tenant_id(), WorkflowExecution.workflow_id == wf.id
    )
    total = q.with_entities(func.count(WorkflowExecution.id)).scalar() or 0
    rows = q.order_by(WorkflowExecution.started_at.desc(), WorkflowExecution.id.desc()).offset(offset).limit(limit).all()
    return jsonify({"executions": [serialize(r) for r in rows], "total": total})


@bp.get("/workflows/<int:workflow_id>/apply-to-existing")
@require_permission("workflows.view")
def workflow_apply_preview(workflow_id: int):
    s = tenant_db()
    wf = tenant_get_or_404(s, Workflow, workflow_id)
    try:
        events = pending_events(s, wf)
    except ValueError as e:
        return service_error(e)
    return jsonify(
        {
            "workflow_id": wf.id,
            "count": len(events),
            "events": [
                {"id": e.id, "name": e.name, "start_date": e.start_date.isoformat(), "event_type_id": e.event_type_id}
                for e in events
            ],
        }
    )


@bp.post("/workflows/<int:workflow_id>/apply-to-existing")
@require_permission("workflows.edit")
def workflow_apply_run(workflow_id: int):
    s = tenant_db()
    wf = tenant_get_or_404(s, Workflow, workflow_id)
    if not wf.is_active:
        return json_error("conflict", "Workflow is inactive.", 409)
    try:
        results = apply_to_existing(s, wf, current_user())
    except ValueError as e:
        s.rollback()
        return service_error(e)
    s.commit()
    return jsonify(
        {
            "workflow_id": wf.id,
            "events_processed": len(results),
            "executed": sum(1 for r in results if r["status"] != "skipped"),
            "results": results,
        }
    )


# ---------- Design / operations item types ----------
def _item_type_list(kind_path: str):
    model, _, key = _ITEM_TYPES[kind_path]
    s = tenant_db()
    q = s.query(model).filter(model.tenant_id == current_tenant_id())
    if request.args.get("active") in ("1", "true"):
        q = q.filter(model.is_active.is_(True))
    rows = q.order_by(model.name.asc()).all()
    return jsonify({key: [serialize(r) for r in rows]})


def _item_type_save(kind_path: str, row_id: int | None = None):
    model, kind, _ = _ITEM_TYPES[kind_path]
    s = tenant_db()
    row = tenant_get_or_404(s, model, row_id) if row_id is not None else None
    payload = request_payload()
    errors = validate_item_type_payload(payload, kind=kind, partial=row is not None)
    if errors:
        return validation_error(errors)
    try:
        row = save_item_type(s, model, payload, current_user(), row)
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(row)), 201 if row_id is None else 200


def _item_type_delete(kind_path: str, row_id: int):
    model, _, _ = _ITEM_TYPES[kind_path]
    s = tenant_db()
    delete_item_type(s, tenant_get_or_404(s, model, row_id), current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.get("/design-item-types")
@require_permission("workflows.view")
def design_item_types_list():
    return _item_type_list("design-item-types")


@bp.post("/design-item-types")
@require_permission("workflows.edit")
def design_item_type_create():
    return _item_type_save("design-item-types")


@bp.route("/design-item-types/<int:type_id>", methods=["PATCH", "PUT"])
@require_permission("workflows.edit")
def design_item_type_update(type_id: int):
    return _item_type_save("design-item-types", type_id)


@bp.delete("/design-item-types/<int:type_id>")
@require_permission("workflows.edit")
def design_item_type_delete(type_id: int):
    return _item_type_delete("design-item-types", type_id)


@bp.get("/operations-item-types")
@require_permission("workflows.view")
def operations_item_types_list():
    return _item_type_list("operations-item-types")


@bp.post("/operations-item-types")
@require_permission("workflows.edit")
def operations_item_type_create():
    return _item_type_save("operations-item-types")


@bp.route("/operations-item-types/<int:type_id>", methods=["PATCH", "PUT"])
@require_permission("workflows.edit")
def operations_item_type_update(type_id: int):
    return _item_type_save("operations-item-types", type_id)


@bp.delete("/operations-item-types/<int:type_id>")
@require_permission("workflows.edit")
def operations_item_type_delete(type_id: int):
    return _item_type_delete("operations-item-types", type_id)


# ---------- Cron ----------
@bp.route("/cron/workflow-triggers", methods=["GET", "POST"])
def cron_workflow_triggers():
    secret = current_app.config.get("CRON_SECRET") or ""
    if secret:
        if not validate_cron_secret(request, secret):
            return json_error("unauthorized", "Invalid cron secret.", 401)
    elif current_app.config.get("ENV") in ("prod", "production"):
        return json_error("unauthorized", "CRON_SECRET is not configured.", 401)

    tenant_ids = [t for t in request.args.getlist("tenant") if t.strip()] or None
    result = run_event_date_triggers(current_app._get_current_object(), tenant_ids=tenant_ids)
    return jsonify(result), 200 if result["success"] else 207
