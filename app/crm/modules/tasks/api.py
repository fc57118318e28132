from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.tasks.models import Notification, Task, TaskTemplate
from app.crm.modules.tasks.service import (
    create_task,
    delete_task,
    delete_template,
    mark_notification_read,
    my_tasks_dashboard,
    save_template,
    update_task,
    validate_task_payload,
    validate_template_payload,
)
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    page_args,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("tasks", __name__)


# ---------- Templates ----------
@bp.get("/task-templates")
@require_permission("tasks.view")
def task_templates_list():
    s = tenant_db()
    q = s.query(TaskTemplate).filter(TaskTemplate.tenant_id == current_tenant_id())
    if request.args.get("active") in ("1", "true"):
        q = q.filter(TaskTemplate.is_active.is_(True))
    rows = q.order_by(TaskTemplate.name.asc()).all()
    return jsonify({"task_templates": [serialize(r) for r in rows]})


@bp.post("/task-templates")
@require_permission("workflows.edit")
def task_template_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_template_payload(payload)
    if errors:
        return validation_error(errors)
    row = save_template(s, payload, current_user())
    s.commit()
    return jsonify(serialize(row)), 201


@bp.route("/task-templates/<int:template_id>", methods=["PATCH", "PUT"])
@require_permission("workflows.edit")
def task_template_update(template_id: int):
    s = tenant_db()
    row = tenant_get_or_404(s, TaskTemplate, template_id)
    payload = request_payload()
    errors = validate_template_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    save_template(s, payload, current_user(), row)
    s.commit()
    return jsonify(serialize(row))


@bp.delete("/task-templates/<int:template_id>")
@require_permission("workflows.edit")
def task_template_delete(template_id: int):
    s = tenant_db()
    row = tenant_get_or_404(s, TaskTemplate, template_id)
    delete_template(s, row, current_user())
    s.commit()
    return jsonify({"ok": True})


# ---------- Tasks ----------
@bp.get("/tasks")
@require_permission("tasks.view")
def tasks_list():
    s = tenant_db()
    limit, offset = page_args()

    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    priority_filter = (request.args.get("priority") or "").strip()
    assigned_filter = (request.args.get("assigned_to") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    department = (request.args.get("department") or "").strip()

    q = s.query(Task).filter(Task.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Task.title.ilike(like), Task.description.ilike(like)))
    if status_filter:
        q = q.filter(Task.status == status_filter)
    if priority_filter:
        q = q.filter(Task.priority == priority_filter)
    if assigned_filter.isdigit():
        q = q.filter(Task.assigned_to == int(assigned_filter))
    if entity_type:
        q = q.filter(Task.entity_type == entity_type)
    if entity_id.isdigit():
        q = q.filter(Task.entity_id == int(entity_id))
    if department:
        q = q.filter(Task.department == department)

    total = q.with_entities(func.count(Task.id)).scalar() or 0
    tasks = q.order_by(Task.due_date.asc().nulls_last(), Task.id.asc()).offset(offset).limit(limit).all()
    return jsonify({"tasks": [serialize(t) for t in tasks], "total": total})


@bp.get("/tasks/my")
@require_permission("tasks.view")
def tasks_my():
    s = tenant_db()
    tasks = (
        s.query(Task)
        .filter(Task.tenant_id == current_tenant_id(), Task.assigned_to == current_user().id)
        .order_by(Task.due_date.asc())
        .all()
    )
    return jsonify(my_tasks_dashboard(tasks))


@bp.get("/tasks/<int:task_id>")
@require_permission("tasks.view")
def task_detail(task_id: int):
    s = tenant_db()
    return jsonify(serialize(tenant_get_or_404(s, Task, task_id)))


@bp.post("/tasks")
@require_permission("tasks.create")
def task_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_task_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        task, summary = create_task(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify({**serialize(task), "workflows": summary}), 201


@bp.route("/tasks/<int:task_id>", methods=["PATCH", "PUT"])
@require_permission("tasks.edit")
def task_update(task_id: int):
    s = tenant_db()
    task = tenant_get_or_404(s, Task, task_id)
    payload = request_payload()
    errors = validate_task_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        _, summary = update_task(s, task, payload, current_user(), reason=payload.get("reason"))
    except ValueError as e:
        return service_error(e)
    s.commit()
    body = serialize(task)
    if summary is not None:
        body["workflows"] = summary
    return jsonify(body)


@bp.delete("/tasks/<int:task_id>")
@require_permission("tasks.delete")
def task_delete(task_id: int):
    s = tenant_db()
    task = tenant_get_or_404(s, Task, task_id)
    delete_task(s, task, current_user())
    s.commit()
    return jsonify({"ok": True})


# ---------- Notifications ----------
@bp.get("/notifications")
@require_permission("tasks.view")
def notifications_list():
    s = tenant_db()
    limit, offset = page_args()
    q = s.query(Notification).filter(
        Notification.tenant_id == current_tenant_id(), Notification.user_id == current_user().id
    )
    if request.args.get("unread") in ("1", "true"):
        q = q.filter(Notification.is_read.is_(False))
    unread = q.filter(Notification.is_read.is_(False)).with_entities(func.count(Notification.id)).scalar() or 0
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
    return jsonify({"notifications": [serialize(n) for n in rows], "unread": unread})


@bp.post("/notifications/<int:notification_id>/read")
@require_permission("tasks.view")
def notification_read(notification_id: int):
    s = tenant_db()
    notification = tenant_get_or_404(s, Notification, notification_id)
    if notification.user_id != current_user().id:
        abort(404)
    mark_notification_read(s, notification)
    s.commit()
    return jsonify(serialize(notification))
