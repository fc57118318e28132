from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.events.models import (
    Event,
    EventDesignItem,
    EventOperationsItem,
    EventType,
    StaffRole,
)
from app.crm.modules.events.service import (
    add_event_date,
    assign_staff,
    create_event,
    delete_event,
    delete_lookup,
    remove_event_date,
    save_event_type,
    save_staff_role,
    unassign_staff,
    update_event,
    validate_event_date_payload,
    validate_event_payload,
    validate_lookup_payload,
    validate_staff_payload,
)
from app.crm.modules.workflows.engine import trigger_event_created
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    json_error,
    page_args,
    parse_date,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("events", __name__)


def event_to_dict(event: Event, *, detail: bool = False) -> dict:
    data = serialize(event)
    data["event_dates"] = [serialize(d) for d in event.event_dates]
    if detail:
        data["staff_assignments"] = [
            {**serialize(a), "staff_role_name": a.staff_role.name if a.staff_role else None}
            for a in event.staff_assignments
        ]
    return data


def _date_range_args() -> tuple:
    try:
        return parse_date(request.args.get("from")), parse_date(request.args.get("to"))
    except ValueError:
        return None, None


# ---------- Event types ----------
@bp.get("/event-types")
@require_permission("events.view")
def event_types_list():
    s = tenant_db()
    q = s.query(EventType).filter(EventType.tenant_id == current_tenant_id())
    if request.args.get("active") in ("1", "true"):
        q = q.filter(EventType.is_active.is_(True))
    rows = q.order_by(EventType.display_order.asc(), EventType.name.asc()).all()
    return jsonify({"event_types": [serialize(r) for r in rows]})


@bp.post("/event-types")
@require_permission("settings.edit")
def event_type_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_lookup_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        row = save_event_type(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(row)), 201


@bp.route("/event-types/<int:type_id>", methods=["PATCH", "PUT"])
@require_permission("settings.edit")
def event_type_update(type_id: int):
    s = tenant_db()
    row = tenant_get_or_404(s, EventType, type_id)
    payload = request_payload()
    errors = validate_lookup_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        save_event_type(s, payload, current_user(), row)
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(row))


@bp.delete("/event-types/<int:type_id>")
@require_permission("settings.edit")
def event_type_delete(type_id: int):
    s = tenant_db()
    row = tenant_get_or_404(s, EventType, type_id)
    delete_lookup(s, row, current_user(), action="event_type.delete")
    s.commit()
    return jsonify({"ok": True})


# ---------- Staff roles ----------
@bp.get("/staff-roles")
@require_permission("events.view")
def staff_roles_list():
    s = tenant_db()
    rows = (
        s.query(StaffRole)
        .filter(StaffRole.tenant_id == current_tenant_id())
        .order_by(StaffRole.name.asc())
        .all()
    )
    return jsonify({"staff_roles": [serialize(r) for r in rows]})


@bp.post("/staff-roles")
@require_permission("settings.edit")
def staff_role_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_lookup_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        row = save_staff_role(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(row)), 201


@bp.route("/staff-roles/<int:role_id>", methods=["PATCH", "PUT"])
@require_permission("settings.edit")
def staff_role_update(role_id: int):
    s = tenant_db()
    row = tenant_get_or_404(s, StaffRole, role_id)
    payload = request_payload()
    errors = validate_lookup_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        save_staff_role(s, payload, current_user(), row)
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(row))


@bp.delete("/staff-roles/<int:role_id>")
@require_permission("settings.edit")
def staff_role_delete(role_id: int):
    s = tenant_db()
    row = tenant_get_or_404(s, StaffRole, role_id)
    delete_lookup(s, row, current_user(), action="staff_role.delete")
    s.commit()
    return jsonify({"ok": True})


# ---------- Events ----------
@bp.get("/events")
@require_permission("events.view")
def events_list():
    s = tenant_db()
    limit, offset = page_args()

    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    type_filter = (request.args.get("event_type_id") or "").strip()
    account_filter = (request.args.get("account_id") or "").strip()
    date_from, date_to = _date_range_args()

    q = s.query(Event).filter(Event.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Event.name.ilike(like), Event.location_name.ilike(like), Event.city.ilike(like)))
    if status_filter:
        q = q.filter(Event.status == status_filter)
    if type_filter.isdigit():
        q = q.filter(Event.event_type_id == int(type_filter))
    if account_filter.isdigit():
        q = q.filter(Event.account_id == int(account_filter))
    if date_from:
        q = q.filter(Event.start_date >= date_from)
    if date_to:
        q = q.filter(Event.start_date <= date_to)

    total = q.with_entities(func.count(Event.id)).scalar() or 0
    events = q.order_by(Event.start_date.asc().nulls_last(), Event.id.asc()).offset(offset).limit(limit).all()
    return jsonify({"events": [event_to_dict(e) for e in events], "total": total})


@bp.get("/events/calendar")
@require_permission("events.view")
def events_calendar():
    s = tenant_db()
    date_from, date_to = _date_range_args()
    if not date_from or not date_to:
        return json_error("bad_request", "from and to (YYYY-MM-DD) are required.", 400)

    events = (
        s.query(Event)
        .filter(
            Event.tenant_id == current_tenant_id(),
            Event.start_date.is_not(None),
            Event.start_date <= date_to,
            func.coalesce(Event.end_date, Event.start_date) >= date_from,
        )
        .order_by(Event.start_date.asc())
        .all()
    )
    return jsonify(
        {
            "events": [
                {
                    "id": e.id,
                    "name": e.name,
                    "status": e.status,
                    "event_type_id": e.event_type_id,
                    "start_date": e.start_date.isoformat(),
                    "end_date": (e.end_date or e.start_date).isoformat(),
                    "start_time": e.start_time.isoformat() if e.start_time else None,
                    "end_time": e.end_time.isoformat() if e.end_time else None,
                    "location_name": e.location_name,
                }
                for e in events
            ]
        }
    )


@bp.get("/events/<int:event_id>")
@require_permission("events.view")
def event_detail(event_id: int):
    from app.crm.modules.tasks.models import Task

    s = tenant_db()
    event = tenant_get_or_404(s, Event, event_id)
    data = event_to_dict(event, detail=True)
    tid = current_tenant_id()
    data["design_items"] = [
        serialize(d)
        for d in s.query(EventDesignItem)
        .filter(EventDesignItem.tenant_id == tid, EventDesignItem.event_id == event.id)
        .order_by(EventDesignItem.design_deadline.asc())
        .all()
    ]
    data["operations_items"] = [
        serialize(o)
        for o in s.query(EventOperationsItem)
        .filter(EventOperationsItem.tenant_id == tid, EventOperationsItem.event_id == event.id)
        .order_by(EventOperationsItem.due_date.asc())
        .all()
    ]
    data["tasks"] = [
        serialize(t)
        for t in s.query(Task)
        .filter(Task.tenant_id == tid, Task.entity_type == "event", Task.entity_id == event.id)
        .order_by(Task.due_date.asc())
        .all()
    ]
    return jsonify(data)


@bp.post("/events")
@require_permission("events.create")
def event_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_event_payload(payload)
    if errors:
        return validation_error(errors)
    user = current_user()
    try:
        event = create_event(s, payload, user)
    except ValueError as e:
        return service_error(e)
    summary = trigger_event_created(s, event, user)
    s.commit()
    return jsonify({**event_to_dict(event), "workflows": summary}), 201


@bp.route("/events/<int:event_id>", methods=["PATCH", "PUT"])
@require_permission("events.edit")
def event_update(event_id: int):
    s = tenant_db()
    event = tenant_get_or_404(s, Event, event_id)
    payload = request_payload()
    errors = validate_event_payload(payload, partial=True, current=event)
    if errors:
        return validation_error(errors)
    try:
        update_event(s, event, payload, current_user(), reason=payload.get("reason"))
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(event_to_dict(event, detail=True))


@bp.delete("/events/<int:event_id>")
@require_permission("events.delete")
def event_delete(event_id: int):
    s = tenant_db()
    event = tenant_get_or_404(s, Event, event_id)
    delete_event(s, event, current_user())
    s.commit()
    return jsonify({"ok": True})


# ---------- Dates ----------
@bp.post("/events/<int:event_id>/dates")
@require_permission("events.edit")
def event_date_add(event_id: int):
    s = tenant_db()
    event = tenant_get_or_404(s, Event, event_id)
    payload = request_payload()
    errors = validate_event_date_payload(payload)
    if errors:
        return validation_error(errors)
    row = add_event_date(s, event, payload, current_user())
    s.commit()
    return jsonify(serialize(row)), 201


@bp.delete("/events/<int:event_id>/dates/<int:date_id>")
@require_permission("events.edit")
def event_date_remove(event_id: int, date_id: int):
    s = tenant_db()
    event = tenant_get_or_404(s, Event, event_id)
    try:
        remove_event_date(s, event, date_id, current_user())
    except ValueError:
        return json_error("not_found", f"Event date not found: {date_id}", 404)
    s.commit()
    return jsonify({"ok": True})


# ---------- Staff ----------
@bp.post("/events/<int:event_id>/staff")
@require_permission("events.edit")
def event_staff_assign(event_id: int):
    s = tenant_db()
    event = tenant_get_or_404(s, Event, event_id)
    payload = request_payload()
    errors = validate_staff_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        assignment = assign_staff(s, event, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(assignment)), 201


@bp.delete("/events/<int:event_id>/staff/<int:assignment_id>")
@require_permission("events.edit")
def event_staff_unassign(event_id: int, assignment_id: int):
    s = tenant_db()
    event = tenant_get_or_404(s, Event, event_id)
    try:
        unassign_staff(s, event, assignment_id, current_user())
    except ValueError:
        return json_error("not_found", f"Staff assignment not found: {assignment_id}", 404)
    s.commit()
    return jsonify({"ok": True})
