from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.events.models import Event
from app.crm.modules.inventory.models import InventoryItem
from app.crm.modules.inventory.service import (
    check_availability,
    checkin_item,
    checkout_item,
    create_item,
    delete_item,
    update_item,
    validate_item_payload,
)
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    clean,
    json_error,
    page_args,
    parse_date,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("inventory", __name__)


@bp.get("/inventory")
@require_permission("inventory.view")
def inventory_list():
    s = tenant_db()
    limit, offset = page_args(default_limit=100, max_limit=500)

    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    category_filter = (request.args.get("category") or "").strip()
    assignment_filter = (request.args.get("assignment_type") or "").strip()
    event_filter = (request.args.get("event_id") or "").strip()

    q = s.query(InventoryItem).filter(InventoryItem.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(or_(InventoryItem.item_name.ilike(like), InventoryItem.serial_number.ilike(like)))
    if status_filter:
        q = q.filter(InventoryItem.status == status_filter)
    if category_filter:
        q = q.filter(InventoryItem.category == category_filter)
    if assignment_filter:
        q = q.filter(InventoryItem.assignment_type == assignment_filter)
    if event_filter.isdigit():
        q = q.filter(InventoryItem.event_id == int(event_filter))

    total = q.with_entities(func.count(InventoryItem.id)).scalar() or 0
    items = q.order_by(InventoryItem.category.asc(), InventoryItem.item_name.asc()).offset(offset).limit(limit).all()
    return jsonify({"items": [serialize(i) for i in items], "total": total})


@bp.get("/inventory/availability")
@require_permission("inventory.view")
def inventory_availability():
    s = tenant_db()
    try:
        start = parse_date(request.args.get("start_date"))
        end = parse_date(request.args.get("end_date"))
    except ValueError:
        return json_error("bad_request", "start_date and end_date must be YYYY-MM-DD.", 400)
    if not start or not end:
        return json_error("bad_request", "start_date and end_date are required.", 400)
    if end < start:
        return json_error("bad_request", "end_date cannot be before start_date.", 400)

    tid = current_tenant_id()
    q = s.query(InventoryItem).filter(InventoryItem.tenant_id == tid)
    category = clean(request.args.get("category"))
    if category:
        q = q.filter(InventoryItem.category == category)
    raw_ids = [x for x in (request.args.get("item_ids") or "").split(",") if x.strip().isdigit()]
    if raw_ids:
        q = q.filter(InventoryItem.id.in_([int(x) for x in raw_ids]))
    items = q.order_by(InventoryItem.item_name.asc()).all()

    event_ids = {i.event_id for i in items if i.event_id}
    events = (
        {e.id: e for e in s.query(Event).filter(Event.tenant_id == tid, Event.id.in_(event_ids)).all()}
        if event_ids
        else {}
    )
    return jsonify(check_availability(items, events, start, end))


@bp.get("/inventory/<int:item_id>")
@require_permission("inventory.view")
def inventory_detail(item_id: int):
    s = tenant_db()
    return jsonify(serialize(tenant_get_or_404(s, InventoryItem, item_id)))


@bp.post("/inventory")
@require_permission("inventory.create")
def inventory_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_item_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        item = create_item(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(item)), 201


@bp.route("/inventory/<int:item_id>", methods=["PATCH", "PUT"])
@require_permission("inventory.edit")
def inventory_update(item_id: int):
    s = tenant_db()
    item = tenant_get_or_404(s, InventoryItem, item_id)
    payload = request_payload()
    errors = validate_item_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        update_item(s, item, payload, current_user(), reason=payload.get("reason"))
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(item))


@bp.delete("/inventory/<int:item_id>")
@require_permission("inventory.delete")
def inventory_delete(item_id: int):
    s = tenant_db()
    item = tenant_get_or_404(s, InventoryItem, item_id)
    delete_item(s, item, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/inventory/<int:item_id>/checkout")
@require_permission("inventory.edit")
def inventory_checkout(item_id: int):
    s = tenant_db()
    item = tenant_get_or_404(s, InventoryItem, item_id)
    payload = request_payload()
    try:
        checkout_item(s, item, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(item))


@bp.post("/inventory/<int:item_id>/checkin")
@require_permission("inventory.edit")
def inventory_checkin(item_id: int):
    s = tenant_db()
    item = tenant_get_or_404(s, InventoryItem, item_id)
    payload = request_payload() if request.content_length else {}
    try:
        checkin_item(s, item, current_user(), notes=clean(payload.get("notes")))
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(item))
