from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.events.service import validate_event_date_payload
from app.crm.modules.opportunities.models import Opportunity
from app.crm.modules.opportunities.service import (
    STATS_PERIODS,
    VALID_STAGES,
    add_line_item,
    add_opportunity_date,
    convert_to_event,
    create_opportunity,
    delete_line_item,
    delete_opportunity,
    opportunity_stats,
    remove_opportunity_date,
    update_line_item,
    update_opportunity,
    validate_line_item_payload,
    validate_opportunity_payload,
)
from app.crm.rbac import current_user, require_permission
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

bp = Blueprint("opportunities", __name__)


def opportunity_to_dict(opp: Opportunity) -> dict:
    data = serialize(opp)
    data["line_items"] = [serialize(li) for li in opp.line_items]
    data["event_dates"] = [serialize(d) for d in opp.event_dates]
    return data


def _apply_owner_filter(q, owner_filter: str):
    if owner_filter == "unassigned":
        return q.filter(Opportunity.owner_id.is_(None))
    if owner_filter.isdigit():
        return q.filter(Opportunity.owner_id == int(owner_filter))
    return q


@bp.get("/opportunities")
@require_permission("opportunities.view")
def opportunities_list():
    s = tenant_db()
    limit, offset = page_args()

    search = (request.args.get("q") or "").strip()
    stage_filter = (request.args.get("stage") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    account_filter = (request.args.get("account_id") or "").strip()

    q = s.query(Opportunity).filter(Opportunity.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Opportunity.name.ilike(like), Opportunity.description.ilike(like)))
    if stage_filter:
        q = q.filter(Opportunity.stage == stage_filter)
    if status_filter:
        q = q.filter(Opportunity.status == status_filter)
    if account_filter.isdigit():
        q = q.filter(Opportunity.account_id == int(account_filter))
    q = _apply_owner_filter(q, (request.args.get("owner_id") or "").strip())

    total = q.with_entities(func.count(Opportunity.id)).scalar() or 0
    opps = q.order_by(Opportunity.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({"opportunities": [opportunity_to_dict(o) for o in opps], "total": total})


@bp.get("/opportunities/stats")
@require_permission("opportunities.view")
def opportunities_stats():
    s = tenant_db()
    period = (request.args.get("period") or "all").strip()
    if period not in STATS_PERIODS:
        return json_error("bad_request", f"Invalid period. Must be one of: {', '.join(STATS_PERIODS)}", 400)
    stage_filter = (request.args.get("stage") or "").strip()
    if stage_filter and stage_filter not in VALID_STAGES:
        return json_error("bad_request", f"Invalid stage. Must be one of: {', '.join(VALID_STAGES)}", 400)

    q = s.query(Opportunity).filter(Opportunity.tenant_id == current_tenant_id())
    if stage_filter:
        q = q.filter(Opportunity.stage == stage_filter)
    q = _apply_owner_filter(q, (request.args.get("owner_id") or "").strip())
    return jsonify(opportunity_stats(q.all(), period=period))


@bp.get("/opportunities/<int:opp_id>")
@require_permission("opportunities.view")
def opportunity_detail(opp_id: int):
    s = tenant_db()
    return jsonify(opportunity_to_dict(tenant_get_or_404(s, Opportunity, opp_id)))


@bp.post("/opportunities")
@require_permission("opportunities.create")
def opportunity_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_opportunity_payload(payload)
    for date_payload in payload.get("event_dates") or []:
        errors.extend(validate_event_date_payload(date_payload if isinstance(date_payload, dict) else {}))
    if errors:
        return validation_error(errors)
    try:
        opp = create_opportunity(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(opportunity_to_dict(opp)), 201


@bp.route("/opportunities/<int:opp_id>", methods=["PATCH", "PUT"])
@require_permission("opportunities.edit")
def opportunity_update(opp_id: int):
    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    payload = request_payload()
    errors = validate_opportunity_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        update_opportunity(s, opp, payload, current_user(), reason=payload.get("reason"))
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(opportunity_to_dict(opp))


@bp.delete("/opportunities/<int:opp_id>")
@require_permission("opportunities.delete")
def opportunity_delete(opp_id: int):
    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    delete_opportunity(s, opp, current_user())
    s.commit()
    return jsonify({"ok": True})


# ---------- Line items ----------
@bp.post("/opportunities/<int:opp_id>/line-items")
@require_permission("opportunities.edit")
def opportunity_line_item_add(opp_id: int):
    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    payload = request_payload()
    errors = validate_line_item_payload(payload)
    if errors:
        return validation_error(errors)
    add_line_item(s, opp, payload, current_user())
    s.commit()
    return jsonify(opportunity_to_dict(opp)), 201


@bp.route("/opportunities/<int:opp_id>/line-items/<int:item_id>", methods=["PATCH", "PUT"])
@require_permission("opportunities.edit")
def opportunity_line_item_update(opp_id: int, item_id: int):
    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    item = next((li for li in opp.line_items if li.id == item_id), None)
    if item is None:
        return json_error("not_found", f"Line item not found: {item_id}", 404)
    payload = request_payload()
    errors = validate_line_item_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    update_line_item(s, opp, item, payload, current_user())
    s.commit()
    return jsonify(opportunity_to_dict(opp))


@bp.delete("/opportunities/<int:opp_id>/line-items/<int:item_id>")
@require_permission("opportunities.edit")
def opportunity_line_item_delete(opp_id: int, item_id: int):
    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    item = next((li for li in opp.line_items if li.id == item_id), None)
    if item is None:
        return json_error("not_found", f"Line item not found: {item_id}", 404)
    delete_line_item(s, opp, item, current_user())
    s.commit()
    return jsonify(opportunity_to_dict(opp))


# ---------- Dates ----------
@bp.post("/opportunities/<int:opp_id>/dates")
@require_permission("opportunities.edit")
def opportunity_date_add(opp_id: int):
    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    payload = request_payload()
    errors = validate_event_date_payload(payload)
    if errors:
        return validation_error(errors)
    row = add_opportunity_date(s, opp, payload, current_user())
    s.commit()
    return jsonify(serialize(row)), 201


@bp.delete("/opportunities/<int:opp_id>/dates/<int:date_id>")
@require_permission("opportunities.edit")
def opportunity_date_remove(opp_id: int, date_id: int):
    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    try:
        remove_opportunity_date(s, opp, date_id, current_user())
    except ValueError:
        return json_error("not_found", f"Opportunity date not found: {date_id}", 404)
    s.commit()
    return jsonify({"ok": True})


# ---------- Convert ----------
@bp.post("/opportunities/<int:opp_id>/convert-to-event")
@require_permission("events.create")
def opportunity_convert_to_event(opp_id: int):
    from app.crm.modules.events.api import event_to_dict

    s = tenant_db()
    opp = tenant_get_or_404(s, Opportunity, opp_id)
    payload = request_payload() if request.content_length else {}
    try:
        result = convert_to_event(s, opp, current_user(), payload)
    except ValueError as e:
        s.rollback()
        return service_error(e)
    s.commit()
    return jsonify(
        {
            "event": event_to_dict(result.event),
            "invoice": serialize(result.invoice) if result.invoice else None,
            "event_dates": [serialize(d) for d in result.event_dates],
            "workflows": result.workflows,
            "message": f"Opportunity converted to event '{result.event.name}'.",
        }
    ), 201
