from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.leads.models import Lead
from app.crm.modules.leads.service import convert_lead, create_lead, delete_lead, update_lead, validate_lead_payload
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    clean,
    page_args,
    parse_bool,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("leads", __name__)


def lead_to_dict(lead: Lead) -> dict:
    data = serialize(lead)
    data["full_name"] = lead.full_name
    return data


@bp.get("/leads")
@require_permission("leads.view")
def leads_list():
    s = tenant_db()
    limit, offset = page_args()

    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    source_filter = (request.args.get("source") or "").strip()
    owner_filter = (request.args.get("owner_id") or "").strip()

    q = s.query(Lead).filter(Lead.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(Lead.first_name.ilike(like), Lead.last_name.ilike(like), Lead.email.ilike(like), Lead.company.ilike(like))
        )
    if status_filter:
        q = q.filter(Lead.status == status_filter)
    if source_filter:
        q = q.filter(Lead.source == source_filter)
    if owner_filter.isdigit():
        q = q.filter(Lead.owner_id == int(owner_filter))

    total = q.with_entities(func.count(Lead.id)).scalar() or 0
    leads = q.order_by(Lead.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({"leads": [lead_to_dict(ld) for ld in leads], "total": total})


@bp.get("/leads/<int:lead_id>")
@require_permission("leads.view")
def lead_detail(lead_id: int):
    s = tenant_db()
    return jsonify(lead_to_dict(tenant_get_or_404(s, Lead, lead_id)))


@bp.post("/leads")
@require_permission("leads.create")
def lead_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_lead_payload(payload)
    if errors:
        return validation_error(errors)
    lead = create_lead(s, payload, current_user())
    s.commit()
    return jsonify(lead_to_dict(lead)), 201


@bp.route("/leads/<int:lead_id>", methods=["PATCH", "PUT"])
@require_permission("leads.edit")
def lead_update(lead_id: int):
    s = tenant_db()
    lead = tenant_get_or_404(s, Lead, lead_id)
    payload = request_payload()
    errors = validate_lead_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        update_lead(s, lead, payload, current_user(), reason=payload.get("reason"))
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(lead_to_dict(lead))


@bp.delete("/leads/<int:lead_id>")
@require_permission("leads.delete")
def lead_delete(lead_id: int):
    s = tenant_db()
    lead = tenant_get_or_404(s, Lead, lead_id)
    delete_lead(s, lead, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/leads/<int:lead_id>/convert")
@require_permission("leads.edit")
def lead_convert(lead_id: int):
    s = tenant_db()
    lead = tenant_get_or_404(s, Lead, lead_id)
    payload = request_payload() if request.content_length else {}
    try:
        result = convert_lead(
            s,
            lead,
            current_user(),
            create_opportunity=parse_bool(payload.get("create_opportunity")),
            opportunity_name=clean(payload.get("opportunity_name")),
        )
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(
        {
            "lead": lead_to_dict(lead),
            "account_id": result.account.id,
            "contact_id": result.contact.id if result.contact else None,
            "opportunity_id": result.opportunity.id if result.opportunity else None,
        }
    )
