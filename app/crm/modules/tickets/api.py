from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from app.crm.modules.tickets.models import Ticket
from app.crm.modules.tickets.service import (
    create_ticket,
    delete_ticket,
    resolve_ticket,
    update_ticket,
    validate_ticket_payload,
    vote_ticket,
)
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    clean,
    page_args,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("tickets", __name__)


@bp.get("/tickets")
@require_permission("tickets.view")
def tickets_list():
    s = tenant_db()
    limit, offset = page_args()
    q = s.query(Ticket).filter(Ticket.tenant_id == current_tenant_id())
    for field in ("status", "ticket_type", "priority"):
        value = (request.args.get(field) or "").strip()
        if value:
            q = q.filter(getattr(Ticket, field) == value)

    total = q.with_entities(func.count(Ticket.id)).scalar() or 0
    sort = request.args.get("sort")
    order = (Ticket.votes.desc(), Ticket.created_at.desc()) if sort == "votes" else (Ticket.created_at.desc(),)
    tickets = q.order_by(*order).offset(offset).limit(limit).all()
    return jsonify({"tickets": [serialize(t) for t in tickets], "total": total})


@bp.get("/tickets/<int:ticket_id>")
@require_permission("tickets.view")
def ticket_detail(ticket_id: int):
    s = tenant_db()
    return jsonify(serialize(tenant_get_or_404(s, Ticket, ticket_id)))


@bp.post("/tickets")
@require_permission("tickets.create")
def ticket_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_ticket_payload(payload)
    if errors:
        return validation_error(errors)
    ticket = create_ticket(s, payload, current_user())
    s.commit()
    return jsonify(serialize(ticket)), 201


@bp.route("/tickets/<int:ticket_id>", methods=["PATCH", "PUT"])
@require_permission("tickets.edit")
def ticket_update(ticket_id: int):
    s = tenant_db()
    ticket = tenant_get_or_404(s, Ticket, ticket_id)
    payload = request_payload()
    errors = validate_ticket_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    update_ticket(s, ticket, payload, current_user())
    s.commit()
    return jsonify(serialize(ticket))


@bp.delete("/tickets/<int:ticket_id>")
@require_permission("tickets.delete")
def ticket_delete(ticket_id: int):
    s = tenant_db()
    ticket = tenant_get_or_404(s, Ticket, ticket_id)
    delete_ticket(s, ticket, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/tickets/<int:ticket_id>/resolve")
@require_permission("tickets.edit")
def ticket_resolve(ticket_id: int):
    s = tenant_db()
    ticket = tenant_get_or_404(s, Ticket, ticket_id)
    payload = request_payload() if request.content_length else {}
    try:
        resolve_ticket(s, ticket, current_user(), clean(payload.get("resolution_notes")))
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(serialize(ticket))


@bp.post("/tickets/<int:ticket_id>/vote")
@require_permission("tickets.view")
def ticket_vote(ticket_id: int):
    s = tenant_db()
    ticket = tenant_get_or_404(s, Ticket, ticket_id)
    vote_ticket(s, ticket, current_user())
    s.commit()
    return jsonify(serialize(ticket))
