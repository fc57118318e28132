from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.crm.audit import record_event
from app.crm.db import db_session
from app.crm.models import AuditEvent, User
from app.crm.rbac import current_user, login_required, require_permission
from app.crm.tenancy import current_tenant_id, data_sources, tenant_db
from app.crm.utils import page_args, serialize

bp = Blueprint("admin", __name__)


def _user_entry(u: User) -> dict:
    role_keys = sorted(r.key for r in (u.roles or []))
    return {
        "id": u.id,
        "email": u.email,
        "name": u.full_name,
        "role": role_keys[0] if role_keys else None,
        "roles": role_keys,
        "is_active": u.is_active,
    }


@bp.get("/users")
@login_required
def users_list():
    """Users of the caller's tenant (assignee pickers, staff lists)."""
    s = db_session()
    q = s.query(User).filter(User.tenant_id == current_user().tenant_id)
    if request.args.get("active") in ("1", "true"):
        q = q.filter(User.is_active.is_(True))
    users = q.order_by(User.first_name.asc(), User.last_name.asc(), User.email.asc()).all()
    return jsonify({"users": [_user_entry(u) for u in users]})


@bp.get("/admin/tenant/connection")
@require_permission("settings.edit")
def tenant_connection():
    return jsonify(data_sources().get_connection_info(current_user().tenant_id))


@bp.post("/admin/tenant/connection/test")
@require_permission("settings.edit")
def tenant_connection_test():
    result = data_sources().test_connection(current_user().tenant_id)
    return jsonify(result), 200 if result["success"] else 503


@bp.post("/admin/tenant/cache/clear")
@require_permission("settings.edit")
def tenant_cache_clear():
    user = current_user()
    # Audit first: clearing the cache disposes the engine behind the request session.
    s = tenant_db()
    record_event(s, actor=user, action="tenant.cache_clear", entity_type="Tenant", entity_id=user.tenant_id)
    s.commit()
    s.close()
    g.tenant = None
    data_sources().clear_tenant_cache(user.tenant_id)
    return jsonify({"ok": True, "tenant_id": user.tenant_id})


@bp.get("/admin/cache-stats")
@require_permission("settings.edit")
def cache_stats():
    return jsonify(data_sources().get_cache_stats())


@bp.get("/admin/audit")
@require_permission("settings.edit")
def audit_list():
    s = tenant_db()
    limit, offset = page_args(default_limit=100, max_limit=500)
    q = s.query(AuditEvent).filter(AuditEvent.tenant_id == current_tenant_id())
    action = (request.args.get("action") or "").strip()
    if action:
        q = q.filter(AuditEvent.action == action)
    entity_type = (request.args.get("entity_type") or "").strip()
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    rows = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).offset(offset).limit(limit).all()
    return jsonify({"audit_events": [serialize(r) for r in rows]})
