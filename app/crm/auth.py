from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.crm.audit import record_event
from app.crm.db import db_session
from app.crm.models import User
from app.crm.rbac import user_permission_keys
from app.crm.security import ensure_csrf_token
from app.crm.tenancy import TenantResolutionError, data_sources
from app.crm.utils import json_error, request_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "name": user.full_name,
        "tenant_id": user.tenant_id,
        "roles": sorted(r.key for r in user.roles),
        "is_active": user.is_active,
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.tenant = None
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _audit_auth_event(user: User, action: str) -> None:
    """Auth events go to the user's tenant audit trail."""
    if not user.tenant_id:
        return
    ts = data_sources().open_session(user.tenant_id)
    try:
        record_event(ts, actor=user, action=action, entity_type="User", entity_id=str(user.id))
        ts.commit()
    finally:
        ts.close()


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/login")
def login_post():
    payload = request_payload()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return json_error("too_many_requests", "Too many login attempts. Please wait 5 minutes.", 429)

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            current_app.logger.warning("Login failed (email=%s ip=%s request_id=%s)", email, ip, g.request_id)
            return json_error("unauthorized", "Invalid credentials.", 401)

        if user.tenant_id:
            try:
                data_sources().get_connection_config(user.tenant_id)
            except TenantResolutionError as e:
                current_app.logger.warning("Login blocked for %s: %s", email, e)
                return json_error("forbidden" if e.status_code == 403 else "bad_request", str(e), e.status_code)

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        _login_attempts[ip].clear()
        user.last_login_at = datetime.utcnow()
        s.commit()
        _audit_auth_event(user, "auth.login")
        return jsonify({"user": user_to_dict(user), "csrf_token": ensure_csrf_token()})
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        _audit_auth_event(user, "auth.logout")
    session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
def me():
    user: User | None = getattr(g, "current_user", None)
    if not user:
        return json_error("unauthorized", "Authentication required.", 401)
    data = user_to_dict(user)
    data["permissions"] = user_permission_keys(user)
    data["tenant"] = {"id": user.tenant.id, "name": user.tenant.name} if user.tenant else None
    return jsonify(data)
