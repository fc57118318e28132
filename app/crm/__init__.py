import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from sqlalchemy import inspect as sa_inspect

from app.crm.admin import bp as admin_bp
from app.crm.auth import bp as auth_bp, load_current_user
from app.crm.config import load_config
from app.crm.db import build_engine, init_db, teardown_db_session
from app.crm.modules.accounts.api import bp as accounts_bp
from app.crm.modules.attachments.api import bp as attachments_bp
from app.crm.modules.billing.api import bp as billing_bp
from app.crm.modules.contacts.api import bp as contacts_bp
from app.crm.modules.events.api import bp as events_bp
from app.crm.modules.inventory.api import bp as inventory_bp
from app.crm.modules.leads.api import bp as leads_bp
from app.crm.modules.opportunities.api import bp as opportunities_bp
from app.crm.modules.tasks.api import bp as tasks_bp
from app.crm.modules.tickets.api import bp as tickets_bp
from app.crm.modules.workflows.api import bp as workflows_bp
from app.crm.routes import bp as routes_bp
from app.crm.tenancy import TenantResolutionError, init_tenancy, teardown_tenant_session

logger = logging.getLogger(__name__)

# Endpoints that accept unauthenticated, token-less POSTs.
_CSRF_EXEMPT_ENDPOINTS = ("workflows.cron_workflow_triggers",)

_APP_TABLES = ("tenants", "users", "roles", "permissions", "user_roles", "role_permissions")
_TENANT_TABLES = (
    "audit_events",
    "accounts",
    "contacts",
    "leads",
    "opportunities",
    "events",
    "quotes",
    "invoices",
    "payments",
    "inventory_items",
    "tasks",
    "notifications",
    "tickets",
    "attachments",
    "workflows",
    "workflow_actions",
    "workflow_executions",
)


def _error(code: str, message: str, status: int, **extra):
    body = {"error": code, "message": message}
    body.update(extra)
    return jsonify(body), status


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.crm.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            endpoint = request.endpoint or ""
            if endpoint.startswith("auth.") or endpoint in _CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return _error("bad_request", "CSRF token missing or invalid.", 400)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        for key in ("DATABASE_URL", "TENANT_DATABASE_URL"):
            value = str(app.config.get(key) or "").strip()
            if not value:
                raise RuntimeError(f"{key} is required in production.")
            if value.startswith("sqlite"):
                raise RuntimeError(f"{key} must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("ENCRYPTION_KEY"):
            raise RuntimeError("ENCRYPTION_KEY is required in production (tenant connection secrets).")

    init_db(app)
    manager = init_tenancy(app)

    def _dispose_engines_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                manager.dispose_all()
                app.logger.info("Disposed DB engines after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engines_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    for bp in (
        accounts_bp,
        contacts_bp,
        leads_bp,
        opportunities_bp,
        events_bp,
        billing_bp,
        inventory_bp,
        tasks_bp,
        tickets_bp,
        attachments_bp,
        workflows_bp,
        admin_bp,
    ):
        app.register_blueprint(bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)
    app.teardown_appcontext(teardown_tenant_session)

    # Schema health: detect a database that has not been migrated.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing.extend(f"app:{t}" for t in _APP_TABLES if not insp.has_table(t))
            tenant_engine = build_engine(app.config["TENANT_DATABASE_URL"], env=env)
            try:
                tinsp = sa_inspect(tenant_engine)
                missing.extend(f"tenant:{t}" for t in _TENANT_TABLES if not tinsp.has_table(t))
            finally:
                tenant_engine.dispose()
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
        if missing:
            app.config["_schema_health_missing"] = missing
            app.logger.error(
                "DB schema out of date; run `alembic -n app upgrade head` and `alembic -n tenant upgrade head`. Missing: %s",
                ", ".join(missing),
            )
        app.config["_schema_health_ok"] = not missing

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith("/api") and getattr(g, "current_user", None):
            return _error(
                "schema_out_of_date",
                "Database schema is out of date.",
                500,
                missing=app.config.get("_schema_health_missing") or [],
            )
        return None

    @app.errorhandler(TenantResolutionError)
    def _err_tenant(e: TenantResolutionError):
        app.logger.warning("Tenant resolution failed (%s): %s request_id=%s", e.status_code, e, getattr(g, "request_id", None))
        code = {401: "unauthorized", 403: "forbidden", 500: "internal_error"}.get(e.status_code, "bad_request")
        return _error(code, str(e), e.status_code)

    @app.errorhandler(400)
    def _err_400(e):
        return _error("bad_request", getattr(e, "description", None) or "Bad request.", 400)

    @app.errorhandler(401)
    def _err_401(e):
        return _error("unauthorized", "Authentication required.", 401)

    @app.errorhandler(403)
    def _err_403(e):
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return _error("forbidden", "You do not have permission to do that.", 403, missing_permission=missing)

    @app.errorhandler(404)
    def _err_404(e):
        return _error("not_found", "Not found.", 404)

    @app.errorhandler(405)
    def _err_405(e):
        return _error("method_not_allowed", "Method not allowed.", 405)

    @app.errorhandler(409)
    def _err_409(e):
        return _error("conflict", getattr(e, "description", None) or "Conflict.", 409)

    @app.errorhandler(413)
    def _err_413(e):
        return _error("payload_too_large", "Request body is too large.", 413)

    @app.errorhandler(500)
    def _err_500(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error("internal_error", "Internal server error.", 500)

    logger.info("create_app() complete; app ready to serve")
    return app
