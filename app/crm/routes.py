from flask import Blueprint, current_app, jsonify

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify({"name": "boothcrm", "api": "/api", "auth": "/auth"})


@bp.get("/health")
def health():
    """Health check endpoint. Includes schema drift status for the app DB."""
    return jsonify(
        {
            "ok": True,
            "schema_ok": bool(current_app.config.get("_schema_health_ok", True)),
            "schema_missing": current_app.config.get("_schema_health_missing") or [],
        }
    )


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancer probes. No DB access.
    """
    return "ok", 200
