from __future__ import annotations

from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, TypeVar

from flask import abort, jsonify, request
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from app.crm.tenancy import tenant_id_of

T = TypeVar("T")

CENTS = Decimal("0.01")


def clean(value: Any) -> str | None:
    """Strip a string field; empty means None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_date(s: Any) -> date | None:
    """Parse YYYY-MM-DD (a datetime string is truncated to its date)."""
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    s = str(s).strip()
    if not s:
        return None
    if "T" in s:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    return date.fromisoformat(s)


def parse_time(s: Any) -> time | None:
    if s is None or s == "":
        return None
    if isinstance(s, time):
        return s
    return time.fromisoformat(str(s).strip())


def parse_decimal(v: Any, default: Decimal | None = None) -> Decimal | None:
    if v is None or v == "":
        return default
    try:
        return Decimal(str(v).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid number: {v!r}") from e


def parse_int(v: Any, default: int | None = None) -> int | None:
    if v is None or v == "":
        return default
    if isinstance(v, bool):
        raise ValueError(f"Invalid integer: {v!r}")
    try:
        return int(str(v).strip())
    except ValueError as e:
        raise ValueError(f"Invalid integer: {v!r}") from e


def parse_bool(v: Any, default: bool = False) -> bool:
    if v is None or v == "":
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def money(v: Decimal | int | float | None) -> Decimal:
    return Decimal(str(v or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def serialize(obj: Any, *, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """Column attributes of an ORM row as a JSON-ready dict."""
    mapper = sa_inspect(obj).mapper
    return {
        attr.key: _jsonable(getattr(obj, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in exclude
    }


def request_payload() -> dict[str, Any]:
    """JSON body when present, otherwise form fields."""
    if request.is_json:
        data = request.get_json(silent=True)
        if data is None:
            abort(400, description="Request body is not valid JSON.")
        if not isinstance(data, dict):
            abort(400, description="Request body must be a JSON object.")
        return data
    return request.form.to_dict()


def json_error(error: str, message: str, status: int, **extra: Any):
    body = {"error": error, "message": message}
    body.update(extra)
    return jsonify(body), status


def validation_error(errors: list[str]):
    return json_error("bad_request", errors[0] if len(errors) == 1 else "Validation failed.", 400, details=errors)


def tenant_get(s: Session, model: type[T], obj_id: Any) -> T | None:
    """Primary-key lookup that hides rows belonging to another tenant."""
    if obj_id is None:
        return None
    obj = s.get(model, obj_id)
    if obj is None or getattr(obj, "tenant_id", None) != tenant_id_of(s):
        return None
    return obj


def tenant_get_or_404(s: Session, model: type[T], obj_id: Any) -> T:
    obj = tenant_get(s, model, obj_id)
    if obj is None:
        abort(404)
    return obj


def page_args(default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    """limit/offset from the query string, clamped."""
    try:
        limit = int(request.args.get("limit") or default_limit)
        offset = int(request.args.get("offset") or 0)
    except ValueError:
        abort(400, description="limit and offset must be integers.")
    return max(1, min(limit, max_limit)), max(0, offset)


class ConflictError(ValueError):
    """Business-rule violation reported as HTTP 409."""


def service_error(e: ValueError):
    if isinstance(e, ConflictError):
        return json_error("conflict", str(e), 409)
    return json_error("bad_request", str(e), 400)
