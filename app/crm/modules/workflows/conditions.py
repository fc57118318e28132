"""
Workflow condition evaluation.

A condition is a dict ``{"field": "event.status", "operator": "equals", "value": "confirmed"}``.
Fields are dotted paths into the evaluation context, which looks like
``{"event": {...}, "previous": {...}}``. All conditions must pass; an empty list passes.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)

OPERATORS = (
    "equals",
    "not_equals",
    "in",
    "not_in",
    "contains",
    "not_contains",
    "is_set",
    "is_not_set",
    "greater_than",
    "less_than",
)
VALUELESS_OPERATORS = ("is_set", "is_not_set")
LIST_OPERATORS = ("in", "not_in")


@dataclass
class ConditionResult:
    field: str | None
    operator: str | None
    expected: Any
    actual: Any
    passed: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["actual"] = _jsonable(d["actual"])
        return d


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dict, list)):
        return value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def get_path(obj: Any, path: str | None) -> Any:
    if obj is None or not path:
        return None
    current = obj
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        else:
            current = getattr(current, key, None)
    return current


def _norm(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (int, float)):
        value = Decimal(str(value))
    if isinstance(value, Decimal):
        value = format(value.normalize(), "f")
    return str(value).strip().lower()


def _is_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _comparable(value: Any) -> float | datetime | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def _compare(actual: Any, expected: Any) -> int | None:
    a, b = _comparable(actual), _comparable(expected)
    if a is None or b is None or type(a) is not type(b):
        return None
    return (a > b) - (a < b)


def apply_operator(operator: str | None, actual: Any, expected: Any) -> bool:
    if operator == "equals":
        return _norm(actual) == _norm(expected)
    if operator == "not_equals":
        return _norm(actual) != _norm(expected)
    if operator in LIST_OPERATORS:
        if not isinstance(expected, (list, tuple)):
            logger.warning("condition operator %s expects a list value", operator)
            return False
        hit = _norm(actual) in [_norm(v) for v in expected]
        return hit if operator == "in" else not hit
    if operator == "contains":
        return isinstance(actual, str) and (_norm(expected) or "") in _norm(actual)
    if operator == "not_contains":
        return not (isinstance(actual, str) and (_norm(expected) or "") in _norm(actual))
    if operator == "is_set":
        return _is_set(actual)
    if operator == "is_not_set":
        return not _is_set(actual)
    if operator == "greater_than":
        return _compare(actual, expected) == 1
    if operator == "less_than":
        return _compare(actual, expected) == -1
    logger.warning("unknown condition operator: %s", operator)
    return False


def evaluate_condition(condition: dict, context: dict) -> ConditionResult:
    field = condition.get("field")
    operator = condition.get("operator")
    expected = condition.get("value")
    actual = get_path(context, field)
    return ConditionResult(
        field=field,
        operator=operator,
        expected=expected,
        actual=actual,
        passed=apply_operator(operator, actual, expected),
    )


def evaluate_conditions(conditions: list | None, context: dict) -> tuple[bool, list[ConditionResult]]:
    """AND of every condition; returns (passed, per-condition results)."""
    if not conditions:
        return True, []
    results = [evaluate_condition(c if isinstance(c, dict) else {}, context) for c in conditions]
    return all(r.passed for r in results), results


def validate_condition(condition: Any) -> list[str]:
    if not isinstance(condition, dict):
        return ["Condition must be an object."]
    errors = []
    if not str(condition.get("field") or "").strip():
        errors.append("Condition field is required.")
    operator = condition.get("operator")
    if not operator:
        errors.append("Condition operator is required.")
    elif operator not in OPERATORS:
        errors.append(f"Unknown condition operator: {operator}")
    elif operator not in VALUELESS_OPERATORS:
        value = condition.get("value")
        if value is None or value == "":
            errors.append(f"Condition value is required for operator {operator}.")
        elif operator in LIST_OPERATORS and not isinstance(value, list):
            errors.append(f"Condition value must be a list for operator {operator}.")
    return errors
