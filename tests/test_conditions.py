from decimal import Decimal

import pytest

from app.crm.modules.workflows.conditions import apply_operator, evaluate_conditions, get_path, validate_condition

CTX = {
    "event": {
        "name": "Spring Gala",
        "status": "Confirmed",
        "city": None,
        "guest_count": 150,
        "start_date": "2026-05-01",
        "amount": 2500.0,
    },
    "previous": {"status": "planning"},
}


def test_get_path_walks_dicts():
    assert get_path(CTX, "event.name") == "Spring Gala"
    assert get_path(CTX, "event.missing.deeper") is None
    assert get_path(CTX, "") is None


@pytest.mark.parametrize(
    "operator,field,value,expected",
    [
        ("equals", "event.status", "confirmed", True),
        ("equals", "event.amount", 2500, True),
        ("not_equals", "event.status", "cancelled", True),
        ("in", "event.status", ["planning", "CONFIRMED"], True),
        ("not_in", "event.status", ["planning"], True),
        ("contains", "event.name", "gala", True),
        ("not_contains", "event.name", "wedding", True),
        ("is_set", "event.name", None, True),
        ("is_not_set", "event.city", None, True),
        ("greater_than", "event.guest_count", 100, True),
        ("less_than", "event.guest_count", "100", False),
        ("greater_than", "event.start_date", "2026-04-30", True),
        ("less_than", "event.name", 5, False),
        ("equals", "previous.status", "planning", True),
    ],
)
def test_operators(operator, field, value, expected):
    passed, results = evaluate_conditions([{"field": field, "operator": operator, "value": value}], CTX)
    assert passed is expected
    assert results[0].field == field


def test_in_requires_a_list():
    assert apply_operator("in", "a", "a") is False


def test_unknown_operator_fails_closed():
    assert apply_operator("matches", "a", "a") is False


def test_all_conditions_must_pass():
    conditions = [
        {"field": "event.status", "operator": "equals", "value": "confirmed"},
        {"field": "event.guest_count", "operator": "greater_than", "value": 500},
    ]
    passed, results = evaluate_conditions(conditions, CTX)
    assert passed is False
    assert [r.passed for r in results] == [True, False]


def test_empty_conditions_pass():
    assert evaluate_conditions(None, CTX) == (True, [])
    assert evaluate_conditions([], CTX) == (True, [])


def test_result_serializes_actual():
    _, results = evaluate_conditions([{"field": "event.amount", "operator": "is_set"}], {"event": {"amount": Decimal("1.50")}})
    assert results[0].to_dict()["actual"] == 1.5


def test_validate_condition():
    assert validate_condition({"field": "event.status", "operator": "equals", "value": "x"}) == []
    assert validate_condition({"field": "event.city", "operator": "is_set"}) == []
    assert validate_condition("nope") == ["Condition must be an object."]
    assert "Condition field is required." in validate_condition({"operator": "equals", "value": "x"})
    assert validate_condition({"field": "f", "operator": "bogus"}) == ["Unknown condition operator: bogus"]
    assert validate_condition({"field": "f", "operator": "equals"}) == ["Condition value is required for operator equals."]
    assert validate_condition({"field": "f", "operator": "in", "value": "x"}) == ["Condition value must be a list for operator in."]
