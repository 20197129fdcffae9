"""Unit tests for building and evaluating conditions."""

from __future__ import annotations

import logging

import pytest

from formflow.errors import ConditionError
from formflow.workflow.conditions import (
    MISSING,
    Combinator,
    CompositeCondition,
    FieldCondition,
    Operator,
    all_of,
    any_of,
    condition_from_json,
    evaluate,
    extract_dependencies,
    get_field_value,
    when,
)

CONTEXT = {
    "step1": {"country": "FR", "age": 34, "tags": ["vip", "beta"], "note": None},
    "step1.country": "FR",
    "step1.age": 34,
    "step1.tags": ["vip", "beta"],
    "step1.note": None,
    "email": "ada@example.com",
}


@pytest.mark.parametrize(
    ("condition", "expected"),
    [
        (when("step1.country").equals("FR"), True),
        (when("step1.country").not_equals("FR"), False),
        (when("step1.age").greater_than(18), True),
        (when("step1.age").less_than(18), False),
        (when("step1.age").greater_than_or_equal(34), True),
        (when("step1.age").less_than_or_equal(33), False),
        (when("email").contains("@example"), True),
        (when("step1.tags").contains("vip"), True),
        (when("step1.tags").not_contains("vip"), False),
        (when("step1.country").in_(["FR", "BE"]), True),
        (when("step1.country").not_in(["FR", "BE"]), False),
        (when("email").matches(r"^[a-z]+@"), True),
        (when("step1.country").exists(), True),
        (when("step1.note").exists(), False),
        (when("step1.missing").not_exists(), True),
    ],
)
def test_operators(condition: FieldCondition, expected: bool) -> None:
    assert evaluate(condition, CONTEXT) is expected


def test_missing_field_is_not_equal_to_anything() -> None:
    assert evaluate(when("nope").equals(None), CONTEXT) is False
    assert evaluate(when("nope").not_equals("x"), CONTEXT) is True


def test_numeric_comparison_requires_numeric_field() -> None:
    assert evaluate(when("step1.country").greater_than(1), CONTEXT) is False


def test_booleans_do_not_equal_integers() -> None:
    assert evaluate(when("flag").equals(1), {"flag": True}) is False
    assert evaluate(when("flag").equals(True), {"flag": True}) is True


def test_list_values_compare_equal_to_lists() -> None:
    assert evaluate(when("step1.tags").equals(["vip", "beta"]), CONTEXT) is True


def test_composites_and_or() -> None:
    yes = when("step1.country").equals("FR")
    no = when("step1.age").less_than(10)

    assert evaluate(yes.and_(no), CONTEXT) is False
    assert evaluate(yes.or_(no), CONTEXT) is True
    assert evaluate(all_of(yes, yes), CONTEXT) is True
    assert evaluate(any_of(no, no), CONTEXT) is False


def test_chained_and_flattens_into_one_composite() -> None:
    a = when("a").exists()
    b = when("b").exists()
    c = when("c").exists()

    chained = a.and_(b).and_(c)

    assert isinstance(chained, CompositeCondition)
    assert chained.combinator is Combinator.AND
    assert chained.conditions == (a, b, c)


def test_get_field_value_prefers_flat_key_then_walks() -> None:
    assert get_field_value({"a.b": 1, "a": {"b": 2}}, "a.b") == 1
    assert get_field_value({"a": {"b": {"c": 3}}}, "a.b.c") == 3
    assert get_field_value({"a": {"b": 1}}, "a.x") is MISSING


@pytest.mark.parametrize(
    ("field", "operator", "value"),
    [
        ("age", "greaterThan", "18"),
        ("age", "lessThan", True),
        ("country", "in", "FR"),
        ("country", "exists", "x"),
        ("email", "matches", "("),
        ("email", "bogus", 1),
        ("", "equals", 1),
    ],
)
def test_invalid_conditions_fail_at_construction(field: str, operator: str, value: object) -> None:
    with pytest.raises(ConditionError):
        FieldCondition(field, operator, value)  # type: ignore[arg-type]


def test_empty_composite_is_rejected() -> None:
    with pytest.raises(ConditionError):
        CompositeCondition(Combinator.OR, ())


def test_operator_strings_are_coerced_to_enum() -> None:
    cond = FieldCondition("a", "equals", 1)  # type: ignore[arg-type]

    assert cond.operator is Operator.EQUALS


def test_evaluation_error_is_fail_closed(caplog: pytest.LogCaptureFixture) -> None:
    class Exploding:
        def __eq__(self, other: object) -> bool:
            raise RuntimeError("boom")

        __hash__ = object.__hash__

    cond = when("x").equals("y")
    with caplog.at_level(logging.WARNING, logger="formflow.workflow.conditions"):
        assert evaluate(cond, {"x": Exploding()}) is False
    assert "treating as false" in caplog.text


def test_json_round_trip_and_legacy_keys() -> None:
    cond = when("s.a").in_(["x", "y"]).or_(when("s.b").not_exists())

    rebuilt = condition_from_json(cond.to_json())

    assert rebuilt == cond
    legacy = condition_from_json(
        {
            "field": "s.a",
            "operator": "equals",
            "value": 1,
            "logicalOperator": "or",
            "conditions": [{"field": "s.b", "operator": "exists"}],
        }
    )
    assert isinstance(legacy, CompositeCondition)
    assert legacy.combinator is Combinator.OR
    assert evaluate(legacy, {"s": {"b": 0}}) is True


def test_extract_dependencies_is_unique_and_ordered() -> None:
    cond = all_of(
        when("s1.a").exists(),
        any_of(when("s2.b").equals(1), when("s1.a").equals(2)),
    )

    assert extract_dependencies(cond) == ["s1.a", "s2.b"]
    assert extract_dependencies(None) == []
