"""Declarative conditions evaluated against workflow data.

A condition is either a leaf (``field`` / ``operator`` / ``value``) or a
composite joining child conditions with AND/OR. Trees are immutable and are
validated when they are constructed, so an unknown operator or a value of the
wrong shape fails at workflow build time instead of silently evaluating false.

Evaluation is fail-closed: a node that raises while evaluating is logged and
counts as ``False``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from formflow.errors import ConditionError

logger = logging.getLogger(__name__)


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    IN = "in"
    NOT_IN = "notIn"
    MATCHES = "matches"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"


class Combinator(str, Enum):
    AND = "and"
    OR = "or"


class _Missing:
    """Marker for a field path that does not resolve in the context."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

_NUMERIC_OPERATORS = frozenset(
    {
        Operator.GREATER_THAN,
        Operator.LESS_THAN,
        Operator.GREATER_THAN_OR_EQUAL,
        Operator.LESS_THAN_OR_EQUAL,
    }
)
_LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
_VALUELESS_OPERATORS = frozenset({Operator.EXISTS, Operator.NOT_EXISTS})


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _freeze(value: Any) -> Any:
    if isinstance(value, list | tuple):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


class _Combinable:
    __slots__ = ()

    def and_(self, *others: Condition) -> CompositeCondition:
        return _join(Combinator.AND, self, others)  # type: ignore[arg-type]

    def or_(self, *others: Condition) -> CompositeCondition:
        return _join(Combinator.OR, self, others)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class FieldCondition(_Combinable):
    """Compare the value at a dot-path against ``value``."""

    field: str
    operator: Operator
    value: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.field, str) or not self.field.strip():
            raise ConditionError("Condition field must be a non-empty dot-path string")
        try:
            operator = Operator(self.operator)
        except ValueError as e:
            raise ConditionError(f"Unknown condition operator: {self.operator!r}") from e
        object.__setattr__(self, "operator", operator)
        object.__setattr__(self, "value", _freeze(self.value))

        if operator in _NUMERIC_OPERATORS and not _is_number(self.value):
            raise ConditionError(
                f"Operator {operator.value!r} on {self.field!r} requires a numeric value"
            )
        if operator in _LIST_OPERATORS and not isinstance(self.value, tuple):
            raise ConditionError(
                f"Operator {operator.value!r} on {self.field!r} requires a list value"
            )
        if operator in _VALUELESS_OPERATORS and self.value is not None:
            raise ConditionError(f"Operator {operator.value!r} does not take a value")
        if operator is Operator.MATCHES:
            if not isinstance(self.value, str):
                raise ConditionError(f"Operator 'matches' on {self.field!r} requires a pattern")
            try:
                re.compile(self.value)
            except re.error as e:
                raise ConditionError(f"Invalid pattern for {self.field!r}: {e}") from e

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {"field": self.field, "operator": self.operator.value}
        if self.operator not in _VALUELESS_OPERATORS:
            out["value"] = _thaw(self.value)
        return out


@dataclass(frozen=True, slots=True)
class CompositeCondition(_Combinable):
    """Join child conditions with AND (all must hold) or OR (any must hold)."""

    combinator: Combinator
    conditions: tuple[Condition, ...]

    def __post_init__(self) -> None:
        try:
            combinator = Combinator(self.combinator)
        except ValueError as e:
            raise ConditionError(f"Unknown condition combinator: {self.combinator!r}") from e
        children = tuple(self.conditions)
        if not children:
            raise ConditionError("A composite condition needs at least one child condition")
        for child in children:
            if not isinstance(child, FieldCondition | CompositeCondition):
                raise ConditionError(f"Not a condition: {child!r}")
        object.__setattr__(self, "combinator", combinator)
        object.__setattr__(self, "conditions", children)

    def to_json(self) -> dict[str, Any]:
        return {
            "combinator": self.combinator.value,
            "conditions": [c.to_json() for c in self.conditions],
        }


Condition = FieldCondition | CompositeCondition


def _join(
    combinator: Combinator, first: Condition, others: Sequence[Condition]
) -> CompositeCondition:
    if isinstance(first, CompositeCondition) and first.combinator is combinator:
        return CompositeCondition(combinator, (*first.conditions, *others))
    return CompositeCondition(combinator, (first, *others))


def all_of(*conditions: Condition) -> CompositeCondition:
    return CompositeCondition(Combinator.AND, conditions)


def any_of(*conditions: Condition) -> CompositeCondition:
    return CompositeCondition(Combinator.OR, conditions)


@dataclass(frozen=True, slots=True)
class ConditionBuilder:
    """Fluent entry point: ``when("step1.country").equals("FR")``."""

    field: str

    def _leaf(self, operator: Operator, value: Any = None) -> FieldCondition:
        return FieldCondition(self.field, operator, value)

    def equals(self, value: Any) -> FieldCondition:
        return self._leaf(Operator.EQUALS, value)

    def not_equals(self, value: Any) -> FieldCondition:
        return self._leaf(Operator.NOT_EQUALS, value)

    def greater_than(self, value: float) -> FieldCondition:
        return self._leaf(Operator.GREATER_THAN, value)

    def less_than(self, value: float) -> FieldCondition:
        return self._leaf(Operator.LESS_THAN, value)

    def greater_than_or_equal(self, value: float) -> FieldCondition:
        return self._leaf(Operator.GREATER_THAN_OR_EQUAL, value)

    def less_than_or_equal(self, value: float) -> FieldCondition:
        return self._leaf(Operator.LESS_THAN_OR_EQUAL, value)

    def contains(self, value: Any) -> FieldCondition:
        return self._leaf(Operator.CONTAINS, value)

    def not_contains(self, value: Any) -> FieldCondition:
        return self._leaf(Operator.NOT_CONTAINS, value)

    def in_(self, values: Sequence[Any]) -> FieldCondition:
        return self._leaf(Operator.IN, list(values))

    def not_in(self, values: Sequence[Any]) -> FieldCondition:
        return self._leaf(Operator.NOT_IN, list(values))

    def matches(self, pattern: str) -> FieldCondition:
        return self._leaf(Operator.MATCHES, pattern)

    def exists(self) -> FieldCondition:
        return self._leaf(Operator.EXISTS)

    def not_exists(self) -> FieldCondition:
        return self._leaf(Operator.NOT_EXISTS)


def when(field: str) -> ConditionBuilder:
    return ConditionBuilder(field)


def condition_from_json(obj: Mapping[str, Any]) -> Condition:
    """Rebuild a condition tree from its JSON form.

    Accepts ``logicalOperator`` as an alias of ``combinator``. A leaf that also
    carries ``conditions`` becomes a composite of the leaf and its children.
    """

    if not isinstance(obj, Mapping):
        raise ConditionError(f"Condition must be an object, got {type(obj).__name__}")

    combinator = obj.get("combinator", obj.get("logicalOperator", Combinator.AND.value))
    children_raw = obj.get("conditions")
    children: list[Condition] = []
    if children_raw is not None:
        if not isinstance(children_raw, list):
            raise ConditionError("'conditions' must be a list")
        children = [condition_from_json(c) for c in children_raw]

    if "field" in obj:
        leaf = FieldCondition(obj["field"], obj.get("operator"), obj.get("value"))
        if not children:
            return leaf
        children.insert(0, leaf)

    return CompositeCondition(combinator, tuple(children))


def get_field_value(context: Mapping[str, Any], path: str) -> Any:
    """Resolve ``path`` in ``context``: exact (flattened) key first, then a dot walk."""

    if path in context:
        return context[path]
    current: Any = context
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return MISSING
    return current


def _same(a: Any, b: Any) -> bool:
    if a is MISSING or b is MISSING:
        return a is b
    # True must not equal 1.
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, list):
        a = _freeze(a)
    return bool(a == b)


def _contains(actual: Any, value: Any) -> bool | None:
    if isinstance(actual, str) and isinstance(value, str):
        return value in actual
    if isinstance(actual, list | tuple):
        return any(_same(item, value) for item in actual)
    return None


def _compare(operator: Operator, actual: Any, expected: Any) -> bool:
    if operator is Operator.EQUALS:
        return _same(actual, expected)
    if operator is Operator.NOT_EQUALS:
        return not _same(actual, expected)
    if operator in _NUMERIC_OPERATORS:
        if not _is_number(actual):
            return False
        if operator is Operator.GREATER_THAN:
            return actual > expected
        if operator is Operator.LESS_THAN:
            return actual < expected
        if operator is Operator.GREATER_THAN_OR_EQUAL:
            return actual >= expected
        return actual <= expected
    if operator is Operator.CONTAINS:
        return _contains(actual, expected) is True
    if operator is Operator.NOT_CONTAINS:
        return _contains(actual, expected) is False
    if operator is Operator.IN:
        return any(_same(actual, v) for v in expected)
    if operator is Operator.NOT_IN:
        return not any(_same(actual, v) for v in expected)
    if operator is Operator.MATCHES:
        return isinstance(actual, str) and re.search(expected, actual) is not None
    if operator is Operator.EXISTS:
        return actual is not MISSING and actual is not None
    if operator is Operator.NOT_EXISTS:
        return actual is MISSING or actual is None
    raise ConditionError(f"Unsupported operator: {operator!r}")


def evaluate(condition: Condition, context: Mapping[str, Any]) -> bool:
    """Evaluate ``condition`` against a combined data context."""

    try:
        if isinstance(condition, CompositeCondition):
            results = (evaluate(child, context) for child in condition.conditions)
            if condition.combinator is Combinator.AND:
                return all(results)
            return any(results)
        actual = get_field_value(context, condition.field)
        return _compare(condition.operator, actual, condition.value)
    except Exception:
        logger.warning(
            "Condition evaluation failed; treating as false",
            extra={"condition": _describe(condition)},
            exc_info=True,
        )
        return False


def _describe(condition: object) -> object:
    to_json = getattr(condition, "to_json", None)
    return to_json() if callable(to_json) else repr(condition)


def _walk_fields(condition: Condition) -> Iterator[str]:
    if isinstance(condition, FieldCondition):
        yield condition.field
        return
    for child in condition.conditions:
        yield from _walk_fields(child)


def extract_dependencies(condition: Condition | None) -> list[str]:
    """Return the unique field paths ``condition`` reads, in first-seen order."""

    if condition is None:
        return []
    return list(dict.fromkeys(_walk_fields(condition)))
