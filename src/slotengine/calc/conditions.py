"""Conditional rule evaluation.

Single implementation shared by decision trees (calculation) and by the
visibility/skip logic of the interview engine.

Operator semantics on absent values:
- MISSING (no value) equals nothing, is in nothing and contains nothing;
  not_equals is therefore true and not_in is false.
- None (explicit null) is an ordinary value for equality and membership.
- exists is false and not_exists is true for both.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from slotengine.errors import UnknownOperatorError
from slotengine.models.slot import ConditionalRule, ConditionOperator
from slotengine.models.values import (
    MISSING,
    is_absent,
    is_numeric,
    lookup,
    parse_numeric_text,
    to_decimal,
)

_COLLECTION_TYPES = (list, tuple, set, frozenset)


def _as_number(value: Any) -> Decimal | None:
    """Numeric view of a value: numbers and numeric strings, else None."""
    if is_numeric(value):
        return to_decimal(value)
    if isinstance(value, str):
        return parse_numeric_text(value)
    return None


def values_equal(left: Any, right: Any) -> bool:
    """Equality used by equals/in/contains.

    Numbers compare by value (5 == 5.0 == Decimal("5")); booleans only
    equal booleans.
    """
    if left is MISSING or right is MISSING:
        return False
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_numeric(left) and is_numeric(right):
        return to_decimal(left) == to_decimal(right)
    return bool(left == right)


def _compare(actual: Any, expected: Any) -> int | None:
    """Three-way numeric comparison, or None when either side is not a number."""
    if actual is MISSING or isinstance(actual, bool) or isinstance(expected, bool):
        return None
    left = _as_number(actual)
    right = _as_number(expected)
    if left is None or right is None:
        return None
    return (left > right) - (left < right)


def _member_of(actual: Any, options: Any) -> bool | None:
    """Membership of actual in options, or None when options is not a collection."""
    if not isinstance(options, _COLLECTION_TYPES):
        return None
    return any(values_equal(actual, option) for option in options)


def evaluate_condition(rule: ConditionalRule, values: Mapping[str, Any]) -> bool:
    """Evaluate a conditional rule against current slot values.

    Args:
        rule: The rule to evaluate.
        values: Slot values keyed by slot key. Absent keys are MISSING.

    Returns:
        True if the rule holds.

    Raises:
        UnknownOperatorError: If the rule's operator is not recognised.
    """
    actual = lookup(values, rule.slot_key)
    expected = rule.value
    operator = rule.operator

    if operator == ConditionOperator.EQUALS:
        return values_equal(actual, expected)
    if operator == ConditionOperator.NOT_EQUALS:
        return not values_equal(actual, expected)
    if operator == ConditionOperator.GREATER_THAN:
        return _compare(actual, expected) == 1
    if operator == ConditionOperator.LESS_THAN:
        return _compare(actual, expected) == -1
    if operator == ConditionOperator.IN:
        return actual is not MISSING and bool(_member_of(actual, expected))
    if operator == ConditionOperator.NOT_IN:
        if actual is MISSING:
            return False
        member = _member_of(actual, expected)
        return member is False
    if operator == ConditionOperator.CONTAINS:
        if isinstance(actual, _COLLECTION_TYPES):
            return any(values_equal(item, expected) for item in actual)
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        return False
    if operator == ConditionOperator.EXISTS:
        return not is_absent(actual)
    if operator == ConditionOperator.NOT_EXISTS:
        return is_absent(actual)

    raise UnknownOperatorError(operator)


def all_hold(rules: Iterable[ConditionalRule], values: Mapping[str, Any]) -> bool:
    """True if every rule holds (vacuously true for no rules)."""
    return all(evaluate_condition(rule, values) for rule in rules)


def any_holds(rules: Iterable[ConditionalRule], values: Mapping[str, Any]) -> bool:
    """True if at least one rule holds (false for no rules)."""
    return any(evaluate_condition(rule, values) for rule in rules)
