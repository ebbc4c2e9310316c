"""Tests for conditional rule evaluation.

Covers every operator, including its behaviour on missing values and
explicit nulls.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from slotengine.calc.conditions import all_hold, any_holds, evaluate_condition, values_equal
from slotengine.errors import UnknownOperatorError
from slotengine.models.slot import ConditionalRule, ConditionOperator


def rule(operator: str, value: object = None, slot_key: str = "x") -> ConditionalRule:
    return ConditionalRule.model_validate(
        {"slot_key": slot_key, "operator": operator, "value": value}
    )


class TestValuesEqual:
    def test_numbers_compare_by_value(self) -> None:
        assert values_equal(5, 5.0)
        assert values_equal(Decimal("5.00"), 5)

    def test_bools_only_equal_bools(self) -> None:
        assert not values_equal(True, 1)
        assert not values_equal(0, False)
        assert values_equal(True, True)

    def test_strings(self) -> None:
        assert values_equal("ON", "ON")
        assert not values_equal("ON", "on")


class TestEquality:
    def test_equals(self) -> None:
        assert evaluate_condition(rule("equals", 5), {"x": 5.0})
        assert not evaluate_condition(rule("equals", 5), {"x": 6})

    def test_missing_equals_nothing(self) -> None:
        assert not evaluate_condition(rule("equals", None), {})
        assert evaluate_condition(rule("not_equals", "anything"), {})

    def test_null_is_a_value(self) -> None:
        assert evaluate_condition(rule("equals", None), {"x": None})


class TestOrdering:
    @pytest.mark.parametrize(
        ("actual", "expected", "operator", "result"),
        [
            (5, 3, "greater_than", True),
            (3, 5, "greater_than", False),
            (Decimal("5.5"), 5, "greater_than", True),
            ("10", 9, "greater_than", True),
            (1, 3, "less_than", True),
            (3, 3, "less_than", False),
        ],
    )
    def test_numeric_comparisons(
        self, actual: object, expected: object, operator: str, result: bool
    ) -> None:
        assert evaluate_condition(rule(operator, expected), {"x": actual}) is result

    def test_non_numeric_is_false(self) -> None:
        assert not evaluate_condition(rule("greater_than", 3), {"x": "abc"})
        assert not evaluate_condition(rule("less_than", 3), {"x": None})
        assert not evaluate_condition(rule("greater_than", 0), {"x": True})

    def test_missing_is_false_both_ways(self) -> None:
        assert not evaluate_condition(rule("greater_than", 0), {})
        assert not evaluate_condition(rule("less_than", 0), {})


class TestMembership:
    def test_in(self) -> None:
        assert evaluate_condition(rule("in", ["ON", "BC"]), {"x": "ON"})
        assert not evaluate_condition(rule("in", ["ON", "BC"]), {"x": "AB"})

    def test_in_requires_a_list(self) -> None:
        assert not evaluate_condition(rule("in", "ON"), {"x": "ON"})

    def test_missing_is_never_in(self) -> None:
        assert not evaluate_condition(rule("in", ["ON"]), {})

    def test_not_in_on_missing_is_false(self) -> None:
        assert not evaluate_condition(rule("not_in", ["ON"]), {})

    def test_not_in(self) -> None:
        assert evaluate_condition(rule("not_in", ["ON"]), {"x": "QC"})
        assert not evaluate_condition(rule("not_in", ["ON"]), {"x": "ON"})

    def test_contains(self) -> None:
        assert evaluate_condition(rule("contains", "b"), {"x": ["a", "b"]})
        assert evaluate_condition(rule("contains", "ark"), {"x": "parking"})
        assert not evaluate_condition(rule("contains", "z"), {"x": 12})
        assert not evaluate_condition(rule("contains", "a"), {})


class TestExistence:
    def test_exists(self) -> None:
        assert evaluate_condition(rule("exists"), {"x": 0})
        assert evaluate_condition(rule("exists"), {"x": False})
        assert not evaluate_condition(rule("exists"), {"x": None})
        assert not evaluate_condition(rule("exists"), {})

    def test_not_exists(self) -> None:
        assert evaluate_condition(rule("not_exists"), {})
        assert evaluate_condition(rule("not_exists"), {"x": None})
        assert not evaluate_condition(rule("not_exists"), {"x": ""})


class TestOperatorParsing:
    def test_camel_case_operators_accepted(self) -> None:
        assert rule("notEquals").operator == ConditionOperator.NOT_EQUALS
        assert rule("GREATER_THAN").operator == ConditionOperator.GREATER_THAN

    def test_unvalidated_unknown_operator_raises(self) -> None:
        bogus = ConditionalRule.model_construct(slot_key="x", operator="between", value=[1, 2])
        with pytest.raises(UnknownOperatorError):
            evaluate_condition(bogus, {"x": 1})


class TestCombinators:
    def test_all_hold_is_vacuously_true(self) -> None:
        assert all_hold([], {})

    def test_any_holds_is_false_for_empty(self) -> None:
        assert not any_holds([], {})

    def test_mixed(self) -> None:
        rules = [rule("exists"), rule("greater_than", 1)]
        assert all_hold(rules, {"x": 2})
        assert not all_hold(rules, {"x": 1})
        assert any_holds(rules, {"x": 1})
