"""Tests for the calculation engine.

Tests cover:
1. Each strategy: formula, script, decision tree, lookup table
2. Rounding (half away from zero)
3. on_error policies and their interaction with missing dependencies
4. CalculationResult snapshots
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest
from pydantic import TypeAdapter

from slotengine.calc.engine import CalculationEngine
from slotengine.config import EngineConfig
from slotengine.errors import (
    EvaluationError,
    FormulaEvaluationError,
    MalformedExpressionError,
    MissingDependencyError,
    ScriptBudgetExceededError,
    ScriptSandboxError,
)
from slotengine.models.slot import CalculationEngineType, CalculationSpec

_SPEC_ADAPTER: TypeAdapter[Any] = TypeAdapter(CalculationSpec)


def spec(**record: Any) -> Any:
    return _SPEC_ADAPTER.validate_python(record)


def notice_tree() -> dict[str, Any]:
    """<1 year: 1 week, <3: 2, <5: 4, else 8."""

    def below(limit: int, value: int, otherwise: dict[str, Any]) -> dict[str, Any]:
        return {
            "condition": {"slot_key": "years", "operator": "less_than", "value": limit},
            "value": value,
            "children": [None, otherwise],
        }

    return below(1, 1, below(3, 2, below(5, 4, {"value": 8})))


@pytest.fixture
def engine() -> CalculationEngine:
    return CalculationEngine()


class TestFormula:
    def test_evaluates_with_rounding(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="formula",
            formula="annual_salary / 52",
            dependencies=["annual_salary"],
            round_to=2,
        )
        assert engine.evaluate(calc, {"annual_salary": 75000}) == Decimal("1442.31")

    def test_rounding_is_half_away_from_zero(self, engine: CalculationEngine) -> None:
        calc = spec(engine="formula", formula="x", dependencies=["x"], round_to=0)
        assert engine.evaluate(calc, {"x": Decimal("2.5")}) == Decimal("3")
        assert engine.evaluate(calc, {"x": Decimal("-2.5")}) == Decimal("-3")

    def test_missing_dependency_names_all_keys(self, engine: CalculationEngine) -> None:
        calc = spec(engine="formula", formula="a + b + c", dependencies=["c", "a", "b"])
        with pytest.raises(MissingDependencyError) as exc_info:
            engine.evaluate(calc, {"b": 1}, slot_key="total")
        assert exc_info.value.missing == ["a", "c"]
        assert exc_info.value.slot_key == "total"

    def test_null_dependency_is_present(self, engine: CalculationEngine) -> None:
        calc = spec(engine="formula", formula="a * 2", dependencies=["a"])
        assert engine.evaluate(calc, {"a": None}) is None


class TestScript:
    def test_runs_sandboxed(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="script",
            code='return inputs["a"] * 2 if inputs["a"] > 0 else 0',
            dependencies=["a"],
        )
        assert engine.evaluate(calc, {"a": 21}) == 42

    def test_only_dependencies_are_visible(self, engine: CalculationEngine) -> None:
        calc = spec(engine="script", code='return "secret" in inputs', dependencies=["a"])
        assert engine.evaluate(calc, {"a": 1, "secret": 2}) is False

    def test_sandbox_false_still_sandboxed(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="script",
            code="import os\nreturn 1",
            sandbox=False,
            dependencies=[],
        )
        with pytest.raises(ScriptSandboxError, match="Unsupported syntax"):
            engine.evaluate(calc, {})

    def test_budget_from_config(self) -> None:
        engine = CalculationEngine(EngineConfig(script_max_steps=100))
        calc = spec(engine="script", code="while True:\n    pass", dependencies=[])
        with pytest.raises(ScriptBudgetExceededError):
            engine.evaluate(calc, {})

    def test_nested_script_block(self, engine: CalculationEngine) -> None:
        calc = spec(engine="script", script={"code": "return 5"}, dependencies=[])
        assert engine.evaluate(calc, {}) == 5


class TestDecisionTree:
    @pytest.mark.parametrize(
        ("years", "weeks"),
        [(0, 1), (Decimal("0.5"), 1), (1, 2), (2.9, 2), (3, 4), (Decimal("5.5"), 8), (40, 8)],
    )
    def test_notice_weeks(self, engine: CalculationEngine, years: Any, weeks: int) -> None:
        calc = spec(engine="decision_tree", tree=notice_tree(), dependencies=["years"])
        assert engine.evaluate(calc, {"years": years}) == weeks

    def test_true_without_child_returns_value(self, engine: CalculationEngine) -> None:
        tree = {
            "condition": {"slot_key": "a", "operator": "equals", "value": 1},
            "value": "yes",
        }
        calc = spec(engine="decision_tree", tree=tree, dependencies=["a"])
        assert engine.evaluate(calc, {"a": 1}) == "yes"

    def test_false_without_child_returns_null(self, engine: CalculationEngine) -> None:
        tree = {
            "condition": {"slot_key": "a", "operator": "equals", "value": 1},
            "value": "yes",
            "children": [{"value": "deeper"}],
        }
        calc = spec(engine="decision_tree", tree=tree, dependencies=["a"])
        assert engine.evaluate(calc, {"a": 2}) is None
        assert engine.evaluate(calc, {"a": 1}) == "deeper"

    def test_no_condition_returns_value(self, engine: CalculationEngine) -> None:
        calc = spec(engine="decision_tree", decisionTree={"value": 7}, dependencies=[])
        assert engine.evaluate(calc, {}) == 7

    def test_more_than_two_children_rejected(self) -> None:
        with pytest.raises(ValueError, match="at most 2"):
            spec(
                engine="decision_tree",
                tree={"value": 1, "children": [{"value": 1}, {"value": 2}, {"value": 3}]},
            )

    def test_depth_limit(self) -> None:
        engine = CalculationEngine(EngineConfig(decision_tree_max_depth=3))
        always = {"slot_key": "a", "operator": "exists"}
        tree: dict[str, Any] = {"value": "leaf"}
        for _ in range(5):
            tree = {"condition": always, "children": [tree]}
        calc = spec(engine="decision_tree", tree=tree, dependencies=["a"])
        with pytest.raises(MalformedExpressionError, match="deeper than 3"):
            engine.evaluate(calc, {"a": 1})


class TestLookupTable:
    def test_province_default(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="lookup_table",
            key_slot="province",
            mappings={"ON": 8, "BC": 5},
            default_value=4,
            dependencies=["province"],
        )
        assert engine.evaluate(calc, {"province": "AB"}) == 4
        assert engine.evaluate(calc, {"province": "ON"}) == 8

    def test_keys_match_by_string_form(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="lookup_table",
            keySlot="k",
            mappings={"8": "eight", "true": "yes", "2.5": "two and a half"},
            dependencies=["k"],
        )
        assert engine.evaluate(calc, {"k": 8}) == "eight"
        assert engine.evaluate(calc, {"k": Decimal("8.0")}) == "eight"
        assert engine.evaluate(calc, {"k": True}) == "yes"
        assert engine.evaluate(calc, {"k": 2.5}) == "two and a half"

    def test_huge_numeric_key_falls_back_to_default(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="lookup_table",
            key_slot="k",
            mappings={"1": "one"},
            default_value="other",
            dependencies=["k"],
        )
        assert engine.evaluate(calc, {"k": Decimal("1E+999999")}) == "other"

    def test_null_key_gives_default(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="lookup_table",
            key_slot="k",
            mappings={"a": 1},
            default_value="none",
            dependencies=["k"],
        )
        assert engine.evaluate(calc, {"k": None}) == "none"

    def test_key_slot_is_required(self, engine: CalculationEngine) -> None:
        calc = spec(engine="lookup_table", key_slot="k", mappings={}, dependencies=[])
        with pytest.raises(MissingDependencyError):
            engine.evaluate(calc, {})

    def test_legacy_nested_block(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="lookup_table",
            dependencies=["province"],
            lookupTable={"keySlot": "province", "mappings": {"QC": 2}, "defaultValue": 0},
        )
        assert engine.evaluate(calc, {"province": "QC"}) == 2


class TestCalculate:
    def test_result_snapshot(self, engine: CalculationEngine) -> None:
        calc = spec(engine="formula", formula="a + 1", dependencies=["a"])
        result = engine.calculate("b", calc, {"a": 1, "unrelated": 5})
        assert result.slot_key == "b"
        assert result.value == Decimal("2")
        assert result.dependencies == {"a": 1}
        assert result.engine == CalculationEngineType.FORMULA
        assert result.formula == "a + 1"
        assert result.error is None
        assert not result.degraded

    def test_fail_policy_reraises(self, engine: CalculationEngine) -> None:
        calc = spec(engine="formula", formula="a / 0", dependencies=["a"])
        with pytest.raises(FormulaEvaluationError):
            engine.calculate("b", calc, {"a": 1})

    def test_default_policy(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="formula",
            formula="a / 0",
            dependencies=["a"],
            on_error="default",
            default_on_error=0,
        )
        result = engine.calculate("b", calc, {"a": 1})
        assert result.value == 0
        assert result.degraded
        assert "Division by zero" in (result.error or "")

    def test_null_policy(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="formula", formula="a / 0", dependencies=["a"], onError="return_null"
        )
        result = engine.calculate("b", calc, {"a": 1})
        assert result.value is None
        assert result.error is not None

    def test_formula_overflow_is_an_evaluation_error(self, engine: CalculationEngine) -> None:
        calc = spec(engine="formula", formula="a * a", dependencies=["a"])
        with pytest.raises(FormulaEvaluationError, match="Overflow"):
            engine.calculate("square", calc, {"a": Decimal("9E+999999")})

    def test_rounding_failure_uses_on_error(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="formula",
            formula="a / 52",
            dependencies=["a"],
            round_to=2,
            on_error="null",
        )
        result = engine.calculate("weekly", calc, {"a": Decimal("1E+30")})
        assert result.value is None
        assert result.degraded
        assert "InvalidOperation" in (result.error or "")

    def test_rounding_failure_with_fail_policy(self, engine: CalculationEngine) -> None:
        calc = spec(engine="script", code='return inputs["a"]', dependencies=["a"], round_to=2)
        with pytest.raises(EvaluationError, match="Cannot round"):
            engine.calculate("weekly", calc, {"a": Decimal("1E+30")})

    def test_missing_dependency_ignores_policy(self, engine: CalculationEngine) -> None:
        calc = spec(
            engine="formula",
            formula="a + 1",
            dependencies=["a"],
            on_error="default",
            default_on_error=0,
        )
        with pytest.raises(MissingDependencyError):
            engine.calculate("b", calc, {})

    def test_float_results_become_decimal(self, engine: CalculationEngine) -> None:
        calc = spec(engine="lookup_table", key_slot="k", mappings={"a": 0.5}, dependencies=["k"])
        result = engine.calculate("b", calc, {"k": "a"})
        assert result.value == Decimal("0.5")
        assert isinstance(result.value, Decimal)
