"""Calculation engine: evaluates one slot's CalculationSpec against its inputs.

Four strategies, dispatched on the calculation's `engine` tag:
- formula: Decimal arithmetic via the formula parser
- script: step/time limited sandbox interpreter
- decision_tree: conditional routing through at most two branches per node
- lookup_table: value mapped from another slot's value

The engine is stateless apart from its limits and is safe to share between
threads.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping
from decimal import ROUND_HALF_UP, Decimal, DecimalException
from typing import Any, assert_never

from slotengine.calc.conditions import evaluate_condition
from slotengine.calc.expression import evaluate_formula
from slotengine.calc.sandbox import ScriptSandbox
from slotengine.config import EngineConfig
from slotengine.errors import EvaluationError, MalformedExpressionError, MissingDependencyError
from slotengine.models.calculation import CalculationResult
from slotengine.models.slot import (
    CalculationSpec,
    DecisionTreeCalculation,
    DecisionTreeNode,
    FormulaCalculation,
    LookupTableCalculation,
    OnErrorPolicy,
    ScriptCalculation,
)
from slotengine.models.values import MISSING, is_numeric, lookup, to_decimal

logger = logging.getLogger(__name__)

_MAX_KEY_DIGITS = 64


def _key_text(value: Any) -> str:
    """String form used to match lookup keys against JSON object keys."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_numeric(value):
        number = to_decimal(value)
        try:
            integral = number.is_finite() and number == number.to_integral_value()
            if integral and number.adjusted() < _MAX_KEY_DIGITS:
                return str(int(number))
            return str(number.normalize())
        except DecimalException as e:
            raise EvaluationError(
                f"Lookup key {value!r} cannot be matched: {type(e).__name__}"
            ) from e
    return str(value)


def _round_result(value: Any, places: int | None) -> Any:
    """Apply half-away-from-zero rounding to numeric results.

    Floats are converted to Decimal even without rounding so results never
    carry binary floating point.
    """
    if not is_numeric(value):
        return value
    number = to_decimal(value)
    if places is None:
        return number if isinstance(value, float) else value
    try:
        return number.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    except DecimalException as e:
        raise EvaluationError(
            f"Cannot round {number} to {places} places: {type(e).__name__}"
        ) from e


def required_inputs(spec: CalculationSpec) -> list[str]:
    """Keys a spec reads: its dependencies plus a lookup table's key slot."""
    keys = list(spec.dependencies)
    if isinstance(spec, LookupTableCalculation) and spec.key_slot not in keys:
        keys.append(spec.key_slot)
    return keys


class CalculationEngine:
    """Evaluates calculation specs.

    Example:
        engine = CalculationEngine()
        result = engine.calculate("severance", slot.calculation, {"weekly_salary": ...})
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        sandbox: ScriptSandbox | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine limits. Defaults to EngineConfig().
            sandbox: Script sandbox. Defaults to one built from config.
        """
        self._config = config or EngineConfig()
        self._sandbox = sandbox or ScriptSandbox.from_config(self._config)

    @property
    def config(self) -> EngineConfig:
        return self._config

    def evaluate(
        self,
        spec: CalculationSpec,
        inputs: Mapping[str, Any],
        slot_key: str | None = None,
    ) -> Any:
        """Evaluate a spec and return the raw (rounded) value.

        Args:
            spec: The calculation to run.
            inputs: Values keyed by slot key; must contain every dependency.
            slot_key: Slot being evaluated, used in error messages.

        Returns:
            The computed value, rounded per `round_to` when numeric.

        Raises:
            MissingDependencyError: If any required input is absent.
            EvaluationError: If the strategy fails.
        """
        missing = [key for key in required_inputs(spec) if lookup(inputs, key) is MISSING]
        if missing:
            raise MissingDependencyError(missing, slot_key=slot_key)

        if isinstance(spec, FormulaCalculation):
            value: Any = evaluate_formula(spec.formula, inputs)
        elif isinstance(spec, ScriptCalculation):
            if not spec.sandbox:
                logger.warning(
                    "Script for %s requests sandbox=false; running sandboxed anyway",
                    slot_key or "<anonymous>",
                )
            value = self._sandbox.run(
                spec.code, {key: inputs[key] for key in spec.dependencies}
            )
        elif isinstance(spec, DecisionTreeCalculation):
            value = self._walk_tree(spec.tree, inputs, depth=0)
        elif isinstance(spec, LookupTableCalculation):
            value = self._lookup(spec, inputs)
        else:
            assert_never(spec)

        return _round_result(value, spec.round_to)

    def _walk_tree(self, node: DecisionTreeNode, inputs: Mapping[str, Any], depth: int) -> Any:
        if depth >= self._config.decision_tree_max_depth:
            raise MalformedExpressionError(
                f"Decision tree deeper than {self._config.decision_tree_max_depth} levels"
            )
        if node.condition is None:
            return node.value

        children = node.children
        if evaluate_condition(node.condition, inputs):
            branch = children[0] if len(children) > 0 else None
            if branch is None:
                return node.value
        else:
            branch = children[1] if len(children) > 1 else None
            if branch is None:
                return None
        return self._walk_tree(branch, inputs, depth + 1)

    @staticmethod
    def _lookup(spec: LookupTableCalculation, inputs: Mapping[str, Any]) -> Any:
        key = inputs[spec.key_slot]
        if key is None:
            return spec.default_value
        if isinstance(key, Hashable) and key in spec.mappings:
            return spec.mappings[key]
        wanted = _key_text(key)
        for mapping_key, mapped in spec.mappings.items():
            if _key_text(mapping_key) == wanted:
                return mapped
        return spec.default_value

    def calculate(
        self,
        slot_key: str,
        spec: CalculationSpec,
        inputs: Mapping[str, Any],
    ) -> CalculationResult:
        """Evaluate a slot and apply its on_error policy.

        Args:
            slot_key: Slot being evaluated.
            spec: Its calculation spec.
            inputs: Available values keyed by slot key.

        Returns:
            CalculationResult with the exact dependency snapshot. `error` is set
            when the value was substituted by on_error.

        Raises:
            MissingDependencyError: Always, regardless of on_error.
            EvaluationError: If evaluation fails and on_error is 'fail'.
        """
        snapshot = {
            key: inputs[key] for key in required_inputs(spec) if lookup(inputs, key) is not MISSING
        }
        formula = spec.formula if isinstance(spec, FormulaCalculation) else None

        try:
            value = self.evaluate(spec, inputs, slot_key=slot_key)
        except MissingDependencyError:
            raise
        except EvaluationError as e:
            if spec.on_error == OnErrorPolicy.FAIL:
                raise
            substitute = spec.default_on_error if spec.on_error == OnErrorPolicy.DEFAULT else None
            logger.warning(
                "Calculation for %s failed (%s); using on_error=%s value",
                slot_key,
                e,
                spec.on_error.value,
            )
            return CalculationResult(
                slot_key=slot_key,
                value=substitute,
                dependencies=snapshot,
                engine=spec.engine_type,
                formula=formula,
                error=str(e),
            )

        logger.debug("Calculated %s = %r", slot_key, value)
        return CalculationResult(
            slot_key=slot_key,
            value=value,
            dependencies=snapshot,
            engine=spec.engine_type,
            formula=formula,
        )
