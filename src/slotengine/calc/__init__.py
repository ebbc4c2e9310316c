"""Slot calculation strategies.

This package provides:
- CalculationEngine: evaluates a slot's calculation spec with on_error handling
- evaluate_formula: Decimal formula parser/evaluator
- ScriptSandbox: step and time limited script interpreter
- evaluate_condition: conditional rules shared with the interview engine
"""

from slotengine.calc.conditions import all_hold, any_holds, evaluate_condition, values_equal
from slotengine.calc.engine import CalculationEngine, required_inputs
from slotengine.calc.expression import evaluate_formula, formula_identifiers, parse_formula
from slotengine.calc.sandbox import ScriptSandbox, compile_script

__all__ = [
    "CalculationEngine",
    "ScriptSandbox",
    "all_hold",
    "any_holds",
    "compile_script",
    "evaluate_condition",
    "evaluate_formula",
    "formula_identifiers",
    "parse_formula",
    "required_inputs",
    "values_equal",
]
