"""Slot engine error types.

Every error raised by the engine derives from SlotEngineError so callers can
catch the whole family at their boundary. Evaluation errors are scoped to a
single slot; structural errors (cycles, unknown slots) abort the whole call.
"""

from __future__ import annotations

from collections.abc import Iterable


class SlotEngineError(Exception):
    """Base exception for all slot engine failures."""


class ConfigError(SlotEngineError):
    """Raised when engine configuration (environment or records) is invalid."""


class SlotConfigError(ConfigError):
    """Raised when a slot configuration record cannot be parsed.

    Attributes:
        path: Location of the offending record (file path, index or slot key).
        details: Individual validation messages.
    """

    def __init__(self, path: str, details: list[str]) -> None:
        self.path = path
        self.details = details
        super().__init__(f"Invalid slot configuration at {path}: {'; '.join(details)}")


class SlotNotFoundError(SlotEngineError):
    """Raised when a slot key is not present in the registry."""

    def __init__(self, slot_key: str) -> None:
        self.slot_key = slot_key
        super().__init__(f"Slot not found: {slot_key}")


class CycleDetectedError(SlotEngineError):
    """Raised when the dependency graph contains a cycle.

    Attributes:
        cycle: Slot keys on the detected cycle, in dependency order. The
            first key is repeated at the end when the cycle is closed.
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")


class EvaluationError(SlotEngineError):
    """Base class for errors raised while evaluating a single slot."""


class MissingDependencyError(EvaluationError):
    """Raised when required dependency values are absent.

    Always fatal to the single evaluation; never replaced by an on_error default.
    """

    def __init__(self, missing: Iterable[str], slot_key: str | None = None) -> None:
        self.missing = sorted(missing)
        self.slot_key = slot_key
        target = f" for {slot_key}" if slot_key else ""
        super().__init__(f"Missing dependencies{target}: {', '.join(self.missing)}")


class UnknownOperatorError(EvaluationError):
    """Raised when a conditional rule uses an operator the evaluator does not know."""

    def __init__(self, operator: object) -> None:
        self.operator = operator
        super().__init__(f"Unknown operator: {operator}")


class MalformedExpressionError(EvaluationError):
    """Raised when a formula or decision tree cannot be parsed or walked."""


class FormulaEvaluationError(MalformedExpressionError):
    """Raised when a well-formed formula fails at runtime (e.g. division by zero)."""


class ScriptSandboxError(EvaluationError):
    """Raised when a script uses a construct the sandbox does not permit."""


class ScriptExecutionError(EvaluationError):
    """Raised when a permitted script fails at runtime (bad key, division by zero, ...)."""


class ScriptBudgetExceededError(EvaluationError):
    """Raised when a script exceeds its step or wall-clock budget."""

    def __init__(self, reason: str, steps: int) -> None:
        self.reason = reason
        self.steps = steps
        super().__init__(f"Script budget exceeded ({reason}) after {steps} steps")


class StorageError(SlotEngineError):
    """Raised when the case store cannot complete an operation.

    Not retried inside the engine; retry policy belongs to the caller.
    """


class CaseNotFoundError(StorageError):
    """Raised when a case does not exist in the store."""

    def __init__(self, case_id: str) -> None:
        self.case_id = case_id
        super().__init__(f"Case not found: {case_id}")


class AnswerValidationError(SlotEngineError):
    """Raised when an answer does not satisfy its slot's validation rules."""

    def __init__(self, slot_key: str, errors: list[str]) -> None:
        self.slot_key = slot_key
        self.errors = errors
        super().__init__(f"Invalid answer for {slot_key}: {'; '.join(errors)}")
