"""Calculation results, dependency analysis and orchestration outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from slotengine.models.case import LogEntry
from slotengine.models.slot import CalculationEngineType, Importance
from slotengine.models.values import to_jsonable


class CalculationResult(BaseModel):
    """Result of evaluating one slot.

    `dependencies` is the exact input subset consumed, so the calculation can
    be reproduced from the log alone. `error` is set when the value was
    substituted by an on_error policy.
    """

    slot_key: str
    value: Any = None
    calculated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    dependencies: dict[str, Any] = Field(default_factory=dict)
    engine: CalculationEngineType
    formula: str | None = None
    error: str | None = None

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def degraded(self) -> bool:
        """True if the value came from the on_error policy."""
        return self.error is not None

    def to_log_entry(self) -> LogEntry:
        """Build the audit log entry for this result."""
        return LogEntry(
            timestamp=self.calculated_at,
            slot_key=self.slot_key,
            inputs=dict(self.dependencies),
            result=self.value,
            engine=self.engine.value,
            formula=self.formula,
            error=self.error,
        )


class DependencyAnalysis(BaseModel):
    """Structural summary of a dependency graph.

    Layer i holds every slot whose dependencies all sit in layers < i.
    """

    total_slots: int = Field(..., ge=0)
    max_depth: int = Field(..., ge=0)
    layers: list[list[str]] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def order(self) -> list[str]:
        """Layers concatenated: a valid evaluation order."""
        return [key for layer in self.layers for key in layer]


class SlotOutcomeStatus(StrEnum):
    """Per-slot status within an evaluation pass."""

    SUCCEEDED = "succeeded"
    DEFAULTED = "defaulted"
    FAILED = "failed"


@dataclass
class EvaluationOutcome:
    """Aggregate result of an orchestration pass.

    Attributes:
        case_id: Case that was evaluated.
        order: Slot keys in the order they were evaluated.
        results: Results for every slot that produced a value (including degraded ones).
        succeeded: Keys evaluated without error.
        defaulted: Keys whose value came from on_error, mapped to the error message.
        failed: Keys whose evaluation raised, mapped to the error message.
        affected_slots: Forward closure of the changed slot (recalculation only).
        importance: Importance of every evaluated slot.
    """

    case_id: str
    order: list[str] = field(default_factory=list)
    results: list[CalculationResult] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    defaulted: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    affected_slots: list[str] = field(default_factory=list)
    importance: dict[str, Importance] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """True if no slot failed or degraded."""
        return not self.failed and not self.defaulted

    def status_of(self, slot_key: str) -> SlotOutcomeStatus | None:
        """Status of a slot in this pass, or None if it was not evaluated."""
        if slot_key in self.failed:
            return SlotOutcomeStatus.FAILED
        if slot_key in self.defaulted:
            return SlotOutcomeStatus.DEFAULTED
        if slot_key in self.succeeded:
            return SlotOutcomeStatus.SUCCEEDED
        return None

    def value_of(self, slot_key: str) -> Any:
        """Value produced for a slot in this pass (None if it failed)."""
        for result in self.results:
            if result.slot_key == slot_key:
                return result.value
        return None

    def blocking_failures(self, threshold: Importance = Importance.CRITICAL) -> list[str]:
        """Failed or defaulted slots at or above the given importance."""
        problem_keys = set(self.failed) | set(self.defaulted)
        return sorted(
            key
            for key in problem_keys
            if self.importance.get(key, Importance.LOW).within(threshold)
        )

    def to_dict(self) -> dict[str, Any]:
        """Deterministic JSON-compatible summary."""
        return {
            "affected_slots": list(self.affected_slots),
            "case_id": self.case_id,
            "defaulted": dict(sorted(self.defaulted.items())),
            "failed": dict(sorted(self.failed.items())),
            "order": list(self.order),
            "succeeded": sorted(self.succeeded),
            "values": {r.slot_key: to_jsonable(r.value) for r in self.results},
        }
