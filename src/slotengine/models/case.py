"""Case aggregate: one interview session's answers, computed values and audit trail."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from slotengine.models.slot import ScopeFilter
from slotengine.models.values import lookup, to_jsonable


class CaseStatus(StrEnum):
    """Interview lifecycle. Computed on demand, never stored."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class LogEntry(BaseModel):
    """One calculation attempt recorded in a case's audit trail."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    slot_key: str = Field(..., description="Slot that was evaluated")
    inputs: dict[str, Any] = Field(
        default_factory=dict, description="Exact dependency values consumed"
    )
    result: Any = Field(default=None, description="Value stored for the slot")
    engine: str | None = Field(default=None, description="Calculation strategy tag")
    formula: str | None = Field(default=None, description="Formula text, for formula slots")
    error: str | None = Field(default=None, description="Error message if degraded or failed")

    model_config = {"frozen": True, "extra": "ignore"}

    def to_record(self) -> dict[str, Any]:
        """Convert to JSON types for persistence (Decimals kept exact for dumps_values)."""
        return {
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "slot_key": self.slot_key,
            "inputs": to_jsonable(self.inputs),
            "result": to_jsonable(self.result),
            "engine": self.engine,
            "formula": self.formula,
            "error": self.error,
        }


class Case(BaseModel):
    """Mutable per-session aggregate.

    slot_values only ever gains or overwrites keys during a session, and
    calculation_log is append-only.
    """

    case_id: str = Field(..., description="Case identifier")
    user_id: str | None = Field(default=None, description="Owning user, if known")
    jurisdiction_id: str | None = Field(default=None, description="Case jurisdiction")
    domain_id: str | None = Field(default=None, description="Case legal domain")
    slot_values: dict[str, Any] = Field(default_factory=dict)
    calculation_log: list[LogEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    model_config = {"frozen": False, "extra": "ignore"}

    @property
    def scope(self) -> ScopeFilter:
        """Scope filter selecting the slots that apply to this case."""
        return ScopeFilter(jurisdiction_id=self.jurisdiction_id, domain_id=self.domain_id)

    def value_of(self, slot_key: str) -> Any:
        """Current value of a slot, or MISSING."""
        return lookup(self.slot_values, slot_key)

    def has_value(self, slot_key: str) -> bool:
        """True if the slot has been answered or computed (null counts)."""
        return slot_key in self.slot_values
