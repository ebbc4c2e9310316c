"""Pytest configuration and fixtures for slot engine tests.

The severance fixture models a small employment-termination interview:
inputs (salary, tenure, province, ...), two calculated slots feeding a
severance outcome, and a provincial lookup.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from slotengine.audit.sink import InMemoryAuditSink
from slotengine.config import EngineConfig
from slotengine.models.slot import Slot
from slotengine.orchestration.orchestrator import CaseOrchestrator
from slotengine.persistence.cases import InMemoryCaseStore
from slotengine.registry.memory import InMemorySlotRegistry

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SEVERANCE_SLOTS_PATH = FIXTURES_DIR / "severance_slots.json"


@pytest.fixture
def severance_records() -> list[dict[str, Any]]:
    """Raw slot records of the severance interview."""
    return json.loads(SEVERANCE_SLOTS_PATH.read_text(encoding="utf-8"))["slots"]


@pytest.fixture
def registry() -> InMemorySlotRegistry:
    """Registry loaded from the severance fixture file."""
    return InMemorySlotRegistry.from_file(SEVERANCE_SLOTS_PATH)


@pytest.fixture
def case_store() -> InMemoryCaseStore:
    return InMemoryCaseStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def orchestrator(
    registry: InMemorySlotRegistry,
    case_store: InMemoryCaseStore,
    audit_sink: InMemoryAuditSink,
) -> CaseOrchestrator:
    return CaseOrchestrator(registry=registry, case_store=case_store, audit_sink=audit_sink)


@pytest.fixture
def parallel_config() -> EngineConfig:
    """Config evaluating same-layer slots on four threads."""
    return EngineConfig(eval_max_workers=4)


def make_slot(**record: Any) -> Slot:
    """Build a slot from record fields, defaulting category to input."""
    record.setdefault("category", "input")
    return Slot.model_validate(record)


def formula_slot(key: str, formula: str, dependencies: list[str], **extra: Any) -> Slot:
    """Calculated slot with a formula calculation."""
    calculation = {"engine": "formula", "formula": formula, "dependencies": dependencies}
    calculation.update(extra.pop("calculation", {}))
    return Slot.model_validate(
        {"key": key, "category": "calculated", "calculation": calculation, **extra}
    )
