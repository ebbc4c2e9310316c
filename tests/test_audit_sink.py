"""Tests for audit event sinks.

Tests verify:
- Events are written as one sorted-key JSON line each
- The file path can come from the environment
- Write failures raise AuditSinkError (fail closed)
- A failing sink surfaces from the orchestrator after the case is saved
"""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from slotengine.audit.sink import (
    AUDIT_LOG_PATH_ENV,
    EVENT_CASE_EVALUATED,
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
    build_evaluation_event,
)
from slotengine.models.calculation import EvaluationOutcome
from slotengine.orchestration.orchestrator import CaseOrchestrator
from slotengine.persistence.cases import InMemoryCaseStore
from slotengine.registry.memory import InMemorySlotRegistry


def sample_outcome() -> EvaluationOutcome:
    return EvaluationOutcome(
        case_id="case-1",
        order=["b", "a"],
        succeeded=["b"],
        failed={"a": "Missing dependencies for a: x"},
    )


class TestBuildEvent:
    def test_fields(self) -> None:
        event = build_evaluation_event(sample_outcome(), trigger="record_answer", changed_key="x")
        assert event["event_type"] == EVENT_CASE_EVALUATED
        assert event["case_id"] == "case-1"
        assert event["trigger"] == "record_answer"
        assert event["changed_key"] == "x"
        assert event["order"] == ["b", "a"]
        assert event["failed"] == {"a": "Missing dependencies for a: x"}
        assert event["occurred_at"].endswith("Z")


class TestJsonlFileAuditSink:
    def test_appends_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "events.jsonl"
        sink = JsonlFileAuditSink(path)
        assert isinstance(sink, AuditSink)
        sink.emit({"event_type": "one", "amount": Decimal("1.50")})
        sink.emit({"event_type": "two"})

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert lines[0] == '{"amount":1.50,"event_type":"one"}'
        assert json.loads(lines[1]) == {"event_type": "two"}

    def test_path_from_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "env.jsonl"
        monkeypatch.setenv(AUDIT_LOG_PATH_ENV, str(path))
        sink = JsonlFileAuditSink()
        assert sink.file_path == path
        sink.emit({"event_type": "x"})
        assert path.exists()

    def test_unserializable_event(self, tmp_path: Path) -> None:
        sink = JsonlFileAuditSink(tmp_path / "events.jsonl")
        with pytest.raises(AuditSinkError, match="serialize"):
            sink.emit({"bad": object()})

    def test_unwritable_path(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("", encoding="utf-8")
        sink = JsonlFileAuditSink(blocker / "events.jsonl")
        with pytest.raises(AuditSinkError):
            sink.emit({"event_type": "x"})


class TestInMemoryAuditSink:
    def test_events_and_clear(self) -> None:
        sink = InMemoryAuditSink()
        sink.emit({"event_type": "x", "value": Decimal("2")})
        assert sink.events == [{"event_type": "x", "value": 2}]
        sink.clear()
        assert sink.events == []


class FailingSink:
    def emit(self, event: dict[str, Any]) -> None:
        raise AuditSinkError("audit store offline")


class TestOrchestratorAudit:
    def test_sink_failure_raises_after_save(self, registry: InMemorySlotRegistry) -> None:
        store = InMemoryCaseStore()
        case = store.create_case()
        store.save_case(case.case_id, {"annual_salary": 52000}, [])
        orchestrator = CaseOrchestrator(
            registry=registry, case_store=store, audit_sink=FailingSink()
        )

        with pytest.raises(AuditSinkError, match="offline"):
            orchestrator.evaluate_all(case.case_id)
        assert store.load_case(case.case_id).slot_values["weekly_salary"] == Decimal("1000.00")
