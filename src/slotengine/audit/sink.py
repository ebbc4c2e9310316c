"""Audit event sinks for case evaluation passes.

Every orchestration pass can emit one `case.evaluated` event summarising what
was computed. All sinks implement the AuditSink protocol.

Sink requirements:
- Append-only: never truncate or overwrite
- Fail closed: a serialization or IO failure raises AuditSinkError instead of
  being logged and dropped
- Deterministic: sorted keys, compact separators, Decimals written as their
  exact number text
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from slotengine.errors import SlotEngineError
from slotengine.models.calculation import EvaluationOutcome
from slotengine.models.values import dumps_values, loads_values

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "SLOTENGINE_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/slot_events.jsonl"

EVENT_CASE_EVALUATED = "case.evaluated"


class AuditSinkError(SlotEngineError):
    """Raised when an audit event cannot be serialized or written.

    The orchestrator lets it propagate; the case has already been saved.
    """


@runtime_checkable
class AuditSink(Protocol):
    """Protocol for audit event sinks.

    Implementations must be append-only and fail closed on errors.
    """

    def emit(self, event: dict[str, Any]) -> None:
        """Emit one event.

        Args:
            event: Event dict, typically from build_evaluation_event.

        Raises:
            AuditSinkError: If emission fails for any reason
        """
        ...


def _serialize(event: dict[str, Any]) -> str:
    """Canonical single-line JSON for an event.

    Raises:
        AuditSinkError: If the event holds a value with no JSON form.
    """
    try:
        return dumps_values(event)
    except (TypeError, ValueError) as e:
        raise AuditSinkError(f"Failed to serialize audit event: {e}") from e


def build_evaluation_event(
    outcome: EvaluationOutcome, *, trigger: str, changed_key: str | None = None
) -> dict[str, Any]:
    """Audit event for one orchestration pass.

    Args:
        outcome: The pass result.
        trigger: Operation that ran ("evaluate_all", "recalculate_from", "record_answer").
        changed_key: Slot that triggered a recalculation, if any.

    Returns:
        Event dict with slot lists sorted, except `order` which keeps evaluation order.
    """
    return {
        "event_type": EVENT_CASE_EVALUATED,
        "occurred_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "case_id": outcome.case_id,
        "trigger": trigger,
        "changed_key": changed_key,
        "order": list(outcome.order),
        "succeeded": sorted(outcome.succeeded),
        "defaulted": sorted(outcome.defaulted),
        "failed": dict(sorted(outcome.failed.items())),
    }


class JsonlFileAuditSink:
    """Append-only JSONL file sink.

    Configuration:
    - File path from the constructor, else SLOTENGINE_AUDIT_LOG_PATH, else
      DEFAULT_AUDIT_LOG_PATH
    - Parent directories are created on first write
    - One line per event; writes from threads sharing the sink are serialized
    """

    def __init__(self, file_path: str | Path | None = None) -> None:
        """Initialize the JSONL file sink.

        Args:
            file_path: Override path for the audit log file. If None, reads
                SLOTENGINE_AUDIT_LOG_PATH, falling back to DEFAULT_AUDIT_LOG_PATH.
        """
        if file_path is not None:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path(os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        """Return the configured file path."""
        return self._file_path

    def emit(self, event: dict[str, Any]) -> None:
        """Append the event as one JSON line.

        Args:
            event: Event dict.

        Raises:
            AuditSinkError: If serialization, directory creation or the write fails
        """
        line = _serialize(event) + "\n"
        parent = self._file_path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AuditSinkError(f"Failed to create audit log directory {parent}: {e}") from e

        with self._lock:
            try:
                with open(self._file_path, mode="a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                raise AuditSinkError(
                    f"Failed to write audit event to {self._file_path}: {e}"
                ) from e
        logger.debug("Wrote %s audit event", event.get("event_type"))


class InMemoryAuditSink:
    """In-memory sink for tests (no disk writes).

    Events are stored in their JSON form, so a test sees exactly what a file
    sink would have written. Thread-safe.
    """

    def __init__(self) -> None:
        """Initialize the in-memory sink."""
        self._events: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        """Serialize the event and keep its parsed form.

        Args:
            event: Event dict.

        Raises:
            AuditSinkError: If the event cannot be serialized.
        """
        line = _serialize(event)
        with self._lock:
            self._events.append(loads_values(line))

    @property
    def events(self) -> list[dict[str, Any]]:
        """All emitted events, oldest first."""
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        """Clear all stored events."""
        with self._lock:
            self._events.clear()
