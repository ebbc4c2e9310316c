"""Append-only audit events for evaluation passes."""

from slotengine.audit.sink import (
    EVENT_CASE_EVALUATED,
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
    build_evaluation_event,
)

__all__ = [
    "EVENT_CASE_EVALUATED",
    "AuditSink",
    "AuditSinkError",
    "InMemoryAuditSink",
    "JsonlFileAuditSink",
    "build_evaluation_event",
]
