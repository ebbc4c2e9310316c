"""Case evaluation passes and per-case locking."""

from slotengine.orchestration.locks import CaseLockManager
from slotengine.orchestration.orchestrator import CaseOrchestrator

__all__ = ["CaseLockManager", "CaseOrchestrator"]
