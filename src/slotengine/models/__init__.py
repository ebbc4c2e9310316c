"""Slot engine domain models: slot records, cases and calculation results."""

from slotengine.models.calculation import (
    CalculationResult,
    DependencyAnalysis,
    EvaluationOutcome,
    SlotOutcomeStatus,
)
from slotengine.models.case import Case, CaseStatus, LogEntry
from slotengine.models.slot import (
    CalculationEngineType,
    CalculationSpec,
    ConditionalRule,
    ConditionOperator,
    DataType,
    DecisionTreeCalculation,
    DecisionTreeNode,
    FormulaCalculation,
    Importance,
    LegalBasis,
    LookupTableCalculation,
    OnErrorPolicy,
    ScopeFilter,
    ScriptCalculation,
    Slot,
    SlotCategory,
    SlotScope,
    ValidationConfig,
    Visibility,
)
from slotengine.models.values import MISSING, is_missing

__all__ = [
    "CalculationEngineType",
    "CalculationResult",
    "CalculationSpec",
    "Case",
    "CaseStatus",
    "ConditionOperator",
    "ConditionalRule",
    "DataType",
    "DecisionTreeCalculation",
    "DecisionTreeNode",
    "DependencyAnalysis",
    "EvaluationOutcome",
    "FormulaCalculation",
    "Importance",
    "LegalBasis",
    "LogEntry",
    "LookupTableCalculation",
    "MISSING",
    "OnErrorPolicy",
    "ScopeFilter",
    "ScriptCalculation",
    "Slot",
    "SlotCategory",
    "SlotOutcomeStatus",
    "SlotScope",
    "ValidationConfig",
    "Visibility",
    "is_missing",
]
