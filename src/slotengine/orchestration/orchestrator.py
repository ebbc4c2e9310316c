"""Case orchestration: evaluates a case's calculated slots and persists the result.

Each pass runs under the case's exclusive lock:
1. load the case
2. resolve the slots to evaluate into dependency layers
3. evaluate layer by layer, feeding each value into the working map
4. save values and log in one save_case call
5. emit one audit event (when a sink is configured)

A slot whose evaluation raises is recorded as failed and stored as null, so
its dependents see null; the pass continues. Structural errors (cycles,
unknown slots) abort before anything is saved.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from slotengine.audit.sink import AuditSink, build_evaluation_event
from slotengine.calc.engine import CalculationEngine, required_inputs
from slotengine.config import EngineConfig
from slotengine.errors import AnswerValidationError, EvaluationError, SlotNotFoundError
from slotengine.interview.validation import coerce_answer, validate_answer
from slotengine.models.calculation import CalculationResult, EvaluationOutcome
from slotengine.models.case import Case, LogEntry
from slotengine.models.slot import FormulaCalculation, Slot
from slotengine.models.values import MISSING, lookup
from slotengine.orchestration.locks import CaseLockManager
from slotengine.persistence.cases import CaseStore
from slotengine.registry.base import SlotRegistry
from slotengine.resolution.resolver import DERIVED_CATEGORIES, DependencyResolver, affected_by

logger = logging.getLogger(__name__)

# (slot key, result, error message); exactly one of result/error is set
_SlotRun = tuple[str, CalculationResult | None, str | None]


class CaseOrchestrator:
    """Runs evaluation passes over cases.

    Example:
        orchestrator = CaseOrchestrator(registry=registry, case_store=store)
        outcome = orchestrator.evaluate_all(case.case_id)
    """

    def __init__(
        self,
        *,
        registry: SlotRegistry,
        case_store: CaseStore,
        engine: CalculationEngine | None = None,
        resolver: DependencyResolver | None = None,
        lock_manager: CaseLockManager | None = None,
        audit_sink: AuditSink | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Slot configuration source.
            case_store: Case persistence.
            engine: Calculation engine. Defaults to one built from config.
            resolver: Dependency resolver. Defaults to one over registry.
            lock_manager: Per-case locks. Share one between orchestrators
                that serve the same cases.
            audit_sink: Optional destination for case.evaluated events.
            config: Engine limits. Defaults to EngineConfig().
        """
        self._config = config or (engine.config if engine is not None else EngineConfig())
        self._registry = registry
        self._case_store = case_store
        self._engine = engine or CalculationEngine(self._config)
        self._resolver = resolver or DependencyResolver(registry)
        self._locks = lock_manager or CaseLockManager()
        self._audit_sink = audit_sink

    @property
    def lock_manager(self) -> CaseLockManager:
        return self._locks

    def evaluate_all(self, case_id: str) -> EvaluationOutcome:
        """Evaluate every active calculated/outcome slot in the case's scope.

        Raises:
            CaseNotFoundError: If the case does not exist.
            CycleDetectedError: If the slot graph has a cycle (nothing is saved).
            StorageError: If loading or saving fails.
            AuditSinkError: If the audit event cannot be written (after saving).
        """
        with self._locks.hold(case_id):
            case = self._case_store.load_case(case_id)
            slots = self._registry.list_active_slots(case.scope, DERIVED_CATEGORIES)
            layers = self._resolver.resolve_layers([slot.key for slot in slots], scope=case.scope)
            outcome = self._run_pass(case, layers)
            self._case_store.save_case(case_id, case.slot_values, case.calculation_log)
            logger.info(
                "Evaluated case %s: %d slots, %d failed, %d defaulted",
                case_id,
                len(outcome.order),
                len(outcome.failed),
                len(outcome.defaulted),
            )
            self._emit(outcome, trigger="evaluate_all")
            return outcome

    def recalculate_from(self, case_id: str, changed_key: str) -> EvaluationOutcome:
        """Re-evaluate only the slots downstream of changed_key.

        Slots outside the forward closure keep their stored values. Derived
        dependencies of affected slots that have no value yet are evaluated too.

        Raises:
            Same as evaluate_all.
        """
        with self._locks.hold(case_id):
            case = self._case_store.load_case(case_id)
            return self._recalculate(case, changed_key, trigger="recalculate_from")

    def record_answer(self, case_id: str, slot_key: str, value: Any) -> EvaluationOutcome:
        """Validate and store an answer, then recalculate its dependents.

        The answer and the recalculated values are saved together.

        Raises:
            SlotNotFoundError: If slot_key is unknown.
            AnswerValidationError: If the slot is not an input or the value is invalid.
            Same as evaluate_all otherwise.
        """
        slot = self._registry.get_slot(slot_key)
        if slot is None:
            raise SlotNotFoundError(slot_key)
        if slot.is_derived:
            raise AnswerValidationError(slot_key, ["calculated slots cannot be answered"])

        value = coerce_answer(slot, value)
        errors = validate_answer(slot, value)
        if errors:
            raise AnswerValidationError(slot_key, errors)

        with self._locks.hold(case_id):
            case = self._case_store.load_case(case_id)
            case.slot_values[slot_key] = value
            logger.debug("Recorded answer for %s on case %s", slot_key, case_id)
            return self._recalculate(case, slot_key, trigger="record_answer")

    def _recalculate(self, case: Case, changed_key: str, *, trigger: str) -> EvaluationOutcome:
        slots = self._registry.list_active_slots(case.scope, DERIVED_CATEGORIES)
        affected = affected_by(changed_key, slots)
        targets = sorted(slot.key for slot in slots if slot.key in affected)
        evaluated = {key for key in case.slot_values if key not in affected}

        layers = self._resolver.resolve_layers(targets, evaluated=evaluated, scope=case.scope)
        outcome = self._run_pass(case, layers)
        outcome.affected_slots = sorted(affected - {changed_key})
        self._case_store.save_case(case.case_id, case.slot_values, case.calculation_log)
        logger.info(
            "Recalculated case %s from %s: %d slots, %d failed",
            case.case_id,
            changed_key,
            len(outcome.order),
            len(outcome.failed),
        )
        self._emit(outcome, trigger=trigger, changed_key=changed_key)
        return outcome

    def _run_pass(self, case: Case, layers: list[list[str]]) -> EvaluationOutcome:
        """Evaluate layers in order, updating case.slot_values and case.calculation_log."""
        outcome = EvaluationOutcome(case_id=case.case_id)
        workers = self._config.eval_max_workers

        executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        try:
            for layer in layers:
                slots = [self._require_slot(key) for key in layer]
                values = case.slot_values
                if executor is not None and len(slots) > 1:
                    futures = [executor.submit(self._evaluate_slot, slot, values) for slot in slots]
                    runs = [future.result() for future in futures]
                else:
                    runs = [self._evaluate_slot(slot, values) for slot in slots]

                for slot, run in zip(slots, runs, strict=True):
                    self._apply(case, slot, run, outcome)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)
        return outcome

    def _require_slot(self, key: str) -> Slot:
        slot = self._registry.get_slot(key)
        if slot is None:
            raise SlotNotFoundError(key)
        return slot

    def _evaluate_slot(self, slot: Slot, values: dict[str, Any]) -> _SlotRun:
        spec = slot.calculation
        if spec is None:
            return slot.key, None, "slot has no calculation"
        inputs = {
            key: values[key] for key in required_inputs(spec) if lookup(values, key) is not MISSING
        }
        try:
            return slot.key, self._engine.calculate(slot.key, spec, inputs), None
        except EvaluationError as e:
            logger.warning("Evaluation of %s failed: %s", slot.key, e)
            return slot.key, None, str(e)

    @staticmethod
    def _apply(case: Case, slot: Slot, run: _SlotRun, outcome: EvaluationOutcome) -> None:
        key, result, error = run
        outcome.order.append(key)
        outcome.importance[key] = slot.importance

        if result is not None:
            case.slot_values[key] = result.value
            case.calculation_log.append(result.to_log_entry())
            outcome.results.append(result)
            if result.degraded:
                outcome.defaulted[key] = result.error or ""
            else:
                outcome.succeeded.append(key)
            return

        spec = slot.calculation
        case.slot_values[key] = None
        outcome.failed[key] = error or "evaluation failed"
        case.calculation_log.append(
            LogEntry(
                slot_key=key,
                inputs={
                    dep: case.slot_values[dep]
                    for dep in (required_inputs(spec) if spec is not None else [])
                    if dep in case.slot_values
                },
                result=None,
                engine=spec.engine if spec is not None else None,
                formula=spec.formula if isinstance(spec, FormulaCalculation) else None,
                error=outcome.failed[key],
            )
        )

    def _emit(
        self, outcome: EvaluationOutcome, *, trigger: str, changed_key: str | None = None
    ) -> None:
        if self._audit_sink is None:
            return
        event = build_evaluation_event(outcome, trigger=trigger, changed_key=changed_key)
        self._audit_sink.emit(event)
