"""Progressive disclosure: which question to ask next.

Question selection for a case:
1. active input slots in the case's scope
2. minus answered slots
3. minus hidden slots (show_when must all hold; any hide_when hides)
4. minus slots whose skip_if holds
5. at or above the importance floor
6. stable sort by importance (registry order within equal importance)
7. first max_count

Status and progress are always computed from the case, never stored.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from slotengine.calc.conditions import all_hold, any_holds, evaluate_condition
from slotengine.errors import ConfigError
from slotengine.models.case import Case, CaseStatus
from slotengine.models.slot import Importance, Slot, SlotCategory
from slotengine.persistence.cases import CaseStore
from slotengine.registry.base import SlotRegistry

logger = logging.getLogger(__name__)

_INPUT_ONLY = (SlotCategory.INPUT,)


def is_visible(slot: Slot, values: Mapping[str, Any]) -> bool:
    """True unless show_when fails or any hide_when rule holds."""
    visibility = slot.visibility
    if visibility is None:
        return True
    if visibility.show_when and not all_hold(visibility.show_when, values):
        return False
    return not any_holds(visibility.hide_when, values)


def should_skip(slot: Slot, values: Mapping[str, Any]) -> bool:
    """True if the slot's skip_if rule holds."""
    return slot.skip_if is not None and evaluate_condition(slot.skip_if, values)


@dataclass(frozen=True)
class CaseProgress:
    """Interview progress snapshot."""

    answered_count: int
    total_count: int
    percent_complete: int
    next_question: Slot | None
    status: CaseStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "answered_count": self.answered_count,
            "total_count": self.total_count,
            "percent_complete": self.percent_complete,
            "next_question": self.next_question.key if self.next_question else None,
            "status": self.status.value,
        }


class InterviewEngine:
    """Chooses questions for a case from the slot registry.

    Example:
        interview = InterviewEngine(registry, case_store)
        case, first = interview.start_case(jurisdiction_id="CA-ON")
    """

    def __init__(self, registry: SlotRegistry, case_store: CaseStore | None = None) -> None:
        self._registry = registry
        self._case_store = case_store

    def applicable_input_slots(self, case: Case) -> list[Slot]:
        """Active in-scope input slots that are visible and not skipped, answered or not."""
        values = case.slot_values
        return [
            slot
            for slot in self._registry.list_active_slots(case.scope, _INPUT_ONLY)
            if is_visible(slot, values) and not should_skip(slot, values)
        ]

    def next_questions(
        self,
        case: Case,
        max_count: int = 1,
        importance_floor: Importance = Importance.LOW,
    ) -> list[Slot]:
        """Next unanswered questions, most important first.

        Args:
            case: The case being interviewed.
            max_count: Maximum number of questions returned.
            importance_floor: Least important level still asked.
        """
        if max_count <= 0:
            return []
        candidates = [
            slot
            for slot in self.applicable_input_slots(case)
            if not case.has_value(slot.key) and slot.importance.within(importance_floor)
        ]
        candidates.sort(key=lambda slot: slot.importance.rank)
        return candidates[:max_count]

    def case_status(self, case: Case) -> CaseStatus:
        """DRAFT before any answer, COMPLETE once no applicable question remains."""
        applicable = self.applicable_input_slots(case)
        if all(case.has_value(slot.key) for slot in applicable):
            return CaseStatus.COMPLETE
        answered_any = any(
            case.has_value(slot.key)
            for slot in self._registry.list_active_slots(case.scope, _INPUT_ONLY)
        )
        return CaseStatus.IN_PROGRESS if answered_any else CaseStatus.DRAFT

    def progress(self, case: Case) -> CaseProgress:
        """Answered versus applicable questions, with the next question."""
        applicable = self.applicable_input_slots(case)
        answered = sum(1 for slot in applicable if case.has_value(slot.key))
        total = len(applicable)
        if total == 0:
            percent = 100
        else:
            percent = int(
                (Decimal(answered * 100) / Decimal(total)).quantize(
                    Decimal(1), rounding=ROUND_HALF_UP
                )
            )
        upcoming = self.next_questions(case, max_count=1)
        return CaseProgress(
            answered_count=answered,
            total_count=total,
            percent_complete=percent,
            next_question=upcoming[0] if upcoming else None,
            status=self.case_status(case),
        )

    def start_case(
        self,
        jurisdiction_id: str | None = None,
        domain_id: str | None = None,
        *,
        user_id: str | None = None,
        case_id: str | None = None,
    ) -> tuple[Case, Slot | None]:
        """Create a case and return it with its first question.

        Raises:
            ConfigError: If the engine was built without a case store.
        """
        if self._case_store is None:
            raise ConfigError("start_case requires a case store")
        case = self._case_store.create_case(
            case_id,
            user_id=user_id,
            jurisdiction_id=jurisdiction_id,
            domain_id=domain_id,
        )
        first = self.next_questions(case, max_count=1)
        logger.info(
            "Started case %s (first question: %s)",
            case.case_id,
            first[0].key if first else None,
        )
        return case, (first[0] if first else None)
