"""In-memory slot registry.

Used by the CLI (records loaded from a file) and by tests. Holds immutable
Slot models, so a registry can be shared between threads once built.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from pathlib import Path
from typing import Any

from slotengine.errors import SlotConfigError
from slotengine.models.slot import ScopeFilter, Slot, SlotCategory
from slotengine.registry.loader import load_slot_records, parse_slot_records


class InMemorySlotRegistry:
    """Slots held in a dict, listed in insertion order.

    Example:
        registry = InMemorySlotRegistry.from_file("slots.yaml")
    """

    def __init__(self, slots: Iterable[Slot] = ()) -> None:
        """Initialize the registry.

        Args:
            slots: Initial slots, registered in order.

        Raises:
            SlotConfigError: If two slots share a key.
        """
        self._slots: dict[str, Slot] = {}
        for slot in slots:
            self.add(slot)

    @classmethod
    def from_records(cls, records: Iterable[Any]) -> InMemorySlotRegistry:
        """Build from raw record dicts.

        Args:
            records: Slot records (snake_case or camelCase field names).

        Raises:
            SlotConfigError: If a record is invalid.
        """
        return cls(parse_slot_records(records))

    @classmethod
    def from_file(cls, path: str | Path) -> InMemorySlotRegistry:
        """Build from a JSON or YAML record file.

        Args:
            path: File holding a list of records or {"slots": [...]}.

        Raises:
            SlotConfigError: If the file cannot be read or a record is invalid.
        """
        return cls(load_slot_records(path))

    def add(self, slot: Slot) -> None:
        """Register a slot after the ones already held.

        Args:
            slot: Slot to add.

        Raises:
            SlotConfigError: If the key is already registered.
        """
        if slot.key in self._slots:
            raise SlotConfigError(slot.key, ["duplicate slot key"])
        self._slots[slot.key] = slot

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: object) -> bool:
        return key in self._slots

    def all_slots(self) -> list[Slot]:
        """Every registered slot, active or not."""
        return list(self._slots.values())

    def get_slot(self, key: str) -> Slot | None:
        """Slot by key, active or not; None if unknown."""
        return self._slots.get(key)

    def list_active_slots(
        self,
        scope_filter: ScopeFilter,
        categories: Collection[SlotCategory] | None = None,
    ) -> list[Slot]:
        """Active slots that apply within the scope, in insertion order.

        Args:
            scope_filter: Case scope.
            categories: Categories to keep; None keeps every category.

        Returns:
            Matching slots. An empty categories collection yields no slots.
        """
        return [
            slot
            for slot in self._slots.values()
            if slot.active
            and (categories is None or slot.category in categories)
            and scope_filter.matches(slot)
        ]
