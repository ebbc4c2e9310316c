"""Slot registry protocol.

The registry is the read-only source of slot configuration. The engine never
writes to it; records are authored and versioned elsewhere.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Any, Protocol, runtime_checkable

from slotengine.models.slot import ScopeFilter, Slot, SlotCategory
from slotengine.models.values import to_jsonable


@runtime_checkable
class SlotRegistry(Protocol):
    """Read access to slot configuration."""

    def get_slot(self, key: str) -> Slot | None:
        """Return the slot with this key, or None if unknown."""
        ...

    def list_active_slots(
        self,
        scope_filter: ScopeFilter,
        categories: Collection[SlotCategory] | None = None,
    ) -> list[Slot]:
        """Active slots applicable within scope, in registry order.

        Args:
            scope_filter: Case scope; a None part leaves that dimension unfiltered.
            categories: Restrict to these categories (None = all).
        """
        ...


def slot_to_record(slot: Slot) -> dict[str, Any]:
    """Canonical JSON record for a slot, loadable again with Slot.model_validate."""
    return to_jsonable(slot.model_dump(mode="python"))
