"""Dependency resolution for calculated slots.

Orders slots so every slot comes after the slots it depends on, using Kahn's
algorithm. Slots are grouped into layers: layer 0 has no dependencies inside
the resolved set, layer k depends only on layers < k. Within a layer keys are
sorted, so the order is deterministic for a given registry.

Dependencies that are input slots, inactive, outside the case scope, already
evaluated or unknown to the registry are leaves: they are read, never ordered.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable

from slotengine.errors import CycleDetectedError, SlotNotFoundError
from slotengine.models.calculation import DependencyAnalysis
from slotengine.models.slot import ScopeFilter, Slot, SlotCategory
from slotengine.registry.base import SlotRegistry

logger = logging.getLogger(__name__)

DERIVED_CATEGORIES: frozenset[SlotCategory] = frozenset(
    {SlotCategory.CALCULATED, SlotCategory.OUTCOME}
)


def affected_by(changed_key: str, slots: Iterable[Slot]) -> set[str]:
    """Forward closure of a changed slot.

    Args:
        changed_key: Slot whose value changed.
        slots: Candidate slots (typically every active derived slot in scope).

    Returns:
        changed_key plus every slot that transitively depends on it.
    """
    candidates = list(slots)
    affected = {changed_key}
    grew = True
    while grew:
        grew = False
        for slot in candidates:
            if slot.key not in affected and affected.intersection(slot.dependencies):
                affected.add(slot.key)
                grew = True
    return affected


def _find_cycle(remaining: dict[str, set[str]]) -> list[str]:
    """Return one cycle among slots left over by Kahn's algorithm.

    `remaining` maps each unresolved key to its unresolved dependencies. Every
    such key lies on or downstream of a cycle, so following dependencies must
    revisit a key.
    """
    start = min(remaining)
    path: list[str] = []
    position: dict[str, int] = {}
    current = start
    while current not in position:
        position[current] = len(path)
        path.append(current)
        current = min(remaining[current])
    cycle = path[position[current] :]
    return [*cycle, current]


class DependencyResolver:
    """Resolves evaluation order against a slot registry.

    Example:
        resolver = DependencyResolver(registry)
        order = resolver.resolve_order(["severance"])
    """

    def __init__(self, registry: SlotRegistry) -> None:
        self._registry = registry

    def _collect(
        self,
        slot_keys: Iterable[str],
        evaluated: Collection[str],
        scope: ScopeFilter | None,
    ) -> dict[str, Slot]:
        """Requested slots plus their transitive active derived dependencies."""
        collected: dict[str, Slot] = {}
        pending: list[str] = []
        for key in slot_keys:
            slot = self._registry.get_slot(key)
            if slot is None:
                raise SlotNotFoundError(key)
            if key not in collected:
                collected[key] = slot
                pending.append(key)

        while pending:
            slot = collected[pending.pop()]
            for dep_key in slot.dependencies:
                if dep_key in collected or dep_key in evaluated:
                    continue
                dep = self._registry.get_slot(dep_key)
                if dep is None or not dep.active or dep.category not in DERIVED_CATEGORIES:
                    continue
                if scope is not None and not scope.matches(dep):
                    logger.debug("Dependency %s of %s is out of scope", dep_key, slot.key)
                    continue
                collected[dep_key] = dep
                pending.append(dep_key)
        return collected

    def resolve_layers(
        self,
        slot_keys: Iterable[str],
        evaluated: Collection[str] = (),
        scope: ScopeFilter | None = None,
    ) -> list[list[str]]:
        """Group the resolved slots into dependency layers.

        Args:
            slot_keys: Slots to evaluate.
            evaluated: Keys whose values are already known and need no ordering.
            scope: Case scope. Derived dependencies it excludes are not
                pulled in. None follows every dependency.

        Returns:
            Layers of slot keys, each sorted.

        Raises:
            SlotNotFoundError: If a requested key is not in the registry.
            CycleDetectedError: If the dependency graph has a cycle.
        """
        slots = self._collect(slot_keys, evaluated, scope)

        pending_deps: dict[str, set[str]] = {
            key: {dep for dep in slot.dependencies if dep in slots and dep != key}
            for key, slot in slots.items()
        }
        for key, slot in slots.items():
            if key in slot.dependencies:
                raise CycleDetectedError([key, key])

        dependents: dict[str, list[str]] = {key: [] for key in slots}
        for key, deps in pending_deps.items():
            for dep in deps:
                dependents[dep].append(key)

        in_degree = {key: len(deps) for key, deps in pending_deps.items()}
        layers: list[list[str]] = []
        current = sorted(key for key, degree in in_degree.items() if degree == 0)
        while current:
            layers.append(current)
            following: list[str] = []
            for key in current:
                for dependent in dependents[key]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        following.append(dependent)
            current = sorted(following)

        resolved = sum(len(layer) for layer in layers)
        if resolved != len(slots):
            done = {key for layer in layers for key in layer}
            remaining = {
                key: deps - done for key, deps in pending_deps.items() if key not in done
            }
            cycle = _find_cycle(remaining)
            logger.warning("Dependency cycle detected: %s", " -> ".join(cycle))
            raise CycleDetectedError(cycle)

        logger.debug("Resolved %d slots into %d layers", resolved, len(layers))
        return layers

    def resolve_order(
        self,
        slot_keys: Iterable[str],
        evaluated: Collection[str] = (),
        scope: ScopeFilter | None = None,
    ) -> list[str]:
        """Flat evaluation order: resolve_layers concatenated."""
        layers = self.resolve_layers(slot_keys, evaluated, scope)
        return [key for layer in layers for key in layer]

    def analyze(self, slot_keys: Iterable[str] | None = None) -> DependencyAnalysis:
        """Describe the dependency structure of the given slots.

        Args:
            slot_keys: Slots to analyze. Defaults to every active derived slot.

        Raises:
            CycleDetectedError: If the graph has a cycle.
        """
        if slot_keys is None:
            slot_keys = [
                slot.key
                for slot in self._registry.list_active_slots(ScopeFilter(), DERIVED_CATEGORIES)
            ]
        layers = self.resolve_layers(slot_keys)
        return DependencyAnalysis(
            total_slots=sum(len(layer) for layer in layers),
            max_depth=max(len(layers) - 1, 0),
            layers=layers,
        )

    def affected_by(self, changed_key: str, scope: ScopeFilter | None = None) -> set[str]:
        """Forward closure of changed_key over active derived slots in scope."""
        slots = self._registry.list_active_slots(scope or ScopeFilter(), DERIVED_CATEGORIES)
        return affected_by(changed_key, slots)
