"""Dependency ordering of calculated slots."""

from slotengine.resolution.resolver import DERIVED_CATEGORIES, DependencyResolver, affected_by

__all__ = ["DERIVED_CATEGORIES", "DependencyResolver", "affected_by"]
