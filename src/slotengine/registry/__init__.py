"""Slot configuration sources."""

from slotengine.registry.base import SlotRegistry, slot_to_record
from slotengine.registry.loader import load_slot_records, parse_slot_records
from slotengine.registry.memory import InMemorySlotRegistry
from slotengine.registry.sql import SqlSlotRegistry

__all__ = [
    "InMemorySlotRegistry",
    "SlotRegistry",
    "SqlSlotRegistry",
    "load_slot_records",
    "parse_slot_records",
    "slot_to_record",
]
