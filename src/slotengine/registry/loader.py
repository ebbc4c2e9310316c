"""Loading slot records from JSON and YAML files.

A file holds either a list of records or an object with a `slots` list.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from slotengine.errors import SlotConfigError
from slotengine.models.slot import Slot

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


def _format_validation_error(error: ValidationError) -> list[str]:
    details = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<record>"
        details.append(f"{location}: {item['msg']}")
    return details


def parse_slot_records(records: Iterable[Any], source: str = "<records>") -> list[Slot]:
    """Validate raw records into Slot models.

    Raises:
        SlotConfigError: On the first invalid record, naming its index and key.
    """
    slots: list[Slot] = []
    for index, record in enumerate(records):
        key = record.get("key", record.get("slotKey")) if isinstance(record, dict) else None
        path = f"{source}[{index}]" + (f" ({key})" if key else "")
        try:
            slots.append(Slot.model_validate(record))
        except ValidationError as e:
            raise SlotConfigError(path, _format_validation_error(e)) from e
    return slots


def load_slot_records(path: str | Path) -> list[Slot]:
    """Load and validate slot records from a JSON or YAML file.

    Raises:
        SlotConfigError: If the file cannot be read or parsed, or a record is invalid.
    """
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SlotConfigError(str(file_path), [f"cannot read file: {e}"]) from e

    try:
        if file_path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise SlotConfigError(str(file_path), [f"cannot parse file: {e}"]) from e

    if isinstance(data, dict) and "slots" in data:
        data = data["slots"]
    if not isinstance(data, list):
        raise SlotConfigError(str(file_path), ["expected a list of slot records or {'slots': [...]}"])

    slots = parse_slot_records(data, source=str(file_path))
    logger.info("Loaded %d slot records from %s", len(slots), file_path)
    return slots
