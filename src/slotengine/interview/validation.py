"""Answer validation for input slots.

Checks an answer against the slot's data type, its options and its
`validation` rules. All failures are collected so the caller can show every
problem at once.
"""

from __future__ import annotations

import re
from typing import Any

from slotengine.calc.conditions import values_equal
from slotengine.models.slot import DataType, Slot
from slotengine.models.values import is_numeric, parse_numeric_text, to_decimal

_NUMERIC_TYPES = frozenset({DataType.NUMBER, DataType.MONEY})


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def coerce_answer(slot: Slot, value: Any) -> Any:
    """Normalize an answer before validation and storage.

    Numeric answers to number/money slots become Decimal (including numeric
    strings such as "75000"); everything else is returned unchanged.
    """
    if slot.data_type not in _NUMERIC_TYPES:
        return value
    if isinstance(value, float):
        return to_decimal(value)
    if isinstance(value, str):
        parsed = parse_numeric_text(value)
        return parsed if parsed is not None else value
    return value


def _type_error(slot: Slot, value: Any) -> str | None:
    data_type = slot.data_type
    if data_type in _NUMERIC_TYPES and not is_numeric(value):
        return "must be a number"
    if data_type == DataType.BOOLEAN and not isinstance(value, bool):
        return "must be true or false"
    if data_type in (DataType.TEXT, DataType.DATE) and not isinstance(value, str):
        return "must be text"
    if data_type == DataType.LIST and not isinstance(value, list):
        return "must be a list"
    if data_type == DataType.RECORD and not isinstance(value, dict):
        return "must be an object"
    if data_type == DataType.MULTISELECT and not isinstance(value, list):
        return "must be a list of options"
    return None


def _option_errors(slot: Slot, value: Any) -> list[str]:
    if not slot.options:
        return []
    if slot.data_type == DataType.MULTISELECT and isinstance(value, list):
        invalid = [
            item for item in value if not any(values_equal(item, opt) for opt in slot.options)
        ]
        return [f"{item!r} is not one of the allowed options" for item in invalid]
    if slot.data_type == DataType.SELECT and not any(
        values_equal(value, opt) for opt in slot.options
    ):
        return [f"{value!r} is not one of the allowed options"]
    return []


def validate_answer(slot: Slot, value: Any) -> list[str]:
    """Validate an answer for an input slot.

    Args:
        slot: The slot being answered.
        value: The (coerced) answer.

    Returns:
        Error messages; empty when the answer is acceptable.
    """
    rules = slot.validation
    messages = rules.error_messages if rules is not None else {}

    def fail(rule: str, default: str) -> str:
        return messages.get(rule, default)

    if _is_blank(value):
        if rules is not None and rules.required:
            return [fail("required", f"{slot.label} is required")]
        return []

    type_error = _type_error(slot, value)
    if type_error is not None:
        return [fail("type", f"{slot.label} {type_error}")]

    errors = _option_errors(slot, value)
    if rules is None:
        return errors

    if is_numeric(value):
        number = to_decimal(value)
        if rules.min is not None and number < rules.min:
            errors.append(fail("min", f"{slot.label} must be at least {rules.min}"))
        if rules.max is not None and number > rules.max:
            errors.append(fail("max", f"{slot.label} must be at most {rules.max}"))

    if isinstance(value, (str, list)):
        length = len(value)
        if rules.min_length is not None and length < rules.min_length:
            errors.append(
                fail("min_length", f"{slot.label} must have at least {rules.min_length} characters")
            )
        if rules.max_length is not None and length > rules.max_length:
            errors.append(
                fail("max_length", f"{slot.label} must have at most {rules.max_length} characters")
            )

    if rules.pattern is not None and isinstance(value, str) and not re.search(rules.pattern, value):
        errors.append(fail("pattern", f"{slot.label} has an invalid format"))

    return errors
