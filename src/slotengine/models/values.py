"""Slot value helpers.

Slot values are plain JSON-compatible Python objects, with numbers held as
Decimal once they pass through arithmetic. Two kinds of "nothing" are kept
apart:

- MISSING: the slot has no value at all (never answered, never computed).
- None: the slot holds an explicit null (a null answer, or a calculation
  whose on_error policy produced null).

Every operator decides explicitly what it does with each of them.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Final


class _Missing:
    """Singleton marker for an absent slot value."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()


def is_missing(value: object) -> bool:
    """Return True if value is the MISSING marker."""
    return value is MISSING


def is_absent(value: object) -> bool:
    """Return True for MISSING or an explicit null."""
    return value is MISSING or value is None


def lookup(values: Mapping[str, Any], key: str) -> Any:
    """Get a slot value, returning MISSING rather than None for absent keys."""
    return values[key] if key in values else MISSING


def is_numeric(value: object) -> bool:
    """Return True for int, float and Decimal values. Booleans are not numbers."""
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def to_decimal(value: object) -> Decimal:
    """Coerce a numeric value to Decimal.

    Floats go through their shortest repr so 0.1 becomes Decimal("0.1").

    Raises:
        TypeError: If value is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Cannot convert bool to Decimal")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")


def parse_numeric_text(value: str) -> Decimal | None:
    """Parse a numeric string answer ("75000", " 5.5 "), or return None."""
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def to_jsonable(value: Any) -> Any:
    """Convert a slot value into plain JSON types.

    Decimals are kept as Decimal (dumps_values writes them as exact JSON
    numbers); containers are converted recursively. MISSING has no JSON form
    and is rejected.

    Raises:
        TypeError: If the value contains MISSING or an unsupported type.
    """
    if value is MISSING:
        raise TypeError("MISSING cannot be serialized")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return value
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Unsupported slot value type: {type(value).__name__}")


def _encode(value: Any, indent: int | None, depth: int) -> Iterator[str]:
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"{value} has no JSON number form")
        yield str(value)
        return
    if isinstance(value, dict):
        members: list[tuple[str | None, Any]] = [
            (json.dumps(key), item) for key, item in sorted(value.items())
        ]
        brackets = "{}"
    elif isinstance(value, list):
        members = [(None, item) for item in value]
        brackets = "[]"
    else:
        yield json.dumps(value, allow_nan=False)
        return

    if not members:
        yield brackets
        return
    if indent is None:
        opening, separator, closing, colon = "", ",", "", ":"
    else:
        opening = "\n" + " " * (indent * (depth + 1))
        separator = "," + opening
        closing = "\n" + " " * (indent * depth)
        colon = ": "
    yield brackets[0] + opening
    for index, (key, item) in enumerate(members):
        if index:
            yield separator
        if key is not None:
            yield key + colon
        yield from _encode(item, indent, depth + 1)
    yield closing + brackets[1]


def dumps_values(value: Any, *, indent: int | None = None) -> str:
    """Serialize slot values to canonical JSON (sorted keys).

    Decimals are written as their exact number text ("1442.31", "1E+30"), so
    loads_values reads back an equal Decimal. Output is compact unless
    `indent` is given, in which case it matches json.dumps(indent=...).

    Raises:
        TypeError: If the value contains MISSING or an unsupported type.
        ValueError: If a number has no JSON form (NaN, Infinity, or an int
            beyond the interpreter's digit limit).
    """
    return "".join(_encode(to_jsonable(value), indent, 0))


def loads_values(data: str) -> Any:
    """Deserialize JSON produced by dumps_values. Fractional numbers load as Decimal."""
    return json.loads(data, parse_float=Decimal)
