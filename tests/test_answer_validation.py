"""Tests for answer coercion and validation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_slot
from slotengine.interview.validation import coerce_answer, validate_answer


class TestCoerceAnswer:
    def test_numeric_string_becomes_decimal(self) -> None:
        slot = make_slot(key="salary", data_type="money")
        assert coerce_answer(slot, " 75000.50 ") == Decimal("75000.50")

    def test_float_becomes_decimal(self) -> None:
        slot = make_slot(key="years", data_type="number")
        assert coerce_answer(slot, 5.5) == Decimal("5.5")

    def test_non_numeric_string_unchanged(self) -> None:
        slot = make_slot(key="years", data_type="number")
        assert coerce_answer(slot, "five") == "five"

    def test_text_slot_unchanged(self) -> None:
        slot = make_slot(key="name", data_type="text")
        assert coerce_answer(slot, "42") == "42"


class TestRequired:
    @pytest.mark.parametrize("blank", [None, "", "   ", []])
    def test_required_blank_rejected(self, blank: object) -> None:
        slot = make_slot(key="name", name="Full name", validation={"required": True})
        assert validate_answer(slot, blank) == ["Full name is required"]

    def test_optional_blank_accepted(self) -> None:
        slot = make_slot(key="name", validation={"min_length": 3})
        assert validate_answer(slot, None) == []


class TestTypes:
    @pytest.mark.parametrize(
        ("data_type", "value"),
        [
            ("number", "abc"),
            ("number", True),
            ("boolean", "yes"),
            ("text", 12),
            ("list", "a,b"),
            ("record", [1]),
            ("multiselect", "a"),
        ],
    )
    def test_wrong_type(self, data_type: str, value: object) -> None:
        slot = make_slot(key="q", data_type=data_type)
        assert len(validate_answer(slot, value)) == 1

    @pytest.mark.parametrize(
        ("data_type", "value"),
        [
            ("number", Decimal("3")),
            ("money", 10),
            ("boolean", False),
            ("textarea", "long answer"),
            ("list", [1, 2]),
            ("record", {"a": 1}),
        ],
    )
    def test_right_type(self, data_type: str, value: object) -> None:
        slot = make_slot(key="q", data_type=data_type)
        assert validate_answer(slot, value) == []


class TestRules:
    def test_numeric_range(self) -> None:
        slot = make_slot(
            key="years", name="Years", data_type="number", validation={"min": 0, "max": 80}
        )
        assert validate_answer(slot, 80) == []
        assert validate_answer(slot, -1) == ["Years must be at least 0"]
        assert validate_answer(slot, Decimal("80.5")) == ["Years must be at most 80"]

    def test_length(self) -> None:
        slot = make_slot(key="code", validation={"minLength": 2, "maxLength": 4})
        assert validate_answer(slot, "abc") == []
        assert len(validate_answer(slot, "a")) == 1
        assert len(validate_answer(slot, "abcde")) == 1

    def test_pattern_searches(self) -> None:
        slot = make_slot(key="postal", validation={"pattern": r"^[A-Z]\d[A-Z] ?\d[A-Z]\d$"})
        assert validate_answer(slot, "M5V 2T6") == []
        assert validate_answer(slot, "12345") == ["postal has an invalid format"]

    def test_invalid_pattern_rejected_at_load(self) -> None:
        with pytest.raises(ValueError, match="invalid pattern"):
            make_slot(key="q", validation={"pattern": "("})

    def test_custom_messages(self) -> None:
        slot = make_slot(
            key="age",
            data_type="number",
            validation={
                "required": True,
                "min": 18,
                "errorMessages": {"required": "Tell us your age", "min": "Adults only"},
            },
        )
        assert validate_answer(slot, None) == ["Tell us your age"]
        assert validate_answer(slot, 12) == ["Adults only"]

    def test_all_failures_collected(self) -> None:
        slot = make_slot(
            key="code",
            data_type="select",
            options=["AAAA"],
            validation={"max_length": 2, "pattern": "^A"},
        )
        assert len(validate_answer(slot, "BBB")) == 3


class TestOptions:
    def test_select(self) -> None:
        slot = make_slot(key="province", data_type="select", options=["ON", "BC"])
        assert validate_answer(slot, "ON") == []
        assert validate_answer(slot, "QC") == ["'QC' is not one of the allowed options"]

    def test_select_numeric_options_compare_by_value(self) -> None:
        slot = make_slot(key="weeks", data_type="select", options=[1, 2, 4])
        assert validate_answer(slot, Decimal("2.0")) == []

    def test_multiselect(self) -> None:
        slot = make_slot(key="benefits", data_type="multiselect", options=["dental", "vision"])
        assert validate_answer(slot, ["dental"]) == []
        assert validate_answer(slot, ["dental", "pension"]) == [
            "'pension' is not one of the allowed options"
        ]

    def test_legacy_ui_options(self) -> None:
        slot = make_slot(
            key="province",
            data_type="select",
            ui={"options": [{"value": "ON", "label": "Ontario"}]},
        )
        assert slot.options == ["ON"]
        assert validate_answer(slot, "BC") != []
