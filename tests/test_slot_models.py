"""Tests for slot records and value helpers.

Tests verify:
- Legacy camelCase field names are accepted
- Unknown fields are ignored
- The calculation union is selected by its engine tag
- Category and calculation must agree
- Scope filtering treats None as global
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

import pytest
from pydantic import ValidationError

from conftest import make_slot
from slotengine.models.case import LogEntry
from slotengine.models.slot import (
    ConditionOperator,
    DataType,
    DecisionTreeCalculation,
    FormulaCalculation,
    Importance,
    LookupTableCalculation,
    OnErrorPolicy,
    ScopeFilter,
    ScriptCalculation,
    Slot,
    SlotCategory,
)
from slotengine.models.values import MISSING, dumps_values, loads_values, lookup, to_jsonable


class TestSlotRecords:
    def test_camel_case_record(self) -> None:
        slot = Slot.model_validate(
            {
                "slotKey": "weekly",
                "slotName": "Weekly salary",
                "slotType": "calculated",
                "dataType": "money",
                "isActive": True,
                "calculation": {
                    "engine": "formula",
                    "expression": "salary / 52",
                    "dependencies": ["salary"],
                    "roundTo": 2,
                    "onError": "useDefault",
                    "defaultOnError": 0,
                },
            }
        )
        assert slot.key == "weekly"
        assert slot.label == "Weekly salary"
        assert slot.category == SlotCategory.CALCULATED
        assert slot.data_type == DataType.MONEY
        assert isinstance(slot.calculation, FormulaCalculation)
        assert slot.calculation.formula == "salary / 52"
        assert slot.calculation.round_to == 2
        assert slot.calculation.on_error == OnErrorPolicy.DEFAULT
        assert slot.dependencies == ["salary"]

    def test_unknown_fields_ignored(self) -> None:
        slot = make_slot(key="q", authoring_notes="draft", ui={"widget": "slider"})
        assert slot.key == "q"
        assert not hasattr(slot, "authoring_notes")

    @pytest.mark.parametrize(
        ("calculation", "expected"),
        [
            ({"engine": "formula", "formula": "a"}, FormulaCalculation),
            ({"engine": "script", "code": "return 1"}, ScriptCalculation),
            ({"engine": "decision_tree", "tree": {"value": 1}}, DecisionTreeCalculation),
            ({"engine": "lookup_table", "key_slot": "a"}, LookupTableCalculation),
        ],
    )
    def test_calculation_union(self, calculation: dict[str, Any], expected: type) -> None:
        slot = make_slot(key="out", category="outcome", calculation=calculation)
        assert isinstance(slot.calculation, expected)
        assert slot.calculation is not None
        assert slot.calculation.engine_type.value == calculation["engine"]

    def test_unknown_engine_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_slot(key="out", category="calculated", calculation={"engine": "neural"})

    def test_input_with_calculation_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must not define a calculation"):
            make_slot(key="q", calculation={"engine": "formula", "formula": "1"})

    def test_calculated_without_calculation_rejected(self) -> None:
        with pytest.raises(ValidationError, match="requires a calculation"):
            make_slot(key="q", category="calculated")

    def test_enum_spellings(self) -> None:
        slot = make_slot(
            key="q",
            importance="critical",
            data_type="textarea",
            skipIf={"slotKey": "a", "operator": "notEquals", "value": 1},
        )
        assert slot.importance == Importance.CRITICAL
        assert slot.data_type == DataType.TEXT
        assert slot.skip_if is not None
        assert slot.skip_if.operator == ConditionOperator.NOT_EQUALS

    def test_legacy_scope_fields(self) -> None:
        slot = make_slot(key="q", jurisdictionId="CA-ON", legalDomainId="employment")
        assert slot.scope is not None
        assert slot.scope.jurisdiction_id == "CA-ON"
        assert slot.scope.domain_id == "employment"

    def test_legacy_conditional_visibility(self) -> None:
        slot = make_slot(
            key="q",
            ui={"conditional": {"showWhen": [{"slotKey": "a", "operator": "exists"}]}},
        )
        assert slot.visibility is not None
        assert slot.visibility.show_when[0].slot_key == "a"

    def test_records_are_frozen(self) -> None:
        slot = make_slot(key="q")
        with pytest.raises(ValidationError):
            slot.key = "other"  # type: ignore[misc]


class TestScopeFilter:
    @pytest.mark.parametrize(
        ("scope", "case_scope", "applies"),
        [
            (None, ScopeFilter("CA-ON", "employment"), True),
            ({"jurisdiction_id": "CA-ON"}, ScopeFilter("CA-ON", None), True),
            ({"jurisdiction_id": "CA-ON"}, ScopeFilter("CA-BC", None), False),
            ({"jurisdiction_id": "CA-ON"}, ScopeFilter(None, None), True),
            ({"domain_id": "employment"}, ScopeFilter("CA-ON", "tax"), False),
            ({"domain_id": "employment"}, ScopeFilter("CA-ON", "employment"), True),
            ({"jurisdiction_id": None, "domain_id": None}, ScopeFilter("CA-ON", "tax"), True),
        ],
    )
    def test_matches(
        self, scope: dict[str, Any] | None, case_scope: ScopeFilter, applies: bool
    ) -> None:
        slot = make_slot(key="q", scope=scope)
        assert case_scope.matches(slot) is applies


class TestValues:
    def test_lookup_distinguishes_missing_from_null(self) -> None:
        assert lookup({"a": None}, "a") is None
        assert lookup({}, "a") is MISSING
        assert not MISSING

    def test_to_jsonable_keeps_decimals(self) -> None:
        converted = to_jsonable({"a": Decimal("2.50"), "b": SlotCategory.INPUT, "c": (1, 2)})
        assert converted == {"a": Decimal("2.50"), "b": "input", "c": [1, 2]}
        assert str(converted["a"]) == "2.50"

    def test_missing_not_serializable(self) -> None:
        with pytest.raises(TypeError):
            to_jsonable({"a": MISSING})

    def test_decimal_round_trip(self) -> None:
        values = {"salary": Decimal("1442.31"), "weeks": 8, "flag": True, "note": None}
        loaded = loads_values(dumps_values(values))
        assert loaded == values
        assert isinstance(loaded["salary"], Decimal)

    def test_decimal_round_trip_is_exact(self) -> None:
        values = {
            "total": Decimal("12345678901234567.89"),
            "rate": Decimal("0.1000000000000000055"),
            "huge": Decimal("9E+999999"),
            "nested": [{"amount": Decimal("1.50")}],
        }
        text = dumps_values(values)
        assert '"total":12345678901234567.89' in text
        assert '"huge":9E+999999' in text
        loaded = loads_values(text)
        assert loaded == values
        assert str(loaded["rate"]) == "0.1000000000000000055"
        assert str(loaded["nested"][0]["amount"]) == "1.50"

    def test_dumps_matches_json_layout(self) -> None:
        values = {"b": [1, True, None], "a": {"x": "y"}, "c": []}
        assert dumps_values(values) == json.dumps(values, sort_keys=True, separators=(",", ":"))
        assert dumps_values(values, indent=2) == json.dumps(values, sort_keys=True, indent=2)

    def test_non_finite_decimal_rejected(self) -> None:
        with pytest.raises(ValueError):
            dumps_values({"x": Decimal("NaN")})

    def test_log_entry_record(self) -> None:
        entry = LogEntry(
            slot_key="weekly",
            inputs={"salary": Decimal("75000")},
            result=Decimal("1442.31"),
            engine="formula",
            formula="salary / 52",
        )
        record = entry.to_record()
        assert record["inputs"] == {"salary": 75000}
        assert record["result"] == Decimal("1442.31")
        assert record["timestamp"].endswith("Z")
        assert LogEntry.model_validate(record).slot_key == "weekly"
