"""Slot configuration records.

A slot is a named unit of input, computation or outcome. Records arrive as
JSON from the authoring pipeline and are validated here; this module is the
wire contract between that pipeline and the engine.

Record rules:
- Unknown extra fields are ignored, never rejected.
- Legacy camelCase field names (slotKey, skipIf, keySlot, ...) are accepted.
- `calculation` is a discriminated union tagged by `engine`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _normalize_enum_text(value: str) -> str:
    """Map 'notEquals', 'NOT_EQUALS' and 'not-equals' to 'not_equals'."""
    text = value.strip()
    if text.isupper():
        return text.lower()
    return _CAMEL_BOUNDARY.sub("_", text).replace("-", "_").lower()


class SlotCategory(StrEnum):
    """Role of a slot in a case."""

    INPUT = "input"
    CALCULATED = "calculated"
    OUTCOME = "outcome"

    @classmethod
    def _missing_(cls, value: object) -> SlotCategory | None:
        if isinstance(value, str):
            return cls._value2member_map_.get(_normalize_enum_text(value))  # type: ignore[return-value]
        return None


class DataType(StrEnum):
    """Semantic kind of a slot value."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    MONEY = "money"
    SELECT = "select"
    MULTISELECT = "multiselect"
    LIST = "list"
    RECORD = "record"
    FILE = "file"

    @classmethod
    def _missing_(cls, value: object) -> DataType | None:
        if not isinstance(value, str):
            return None
        aliases = {"textarea": "text", "array": "list", "object": "record"}
        normalized = _normalize_enum_text(value)
        return cls._value2member_map_.get(aliases.get(normalized, normalized))  # type: ignore[return-value]


class Importance(StrEnum):
    """Question priority. CRITICAL is asked first, LOW last."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"

    @classmethod
    def _missing_(cls, value: object) -> Importance | None:
        if isinstance(value, str):
            return cls._value2member_map_.get(value.strip().upper())  # type: ignore[return-value]
        return None

    @property
    def rank(self) -> int:
        """Position in the priority order (0 = CRITICAL)."""
        return _IMPORTANCE_ORDER.index(self)

    def within(self, floor: Importance) -> bool:
        """Return True if this importance is at least as high as floor."""
        return self.rank <= floor.rank


_IMPORTANCE_ORDER: tuple[Importance, ...] = (
    Importance.CRITICAL,
    Importance.HIGH,
    Importance.MODERATE,
    Importance.LOW,
)


class ConditionOperator(StrEnum):
    """Operators available to conditional rules."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"

    @classmethod
    def _missing_(cls, value: object) -> ConditionOperator | None:
        if isinstance(value, str):
            return cls._value2member_map_.get(_normalize_enum_text(value))  # type: ignore[return-value]
        return None


class OnErrorPolicy(StrEnum):
    """What a calculation yields when its strategy fails."""

    FAIL = "fail"
    DEFAULT = "default"
    NULL = "null"

    @classmethod
    def _missing_(cls, value: object) -> OnErrorPolicy | None:
        if not isinstance(value, str):
            return None
        aliases = {"use_default": "default", "return_null": "null", "none": "null"}
        normalized = _normalize_enum_text(value)
        return cls._value2member_map_.get(aliases.get(normalized, normalized))  # type: ignore[return-value]


class CalculationEngineType(StrEnum):
    """Calculation strategy tags."""

    FORMULA = "formula"
    SCRIPT = "script"
    DECISION_TREE = "decision_tree"
    LOOKUP_TABLE = "lookup_table"


_RECORD_CONFIG: Any = {"frozen": True, "extra": "ignore", "populate_by_name": True}


class ConditionalRule(BaseModel):
    """A single comparison against another slot's current value."""

    slot_key: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("slot_key", "slotKey", "target_slot_key"),
        description="Slot whose value is tested",
    )
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(default=None, description="Comparison value (list for in/not_in)")

    model_config = _RECORD_CONFIG


class Visibility(BaseModel):
    """Conditional display rules for a question."""

    show_when: list[ConditionalRule] = Field(
        default_factory=list,
        validation_alias=AliasChoices("show_when", "showWhen"),
        description="All rules must hold for the slot to be shown",
    )
    hide_when: list[ConditionalRule] = Field(
        default_factory=list,
        validation_alias=AliasChoices("hide_when", "hideWhen"),
        description="Any rule holding hides the slot",
    )

    model_config = _RECORD_CONFIG


class SlotScope(BaseModel):
    """Jurisdiction/domain ownership. A None part means global."""

    jurisdiction_id: str | None = Field(
        default=None, validation_alias=AliasChoices("jurisdiction_id", "jurisdictionId")
    )
    domain_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("domain_id", "domainId", "legalDomainId", "legal_domain_id"),
    )

    model_config = _RECORD_CONFIG


class LegalBasis(BaseModel):
    """Statutory grounding of a slot. Descriptive only."""

    source_id: str | None = Field(default=None, validation_alias=AliasChoices("source_id", "sourceId"))
    provision_ids: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("provision_ids", "provisionIds")
    )
    citation_text: str | None = Field(
        default=None, validation_alias=AliasChoices("citation_text", "citationText")
    )
    relevant_excerpt: str | None = Field(
        default=None, validation_alias=AliasChoices("relevant_excerpt", "relevantExcerpt")
    )

    model_config = _RECORD_CONFIG


class ValidationConfig(BaseModel):
    """Answer validation rules for input slots."""

    required: bool = False
    min: Decimal | None = None
    max: Decimal | None = None
    min_length: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("min_length", "minLength")
    )
    max_length: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("max_length", "maxLength")
    )
    pattern: str | None = None
    error_messages: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("error_messages", "errorMessages"),
        description="Per-rule message overrides keyed by rule name (min, max, pattern, ...)",
    )

    @field_validator("pattern")
    @classmethod
    def check_pattern(cls, v: str | None) -> str | None:
        """Reject patterns that do not compile."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid pattern: {e}") from e
        return v

    model_config = _RECORD_CONFIG


class _CalculationBase(BaseModel):
    """Fields shared by every calculation strategy."""

    dependencies: list[str] = Field(default_factory=list, description="Slot keys this reads")
    round_to: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("round_to", "roundTo"),
        description="Decimal places for numeric results (half away from zero)",
    )
    on_error: OnErrorPolicy = Field(
        default=OnErrorPolicy.FAIL, validation_alias=AliasChoices("on_error", "onError")
    )
    default_on_error: Any = Field(
        default=None,
        validation_alias=AliasChoices("default_on_error", "defaultOnError"),
        description="Value used when on_error is 'default'",
    )

    model_config = _RECORD_CONFIG

    @property
    def engine_type(self) -> CalculationEngineType:
        """The strategy tag as an enum member."""
        return CalculationEngineType(self.engine)  # type: ignore[attr-defined]


def _lift_nested(data: Any, *names: str) -> Any:
    """Merge a legacy nested strategy block ({"lookupTable": {...}}) into the record."""
    if not isinstance(data, dict):
        return data
    for name in names:
        nested = data.get(name)
        if isinstance(nested, dict):
            merged = dict(nested)
            merged.update({k: v for k, v in data.items() if k != name})
            return merged
    return data


class FormulaCalculation(_CalculationBase):
    """Arithmetic expression over dependency values."""

    engine: Literal["formula"] = "formula"
    formula: str = Field(..., min_length=1, validation_alias=AliasChoices("formula", "expression"))


class ScriptCalculation(_CalculationBase):
    """Code run inside the step-limited script sandbox."""

    engine: Literal["script"] = "script"
    code: str = Field(..., min_length=1)
    sandbox: bool = Field(default=True, description="Must be true; scripts always run sandboxed")

    @model_validator(mode="before")
    @classmethod
    def lift_script_block(cls, data: Any) -> Any:
        """Accept {"script": {"code": ..., "sandbox": ...}}."""
        return _lift_nested(data, "script")


class DecisionTreeNode(BaseModel):
    """One node of a decision tree.

    children[0] is the true branch and children[1] the false branch; either
    may be null.
    """

    condition: ConditionalRule | None = None
    value: Any = None
    children: list[DecisionTreeNode | None] = Field(default_factory=list)

    @field_validator("children")
    @classmethod
    def check_children(cls, v: list[DecisionTreeNode | None]) -> list[DecisionTreeNode | None]:
        """A node has at most a true and a false branch."""
        if len(v) > 2:
            raise ValueError(
                f"decision tree node has {len(v)} children; at most 2 (true, false) allowed"
            )
        return v

    model_config = _RECORD_CONFIG


DecisionTreeNode.model_rebuild()


class DecisionTreeCalculation(_CalculationBase):
    """Decision tree routed by conditional rules."""

    engine: Literal["decision_tree"] = "decision_tree"
    tree: DecisionTreeNode = Field(
        ..., validation_alias=AliasChoices("tree", "decision_tree", "decisionTree")
    )


class LookupTableCalculation(_CalculationBase):
    """Value looked up by another slot's value."""

    engine: Literal["lookup_table"] = "lookup_table"
    key_slot: str = Field(..., min_length=1, validation_alias=AliasChoices("key_slot", "keySlot"))
    mappings: dict[Any, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("mappings", "mapping")
    )
    default_value: Any = Field(
        default=None, validation_alias=AliasChoices("default_value", "defaultValue")
    )

    @model_validator(mode="before")
    @classmethod
    def lift_lookup_block(cls, data: Any) -> Any:
        """Accept {"lookupTable": {"keySlot": ..., "mappings": ...}}."""
        return _lift_nested(data, "lookup_table", "lookupTable")


CalculationSpec = Annotated[
    FormulaCalculation | ScriptCalculation | DecisionTreeCalculation | LookupTableCalculation,
    Field(discriminator="engine"),
]


class Slot(BaseModel):
    """A slot configuration record (immutable per version)."""

    key: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("key", "slot_key", "slotKey")
    )
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "slotName"))
    description: str | None = None
    category: SlotCategory = Field(
        ...,
        validation_alias=AliasChoices(
            "category", "slot_type", "slotType", "slot_category", "slotCategory"
        ),
    )
    data_type: DataType = Field(
        default=DataType.TEXT, validation_alias=AliasChoices("data_type", "dataType")
    )
    importance: Importance = Importance.MODERATE
    scope: SlotScope | None = None
    visibility: Visibility | None = None
    skip_if: ConditionalRule | None = Field(
        default=None, validation_alias=AliasChoices("skip_if", "skipIf")
    )
    calculation: CalculationSpec | None = None
    active: bool = Field(default=True, validation_alias=AliasChoices("active", "is_active", "isActive"))
    validation: ValidationConfig | None = None
    options: list[Any] = Field(default_factory=list, description="Allowed values for selects")
    default_value: Any = Field(
        default=None, validation_alias=AliasChoices("default_value", "defaultValue")
    )
    legal_basis: LegalBasis | None = Field(
        default=None, validation_alias=AliasChoices("legal_basis", "legalBasis")
    )
    version: int = Field(default=1, ge=1, validation_alias=AliasChoices("version", "versionNumber"))

    model_config = _RECORD_CONFIG

    @model_validator(mode="before")
    @classmethod
    def lift_legacy_fields(cls, data: Any) -> Any:
        """Fold legacy record layouts into the canonical shape.

        - top-level jurisdiction/domain ids become `scope`
        - ui.conditional becomes `visibility`
        - ui.options values become `options`
        """
        if not isinstance(data, dict):
            return data
        data = dict(data)

        if data.get("scope") is None:
            jurisdiction = data.get("jurisdiction_id", data.get("jurisdictionId"))
            domain = data.get(
                "domain_id", data.get("legal_domain_id", data.get("legalDomainId"))
            )
            if jurisdiction is not None or domain is not None:
                data["scope"] = {"jurisdiction_id": jurisdiction, "domain_id": domain}

        ui = data.get("ui")
        if isinstance(ui, dict):
            if data.get("visibility") is None and isinstance(ui.get("conditional"), dict):
                data["visibility"] = ui["conditional"]
            if "options" not in data and isinstance(ui.get("options"), list):
                data["options"] = [
                    opt.get("value") if isinstance(opt, dict) else opt for opt in ui["options"]
                ]
            if data.get("name") is None and data.get("slotName") is None and ui.get("label"):
                data["name"] = ui["label"]
        return data

    @model_validator(mode="after")
    def check_calculation_matches_category(self) -> Slot:
        """Derived slots carry a calculation; input slots never do."""
        if self.category == SlotCategory.INPUT and self.calculation is not None:
            raise ValueError(f"input slot '{self.key}' must not define a calculation")
        if self.category != SlotCategory.INPUT and self.calculation is None:
            raise ValueError(f"{self.category.value} slot '{self.key}' requires a calculation")
        return self

    @property
    def is_derived(self) -> bool:
        """True for calculated and outcome slots."""
        return self.category != SlotCategory.INPUT

    @property
    def dependencies(self) -> list[str]:
        """Dependency keys of the calculation (empty for inputs)."""
        return list(self.calculation.dependencies) if self.calculation is not None else []

    @property
    def label(self) -> str:
        """Display name, falling back to the key."""
        return self.name or self.key


@dataclass(frozen=True)
class ScopeFilter:
    """Case scope used to select applicable slots.

    A slot applies when (it is jurisdiction-global or matches the case's
    jurisdiction) and (it is domain-global or matches the case's domain).
    A None part on the filter leaves that dimension unfiltered.
    """

    jurisdiction_id: str | None = None
    domain_id: str | None = None

    def matches(self, slot: Slot) -> bool:
        """Return True if the slot applies within this scope."""
        scope = slot.scope
        if scope is None:
            return True
        if self.jurisdiction_id is not None and scope.jurisdiction_id not in (
            None,
            self.jurisdiction_id,
        ):
            return False
        return not (
            self.domain_id is not None and scope.domain_id not in (None, self.domain_id)
        )

