"""Request payloads for rule management.

Payloads arrive camelCased from the forms designer (`ruleType`,
`fieldPath`, `minValue`); snake_case names are accepted too.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from edcrules.rules.types import COMPARISON_OPERATORS, RuleKind, Severity, parse_bound


class RuleAttributes(BaseModel):
    """Kind-specific parameters shared by create, update and trial payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description: str | None = None
    error_message: str | None = None
    warning_message: str | None = None
    form_version_id: int | None = None
    field_id: int | None = Field(default=None, validation_alias=AliasChoices("fieldId", "itemId"))
    min_value: float | str | None = None
    max_value: float | str | None = None
    pattern: str | None = None
    format_type: str | None = None
    operator: str | None = None
    compare_field_path: str | None = None
    custom_expression: str | None = None

    @field_validator("operator")
    @classmethod
    def check_operator(cls, value: str | None) -> str | None:
        if value is not None and value not in COMPARISON_OPERATORS:
            raise ValueError(f"operator must be one of {', '.join(COMPARISON_OPERATORS)}")
        return value

    @field_validator("min_value", "max_value")
    @classmethod
    def normalize_bound(cls, value: float | str | None) -> float | str | None:
        return parse_bound(value)


class CreateRuleRequest(RuleAttributes):
    form_id: int
    name: str = Field(min_length=1)
    rule_type: RuleKind
    field_path: str = Field(min_length=1)
    severity: Severity = Severity.ERROR
    active: bool = True

    def rule_attributes(self) -> dict[str, Any]:
        """Keyword arguments for new_rule beyond the positional ones."""
        data = self.model_dump(exclude={"form_id", "name", "rule_type", "field_path", "severity"})
        data["error_message"] = data["error_message"] or ""
        return data


class UpdateRuleRequest(RuleAttributes):
    name: str | None = Field(default=None, min_length=1)
    rule_type: RuleKind | None = None
    field_path: str | None = Field(default=None, min_length=1)
    severity: Severity | None = None
    active: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Only the attributes the caller sent, keyed by Rule attribute name."""
        data = self.model_dump(exclude_unset=True)
        if "rule_type" in data:
            data["kind"] = data.pop("rule_type")
        for required in ("kind", "severity", "name", "field_path", "active"):
            if required in data and data[required] is None:
                del data[required]
        if "error_message" in data and data["error_message"] is None:
            data["error_message"] = ""
        return data


class RuleTrialRequest(RuleAttributes):
    """A rule tried against a value without storing anything."""

    rule_type: RuleKind
    name: str = "Test rule"
    field_path: str = "value"
    severity: Severity = Severity.ERROR
    value: Any = None
    all_values: dict[str, Any] = Field(default_factory=dict)
