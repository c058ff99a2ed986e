"""Core types for validation rules."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from edcrules.core.values import as_number


class RuleKind(Enum):
    """Kinds of validation rule. The rule evaluator handles each one."""

    REQUIRED = "required"
    RANGE = "range"
    FORMAT = "format"
    CONSISTENCY = "consistency"
    BUSINESS_LOGIC = "business_logic"
    CROSS_FORM = "cross_form"
    FORMULA = "formula"


class Severity(Enum):
    """Rule severity.

    ERROR: flags the data as invalid and raises a hard query
    WARNING: tracked as an annotation, does not make the form invalid
    """

    ERROR = "error"
    WARNING = "warning"


class RuleOrigin(Enum):
    """Where a rule was loaded from."""

    CUSTOM = "custom"
    LEGACY_ITEM = "legacy_item"
    NATIVE = "native"


COMPARISON_OPERATORS = ("==", "===", "!=", "!==", ">", "<", ">=", "<=")


@dataclass(frozen=True)
class Rule:
    """A declarative validation rule for one form field.

    Attributes:
        id: Rule identifier (native rules are offset to avoid collisions)
        form_id: Owning form
        name: Display name, used in query descriptions
        kind: Rule kind
        field_path: Locator for the value (dotted path, bare name or field id)
        severity: ERROR or WARNING
        error_message: Message reported when the rule fails
        warning_message: Message used for warnings, falls back to error_message
        active: Inactive rules are loaded but never applied
        form_version_id: Optional form version the rule is scoped to
        field_id: Optional stable field (item) identifier
        min_value, max_value: Inclusive bounds for range rules (number or ISO date)
        pattern: Regex or `=` formula for format and formula rules
        format_type: Semantic format key, takes precedence over pattern
        operator, compare_field_path: Consistency rule comparison
        custom_expression: Formula or expression for formula / business rules
        origin: Source the rule was loaded from
    """

    id: int | None
    form_id: int
    name: str
    kind: RuleKind
    field_path: str
    severity: Severity = Severity.ERROR
    error_message: str = ""
    warning_message: str | None = None
    active: bool = True
    description: str | None = None
    form_version_id: int | None = None
    field_id: int | None = None
    min_value: float | str | None = None
    max_value: float | str | None = None
    pattern: str | None = None
    format_type: str | None = None
    operator: str | None = None
    compare_field_path: str | None = None
    custom_expression: str | None = None
    origin: RuleOrigin = RuleOrigin.CUSTOM
    created_by: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def key(self) -> tuple[str, RuleKind]:
        """Identity used when merging rule sources."""
        return (self.field_path, self.kind)

    @property
    def message(self) -> str:
        """Message to report for a failure of this rule's severity."""
        if self.severity == Severity.WARNING and self.warning_message:
            return self.warning_message
        return self.error_message or f"{self.name} failed"

    def with_changes(self, **changes: Any) -> "Rule":
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row: Any, origin: RuleOrigin = RuleOrigin.CUSTOM) -> "Rule":
        """Build a rule from a validation_rules row mapping."""
        return cls(
            id=row["id"],
            form_id=row["form_id"],
            form_version_id=row["form_version_id"],
            field_id=row["field_id"],
            name=row["name"],
            description=row["description"],
            kind=RuleKind(row["kind"]),
            field_path=row["field_path"],
            severity=Severity(row["severity"]),
            error_message=row["error_message"] or "",
            warning_message=row["warning_message"],
            active=bool(row["active"]),
            min_value=parse_bound(row["min_value"]),
            max_value=parse_bound(row["max_value"]),
            pattern=row["pattern"],
            format_type=row["format_type"],
            operator=row["operator"],
            compare_field_path=row["compare_field_path"],
            custom_expression=row["custom_expression"],
            origin=origin,
            created_by=row["created_by"],
            created_at=_stamp(row["created_at"]),
            updated_at=_stamp(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "formId": self.form_id,
            "formVersionId": self.form_version_id,
            "fieldId": self.field_id,
            "name": self.name,
            "description": self.description,
            "ruleType": self.kind.value,
            "fieldPath": self.field_path,
            "severity": self.severity.value,
            "errorMessage": self.error_message,
            "warningMessage": self.warning_message,
            "active": self.active,
            "minValue": self.min_value,
            "maxValue": self.max_value,
            "pattern": self.pattern,
            "formatType": self.format_type,
            "operator": self.operator,
            "compareFieldPath": self.compare_field_path,
            "customExpression": self.custom_expression,
            "source": self.origin.value,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def parse_bound(raw: Any) -> float | str | None:
    """Read a stored range bound: numbers become floats, dates stay text."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        number = as_number(raw)
        return number if number is not None else raw
    return float(raw)


def format_bound(bound: float | str | None) -> str | None:
    if bound is None:
        return None
    if isinstance(bound, float) and bound.is_integer():
        return str(int(bound))
    return str(bound)


def _stamp(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else value.isoformat()


class RuleNotFoundError(LookupError):
    """Raised when a rule id does not exist (or is outside the caller's scope)."""

    def __init__(self, rule_id: int):
        self.rule_id = rule_id
        super().__init__(f"Validation rule {rule_id} not found")


class RuleAccessDenied(PermissionError):
    """Raised under the DENY scope policy for forms outside the caller's organization."""

    def __init__(self, form_id: int, user_id: int | None):
        self.form_id = form_id
        self.user_id = user_id
        super().__init__(f"User {user_id} may not read rules for form {form_id}")
