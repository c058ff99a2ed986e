"""Query (discrepancy note) types."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from edcrules.rules.types import Severity


class QueryKind(Enum):
    FAILED_VALIDATION = "failed_validation"
    ANNOTATION = "annotation"
    QUERY = "query"

    @classmethod
    def for_severity(cls, severity: Severity) -> "QueryKind":
        return cls.FAILED_VALIDATION if severity == Severity.ERROR else cls.ANNOTATION


class ResolutionState(Enum):
    """Lifecycle of a query. Closed and Not Applicable are terminal."""

    NEW = "New"
    UPDATED = "Updated"
    RESOLUTION_PROPOSED = "Resolution Proposed"
    CLOSED = "Closed"
    NOT_APPLICABLE = "Not Applicable"

    @property
    def is_terminal(self) -> bool:
        return self in (ResolutionState.CLOSED, ResolutionState.NOT_APPLICABLE)

    def can_transition_to(self, target: "ResolutionState") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[ResolutionState, set[ResolutionState]] = {
    ResolutionState.NEW: {
        ResolutionState.UPDATED,
        ResolutionState.RESOLUTION_PROPOSED,
        ResolutionState.CLOSED,
        ResolutionState.NOT_APPLICABLE,
    },
    ResolutionState.UPDATED: {
        ResolutionState.RESOLUTION_PROPOSED,
        ResolutionState.CLOSED,
        ResolutionState.NOT_APPLICABLE,
    },
    ResolutionState.RESOLUTION_PROPOSED: {
        ResolutionState.UPDATED,
        ResolutionState.CLOSED,
        ResolutionState.NOT_APPLICABLE,
    },
    ResolutionState.CLOSED: set(),
    ResolutionState.NOT_APPLICABLE: set(),
}

TERMINAL_STATES = tuple(state.value for state in ResolutionState if state.is_terminal)


@dataclass
class QueryRequest:
    """Everything needed to raise a query for one failed rule.

    Attributes:
        rule_name: Rule display name, used in the description
        field_path: Field the rule targets
        value: Offending value, rendered into the notes
        message: Error or warning message of the rule
        severity: Rule severity, decides the query kind
        study_id: Study the data belongs to
        reporter_user_id: User whose save triggered validation
        form_id, instance_id, subject_id: Context for routing and linking
        data_point_id: Precise stored value, enables de-duplication
        assignee_user_id: Explicit assignee, overrides workflow routing
    """

    rule_name: str
    field_path: str
    value: Any
    message: str
    severity: Severity
    study_id: int
    reporter_user_id: int
    form_id: int | None = None
    instance_id: int | None = None
    subject_id: int | None = None
    data_point_id: int | None = None
    assignee_user_id: int | None = None

    @property
    def kind(self) -> QueryKind:
        return QueryKind.for_severity(self.severity)

    @property
    def description(self) -> str:
        label = "Error" if self.severity == Severity.ERROR else "Warning"
        return f"Validation {label}: {self.rule_name}"[:255]

    @property
    def detailed_notes(self) -> str:
        label = "Error" if self.severity == Severity.ERROR else "Warning"
        value = "" if self.value is None else self.value
        return (
            f"Field: {self.field_path}\n"
            f"Value: {value}\n"
            f"{label}: {self.message}\n"
            f"Severity: {self.severity.value}"
        )


@dataclass(frozen=True)
class QueryCreationOutcome:
    """Query linked to a failure. created is False when an open query was reused."""

    query_id: int
    created: bool
    assigned_user_id: int | None = None


class InvalidTransitionError(ValueError):
    def __init__(self, current: ResolutionState, target: ResolutionState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move query from {current.value} to {target.value}")
