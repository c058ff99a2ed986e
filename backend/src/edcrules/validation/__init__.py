"""Form validation passes."""

from edcrules.validation.orchestrator import (
    FIELD_OPERATIONS,
    FormValidationResult,
    ValidationIssue,
    ValidationOptions,
    ValidationOrchestrator,
)

__all__ = [
    "FIELD_OPERATIONS",
    "FormValidationResult",
    "ValidationIssue",
    "ValidationOptions",
    "ValidationOrchestrator",
]
