"""Shared value types for form payload inspection."""

from edcrules.core.values import (
    MISSING,
    FieldValue,
    Missing,
    ValueKind,
    as_number,
    as_timestamp,
    is_date_like,
)

__all__ = [
    "MISSING",
    "FieldValue",
    "Missing",
    "ValueKind",
    "as_number",
    "as_timestamp",
    "is_date_like",
]
