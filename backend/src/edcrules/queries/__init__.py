"""Validation queries: creation, de-duplication and lifecycle."""

from edcrules.queries.creator import QUERY_CREATED_EVENT, QueryCreator
from edcrules.queries.store import Query, QueryStore
from edcrules.queries.types import (
    TERMINAL_STATES,
    InvalidTransitionError,
    QueryCreationOutcome,
    QueryKind,
    QueryRequest,
    ResolutionState,
)

__all__ = [
    "QUERY_CREATED_EVENT",
    "TERMINAL_STATES",
    "InvalidTransitionError",
    "Query",
    "QueryCreationOutcome",
    "QueryCreator",
    "QueryKind",
    "QueryRequest",
    "QueryStore",
    "ResolutionState",
]
