"""Reads and state changes for stored queries."""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection, Engine

from edcrules.persistence.session import connection, transaction, utc_now
from edcrules.queries.types import TERMINAL_STATES, InvalidTransitionError, QueryKind, ResolutionState

logger = logging.getLogger(__name__)


@dataclass
class Query:
    id: int
    kind: QueryKind
    resolution_state: ResolutionState
    description: str
    detailed_notes: str | None
    severity: str | None
    study_id: int | None
    subject_id: int | None
    owner_id: int | None
    assigned_user_id: int | None
    parent_id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Query":
        return cls(
            id=row["id"],
            kind=QueryKind(row["kind"]),
            resolution_state=ResolutionState(row["resolution_state"]),
            description=row["description"],
            detailed_notes=row["detailed_notes"],
            severity=row["severity"],
            study_id=row["study_id"],
            subject_id=row["subject_id"],
            owner_id=row["owner_id"],
            assigned_user_id=row["assigned_user_id"],
            parent_id=row["parent_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "resolutionState": self.resolution_state.value,
            "description": self.description,
            "detailedNotes": self.detailed_notes,
            "severity": self.severity,
            "studyId": self.study_id,
            "subjectId": self.subject_id,
            "ownerId": self.owner_id,
            "assignedUserId": self.assigned_user_id,
            "parentId": self.parent_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class QueryStore:
    def __init__(self, engine: Engine):
        self._engine = engine

    def get(self, query_id: int, conn: Connection | None = None) -> Query | None:
        with connection(self._engine, conn) as c:
            row = c.execute(
                text("SELECT * FROM queries WHERE id = :id"), {"id": query_id}
            ).mappings().first()
        return Query.from_row(row) if row else None

    def open_queries_for_data_point(self, data_point_id: int, conn: Connection | None = None) -> list[Query]:
        """Root queries on a data point that are not closed or not applicable."""
        stmt = text("""
            SELECT q.*
            FROM queries q
            INNER JOIN query_data_points m ON m.query_id = q.id
            WHERE m.data_point_id = :data_point_id
              AND q.parent_id IS NULL
              AND q.resolution_state NOT IN :terminal
            ORDER BY q.id
        """).bindparams(bindparam("terminal", expanding=True))
        with connection(self._engine, conn) as c:
            rows = c.execute(
                stmt, {"data_point_id": data_point_id, "terminal": list(TERMINAL_STATES)}
            ).mappings().all()
        return [Query.from_row(row) for row in rows]

    def list_for_instance(self, instance_id: int, conn: Connection | None = None) -> list[Query]:
        with connection(self._engine, conn) as c:
            rows = c.execute(
                text("""
                    SELECT q.*
                    FROM queries q
                    INNER JOIN query_instances m ON m.query_id = q.id
                    WHERE m.instance_id = :instance_id
                    ORDER BY q.id
                """),
                {"instance_id": instance_id},
            ).mappings().all()
        return [Query.from_row(row) for row in rows]

    def transition(
        self, query_id: int, target: ResolutionState, conn: Connection | None = None
    ) -> Query:
        """Move a query to a new resolution state.

        Raises:
            LookupError: If the query does not exist
            InvalidTransitionError: If the move is not allowed
        """
        with transaction(self._engine, conn) as c:
            query = self.get(query_id, c)
            if query is None:
                raise LookupError(f"Query {query_id} not found")
            if not query.resolution_state.can_transition_to(target):
                raise InvalidTransitionError(query.resolution_state, target)
            now = utc_now()
            c.execute(
                text("UPDATE queries SET resolution_state = :state, updated_at = :now WHERE id = :id"),
                {"state": target.value, "now": now, "id": query_id},
            )
        logger.info(
            "Query %s moved from %s to %s", query_id, query.resolution_state.value, target.value
        )
        query.resolution_state = target
        query.updated_at = now
        return query
