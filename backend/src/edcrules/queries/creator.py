"""Turn rule failures into de-duplicated, routed queries.

Find-or-create runs in one transaction: an open root query already linked
to the data point is reused, otherwise a new query is inserted, assigned
and linked to the data point, the form instance and the subject. Two
concurrent validations of the same field can both miss the existing query
and insert a duplicate; that race is accepted.
"""

import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from edcrules.interfaces import AuditRecorder
from edcrules.persistence.session import utc_now
from edcrules.queries.store import QueryStore
from edcrules.queries.types import QueryCreationOutcome, QueryRequest, ResolutionState
from edcrules.workflow.assignee import AssigneeResolver

logger = logging.getLogger(__name__)

QUERY_CREATED_EVENT = "QUERY_CREATED"


class QueryCreator:
    def __init__(
        self,
        engine: Engine,
        assignees: AssigneeResolver,
        audit: AuditRecorder | None = None,
        store: QueryStore | None = None,
    ):
        self._engine = engine
        self._assignees = assignees
        self._audit = audit
        self._store = store or QueryStore(engine)

    def create_or_reuse(self, request: QueryRequest) -> QueryCreationOutcome | None:
        """Return the query for a failure, or None if it could not be stored."""
        try:
            with self._engine.begin() as conn:
                outcome = self._find_or_insert(request, conn)
        except SQLAlchemyError:
            logger.exception(
                "Query creation for rule %r on %s rolled back", request.rule_name, request.field_path
            )
            return None

        if outcome.created:
            self._record_audit(request, outcome)
        return outcome

    def _find_or_insert(self, request: QueryRequest, conn: Connection) -> QueryCreationOutcome:
        if request.data_point_id is not None:
            existing = self._store.open_queries_for_data_point(request.data_point_id, conn)
            if existing:
                query = existing[0]
                logger.info(
                    "Reusing open query %s on data point %s", query.id, request.data_point_id
                )
                return QueryCreationOutcome(query.id, False, query.assigned_user_id)

        assignee = request.assignee_user_id
        if assignee is None:
            assignee = self._assignees.resolve_assignee(
                request.form_id, request.study_id, request.instance_id, conn
            )

        now = utc_now()
        query_id = conn.execute(
            text("""
                INSERT INTO queries
                    (parent_id, kind, resolution_state, severity, description, detailed_notes,
                     entity_type, study_id, subject_id, owner_id, assigned_user_id,
                     created_at, updated_at)
                VALUES
                    (NULL, :kind, :state, :severity, :description, :notes,
                     'itemData', :study_id, :subject_id, :owner_id, :assignee,
                     :now, :now)
                RETURNING id
            """),
            {
                "kind": request.kind.value,
                "state": ResolutionState.NEW.value,
                "severity": request.severity.value,
                "description": request.description,
                "notes": request.detailed_notes,
                "study_id": request.study_id,
                "subject_id": request.subject_id,
                "owner_id": request.reporter_user_id,
                "assignee": assignee,
                "now": now,
            },
        ).scalar_one()

        self._link(query_id, request, conn)
        logger.info(
            "Created %s query %s for %s (assigned to %s)",
            request.kind.value,
            query_id,
            request.field_path,
            assignee,
        )
        return QueryCreationOutcome(query_id, True, assignee)

    @staticmethod
    def _link(query_id: int, request: QueryRequest, conn: Connection) -> None:
        if request.data_point_id is not None:
            conn.execute(
                text("""
                    INSERT INTO query_data_points (query_id, data_point_id, column_name)
                    VALUES (:query_id, :target, 'value')
                """),
                {"query_id": query_id, "target": request.data_point_id},
            )
        if request.instance_id is not None:
            conn.execute(
                text("""
                    INSERT INTO query_instances (query_id, instance_id, column_name)
                    VALUES (:query_id, :target, :column)
                """),
                {"query_id": query_id, "target": request.instance_id, "column": request.field_path},
            )
        if request.subject_id is not None:
            conn.execute(
                text("""
                    INSERT INTO query_subjects (query_id, subject_id, column_name)
                    VALUES (:query_id, :target, 'value')
                """),
                {"query_id": query_id, "target": request.subject_id},
            )

    def _record_audit(self, request: QueryRequest, outcome: QueryCreationOutcome) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(
                QUERY_CREATED_EVENT,
                "query",
                outcome.query_id,
                new_value={
                    "description": request.description,
                    "fieldPath": request.field_path,
                    "severity": request.severity.value,
                    "assignedUserId": outcome.assigned_user_id,
                },
                reason="Validation rule failure",
                user_id=request.reporter_user_id,
            )
        except Exception:
            logger.warning("Could not record audit event for query %s", outcome.query_id, exc_info=True)
