"""SQL implementation of the audit recorder."""

import json
import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from edcrules.persistence.session import transaction, utc_now

logger = logging.getLogger(__name__)


def _serialize(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)


class SqlAuditRecorder:
    """Appends events to the audit_log table."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def record(
        self,
        event: str,
        entity_type: str,
        entity_id: int | None,
        old_value: Any = None,
        new_value: Any = None,
        reason: str | None = None,
        user_id: int | None = None,
        conn: Connection | None = None,
    ) -> None:
        with transaction(self._engine, conn) as c:
            c.execute(
                text("""
                    INSERT INTO audit_log
                        (event, entity_type, entity_id, old_value, new_value,
                         reason, user_id, created_at)
                    VALUES
                        (:event, :entity_type, :entity_id, :old_value, :new_value,
                         :reason, :user_id, :created_at)
                """),
                {
                    "event": event,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "old_value": _serialize(old_value),
                    "new_value": _serialize(new_value),
                    "reason": reason,
                    "user_id": user_id,
                    "created_at": utc_now(),
                },
            )
        logger.debug("Audit %s on %s %s", event, entity_type, entity_id)
