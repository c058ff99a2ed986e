"""Per-form workflow configuration.

A form can carry a global configuration row (study_id NULL) and a row per
study. Lookups prefer the study row and fall back to the global one.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from edcrules.interfaces import UserDirectory
from edcrules.persistence.session import connection, transaction, utc_now

logger = logging.getLogger(__name__)

WORKFLOW_STEPS = ("sdv", "signature", "dde")


@dataclass
class FormWorkflowConfig:
    """Workflow requirements and query routing for one form."""

    form_id: int
    study_id: int | None = None
    requires_sdv: bool = False
    requires_signature: bool = False
    requires_dde: bool = False
    query_route_to_users: list[str] = field(default_factory=list)
    query_route_to_user_ids: list[int] = field(default_factory=list)

    def requires(self, step: str) -> bool:
        if step not in WORKFLOW_STEPS:
            raise ValueError(f"Unknown workflow step: {step}")
        return getattr(self, f"requires_{step}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "formId": self.form_id,
            "studyId": self.study_id,
            "requiresSDV": self.requires_sdv,
            "requiresSignature": self.requires_signature,
            "requiresDDE": self.requires_dde,
            "queryRouteToUsers": list(self.query_route_to_users),
            "queryRouteToUserIds": list(self.query_route_to_user_ids),
        }


def _usernames(raw: Any) -> list[str]:
    """Decode the stored routing list. Tolerates a bare comma-separated string."""
    if not raw:
        return []
    decoded = raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            decoded = raw.split(",")
    if decoded is None or isinstance(decoded, dict):
        return []
    if not isinstance(decoded, list):
        decoded = [decoded]
    return [str(name).strip() for name in decoded if str(name).strip()]


class WorkflowConfigProvider:
    """Reads and writes workflow_config rows."""

    def __init__(self, engine: Engine, users: UserDirectory):
        self._engine = engine
        self._users = users

    def get_form_config(
        self, form_id: int, study_id: int | None = None, conn: Connection | None = None
    ) -> FormWorkflowConfig:
        """Effective configuration for a form; defaults when nothing is stored."""
        with connection(self._engine, conn) as c:
            row = c.execute(
                text("""
                    SELECT form_id, study_id, requires_sdv, requires_signature,
                           requires_dde, query_route_to_users
                    FROM workflow_config
                    WHERE form_id = :form_id
                      AND (study_id = :study_id OR study_id IS NULL)
                    ORDER BY CASE WHEN study_id IS NULL THEN 1 ELSE 0 END
                    LIMIT 1
                """),
                {"form_id": form_id, "study_id": study_id},
            ).mappings().first()

            if row is None:
                return FormWorkflowConfig(form_id=form_id, study_id=study_id)

            usernames = _usernames(row["query_route_to_users"])
            user_ids = self._users.user_ids_for_usernames(usernames, c) if usernames else []

        return FormWorkflowConfig(
            form_id=form_id,
            study_id=row["study_id"],
            requires_sdv=bool(row["requires_sdv"]),
            requires_signature=bool(row["requires_signature"]),
            requires_dde=bool(row["requires_dde"]),
            query_route_to_users=usernames,
            query_route_to_user_ids=user_ids,
        )

    def save_form_config(
        self,
        config: FormWorkflowConfig,
        updated_by: int | None = None,
        conn: Connection | None = None,
    ) -> FormWorkflowConfig:
        """Insert or replace the row for (form_id, study_id)."""
        params = {
            "form_id": config.form_id,
            "study_id": config.study_id,
            "requires_sdv": int(config.requires_sdv),
            "requires_signature": int(config.requires_signature),
            "requires_dde": int(config.requires_dde),
            "query_route_to_users": json.dumps(config.query_route_to_users),
            "updated_by": updated_by,
            "updated_at": utc_now(),
        }
        study_clause = "study_id IS NULL" if config.study_id is None else "study_id = :study_id"

        with transaction(self._engine, conn) as c:
            existing = c.execute(
                text(f"SELECT id FROM workflow_config WHERE form_id = :form_id AND {study_clause}"),
                params,
            ).scalar()
            if existing is None:
                c.execute(
                    text("""
                        INSERT INTO workflow_config
                            (form_id, study_id, requires_sdv, requires_signature, requires_dde,
                             query_route_to_users, updated_by, updated_at)
                        VALUES
                            (:form_id, :study_id, :requires_sdv, :requires_signature, :requires_dde,
                             :query_route_to_users, :updated_by, :updated_at)
                    """),
                    params,
                )
            else:
                c.execute(
                    text("""
                        UPDATE workflow_config
                        SET requires_sdv = :requires_sdv,
                            requires_signature = :requires_signature,
                            requires_dde = :requires_dde,
                            query_route_to_users = :query_route_to_users,
                            updated_by = :updated_by,
                            updated_at = :updated_at
                        WHERE id = :id
                    """),
                    {**params, "id": existing},
                )
            saved = self.get_form_config(config.form_id, config.study_id, c)

        logger.info("Saved workflow config for form %s (study %s)", config.form_id, config.study_id)
        return saved

    def needs_step(self, form_id: int, step: str, study_id: int | None = None) -> bool:
        """Whether the form requires sdv, signature or dde."""
        return self.get_form_config(form_id, study_id).requires(step)
