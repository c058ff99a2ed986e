"""Persistence for custom validation rules.

Rules live in the validation_rules table. Range bounds are stored as text
so one column holds either a number or an ISO date.

Creating a format or required rule for a known field also mirrors the
constraint into the legacy item metadata, in the same transaction, so
screens that only read item metadata enforce it too.
"""

import logging
from dataclasses import fields
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from edcrules.formats import FormatRegistry, default_registry
from edcrules.persistence.session import connection, transaction, utc_now
from edcrules.rules.types import Rule, RuleKind, RuleNotFoundError, Severity, format_bound

logger = logging.getLogger(__name__)

_COLUMNS = (
    "form_id", "form_version_id", "field_id", "name", "description", "kind",
    "field_path", "severity", "error_message", "warning_message", "active",
    "min_value", "max_value", "pattern", "format_type", "operator",
    "compare_field_path", "custom_expression", "created_by", "created_at",
    "updated_at",
)

_MUTABLE = {f.name for f in fields(Rule)} - {"id", "form_id", "origin", "created_by", "created_at", "updated_at", "extra"}


def _params(rule: Rule) -> dict[str, Any]:
    return {
        "form_id": rule.form_id,
        "form_version_id": rule.form_version_id,
        "field_id": rule.field_id,
        "name": rule.name,
        "description": rule.description,
        "kind": rule.kind.value,
        "field_path": rule.field_path,
        "severity": rule.severity.value,
        "error_message": rule.error_message,
        "warning_message": rule.warning_message,
        "active": 1 if rule.active else 0,
        "min_value": format_bound(rule.min_value),
        "max_value": format_bound(rule.max_value),
        "pattern": rule.pattern,
        "format_type": rule.format_type,
        "operator": rule.operator,
        "compare_field_path": rule.compare_field_path,
        "custom_expression": rule.custom_expression,
        "created_by": rule.created_by,
        "created_at": rule.created_at,
        "updated_at": rule.updated_at,
    }


class RuleStore:
    """CRUD for custom rules. Dialect-neutral via SQLAlchemy Core."""

    def __init__(self, engine: Engine, formats: FormatRegistry | None = None):
        self._engine = engine
        self._formats = formats or default_registry()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, rule_id: int, conn: Connection | None = None) -> Rule | None:
        with connection(self._engine, conn) as c:
            row = c.execute(
                text("SELECT * FROM validation_rules WHERE id = :id"), {"id": rule_id}
            ).mappings().first()
        return Rule.from_row(row) if row else None

    def list_for_form(self, form_id: int, conn: Connection | None = None) -> list[Rule]:
        """All custom rules of a form, active or not, ordered by name."""
        with connection(self._engine, conn) as c:
            rows = c.execute(
                text("SELECT * FROM validation_rules WHERE form_id = :form_id ORDER BY name, id"),
                {"form_id": form_id},
            ).mappings().all()
        return [Rule.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, rule: Rule, conn: Connection | None = None) -> Rule:
        """Insert a rule and return it with its generated id and timestamps."""
        now = utc_now()
        stored = rule.with_changes(created_at=rule.created_at or now, updated_at=now)
        columns = ", ".join(_COLUMNS)
        values = ", ".join(f":{name}" for name in _COLUMNS)

        with transaction(self._engine, conn) as c:
            rule_id = c.execute(
                text(f"INSERT INTO validation_rules ({columns}) VALUES ({values}) RETURNING id"),
                _params(stored),
            ).scalar_one()
            stored = stored.with_changes(id=rule_id)
            self._mirror_to_item_metadata(stored, c)

        logger.info("Created %s rule %s on form %s", stored.kind.value, stored.id, stored.form_id)
        return stored

    def update(self, rule_id: int, changes: dict[str, Any], conn: Connection | None = None) -> Rule:
        """Apply a partial update. Unmentioned attributes keep their values.

        Raises:
            RuleNotFoundError: If the rule does not exist
            ValueError: If changes name an attribute that cannot be updated
        """
        unknown = set(changes) - _MUTABLE
        if unknown:
            raise ValueError(f"Cannot update rule attributes: {', '.join(sorted(unknown))}")

        with transaction(self._engine, conn) as c:
            current = self.get(rule_id, c)
            if current is None:
                raise RuleNotFoundError(rule_id)
            updated = current.with_changes(**changes, updated_at=utc_now())
            assignments = ", ".join(f"{name} = :{name}" for name in _COLUMNS if name != "created_at")
            c.execute(
                text(f"UPDATE validation_rules SET {assignments} WHERE id = :id"),
                {**_params(updated), "id": rule_id},
            )
        return updated

    def set_active(self, rule_id: int, active: bool, conn: Connection | None = None) -> Rule:
        return self.update(rule_id, {"active": active}, conn)

    def delete(self, rule_id: int, conn: Connection | None = None) -> Rule:
        """Delete a rule and return what was deleted."""
        with transaction(self._engine, conn) as c:
            current = self.get(rule_id, c)
            if current is None:
                raise RuleNotFoundError(rule_id)
            c.execute(text("DELETE FROM validation_rules WHERE id = :id"), {"id": rule_id})
        logger.info("Deleted rule %s from form %s", rule_id, current.form_id)
        return current

    # ------------------------------------------------------------------
    # Legacy item metadata
    # ------------------------------------------------------------------

    def _mirror_to_item_metadata(self, rule: Rule, conn: Connection) -> None:
        if rule.field_id is None or rule.kind not in (RuleKind.FORMAT, RuleKind.REQUIRED):
            return

        if rule.kind == RuleKind.REQUIRED:
            result = conn.execute(
                text("""
                    UPDATE item_form_metadata SET required = 1
                    WHERE item_id = :item_id AND form_id = :form_id
                """),
                {"item_id": rule.field_id, "form_id": rule.form_id},
            )
        else:
            pattern = self._formats.resolve_pattern(rule.format_type) or rule.pattern
            if not pattern:
                return
            result = conn.execute(
                text("""
                    UPDATE item_form_metadata
                    SET regexp = :pattern, regexp_error_message = :message
                    WHERE item_id = :item_id AND form_id = :form_id
                """),
                {
                    "pattern": pattern,
                    "message": rule.error_message,
                    "item_id": rule.field_id,
                    "form_id": rule.form_id,
                },
            )

        if result.rowcount == 0:
            logger.debug(
                "No item metadata for field %s on form %s, rule %s not mirrored",
                rule.field_id,
                rule.form_id,
                rule.id,
            )


def new_rule(
    form_id: int,
    name: str,
    kind: RuleKind | str,
    field_path: str,
    severity: Severity | str = Severity.ERROR,
    **attributes: Any,
) -> Rule:
    """Convenience constructor accepting enum values as strings."""
    return Rule(
        id=None,
        form_id=form_id,
        name=name,
        kind=RuleKind(kind),
        field_path=field_path,
        severity=Severity(severity),
        **attributes,
    )
