"""Load the active rule set of a form from every rule source.

Sources, in precedence order:
1. Custom rules from the validation_rules table (authoritative)
2. Implicit rules derived from legacy item metadata: a pattern becomes a
   format rule (or a formula rule when it carries the =FORMULA: marker)
   and the required flag becomes a required rule
3. Rules of the native rule engine, when the deployment has one

Legacy and native rules are dropped when a custom rule already covers the
same (field path, kind) pair, or the same (field id, kind) pair.
"""

import logging
from typing import TYPE_CHECKING, Iterable, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from edcrules.formula import FORMULA_MARKER
from edcrules.interfaces import OrganizationDirectory
from edcrules.persistence.session import connection
from edcrules.rules.store import RuleStore
from edcrules.rules.types import Rule, RuleAccessDenied, RuleKind, RuleOrigin, Severity
from edcrules.settings import ScopePolicy

if TYPE_CHECKING:
    from edcrules.storage.lookup import DataPointLookup

logger = logging.getLogger(__name__)

# Native rule ids are shifted so they never collide with custom rule ids
NATIVE_ID_OFFSET = 100000

NATIVE_ACTION_SEVERITY = {
    "DISCREPANCY_RS": Severity.ERROR,
    "DISCREPANCY_NRS": Severity.WARNING,
    "RANDOMIZATION": Severity.ERROR,
}

# Native actions that do not validate data
NATIVE_NON_VALIDATION_ACTIONS = {"EMAIL", "HIDE", "SHOW", "INSERT", "STRATIFICATION_FACTOR"}


class RuleSource(Protocol):
    origin: RuleOrigin

    def load(self, form_id: int, conn: Connection | None = None) -> list[Rule]:
        ...


class CustomRuleSource:
    origin = RuleOrigin.CUSTOM

    def __init__(self, store: RuleStore):
        self._store = store

    def load(self, form_id: int, conn: Connection | None = None) -> list[Rule]:
        return self._store.list_for_form(form_id, conn)


class LegacyItemRuleSource:
    """Derives implicit rules from item_form_metadata."""

    origin = RuleOrigin.LEGACY_ITEM

    def __init__(self, engine: Engine):
        self._engine = engine

    def load(self, form_id: int, conn: Connection | None = None) -> list[Rule]:
        with connection(self._engine, conn) as c:
            rows = c.execute(
                text("""
                    SELECT m.item_id, m.required, m.regexp, m.regexp_error_message,
                           i.name, i.description
                    FROM item_form_metadata m
                    INNER JOIN items i ON i.id = m.item_id
                    WHERE m.form_id = :form_id
                      AND ((m.regexp IS NOT NULL AND m.regexp <> '') OR m.required = 1)
                    ORDER BY i.name
                """),
                {"form_id": form_id},
            ).mappings().all()

        rules: list[Rule] = []
        for row in rows:
            base = dict(
                id=None,
                form_id=form_id,
                field_id=row["item_id"],
                name=row["name"],
                description=row["description"],
                field_path=row["name"],
                origin=self.origin,
            )
            pattern = row["regexp"]
            if pattern:
                if pattern.upper().startswith(FORMULA_MARKER):
                    kind = RuleKind.FORMULA
                    pattern = "=" + pattern[len(FORMULA_MARKER):]
                else:
                    kind = RuleKind.FORMAT
                rules.append(
                    Rule(
                        kind=kind,
                        pattern=pattern,
                        error_message=row["regexp_error_message"] or "Invalid format",
                        **base,
                    )
                )
            if row["required"]:
                rules.append(
                    Rule(kind=RuleKind.REQUIRED, error_message="This field is required", **base)
                )
        return rules


class NativeRuleSource:
    """Reads rules authored in the native rule engine's tables."""

    origin = RuleOrigin.NATIVE

    def __init__(self, engine: Engine):
        self._engine = engine

    def load(self, form_id: int, conn: Connection | None = None) -> list[Rule]:
        with connection(self._engine, conn) as c:
            rows = c.execute(
                text("""
                    SELECT id, oid, name, target, expression, action_type, message
                    FROM native_rules
                    WHERE form_id = :form_id AND status = 'active'
                    ORDER BY name, id
                """),
                {"form_id": form_id},
            ).mappings().all()

        rules: list[Rule] = []
        for row in rows:
            action = (row["action_type"] or "").upper()
            if action in NATIVE_NON_VALIDATION_ACTIONS:
                continue
            severity = NATIVE_ACTION_SEVERITY.get(action, Severity.ERROR)
            message = row["message"] or "Validation failed"
            rules.append(
                Rule(
                    id=row["id"] + NATIVE_ID_OFFSET,
                    form_id=form_id,
                    name=row["name"] or "Native rule",
                    kind=RuleKind.BUSINESS_LOGIC,
                    field_path=row["target"] or "",
                    severity=severity,
                    error_message=message,
                    warning_message=message if severity == Severity.WARNING else None,
                    custom_expression=row["expression"],
                    origin=self.origin,
                    extra={"nativeRuleId": row["id"], "nativeOid": row["oid"]},
                )
            )
        return rules


def merge_rules(custom: list[Rule], *others: Iterable[Rule]) -> list[Rule]:
    """Merge rule sources, keeping custom rules on conflicting pairs."""
    path_keys = {rule.key for rule in custom}
    field_keys = {(rule.field_id, rule.kind) for rule in custom if rule.field_id is not None}
    expressions = {rule.custom_expression for rule in custom if rule.custom_expression}

    merged = list(custom)
    for source in others:
        for rule in source:
            if rule.key in path_keys:
                continue
            if rule.field_id is not None and (rule.field_id, rule.kind) in field_keys:
                continue
            if rule.origin == RuleOrigin.NATIVE and rule.custom_expression in expressions:
                continue
            merged.append(rule)
            if rule.custom_expression:
                expressions.add(rule.custom_expression)
    return merged


class RuleRepository:
    """Merged, organization-scoped view over all rule sources."""

    def __init__(
        self,
        custom: CustomRuleSource,
        implicit_sources: list[RuleSource],
        organizations: OrganizationDirectory | None = None,
        scope_policy: ScopePolicy = ScopePolicy.HIDE,
        instances: "DataPointLookup | None" = None,
    ):
        self._custom = custom
        self._implicit = implicit_sources
        self._instances = instances
        self._organizations = organizations
        self._scope_policy = scope_policy

    def is_visible(self, form_id: int, caller_user_id: int | None, conn: Connection | None = None) -> bool:
        """Whether the caller's organization owns the form.

        Callers without an organization, and forms without a known owner,
        are not scoped.
        """
        if caller_user_id is None or self._organizations is None:
            return True
        colleagues = self._organizations.colleague_ids(caller_user_id, conn)
        if colleagues is None:
            return True
        owner = self._organizations.form_owner(form_id, conn)
        return owner is None or owner in colleagues

    def check_scope(self, form_id: int, caller_user_id: int | None, conn: Connection | None = None) -> bool:
        """Apply the scope policy. False means "show nothing"."""
        if self.is_visible(form_id, caller_user_id, conn):
            return True
        if self._scope_policy == ScopePolicy.DENY:
            raise RuleAccessDenied(form_id, caller_user_id)
        logger.info("Form %s is outside the organization of user %s, hiding its rules", form_id, caller_user_id)
        return False

    def rules_for_form(
        self,
        form_id: int,
        caller_user_id: int | None = None,
        conn: Connection | None = None,
    ) -> list[Rule]:
        """All rules of a form, active and inactive, custom rules first."""
        if not self.check_scope(form_id, caller_user_id, conn):
            return []
        custom = self._custom.load(form_id, conn)
        implicit = [source.load(form_id, conn) for source in self._implicit]
        rules = merge_rules(custom, *implicit)
        logger.debug(
            "Loaded %d rules for form %s (%d custom)", len(rules), form_id, len(custom)
        )
        return rules

    def rules_for_instance(
        self,
        instance_id: int,
        caller_user_id: int | None = None,
        conn: Connection | None = None,
    ) -> list[Rule]:
        """Rules of the form a stored instance was created from."""
        if self._instances is None:
            raise RuntimeError("RuleRepository was built without an instance lookup")
        form_id = self._instances.form_id_for_instance(instance_id, conn)
        if form_id is None:
            logger.debug("Form instance %s not found", instance_id)
            return []
        return self.rules_for_form(form_id, caller_user_id, conn)
