"""Rule management: CRUD with audit, listings and rule trials."""

import logging
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Engine

from edcrules.interfaces import AuditRecorder
from edcrules.management.requests import CreateRuleRequest, RuleTrialRequest, UpdateRuleRequest
from edcrules.persistence.session import connection
from edcrules.rules.evaluator import RuleEvaluator, RuleOutcome
from edcrules.rules.repository import RuleRepository
from edcrules.rules.store import RuleStore, new_rule
from edcrules.rules.types import Rule, RuleAccessDenied, RuleNotFoundError

logger = logging.getLogger(__name__)

RULE_ENTITY = "validation_rule"
STUDY_FALLBACK_LIMIT = 50


class RuleManagementService:
    """Management surface over the rule store.

    Mutations validate their payload with pydantic (raising
    pydantic.ValidationError), refuse forms outside the caller's
    organization and record one audit event each.
    """

    def __init__(
        self,
        engine: Engine,
        store: RuleStore,
        repository: RuleRepository,
        evaluator: RuleEvaluator,
        audit: AuditRecorder | None = None,
    ):
        self._engine = engine
        self._store = store
        self._repository = repository
        self._evaluator = evaluator
        self._audit = audit

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_rule(self, payload: Mapping[str, Any] | CreateRuleRequest, user_id: int | None = None) -> Rule:
        request = payload if isinstance(payload, CreateRuleRequest) else CreateRuleRequest.model_validate(payload)
        self._require_visible(request.form_id, user_id)
        rule = new_rule(
            request.form_id,
            request.name,
            request.rule_type,
            request.field_path,
            request.severity,
            created_by=user_id,
            **request.rule_attributes(),
        )
        created = self._store.create(rule)
        self._record("VALIDATION_RULE_CREATED", created.id, None, created.to_dict(), user_id)
        return created

    def update_rule(
        self, rule_id: int, payload: Mapping[str, Any] | UpdateRuleRequest, user_id: int | None = None
    ) -> Rule:
        request = payload if isinstance(payload, UpdateRuleRequest) else UpdateRuleRequest.model_validate(payload)
        current = self._owned_rule(rule_id, user_id)
        updated = self._store.update(rule_id, request.changes())
        self._record("VALIDATION_RULE_UPDATED", rule_id, current.to_dict(), updated.to_dict(), user_id)
        return updated

    def toggle_rule(self, rule_id: int, active: bool | None = None, user_id: int | None = None) -> Rule:
        """Set a rule's active flag, or flip it when active is None."""
        current = self._owned_rule(rule_id, user_id)
        target = (not current.active) if active is None else active
        updated = self._store.set_active(rule_id, target)
        event = "VALIDATION_RULE_ACTIVATED" if target else "VALIDATION_RULE_DEACTIVATED"
        self._record(event, rule_id, {"active": current.active}, {"active": target}, user_id)
        return updated

    def delete_rule(self, rule_id: int, user_id: int | None = None) -> Rule:
        self._owned_rule(rule_id, user_id)
        deleted = self._store.delete(rule_id)
        self._record("VALIDATION_RULE_DELETED", rule_id, deleted.to_dict(), None, user_id)
        return deleted

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_rule(self, rule_id: int, user_id: int | None = None) -> Rule:
        """Fetch a custom rule. Hidden forms report the rule as not found."""
        rule = self._store.get(rule_id)
        if rule is None or not self._repository.check_scope(rule.form_id, user_id):
            raise RuleNotFoundError(rule_id)
        return rule

    def list_rules_for_form(self, form_id: int, user_id: int | None = None) -> list[Rule]:
        return self._repository.rules_for_form(form_id, user_id)

    def list_rules_for_instance(self, instance_id: int, user_id: int | None = None) -> list[Rule]:
        return self._repository.rules_for_instance(instance_id, user_id)

    def list_rules_for_study(self, study_id: int, user_id: int | None = None) -> list[dict[str, Any]]:
        """Rules grouped by form for every form of a study.

        A study with no forms assigned falls back to the active forms the
        caller's organization can see.
        """
        forms = self._study_forms(study_id)
        if not forms:
            logger.info("Study %s has no forms assigned, listing available forms", study_id)
            forms = self._available_forms(user_id)

        listing = []
        for form in forms:
            rules = self._repository.rules_for_form(form["id"], user_id)
            listing.append(
                {
                    "formId": form["id"],
                    "formName": form["name"],
                    "rules": [rule.to_dict() for rule in rules],
                }
            )
        return listing

    def test_rule(self, payload: Mapping[str, Any] | RuleTrialRequest) -> RuleOutcome:
        """Apply an unsaved rule to a value."""
        request = payload if isinstance(payload, RuleTrialRequest) else RuleTrialRequest.model_validate(payload)
        attributes = request.model_dump(
            exclude={"rule_type", "name", "field_path", "severity", "value", "all_values"}
        )
        attributes["error_message"] = attributes["error_message"] or ""
        rule = new_rule(0, request.name, request.rule_type, request.field_path, request.severity, **attributes)
        all_values = {**request.all_values, request.field_path: request.value}
        return self._evaluator.apply(rule, request.value, all_values)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_visible(self, form_id: int, user_id: int | None) -> None:
        if not self._repository.is_visible(form_id, user_id):
            raise RuleAccessDenied(form_id, user_id)

    def _owned_rule(self, rule_id: int, user_id: int | None) -> Rule:
        rule = self._store.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        self._require_visible(rule.form_id, user_id)
        return rule

    def _study_forms(self, study_id: int) -> list[Any]:
        with connection(self._engine) as c:
            return c.execute(
                text("""
                    SELECT f.id, f.name
                    FROM study_forms s
                    INNER JOIN forms f ON f.id = s.form_id
                    WHERE s.study_id = :study_id
                    ORDER BY f.name
                """),
                {"study_id": study_id},
            ).mappings().all()

    def _available_forms(self, user_id: int | None) -> list[Any]:
        with connection(self._engine) as c:
            forms = c.execute(
                text("""
                    SELECT id, name FROM forms
                    WHERE status = 'available'
                    ORDER BY name
                """)
            ).mappings().all()
        visible = [form for form in forms if self._repository.is_visible(form["id"], user_id)]
        return visible[:STUDY_FALLBACK_LIMIT]

    def _record(
        self, event: str, rule_id: int | None, old_value: Any, new_value: Any, user_id: int | None
    ) -> None:
        if self._audit is None:
            return
        self._audit.record(event, RULE_ENTITY, rule_id, old_value, new_value, None, user_id)
