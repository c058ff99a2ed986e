"""Run a form's rules against submitted data and raise queries for failures.

Each call is one synchronous pass:

    for rule in active rules:
        resolve the value (missing fields are skipped, except required
        rules for fields the form is known to store)
        evaluate
        on failure: report, and optionally find-or-create a query

Rule evaluation never fails the call; database errors outside query
creation do.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from edcrules.core.values import MISSING, FieldValue
from edcrules.queries.creator import QueryCreator
from edcrules.queries.types import QueryRequest
from edcrules.rules.evaluator import RuleEvaluator
from edcrules.rules.matching import data_point_for, field_storage_key, matches_field, resolve_field
from edcrules.rules.repository import RuleRepository
from edcrules.rules.types import Rule, RuleKind, Severity
from edcrules.storage.lookup import DataPointLookup

logger = logging.getLogger(__name__)

FIELD_OPERATIONS = ("create", "update", "delete")


@dataclass
class ValidationOptions:
    """Context of a validation call.

    Queries are only raised when create_queries is set and both study_id
    and user_id are known.
    """

    create_queries: bool = False
    study_id: int | None = None
    subject_id: int | None = None
    instance_id: int | None = None
    user_id: int | None = None
    form_version_id: int | None = None

    @property
    def raises_queries(self) -> bool:
        return self.create_queries and self.study_id is not None and self.user_id is not None


@dataclass
class ValidationIssue:
    field_path: str
    message: str
    severity: Severity
    rule_id: int | None = None
    rule_name: str | None = None
    query_id: int | None = None
    data_point_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fieldPath": self.field_path,
            "message": self.message,
            "severity": self.severity.value,
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "queryId": self.query_id,
            "itemDataId": self.data_point_id,
        }


@dataclass
class FormValidationResult:
    valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    queries_created: int = 0

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity == Severity.ERROR:
            self.errors.append(issue)
            self.valid = False
        else:
            self.warnings.append(issue)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "queriesCreated": self.queries_created,
        }


class ValidationOrchestrator:
    def __init__(
        self,
        repository: RuleRepository,
        evaluator: RuleEvaluator,
        lookup: DataPointLookup,
        queries: QueryCreator | None = None,
    ):
        self._repository = repository
        self._evaluator = evaluator
        self._lookup = lookup
        self._queries = queries

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def validate_form_data(
        self,
        form_id: int,
        form_data: Mapping[str, Any],
        options: ValidationOptions | None = None,
        storage: Mapping[str, int] | None = None,
    ) -> FormValidationResult:
        """Validate a full form submission."""
        options = options or ValidationOptions()
        if storage is None:
            storage = self._storage_map(options)
        result = FormValidationResult()

        for rule in self._active_rules(form_id, options):
            value = resolve_field(form_data, rule, storage)
            if value is MISSING:
                if rule.kind == RuleKind.REQUIRED and self._is_stored_field(rule, storage):
                    value = FieldValue.of(None)
                else:
                    logger.debug("Field %s not in payload, skipping rule %s", rule.field_path, rule.name)
                    continue
            self._check(rule, value, form_data, options, storage, result)

        logger.debug(
            "Validated form %s: %d errors, %d warnings, %d queries created",
            form_id,
            len(result.errors),
            len(result.warnings),
            result.queries_created,
        )
        return result

    def validate_field_change(
        self,
        form_id: int,
        field_path: str,
        value: Any,
        form_data: Mapping[str, Any] | None = None,
        operation: str = "update",
        field_id: int | None = None,
        options: ValidationOptions | None = None,
    ) -> FormValidationResult:
        """Validate one changed field against the rules that govern it.

        A delete validates the field as empty.
        """
        if operation not in FIELD_OPERATIONS:
            raise ValueError(f"Unknown field operation: {operation}")
        options = options or ValidationOptions()
        storage = self._storage_map(options)
        if operation == "delete":
            value = None
        all_values = {**(form_data or {}), field_path: value}
        result = FormValidationResult()

        for rule in self._active_rules(form_id, options):
            if matches_field(rule, field_path, field_id, storage):
                self._check(rule, FieldValue.of(value), all_values, options, storage, result)
        return result

    def validate_form_instance(
        self,
        instance_id: int,
        create_queries: bool = False,
        user_id: int | None = None,
    ) -> FormValidationResult:
        """Validate the values stored for a form instance.

        Raises:
            LookupError: If the instance does not exist
        """
        snapshot = self._lookup.load_instance(instance_id)
        if snapshot is None:
            raise LookupError(f"Form instance {instance_id} not found")
        options = ValidationOptions(
            create_queries=create_queries,
            study_id=snapshot.study_id,
            subject_id=snapshot.subject_id,
            instance_id=instance_id,
            user_id=user_id,
            form_version_id=snapshot.form_version_id,
        )
        return self.validate_form_data(
            snapshot.form_id, snapshot.form_data, options, snapshot.storage_id_map
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _active_rules(self, form_id: int, options: ValidationOptions) -> list[Rule]:
        rules = self._repository.rules_for_form(form_id, options.user_id)
        return [
            rule
            for rule in rules
            if rule.active
            and (
                rule.form_version_id is None
                or options.form_version_id is None
                or rule.form_version_id == options.form_version_id
            )
        ]

    def _storage_map(self, options: ValidationOptions) -> Mapping[str, int]:
        if options.instance_id is None:
            return {}
        return self._lookup.storage_id_map(options.instance_id)

    @staticmethod
    def _is_stored_field(rule: Rule, storage: Mapping[str, int]) -> bool:
        if rule.field_id is not None and field_storage_key(rule.field_id) in storage:
            return True
        return data_point_for(rule.field_path, storage) is not None

    def _check(
        self,
        rule: Rule,
        value: FieldValue,
        all_values: Mapping[str, Any],
        options: ValidationOptions,
        storage: Mapping[str, int],
        result: FormValidationResult,
    ) -> None:
        outcome = self._evaluator.apply(rule, value, all_values)
        if outcome.valid:
            return

        issue = ValidationIssue(
            field_path=rule.field_path,
            message=rule.message,
            severity=rule.severity,
            rule_id=rule.id,
            rule_name=rule.name,
            data_point_id=data_point_for(rule.field_path, storage, rule.field_id),
        )
        if options.raises_queries and self._queries is not None:
            created = self._queries.create_or_reuse(
                QueryRequest(
                    rule_name=rule.name,
                    field_path=rule.field_path,
                    value=value.as_text(),
                    message=issue.message,
                    severity=rule.severity,
                    study_id=options.study_id,
                    reporter_user_id=options.user_id,
                    form_id=rule.form_id,
                    instance_id=options.instance_id,
                    subject_id=options.subject_id,
                    data_point_id=issue.data_point_id,
                )
            )
            if created is not None:
                issue = replace(issue, query_id=created.query_id)
                if created.created:
                    result.queries_created += 1
        result.add(issue)
