"""Tests for validation passes and the queries they raise."""

import pytest

from edcrules.queries import QueryKind
from edcrules.rules import Severity, new_rule
from edcrules.validation import ValidationOptions
from edcrules.workflow import FormWorkflowConfig


@pytest.fixture
def demographics(seed, services):
    """A form with a stored instance holding age 15, and an adult-age rule."""
    form_id = seed.form()
    age_item = seed.item(form_id, "age")
    instance_id = seed.instance(form_id, study_id=1, subject_id=10)
    data_point_id = seed.value(instance_id, age_item, "15")
    rule = services.rule_store.create(
        new_rule(
            form_id, "Adult age", "range", "age",
            min_value=18.0, max_value=120.0, error_message="Age must be between 18 and 120",
        )
    )
    return {
        "form_id": form_id,
        "age_item": age_item,
        "instance_id": instance_id,
        "data_point_id": data_point_id,
        "rule": rule,
    }


def query_options(demographics, user_id=99):
    return ValidationOptions(
        create_queries=True,
        study_id=1,
        subject_id=10,
        instance_id=demographics["instance_id"],
        user_id=user_id,
    )


# =============================================================================
# Full form submissions
# =============================================================================


class TestValidateFormData:
    def test_valid_submission(self, services, demographics):
        result = services.orchestrator.validate_form_data(demographics["form_id"], {"age": "42"})
        assert result.to_dict() == {"valid": True, "errors": [], "warnings": [], "queriesCreated": 0}

    def test_range_failure_reports_error(self, services, demographics):
        result = services.orchestrator.validate_form_data(demographics["form_id"], {"age": "15"})

        assert result.valid is False
        [error] = result.to_dict()["errors"]
        assert error["fieldPath"] == "age"
        assert error["severity"] == "error"
        assert error["message"] == "Age must be between 18 and 120"
        assert error["ruleId"] == demographics["rule"].id
        assert error["queryId"] is None

    def test_query_raised_once_per_data_point(self, seed, services, demographics):
        first = services.orchestrator.validate_form_data(
            demographics["form_id"], {"age": "15"}, query_options(demographics)
        )
        second = services.orchestrator.validate_form_data(
            demographics["form_id"], {"age": "15"}, query_options(demographics)
        )

        assert first.queries_created == 1
        assert second.queries_created == 0
        assert first.errors[0].query_id is not None
        assert second.errors[0].query_id == first.errors[0].query_id
        assert first.errors[0].data_point_id == demographics["data_point_id"]
        assert seed.count("queries") == 1

    def test_query_routed_by_workflow(self, seed, services, demographics):
        alice = seed.user("alice")
        seed.user("coord")
        seed.role(1, "coord", "Study Coordinator")
        services.workflow.save_form_config(
            FormWorkflowConfig(form_id=demographics["form_id"], query_route_to_users=["alice"])
        )

        result = services.orchestrator.validate_form_data(
            demographics["form_id"], {"age": "15"}, query_options(demographics)
        )

        query = services.query_store.get(result.errors[0].query_id)
        assert query.assigned_user_id == alice
        assert query.kind == QueryKind.FAILED_VALIDATION
        assert query.description == "Validation Error: Adult age"
        assert "Value: 15" in query.detailed_notes

    def test_no_queries_without_user(self, seed, services, demographics):
        options = query_options(demographics)
        options.user_id = None

        result = services.orchestrator.validate_form_data(demographics["form_id"], {"age": "15"}, options)

        assert result.valid is False
        assert result.queries_created == 0
        assert seed.count("queries") == 0

    def test_warning_does_not_invalidate(self, seed, services, demographics):
        services.rule_store.create(
            new_rule(
                demographics["form_id"], "Plausible weight", "range", "weight",
                severity=Severity.WARNING, max_value=250.0, warning_message="Please confirm weight",
            )
        )

        result = services.orchestrator.validate_form_data(
            demographics["form_id"], {"age": "40", "weight": "300"}, query_options(demographics)
        )

        assert result.valid is True
        [warning] = result.warnings
        assert warning.message == "Please confirm weight"
        assert services.query_store.get(warning.query_id).kind == QueryKind.ANNOTATION
        assert result.queries_created == 1

    def test_missing_field_skips_rule(self, services, demographics):
        result = services.orchestrator.validate_form_data(demographics["form_id"], {"weight": "80"})
        assert result.valid is True

    def test_nested_payload(self, services, demographics):
        result = services.orchestrator.validate_form_data(
            demographics["form_id"], {"demographics": {"Age": "15"}}
        )
        assert result.valid is False

    def test_inactive_rules_skipped(self, services, demographics):
        services.rule_store.set_active(demographics["rule"].id, False)
        result = services.orchestrator.validate_form_data(demographics["form_id"], {"age": "15"})
        assert result.valid is True

    def test_unevaluable_expression_on_list_answer(self, services, demographics):
        services.rule_store.create(
            new_rule(
                demographics["form_id"], "Known symptom", "business_logic", "symptoms",
                custom_expression="value in data",
            )
        )

        result = services.orchestrator.validate_form_data(
            demographics["form_id"], {"age": "40", "symptoms": ["a", "b"]}
        )

        assert result.valid is True
        assert result.errors == []

    def test_rules_scoped_to_other_version_skipped(self, services, demographics):
        services.rule_store.update(demographics["rule"].id, {"form_version_id": 2})

        other = services.orchestrator.validate_form_data(
            demographics["form_id"], {"age": "15"}, ValidationOptions(form_version_id=3)
        )
        same = services.orchestrator.validate_form_data(
            demographics["form_id"], {"age": "15"}, ValidationOptions(form_version_id=2)
        )

        assert other.valid is True
        assert same.valid is False


class TestRequiredFields:
    def test_missing_required_field_without_storage_is_skipped(self, seed, services):
        form_id = seed.form()
        seed.item(form_id, "initials", required=True)

        assert services.orchestrator.validate_form_data(form_id, {}).valid is True

    def test_missing_required_field_known_to_storage_fails(self, seed, services):
        form_id = seed.form()
        seed.item(form_id, "initials", required=True)

        result = services.orchestrator.validate_form_data(form_id, {}, storage={"initials": 7})

        [error] = result.errors
        assert error.message == "This field is required"
        assert error.data_point_id == 7

    def test_empty_required_value_fails(self, seed, services):
        form_id = seed.form()
        seed.item(form_id, "initials", required=True)

        assert services.orchestrator.validate_form_data(form_id, {"initials": ""}).valid is False


# =============================================================================
# Single field changes
# =============================================================================


class TestValidateFieldChange:
    def test_matching_rule_applied(self, services, demographics):
        result = services.orchestrator.validate_field_change(
            demographics["form_id"], "demographics.age", "15"
        )
        assert [e.field_path for e in result.errors] == ["age"]

    def test_unrelated_field_ignored(self, services, demographics):
        result = services.orchestrator.validate_field_change(demographics["form_id"], "weight", "15")
        assert result.valid is True

    def test_match_by_field_id(self, services, demographics):
        services.rule_store.update(demographics["rule"].id, {"field_id": demographics["age_item"]})
        result = services.orchestrator.validate_field_change(
            demographics["form_id"], "AGE_YRS", "15", field_id=demographics["age_item"]
        )
        assert result.valid is False

    def test_delete_validates_as_empty(self, seed, services):
        form_id = seed.form()
        seed.item(form_id, "initials", required=True)

        result = services.orchestrator.validate_field_change(form_id, "initials", "AB", operation="delete")

        assert result.valid is False

    def test_consistency_uses_sibling_values(self, services, demographics):
        services.rule_store.create(
            new_rule(
                demographics["form_id"], "Discharge after admission", "consistency", "discharge",
                operator=">=", compare_field_path="admission",
            )
        )
        result = services.orchestrator.validate_field_change(
            demographics["form_id"], "discharge", "2024-01-01", form_data={"admission": "2024-02-01"}
        )
        assert result.valid is False

    def test_unknown_operation(self, services, demographics):
        with pytest.raises(ValueError):
            services.orchestrator.validate_field_change(demographics["form_id"], "age", "1", operation="merge")


# =============================================================================
# Stored instances
# =============================================================================


class TestValidateFormInstance:
    def test_stored_values_validated(self, services, demographics):
        result = services.orchestrator.validate_form_instance(demographics["instance_id"])
        assert result.valid is False
        assert result.errors[0].data_point_id == demographics["data_point_id"]

    def test_queries_use_instance_context(self, services, demographics):
        result = services.orchestrator.validate_form_instance(
            demographics["instance_id"], create_queries=True, user_id=5
        )

        assert result.queries_created == 1
        query = services.query_store.get(result.errors[0].query_id)
        assert query.study_id == 1
        assert query.subject_id == 10
        assert query.owner_id == 5
        assert [q.id for q in services.query_store.list_for_instance(demographics["instance_id"])] == [query.id]

    def test_unknown_instance(self, services):
        with pytest.raises(LookupError):
            services.orchestrator.validate_form_instance(12345)
