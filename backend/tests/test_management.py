"""Tests for rule management: payloads, audit, listings and rule trials."""

import json

import pytest
from pydantic import ValidationError
from sqlalchemy import text

from edcrules.management import CreateRuleRequest, UpdateRuleRequest
from edcrules.rules import RuleAccessDenied, RuleKind, RuleNotFoundError, RuleOrigin, Severity


def audit_events(engine):
    with engine.connect() as conn:
        return conn.execute(text("SELECT * FROM audit_log ORDER BY id")).mappings().all()


@pytest.fixture
def management(services):
    return services.management


@pytest.fixture
def form_id(seed):
    return seed.form()


def adult_rule_payload(form_id, **overrides):
    payload = {
        "formId": form_id,
        "name": "Adult age",
        "ruleType": "range",
        "fieldPath": "age",
        "minValue": "18",
        "maxValue": 120,
        "errorMessage": "Age must be between 18 and 120",
    }
    payload.update(overrides)
    return payload


# =============================================================================
# Payloads
# =============================================================================


class TestRequests:
    def test_camel_case_payload(self):
        request = CreateRuleRequest.model_validate(adult_rule_payload(1))
        assert request.rule_type == RuleKind.RANGE
        assert request.min_value == 18.0
        assert request.max_value == 120.0
        assert request.severity == Severity.ERROR

    def test_snake_case_payload(self):
        request = CreateRuleRequest.model_validate(
            {"form_id": 1, "name": "x", "rule_type": "required", "field_path": "age", "field_id": 4}
        )
        assert request.field_id == 4

    def test_item_id_alias(self):
        request = CreateRuleRequest.model_validate(adult_rule_payload(1, itemId=9))
        assert request.field_id == 9

    def test_date_bounds_stay_text(self):
        request = CreateRuleRequest.model_validate(adult_rule_payload(1, minValue="2024-01-01"))
        assert request.min_value == "2024-01-01"

    @pytest.mark.parametrize(
        "overrides",
        [{"ruleType": "checksum"}, {"name": ""}, {"operator": "=~"}, {"severity": "fatal"}],
    )
    def test_invalid_payloads(self, overrides):
        with pytest.raises(ValidationError):
            CreateRuleRequest.model_validate(adult_rule_payload(1, **overrides))

    def test_update_changes_only_sent_fields(self):
        changes = UpdateRuleRequest.model_validate({"maxValue": "99", "ruleType": "range"}).changes()
        assert changes == {"max_value": 99.0, "kind": RuleKind.RANGE}

    def test_update_clearing_message(self):
        changes = UpdateRuleRequest.model_validate({"errorMessage": None, "name": None}).changes()
        assert changes == {"error_message": ""}


# =============================================================================
# Mutations
# =============================================================================


class TestMutations:
    def test_create_records_audit(self, engine, management, form_id):
        rule = management.create_rule(adult_rule_payload(form_id), user_id=3)

        assert rule.id is not None
        assert rule.created_by == 3
        assert rule.min_value == 18.0
        [event] = audit_events(engine)
        assert event["event"] == "VALIDATION_RULE_CREATED"
        assert event["entity_type"] == "validation_rule"
        assert event["entity_id"] == rule.id
        assert event["old_value"] is None
        assert json.loads(event["new_value"])["ruleType"] == "range"

    def test_update(self, engine, management, form_id):
        rule = management.create_rule(adult_rule_payload(form_id))

        updated = management.update_rule(rule.id, {"maxValue": 99, "severity": "warning"}, user_id=3)

        assert updated.max_value == 99.0
        assert updated.severity == Severity.WARNING
        event = audit_events(engine)[-1]
        assert event["event"] == "VALIDATION_RULE_UPDATED"
        assert json.loads(event["old_value"])["maxValue"] == 120.0
        assert json.loads(event["new_value"])["maxValue"] == 99.0

    def test_toggle_flips_and_sets(self, engine, management, form_id):
        rule = management.create_rule(adult_rule_payload(form_id))

        assert management.toggle_rule(rule.id).active is False
        assert management.toggle_rule(rule.id).active is True
        assert management.toggle_rule(rule.id, active=True).active is True

        events = [event["event"] for event in audit_events(engine)]
        assert events == [
            "VALIDATION_RULE_CREATED",
            "VALIDATION_RULE_DEACTIVATED",
            "VALIDATION_RULE_ACTIVATED",
            "VALIDATION_RULE_ACTIVATED",
        ]

    def test_delete(self, engine, management, form_id):
        rule = management.create_rule(adult_rule_payload(form_id))

        management.delete_rule(rule.id)

        with pytest.raises(RuleNotFoundError):
            management.get_rule(rule.id)
        assert audit_events(engine)[-1]["event"] == "VALIDATION_RULE_DELETED"

    def test_missing_rule(self, management):
        with pytest.raises(RuleNotFoundError):
            management.update_rule(404, {"name": "x"})
        with pytest.raises(RuleNotFoundError):
            management.toggle_rule(404)

    def test_create_mirrors_required_to_item(self, engine, seed, management, form_id):
        item_id = seed.item(form_id, "initials")
        management.create_rule(
            {"formId": form_id, "name": "Initials", "ruleType": "required", "fieldPath": "initials", "fieldId": item_id}
        )
        with engine.connect() as conn:
            required = conn.execute(
                text("SELECT required FROM item_form_metadata WHERE item_id = :id"), {"id": item_id}
            ).scalar()
        assert required == 1


class TestOrganizationScope:
    @pytest.fixture
    def foreign(self, seed, management):
        owner = seed.user("owner")
        seed.member(1, owner)
        form_id = seed.form(name="Vitals", owner_id=owner)
        rule = management.create_rule(adult_rule_payload(form_id), user_id=owner)
        outsider = seed.user("outsider")
        seed.member(2, outsider)
        return form_id, rule, outsider

    def test_writes_refused(self, management, foreign):
        form_id, rule, outsider = foreign
        with pytest.raises(RuleAccessDenied):
            management.create_rule(adult_rule_payload(form_id), user_id=outsider)
        with pytest.raises(RuleAccessDenied):
            management.delete_rule(rule.id, user_id=outsider)

    def test_hidden_rule_not_found(self, management, foreign):
        _, rule, outsider = foreign
        with pytest.raises(RuleNotFoundError):
            management.get_rule(rule.id, user_id=outsider)

    def test_listing_hidden(self, management, foreign):
        form_id, _, outsider = foreign
        assert management.list_rules_for_form(form_id, outsider) == []


# =============================================================================
# Listings
# =============================================================================


class TestListings:
    def test_list_for_form_includes_implicit_rules(self, seed, management, form_id):
        seed.item(form_id, "initials", required=True)
        management.create_rule(adult_rule_payload(form_id))

        origins = [rule.origin for rule in management.list_rules_for_form(form_id)]

        assert origins == [RuleOrigin.CUSTOM, RuleOrigin.LEGACY_ITEM]

    def test_list_for_instance(self, seed, management, form_id):
        management.create_rule(adult_rule_payload(form_id))
        instance_id = seed.instance(form_id)
        assert [rule.name for rule in management.list_rules_for_instance(instance_id)] == ["Adult age"]

    def test_list_for_study(self, seed, management):
        vitals = seed.form(name="Vitals")
        demographics = seed.form(name="Demographics")
        seed.form(name="Unassigned")
        seed.study_form(5, vitals)
        seed.study_form(5, demographics)
        management.create_rule(adult_rule_payload(demographics))

        listing = management.list_rules_for_study(5)

        assert [entry["formName"] for entry in listing] == ["Demographics", "Vitals"]
        assert listing[0]["formId"] == demographics
        assert [rule["name"] for rule in listing[0]["rules"]] == ["Adult age"]
        assert listing[1]["rules"] == []

    def test_study_without_forms_lists_available_forms(self, seed, management):
        seed.form(name="Zeta")
        seed.form(name="Alpha")
        seed.form(name="Retired", status="removed")

        listing = management.list_rules_for_study(8)

        assert [entry["formName"] for entry in listing] == ["Alpha", "Zeta"]


# =============================================================================
# Rule trials
# =============================================================================


class TestRuleTrial:
    def test_range(self, management):
        outcome = management.test_rule({"ruleType": "range", "minValue": 18, "maxValue": 120, "value": "15"})
        assert outcome.valid is False
        assert outcome.detail == "below minimum 18.0"

    def test_format_type(self, management):
        outcome = management.test_rule({"ruleType": "format", "formatType": "email", "value": "a@b.co"})
        assert outcome.valid is True

    def test_consistency_with_values(self, management):
        outcome = management.test_rule(
            {
                "ruleType": "consistency",
                "fieldPath": "end",
                "operator": ">=",
                "compareFieldPath": "start",
                "value": "2024-01-01",
                "allValues": {"start": "2024-03-01"},
            }
        )
        assert outcome.valid is False

    def test_nothing_is_stored(self, seed, management):
        management.test_rule({"ruleType": "required", "value": ""})
        assert seed.count("validation_rules") == 0
        assert seed.count("audit_log") == 0
