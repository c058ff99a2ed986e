"""Tests for merging rule sources and organization scoping."""

import pytest

from edcrules.rules import (
    NATIVE_ID_OFFSET,
    CustomRuleSource,
    LegacyItemRuleSource,
    NativeRuleSource,
    RuleAccessDenied,
    RuleKind,
    RuleOrigin,
    RuleRepository,
    RuleStore,
    Severity,
    merge_rules,
    new_rule,
)
from edcrules.directory import SqlOrganizationDirectory
from edcrules.settings import ScopePolicy
from edcrules.storage import DataPointLookup


@pytest.fixture
def store(engine):
    return RuleStore(engine)


def build_repository(engine, store, policy=ScopePolicy.HIDE, native=False):
    sources = [LegacyItemRuleSource(engine)]
    if native:
        sources.append(NativeRuleSource(engine))
    return RuleRepository(
        CustomRuleSource(store),
        sources,
        organizations=SqlOrganizationDirectory(engine),
        scope_policy=policy,
        instances=DataPointLookup(engine),
    )


@pytest.fixture
def repository(engine, store):
    return build_repository(engine, store, native=True)


# =============================================================================
# Legacy item metadata
# =============================================================================


class TestLegacyItemRules:
    def test_pattern_becomes_format_rule(self, engine, seed):
        form_id = seed.form()
        item_id = seed.item(form_id, "initials", regexp="^[A-Z]{2,3}$", message="Use capitals")

        [rule] = LegacyItemRuleSource(engine).load(form_id)

        assert rule.kind == RuleKind.FORMAT
        assert rule.id is None
        assert rule.field_id == item_id
        assert rule.field_path == "initials"
        assert rule.pattern == "^[A-Z]{2,3}$"
        assert rule.error_message == "Use capitals"
        assert rule.origin == RuleOrigin.LEGACY_ITEM

    def test_default_format_message(self, engine, seed):
        form_id = seed.form()
        seed.item(form_id, "code", regexp="\\d+")
        [rule] = LegacyItemRuleSource(engine).load(form_id)
        assert rule.error_message == "Invalid format"

    def test_formula_marker_becomes_formula_rule(self, engine, seed):
        form_id = seed.form()
        seed.item(form_id, "weight", regexp="=FORMULA:{weight}<500")

        [rule] = LegacyItemRuleSource(engine).load(form_id)

        assert rule.kind == RuleKind.FORMULA
        assert rule.pattern == "={weight}<500"

    def test_required_flag(self, engine, seed):
        form_id = seed.form()
        seed.item(form_id, "age", required=True, regexp="^\\d+$")

        rules = LegacyItemRuleSource(engine).load(form_id)

        assert [r.kind for r in rules] == [RuleKind.FORMAT, RuleKind.REQUIRED]
        assert rules[1].error_message == "This field is required"

    def test_plain_items_yield_nothing(self, engine, seed):
        form_id = seed.form()
        seed.item(form_id, "notes")
        assert LegacyItemRuleSource(engine).load(form_id) == []


# =============================================================================
# Native rules
# =============================================================================


class TestNativeRules:
    def test_actions_map_to_severity(self, engine, seed):
        form_id = seed.form()
        hard = seed.native_rule(form_id, "age", "{age}>=18", "DISCREPANCY_RS", message="Too young")
        seed.native_rule(form_id, "weight", "{weight}<500", "DISCREPANCY_NRS", name="weight soft")

        rules = {rule.field_path: rule for rule in NativeRuleSource(engine).load(form_id)}

        assert rules["age"].id == hard + NATIVE_ID_OFFSET
        assert rules["age"].severity == Severity.ERROR
        assert rules["age"].kind == RuleKind.BUSINESS_LOGIC
        assert rules["age"].error_message == "Too young"
        assert rules["age"].extra["nativeRuleId"] == hard
        assert rules["weight"].severity == Severity.WARNING
        assert rules["weight"].message == "Validation failed"

    @pytest.mark.parametrize("action", ["EMAIL", "HIDE", "SHOW", "INSERT", "STRATIFICATION_FACTOR"])
    def test_non_validation_actions_skipped(self, engine, seed, action):
        form_id = seed.form()
        seed.native_rule(form_id, "age", "{age}>0", action)
        assert NativeRuleSource(engine).load(form_id) == []

    def test_unknown_action_is_error(self, engine, seed):
        form_id = seed.form()
        seed.native_rule(form_id, "age", "{age}>0", "SOMETHING_NEW")
        [rule] = NativeRuleSource(engine).load(form_id)
        assert rule.severity == Severity.ERROR


# =============================================================================
# Merging
# =============================================================================


class TestMerge:
    def test_custom_rule_wins_on_path_and_kind(self, engine, seed, store, repository):
        form_id = seed.form()
        seed.item(form_id, "age", required=True)
        store.create(new_rule(form_id, "Age needed", "required", "age", error_message="Age please"))

        rules = repository.rules_for_form(form_id)

        assert len(rules) == 1
        assert rules[0].origin == RuleOrigin.CUSTOM
        assert rules[0].error_message == "Age please"

    def test_custom_rule_wins_on_field_id(self, engine, seed, store, repository):
        form_id = seed.form()
        item_id = seed.item(form_id, "age", regexp="^\\d+$")
        store.create(
            new_rule(form_id, "Age digits", "format", "demographics.age", field_id=item_id, pattern="^\\d{1,3}$")
        )

        rules = repository.rules_for_form(form_id)

        assert [rule.origin for rule in rules] == [RuleOrigin.CUSTOM]

    def test_different_kinds_coexist(self, engine, seed, store, repository):
        form_id = seed.form()
        seed.item(form_id, "age", required=True)
        store.create(new_rule(form_id, "Adult", "range", "age", min_value=18.0))

        kinds = {rule.kind for rule in repository.rules_for_form(form_id)}

        assert kinds == {RuleKind.RANGE, RuleKind.REQUIRED}

    def test_custom_rules_come_first(self, engine, seed, store, repository):
        form_id = seed.form()
        seed.item(form_id, "code", regexp="\\d+")
        store.create(new_rule(form_id, "Adult", "range", "age", min_value=18.0))

        origins = [rule.origin for rule in repository.rules_for_form(form_id)]

        assert origins == [RuleOrigin.CUSTOM, RuleOrigin.LEGACY_ITEM]

    def test_inactive_custom_rules_are_listed(self, engine, seed, store, repository):
        form_id = seed.form()
        store.create(new_rule(form_id, "Adult", "range", "age", min_value=18.0, active=False))
        assert [rule.active for rule in repository.rules_for_form(form_id)] == [False]

    def test_duplicate_native_expression_dropped(self):
        custom = [new_rule(1, "Weight", "business_logic", "weight", custom_expression="{weight}<500")]
        native = [
            new_rule(1, "Native weight", "business_logic", "body.weight", custom_expression="{weight}<500")
            .with_changes(id=NATIVE_ID_OFFSET + 1, origin=RuleOrigin.NATIVE)
        ]
        assert merge_rules(custom, native) == custom

    def test_native_source_wired(self, engine, seed, repository):
        form_id = seed.form()
        seed.native_rule(form_id, "age", "{age}>=18", "DISCREPANCY_RS")
        [rule] = repository.rules_for_form(form_id)
        assert rule.origin == RuleOrigin.NATIVE


# =============================================================================
# Organization scope
# =============================================================================


class TestScope:
    @pytest.fixture
    def foreign_form(self, seed):
        owner = seed.user("owner")
        seed.member(1, owner)
        form_id = seed.form(owner_id=owner)
        seed.item(form_id, "age", required=True)
        outsider = seed.user("outsider")
        seed.member(2, outsider)
        return form_id, owner, outsider

    def test_same_organization_sees_rules(self, repository, foreign_form):
        form_id, owner, _ = foreign_form
        assert len(repository.rules_for_form(form_id, owner)) == 1

    def test_hide_policy_returns_nothing(self, repository, foreign_form):
        form_id, _, outsider = foreign_form
        assert repository.rules_for_form(form_id, outsider) == []

    def test_deny_policy_raises(self, engine, store, foreign_form):
        form_id, _, outsider = foreign_form
        repository = build_repository(engine, store, ScopePolicy.DENY)
        with pytest.raises(RuleAccessDenied):
            repository.rules_for_form(form_id, outsider)

    def test_users_without_organization_are_unscoped(self, seed, repository, foreign_form):
        form_id, _, _ = foreign_form
        loner = seed.user("loner")
        assert len(repository.rules_for_form(form_id, loner)) == 1

    def test_anonymous_callers_are_unscoped(self, repository, foreign_form):
        form_id, _, _ = foreign_form
        assert len(repository.rules_for_form(form_id)) == 1


class TestRulesForInstance:
    def test_rules_of_instance_form(self, seed, repository):
        form_id = seed.form()
        seed.item(form_id, "age", required=True)
        instance_id = seed.instance(form_id)

        [rule] = repository.rules_for_instance(instance_id)

        assert rule.form_id == form_id

    def test_unknown_instance(self, repository):
        assert repository.rules_for_instance(404) == []

    def test_requires_instance_lookup(self, engine, store):
        repository = RuleRepository(CustomRuleSource(store), [])
        with pytest.raises(RuntimeError):
            repository.rules_for_instance(1)
