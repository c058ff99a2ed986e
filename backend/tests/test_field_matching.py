"""Tests for locating rule targets in form payloads."""

from edcrules.core.values import MISSING, FieldValue
from edcrules.rules import (
    RuleKind,
    camel_to_snake,
    data_point_for,
    matches_field,
    new_rule,
    resolve_field,
    resolve_path,
)
from edcrules.rules.matching import bare_name, exact_path, nested_search


def rule_for(path, field_id=None):
    return new_rule(1, "probe", RuleKind.REQUIRED, path, field_id=field_id)


class TestCamelToSnake:
    def test_conversion(self):
        assert camel_to_snake("bloodPressure") == "blood_pressure"
        assert camel_to_snake("ageYears") == "age_years"
        assert camel_to_snake("age") == "age"


class TestResolveField:
    def test_exact_key(self):
        assert resolve_field({"age": "17"}, rule_for("age")) == FieldValue.of("17")

    def test_flat_dotted_key(self):
        data = {"demographics.age": 30}
        assert resolve_field(data, rule_for("demographics.age")) == FieldValue.of(30)

    def test_nested_traversal(self):
        data = {"demographics": {"age": 30}}
        assert resolve_field(data, rule_for("demographics.age")) == FieldValue.of(30)

    def test_dotted_path_matches_bare_key(self):
        assert resolve_field({"age": "15"}, rule_for("demographics.age")) == FieldValue.of("15")

    def test_case_insensitive(self):
        assert resolve_field({"AGE": 40}, rule_for("age")) == FieldValue.of(40)

    def test_camel_case_matches_snake_case(self):
        data = {"blood_pressure": "120/80"}
        assert resolve_field(data, rule_for("bloodPressure")) == FieldValue.of("120/80")

    def test_storage_id(self):
        data = {"SBP_OID": 120}
        storage = {"SBP_OID": 55, "item_7": 55}
        assert resolve_field(data, rule_for("systolic", field_id=7), storage) == FieldValue.of(120)

    def test_nested_search(self):
        data = {"vitals": {"readings": {"Pulse": 72}}}
        assert resolve_field(data, rule_for("pulse")) == FieldValue.of(72)

    def test_not_found_is_missing(self):
        assert resolve_field({"weight": 70}, rule_for("height")) is MISSING

    def test_present_null_is_not_missing(self):
        found = resolve_field({"height": None}, rule_for("height"))
        assert found is not MISSING
        assert found.is_empty

    def test_empty_path(self):
        assert resolve_field({"": 1}, rule_for("")) is MISSING

    def test_strategy_order_prefers_exact(self):
        data = {"Age": 1, "age": 2}
        assert resolve_field(data, rule_for("age")) == FieldValue.of(2)

    def test_custom_strategy_tuple(self):
        data = {"vitals": {"pulse": 72}}
        assert resolve_field(data, rule_for("pulse"), strategies=(exact_path, bare_name)) is MISSING
        assert resolve_field(data, rule_for("pulse"), strategies=(nested_search,)) == FieldValue.of(72)

    def test_resolve_path(self):
        assert resolve_path({"visit": {"date": "2024-01-01"}}, "visit.date") == FieldValue.of("2024-01-01")


class TestDataPointFor:
    def test_lookup_order(self):
        storage = {"age": 11, "item_3": 12}
        assert data_point_for("demographics.age", storage) == 11
        assert data_point_for("Age", storage) == 11
        assert data_point_for("unknown", storage, field_id=3) == 12
        assert data_point_for("unknown", storage) is None


class TestMatchesField:
    def test_field_id(self):
        assert matches_field(rule_for("x", field_id=4), "y", field_id=4)

    def test_path_variants(self):
        rule = rule_for("demographics.bloodPressure")
        assert matches_field(rule, "demographics.bloodPressure")
        assert matches_field(rule, "DEMOGRAPHICS.BLOODPRESSURE")
        assert matches_field(rule, "bloodPressure")
        assert matches_field(rule, "blood_pressure")
        assert not matches_field(rule, "heartRate")

    def test_storage_id(self):
        storage = {"sbp": 9, "i_sbp": 9}
        assert matches_field(rule_for("sbp"), "I_SBP", storage=storage)
