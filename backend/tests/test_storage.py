"""Tests for stored values and data point id lookups."""

import pytest
from sqlalchemy import text

from edcrules.storage import DataPointLookup


@pytest.fixture
def lookup(engine):
    return DataPointLookup(engine)


@pytest.fixture
def stored(seed):
    form_id = seed.form()
    age = seed.item(form_id, "Age", oid="I_DM_AGE")
    sex = seed.item(form_id, "sex")
    instance_id = seed.instance(form_id, study_id=2, subject_id=30, form_version_id=4)
    return {
        "form_id": form_id,
        "age": age,
        "sex": sex,
        "instance_id": instance_id,
        "age_point": seed.value(instance_id, age, "42"),
        "sex_point": seed.value(instance_id, sex, "F"),
    }


class TestStorageIdMap:
    def test_every_name_maps_to_the_data_point(self, lookup, stored):
        storage = lookup.storage_id_map(stored["instance_id"])

        for key in ("Age", "age", "I_DM_AGE", f"item_{stored['age']}"):
            assert storage[key] == stored["age_point"]
        assert storage["sex"] == stored["sex_point"]

    def test_deleted_values_excluded(self, engine, lookup, stored):
        with engine.begin() as conn:
            conn.execute(text("UPDATE item_data SET deleted = 1 WHERE id = :id"), {"id": stored["sex_point"]})
        assert "sex" not in lookup.storage_id_map(stored["instance_id"])

    def test_unknown_instance(self, lookup):
        assert lookup.storage_id_map(77) == {}


class TestFindDataPoint:
    def test_by_field_id(self, lookup, stored):
        assert lookup.find_data_point_id(stored["instance_id"], field_id=stored["sex"]) == stored["sex_point"]

    def test_by_path(self, lookup, stored):
        assert lookup.find_data_point_id(stored["instance_id"], field_path="demographics.age") == stored["age_point"]

    def test_not_found(self, lookup, stored):
        assert lookup.find_data_point_id(stored["instance_id"], field_path="weight") is None


class TestLoadInstance:
    def test_snapshot(self, lookup, stored):
        snapshot = lookup.load_instance(stored["instance_id"])

        assert snapshot.form_id == stored["form_id"]
        assert snapshot.study_id == 2
        assert snapshot.subject_id == 30
        assert snapshot.form_version_id == 4
        assert snapshot.form_data == {"Age": "42", "sex": "F"}

    def test_missing_instance(self, lookup):
        assert lookup.load_instance(5) is None

    def test_form_id_for_instance(self, lookup, stored):
        assert lookup.form_id_for_instance(stored["instance_id"]) == stored["form_id"]
