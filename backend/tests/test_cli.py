"""Tests for edcrules CLI commands."""

import json

import pytest
from click.testing import CliRunner

from edcrules.cli.main import cli
from edcrules.persistence import DatabaseConfig, create_db_engine, initialize_schema


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def engine(tmp_path, monkeypatch):
    """File database shared by the test and the CLI process."""
    monkeypatch.setenv("EDCRULES_DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    engine = create_db_engine(DatabaseConfig.from_env())
    initialize_schema(engine)
    yield engine
    engine.dispose()


class TestDb:
    def test_init(self, runner, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'fresh.db'}"
        monkeypatch.setenv("EDCRULES_DATABASE_URL", url)

        result = runner.invoke(cli, ["db", "init"])

        assert result.exit_code == 0
        assert f"Schema ready at {url}" in result.output
        assert (tmp_path / "fresh.db").exists()

    def test_formats_list(self, runner):
        result = runner.invoke(cli, ["formats", "list"])
        assert result.exit_code == 0
        assert "email" in result.output
        assert "(rule pattern)" in result.output


class TestRulesList:
    def test_no_rules(self, runner, engine):
        result = runner.invoke(cli, ["rules", "list", "1"])
        assert result.exit_code == 0
        assert "No rules for form 1." in result.output

    def test_lists_merged_rules(self, runner, seed):
        form_id = seed.form()
        seed.item(form_id, "initials", required=True)

        result = runner.invoke(cli, ["rules", "list", str(form_id)])

        assert result.exit_code == 0
        assert "[legacy_item] initials: required on initials (error)" in result.output

    def test_json_output(self, runner, seed):
        form_id = seed.form()
        seed.item(form_id, "code", regexp="^\\d+$")

        result = runner.invoke(cli, ["rules", "list", str(form_id), "--json"])

        assert result.exit_code == 0
        [rule] = json.loads(result.output)
        assert rule["ruleType"] == "format"
        assert rule["source"] == "legacy_item"

    def test_scope_deny(self, runner, seed, monkeypatch):
        owner = seed.user("owner")
        seed.member(1, owner)
        outsider = seed.user("outsider")
        seed.member(2, outsider)
        form_id = seed.form(owner_id=owner)
        monkeypatch.setenv("EDCRULES_SCOPE_POLICY", "deny")

        result = runner.invoke(cli, ["rules", "list", str(form_id), "--user-id", str(outsider)])

        assert result.exit_code == 1
        assert "may not read rules" in result.output


class TestRulesTest:
    def test_invalid_value(self, runner, engine):
        result = runner.invoke(cli, ["rules", "test", "--kind", "range", "--min", "18", "--max", "120", "15"])
        assert result.exit_code == 2
        assert "INVALID (below minimum 18.0)" in result.output

    def test_valid_value(self, runner, engine):
        result = runner.invoke(cli, ["rules", "test", "--kind", "format", "--format-type", "email", "a@b.co"])
        assert result.exit_code == 0
        assert result.output.startswith("VALID")

    def test_with_other_values(self, runner, engine):
        result = runner.invoke(
            cli,
            [
                "rules", "test", "--kind", "consistency", "--operator", "<=",
                "--compare-field", "end", "--data", '{"end": "2024-01-31"}', "2024-01-15",
            ],
        )
        assert result.exit_code == 0

    def test_bad_data_json(self, runner, engine):
        result = runner.invoke(cli, ["rules", "test", "--kind", "required", "--data", "{oops", "x"])
        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_bad_operator(self, runner, engine):
        result = runner.invoke(cli, ["rules", "test", "--kind", "consistency", "--operator", "=~", "x"])
        assert result.exit_code == 1
        assert "invalid rule" in result.output


class TestValidate:
    def test_invalid_form(self, runner, seed):
        form_id = seed.form()
        seed.item(form_id, "code", regexp="^\\d+$")

        result = runner.invoke(cli, ["validate", str(form_id), '{"code": "abc"}'])

        assert result.exit_code == 2
        output = json.loads(result.output)
        assert output["valid"] is False
        assert output["errors"][0]["fieldPath"] == "code"
        assert output["errors"][0]["message"] == "Invalid format"

    def test_valid_form(self, runner, seed):
        form_id = seed.form()
        seed.item(form_id, "code", regexp="^\\d+$")

        result = runner.invoke(cli, ["validate", str(form_id), '{"code": "123"}'])

        assert result.exit_code == 0
        assert json.loads(result.output)["valid"] is True

    def test_create_queries(self, runner, seed):
        form_id = seed.form()
        item_id = seed.item(form_id, "code", regexp="^\\d+$")
        instance_id = seed.instance(form_id, study_id=1, subject_id=10)
        seed.value(instance_id, item_id, "abc")
        args = [
            "validate", str(form_id), '{"code": "abc"}', "--create-queries",
            "--study-id", "1", "--subject-id", "10", "--instance-id", str(instance_id), "--user-id", "4",
        ]

        first = runner.invoke(cli, args)
        second = runner.invoke(cli, args)

        assert json.loads(first.output)["queriesCreated"] == 1
        assert json.loads(second.output)["queriesCreated"] == 0
        assert seed.count("queries") == 1

    @pytest.mark.parametrize("payload", ["{bad", "[1, 2]"])
    def test_rejects_bad_payload(self, runner, engine, payload):
        result = runner.invoke(cli, ["validate", "1", payload])
        assert result.exit_code == 1


class TestValidateInstance:
    def test_stored_values(self, runner, seed):
        form_id = seed.form()
        item_id = seed.item(form_id, "code", regexp="^\\d+$")
        instance_id = seed.instance(form_id)
        seed.value(instance_id, item_id, "42")

        result = runner.invoke(cli, ["validate-instance", str(instance_id)])

        assert result.exit_code == 0
        assert json.loads(result.output)["valid"] is True

    def test_unknown_instance(self, runner, engine):
        result = runner.invoke(cli, ["validate-instance", "999"])
        assert result.exit_code == 1
        assert "not found" in result.output
