"""Tests for workflow configuration and query assignee resolution."""

import logging

import pytest
from sqlalchemy import text

from edcrules.directory import SqlUserDirectory
from edcrules.storage import DataPointLookup
from edcrules.workflow import AssigneeResolver, FormWorkflowConfig, WorkflowConfigProvider


@pytest.fixture
def users(engine):
    return SqlUserDirectory(engine)


@pytest.fixture
def provider(engine, users):
    return WorkflowConfigProvider(engine, users)


@pytest.fixture
def resolver(engine, users, provider):
    return AssigneeResolver(users, provider, DataPointLookup(engine))


# =============================================================================
# Workflow configuration
# =============================================================================


class TestFormWorkflowConfig:
    def test_defaults(self, provider):
        config = provider.get_form_config(5)
        assert config.form_id == 5
        assert not config.requires_sdv
        assert config.query_route_to_user_ids == []

    def test_requires_unknown_step(self):
        with pytest.raises(ValueError):
            FormWorkflowConfig(form_id=1).requires("approval")

    def test_to_dict_keys(self):
        data = FormWorkflowConfig(form_id=1, requires_dde=True).to_dict()
        assert data["requiresDDE"] is True
        assert data["queryRouteToUsers"] == []


class TestWorkflowConfigProvider:
    def test_save_and_load(self, seed, provider):
        alice = seed.user("alice")
        seed.user("bob", enabled=False)

        provider.save_form_config(
            FormWorkflowConfig(form_id=1, requires_sdv=True, query_route_to_users=["alice", "bob"])
        )
        config = provider.get_form_config(1)

        assert config.requires_sdv is True
        assert config.query_route_to_users == ["alice", "bob"]
        assert config.query_route_to_user_ids == [alice]

    def test_save_replaces_existing_row(self, seed, provider):
        provider.save_form_config(FormWorkflowConfig(form_id=1, requires_sdv=True))
        provider.save_form_config(FormWorkflowConfig(form_id=1, requires_signature=True))

        config = provider.get_form_config(1)

        assert config.requires_sdv is False
        assert config.requires_signature is True
        assert seed.count("workflow_config") == 1

    def test_study_row_preferred_over_global(self, seed, provider):
        provider.save_form_config(FormWorkflowConfig(form_id=1, requires_dde=False))
        provider.save_form_config(FormWorkflowConfig(form_id=1, study_id=7, requires_dde=True))

        assert provider.get_form_config(1, 7).requires_dde is True
        assert provider.get_form_config(1, 8).requires_dde is False
        assert provider.get_form_config(1).requires_dde is False

    def test_comma_separated_routing(self, engine, seed, provider):
        alice = seed.user("alice")
        carol = seed.user("carol")
        with engine.begin() as conn:
            conn.execute(
                text("INSERT INTO workflow_config (form_id, query_route_to_users) VALUES (1, 'carol, alice')")
            )

        assert provider.get_form_config(1).query_route_to_user_ids == [carol, alice]

    @pytest.mark.parametrize(
        "stored, expected",
        [("42", ["42"]), ('"alice"', ["alice"]), ('{"alice": 1}', []), ("null", []), ("true", ["True"])],
    )
    def test_routing_json_that_is_not_a_list(self, engine, provider, stored, expected):
        with engine.begin() as conn:
            conn.execute(
                text("INSERT INTO workflow_config (form_id, query_route_to_users) VALUES (1, :users)"),
                {"users": stored},
            )

        assert provider.get_form_config(1).query_route_to_users == expected

    def test_needs_step(self, provider):
        provider.save_form_config(FormWorkflowConfig(form_id=3, requires_signature=True))
        assert provider.needs_step(3, "signature")
        assert not provider.needs_step(3, "sdv")


# =============================================================================
# Assignee resolution
# =============================================================================


class TestAssigneeResolver:
    def test_workflow_routing_wins(self, seed, provider, resolver):
        alice = seed.user("alice")
        bob = seed.user("bob")
        coordinator = seed.user("coord")
        seed.role(1, "coord", "Study Coordinator")
        provider.save_form_config(FormWorkflowConfig(form_id=4, query_route_to_users=["alice", "bob"]))

        resolution = resolver.resolve_all_assignees(form_id=4, study_id=1)

        assert resolution.primary_user_id == alice
        assert resolution.additional_user_ids == [bob]
        assert resolution.source == "workflow"
        assert coordinator != alice

    def test_role_priority(self, seed, resolver):
        manager = seed.user("manager")
        crc = seed.user("crc")
        seed.role(1, "manager", "Data Manager")
        seed.role(1, "crc", "clinical research coordinator")

        resolution = resolver.resolve_all_assignees(form_id=4, study_id=1)

        assert resolution.primary_user_id == crc
        assert resolution.source == "role"
        assert manager != crc

    def test_any_study_user_fallback(self, seed, resolver):
        monitor = seed.user("monitor")
        seed.role(1, "monitor", "Monitor")
        assert resolver.resolve_assignee(study_id=1) == monitor

    def test_inactive_roles_ignored(self, seed, resolver):
        seed.user("gone", status="removed")
        seed.role(1, "gone", "Study Coordinator")
        seed.user("paused")
        seed.role(1, "paused", "Study Coordinator", status="removed")
        assert resolver.resolve_assignee(study_id=1) is None

    def test_routing_to_inactive_users_falls_back(self, seed, provider, resolver, caplog):
        seed.user("ghost", enabled=False)
        coordinator = seed.user("coord")
        seed.role(1, "coord", "Study Coordinator")
        provider.save_form_config(FormWorkflowConfig(form_id=4, query_route_to_users=["ghost"]))

        with caplog.at_level(logging.WARNING):
            resolution = resolver.resolve_all_assignees(form_id=4, study_id=1)

        assert resolution.primary_user_id == coordinator
        assert "none are active users" in caplog.text

    def test_form_from_instance(self, seed, provider, resolver):
        alice = seed.user("alice")
        form_id = seed.form()
        instance_id = seed.instance(form_id, study_id=1)
        provider.save_form_config(FormWorkflowConfig(form_id=form_id, query_route_to_users=["alice"]))

        assert resolver.resolve_assignee(study_id=1, instance_id=instance_id) == alice

    def test_nothing_found(self, resolver):
        resolution = resolver.resolve_all_assignees(form_id=4, study_id=None)
        assert resolution.primary_user_id is None
        assert resolution.source == "none"

    def test_without_workflow_provider(self, seed, users):
        coordinator = seed.user("coord")
        seed.role(2, "coord", "coordinator")
        assert AssigneeResolver(users).resolve_assignee(form_id=1, study_id=2) == coordinator
