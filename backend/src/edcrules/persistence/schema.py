"""Tables backing the engine's external interfaces.

The engine reads forms, items and stored values, and writes rules,
queries, workflow configuration and audit events. These definitions give
those interfaces a working SQL implementation; deployments with their own
schema can provide other implementations of the same services.

initialize_schema() is the explicit, idempotent startup step. Nothing in
the engine checks for tables lazily.
"""

import logging

import sqlalchemy as sa
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = sa.MetaData()


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.Text(), nullable=True),
    ]


# -----------------------------------------------------------------------------
# Rules
# -----------------------------------------------------------------------------

validation_rules = sa.Table(
    "validation_rules",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("form_id", sa.Integer(), nullable=False, index=True),
    sa.Column("form_version_id", sa.Integer(), nullable=True),
    sa.Column("field_id", sa.Integer(), nullable=True),
    sa.Column("name", sa.Text(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("kind", sa.Text(), nullable=False),
    sa.Column("field_path", sa.Text(), nullable=False),
    sa.Column("severity", sa.Text(), nullable=False, server_default="error"),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("warning_message", sa.Text(), nullable=True),
    sa.Column("active", sa.Integer(), nullable=False, server_default="1"),
    sa.Column("min_value", sa.Text(), nullable=True),
    sa.Column("max_value", sa.Text(), nullable=True),
    sa.Column("pattern", sa.Text(), nullable=True),
    sa.Column("format_type", sa.Text(), nullable=True),
    sa.Column("operator", sa.Text(), nullable=True),
    sa.Column("compare_field_path", sa.Text(), nullable=True),
    sa.Column("custom_expression", sa.Text(), nullable=True),
    sa.Column("created_by", sa.Integer(), nullable=True),
    *_timestamps(),
)

native_rules = sa.Table(
    "native_rules",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("form_id", sa.Integer(), nullable=False, index=True),
    sa.Column("oid", sa.Text(), nullable=True),
    sa.Column("name", sa.Text(), nullable=True),
    sa.Column("target", sa.Text(), nullable=False),
    sa.Column("expression", sa.Text(), nullable=False),
    sa.Column("action_type", sa.Text(), nullable=False),
    sa.Column("message", sa.Text(), nullable=True),
    sa.Column("status", sa.Text(), nullable=False, server_default="active"),
)

# -----------------------------------------------------------------------------
# Forms, fields and stored values
# -----------------------------------------------------------------------------

forms = sa.Table(
    "forms",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("name", sa.Text(), nullable=False),
    sa.Column("oid", sa.Text(), nullable=True),
    sa.Column("owner_id", sa.Integer(), nullable=True),
    sa.Column("status", sa.Text(), nullable=False, server_default="available"),
)

study_forms = sa.Table(
    "study_forms",
    metadata,
    sa.Column("study_id", sa.Integer(), primary_key=True),
    sa.Column("form_id", sa.Integer(), primary_key=True),
)

form_instances = sa.Table(
    "form_instances",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("form_id", sa.Integer(), nullable=False),
    sa.Column("form_version_id", sa.Integer(), nullable=True),
    sa.Column("study_id", sa.Integer(), nullable=True),
    sa.Column("subject_id", sa.Integer(), nullable=True),
)

items = sa.Table(
    "items",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("name", sa.Text(), nullable=False),
    sa.Column("oid", sa.Text(), nullable=True),
    sa.Column("description", sa.Text(), nullable=True),
)

item_form_metadata = sa.Table(
    "item_form_metadata",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("item_id", sa.Integer(), nullable=False),
    sa.Column("form_id", sa.Integer(), nullable=False, index=True),
    sa.Column("required", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("regexp", sa.Text(), nullable=True),
    sa.Column("regexp_error_message", sa.Text(), nullable=True),
    sa.Column("ordinal", sa.Integer(), nullable=False, server_default="0"),
)

item_data = sa.Table(
    "item_data",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("item_id", sa.Integer(), nullable=False),
    sa.Column("instance_id", sa.Integer(), nullable=False, index=True),
    sa.Column("value", sa.Text(), nullable=True),
    sa.Column("deleted", sa.Integer(), nullable=False, server_default="0"),
)

# -----------------------------------------------------------------------------
# Queries (discrepancy notes)
# -----------------------------------------------------------------------------

queries = sa.Table(
    "queries",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("parent_id", sa.Integer(), nullable=True),
    sa.Column("kind", sa.Text(), nullable=False),
    sa.Column("resolution_state", sa.Text(), nullable=False),
    sa.Column("severity", sa.Text(), nullable=True),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("detailed_notes", sa.Text(), nullable=True),
    sa.Column("entity_type", sa.Text(), nullable=False, server_default="itemData"),
    sa.Column("study_id", sa.Integer(), nullable=True),
    sa.Column("subject_id", sa.Integer(), nullable=True),
    sa.Column("owner_id", sa.Integer(), nullable=True),
    sa.Column("assigned_user_id", sa.Integer(), nullable=True),
    *_timestamps(),
)

query_data_points = sa.Table(
    "query_data_points",
    metadata,
    sa.Column("query_id", sa.Integer(), primary_key=True),
    sa.Column("data_point_id", sa.Integer(), primary_key=True),
    sa.Column("column_name", sa.Text(), nullable=True),
)

query_instances = sa.Table(
    "query_instances",
    metadata,
    sa.Column("query_id", sa.Integer(), primary_key=True),
    sa.Column("instance_id", sa.Integer(), primary_key=True),
    sa.Column("column_name", sa.Text(), nullable=True),
)

query_subjects = sa.Table(
    "query_subjects",
    metadata,
    sa.Column("query_id", sa.Integer(), primary_key=True),
    sa.Column("subject_id", sa.Integer(), primary_key=True),
    sa.Column("column_name", sa.Text(), nullable=True),
)

# -----------------------------------------------------------------------------
# Workflow, users and audit
# -----------------------------------------------------------------------------

workflow_config = sa.Table(
    "workflow_config",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("form_id", sa.Integer(), nullable=False),
    sa.Column("study_id", sa.Integer(), nullable=True),
    sa.Column("requires_sdv", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("requires_signature", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("requires_dde", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("query_route_to_users", sa.Text(), nullable=True),
    sa.Column("updated_by", sa.Integer(), nullable=True),
    sa.Column("updated_at", sa.Text(), nullable=True),
    sa.UniqueConstraint("form_id", "study_id", name="uq_workflow_config_form_study"),
)

users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("username", sa.Text(), nullable=False, unique=True),
    sa.Column("full_name", sa.Text(), nullable=True),
    sa.Column("enabled", sa.Integer(), nullable=False, server_default="1"),
    sa.Column("status", sa.Text(), nullable=False, server_default="active"),
)

study_user_roles = sa.Table(
    "study_user_roles",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("study_id", sa.Integer(), nullable=False, index=True),
    sa.Column("username", sa.Text(), nullable=False),
    sa.Column("role_name", sa.Text(), nullable=False),
    sa.Column("status", sa.Text(), nullable=False, server_default="active"),
)

organization_members = sa.Table(
    "organization_members",
    metadata,
    sa.Column("organization_id", sa.Integer(), primary_key=True),
    sa.Column("user_id", sa.Integer(), primary_key=True),
    sa.Column("status", sa.Text(), nullable=False, server_default="active"),
)

audit_log = sa.Table(
    "audit_log",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("event", sa.Text(), nullable=False),
    sa.Column("entity_type", sa.Text(), nullable=False),
    sa.Column("entity_id", sa.Integer(), nullable=True),
    sa.Column("old_value", sa.Text(), nullable=True),
    sa.Column("new_value", sa.Text(), nullable=True),
    sa.Column("reason", sa.Text(), nullable=True),
    sa.Column("user_id", sa.Integer(), nullable=True),
    sa.Column("created_at", sa.Text(), nullable=True),
)


def initialize_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet. Safe to call repeatedly."""
    metadata.create_all(engine, checkfirst=True)
    logger.info("Schema initialized (%d tables)", len(metadata.tables))


def table_exists(engine: Engine, name: str) -> bool:
    """Capability check used once at startup to decide optional rule sources."""
    return sa.inspect(engine).has_table(name)
