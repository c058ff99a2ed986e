"""Shared fixtures: an in-memory database, seeding helpers and wired services."""

import pytest
from sqlalchemy import text

from edcrules.bootstrap import initialize_services
from edcrules.expressions import FormulaFunctionRegistry, FunctionRegistry, register_all_builtins
from edcrules.formula import register_formula_functions
from edcrules.persistence import DatabaseConfig, create_db_engine, initialize_schema
from edcrules.settings import EngineSettings


@pytest.fixture(autouse=True)
def setup_functions():
    """Register expression and formula functions before each test."""
    FunctionRegistry.clear()
    FormulaFunctionRegistry.clear()
    register_all_builtins()
    register_formula_functions()
    yield
    FunctionRegistry.clear()
    FormulaFunctionRegistry.clear()


@pytest.fixture
def engine():
    """In-memory SQLite engine with the schema created."""
    engine = create_db_engine(DatabaseConfig(url="sqlite://"))
    initialize_schema(engine)
    yield engine
    engine.dispose()


class Seeder:
    """Inserts reference rows the engine reads but never writes."""

    def __init__(self, engine):
        self.engine = engine

    def _insert(self, sql: str, params: dict) -> int | None:
        with self.engine.begin() as conn:
            result = conn.execute(text(sql), params)
            return result.scalar() if "RETURNING" in sql else None

    def form(self, name="Demographics", owner_id=None, status="available", form_id=None) -> int:
        return self._insert(
            "INSERT INTO forms (id, name, oid, owner_id, status) "
            "VALUES (:id, :name, :oid, :owner_id, :status) RETURNING id",
            {"id": form_id, "name": name, "oid": f"F_{name.upper()}", "owner_id": owner_id, "status": status},
        )

    def study_form(self, study_id: int, form_id: int) -> None:
        self._insert(
            "INSERT INTO study_forms (study_id, form_id) VALUES (:study_id, :form_id)",
            {"study_id": study_id, "form_id": form_id},
        )

    def item(self, form_id: int, name: str, required=False, regexp=None, message=None, oid=None) -> int:
        item_id = self._insert(
            "INSERT INTO items (name, oid, description) VALUES (:name, :oid, :description) RETURNING id",
            {"name": name, "oid": oid or f"I_{name.upper()}", "description": f"{name} item"},
        )
        self._insert(
            "INSERT INTO item_form_metadata (item_id, form_id, required, regexp, regexp_error_message) "
            "VALUES (:item_id, :form_id, :required, :regexp, :message)",
            {
                "item_id": item_id,
                "form_id": form_id,
                "required": 1 if required else 0,
                "regexp": regexp,
                "message": message,
            },
        )
        return item_id

    def instance(self, form_id: int, study_id=1, subject_id=10, form_version_id=None) -> int:
        return self._insert(
            "INSERT INTO form_instances (form_id, form_version_id, study_id, subject_id) "
            "VALUES (:form_id, :form_version_id, :study_id, :subject_id) RETURNING id",
            {
                "form_id": form_id,
                "form_version_id": form_version_id,
                "study_id": study_id,
                "subject_id": subject_id,
            },
        )

    def value(self, instance_id: int, item_id: int, value) -> int:
        return self._insert(
            "INSERT INTO item_data (item_id, instance_id, value) VALUES (:item_id, :instance_id, :value) "
            "RETURNING id",
            {"item_id": item_id, "instance_id": instance_id, "value": value},
        )

    def user(self, username: str, enabled=True, status="active") -> int:
        return self._insert(
            "INSERT INTO users (username, full_name, enabled, status) "
            "VALUES (:username, :full_name, :enabled, :status) RETURNING id",
            {"username": username, "full_name": username.title(), "enabled": 1 if enabled else 0, "status": status},
        )

    def role(self, study_id: int, username: str, role_name: str, status="active") -> None:
        self._insert(
            "INSERT INTO study_user_roles (study_id, username, role_name, status) "
            "VALUES (:study_id, :username, :role_name, :status)",
            {"study_id": study_id, "username": username, "role_name": role_name, "status": status},
        )

    def member(self, organization_id: int, user_id: int) -> None:
        self._insert(
            "INSERT INTO organization_members (organization_id, user_id) VALUES (:org, :user_id)",
            {"org": organization_id, "user_id": user_id},
        )

    def native_rule(self, form_id: int, target: str, expression: str, action_type: str, message=None, name=None) -> int:
        return self._insert(
            "INSERT INTO native_rules (form_id, oid, name, target, expression, action_type, message) "
            "VALUES (:form_id, :oid, :name, :target, :expression, :action_type, :message) RETURNING id",
            {
                "form_id": form_id,
                "oid": f"R_{target.upper()}",
                "name": name or f"{target} check",
                "target": target,
                "expression": expression,
                "action_type": action_type,
                "message": message,
            },
        )

    def count(self, table: str) -> int:
        with self.engine.connect() as conn:
            return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()


@pytest.fixture
def seed(engine):
    return Seeder(engine)


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def services(engine, settings):
    """All engine services wired against the in-memory database."""
    return initialize_services(settings, engine=engine)
