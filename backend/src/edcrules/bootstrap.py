"""Wire the validation engine's services.

Schema creation and capability checks happen here, once per process, and
the results are handed to the services instead of being rediscovered on
every call.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.engine import Engine

from edcrules.audit import SqlAuditRecorder
from edcrules.directory import SqlOrganizationDirectory, SqlUserDirectory
from edcrules.expressions import register_all_builtins
from edcrules.formats import FormatRegistry, default_registry
from edcrules.formula import FormulaEvaluator, register_formula_functions
from edcrules.management import RuleManagementService
from edcrules.persistence import DatabaseConfig, create_db_engine, initialize_schema, table_exists
from edcrules.queries import QueryCreator, QueryStore
from edcrules.rules import (
    CustomRuleSource,
    LegacyItemRuleSource,
    NativeRuleSource,
    RuleEvaluator,
    RuleRepository,
    RuleStore,
)
from edcrules.settings import EngineSettings
from edcrules.storage import DataPointLookup
from edcrules.validation import ValidationOrchestrator
from edcrules.workflow import AssigneeResolver, WorkflowConfigProvider

logger = logging.getLogger(__name__)


@dataclass
class EdcRulesServices:
    """Container for the initialized engine services."""

    settings: EngineSettings
    engine: Engine
    formats: FormatRegistry
    rule_store: RuleStore
    repository: RuleRepository
    evaluator: RuleEvaluator
    lookup: DataPointLookup
    workflow: WorkflowConfigProvider | None
    assignees: AssigneeResolver
    query_store: QueryStore
    query_creator: QueryCreator
    orchestrator: ValidationOrchestrator
    management: RuleManagementService


def _ensure_sqlite_dir(config: DatabaseConfig) -> None:
    if config.is_sqlite and not config.is_memory:
        sqlite_path = config.url.replace("sqlite:///", "")
        if sqlite_path:
            Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)


def initialize_services(
    settings: EngineSettings | None = None,
    engine: Engine | None = None,
    create_schema: bool = True,
) -> EdcRulesServices:
    """Initialize all engine services.

    Args:
        settings: Engine settings, read from the environment when omitted
        engine: Existing SQLAlchemy engine, built from DatabaseConfig when omitted
        create_schema: Create missing tables; otherwise they must already exist
    """
    settings = settings or EngineSettings.from_env()

    register_all_builtins()
    register_formula_functions()

    if settings.format_types_path is not None:
        formats = FormatRegistry.load(settings.format_types_path)
    else:
        formats = default_registry()

    if engine is None:
        db_config = DatabaseConfig.from_env()
        _ensure_sqlite_dir(db_config)
        engine = create_db_engine(db_config)

    if create_schema:
        initialize_schema(engine)
    elif not table_exists(engine, "validation_rules"):
        raise RuntimeError("Table validation_rules is missing; run `edcrules db init`")

    users = SqlUserDirectory(engine)
    organizations = SqlOrganizationDirectory(engine)
    audit = SqlAuditRecorder(engine)
    lookup = DataPointLookup(engine)

    rule_store = RuleStore(engine, formats)
    implicit_sources = [LegacyItemRuleSource(engine)]
    if settings.native_rules_enabled and table_exists(engine, "native_rules"):
        implicit_sources.append(NativeRuleSource(engine))
    elif settings.native_rules_enabled:
        logger.warning("Native rules enabled but table native_rules is missing; skipping that source")
    repository = RuleRepository(
        CustomRuleSource(rule_store),
        implicit_sources,
        organizations=organizations,
        scope_policy=settings.scope_policy,
        instances=lookup,
    )
    evaluator = RuleEvaluator(formats, FormulaEvaluator())

    workflow = WorkflowConfigProvider(engine, users) if settings.workflow_config_enabled else None
    assignees = AssigneeResolver(users, workflow, lookup)
    query_store = QueryStore(engine)
    query_creator = QueryCreator(engine, assignees, audit, query_store)

    orchestrator = ValidationOrchestrator(repository, evaluator, lookup, query_creator)
    management = RuleManagementService(engine, rule_store, repository, evaluator, audit)

    logger.info(
        "Validation engine ready (%d formats, native rules %s, workflow config %s)",
        len(formats),
        "on" if settings.native_rules_enabled else "off",
        "on" if workflow is not None else "off",
    )

    return EdcRulesServices(
        settings=settings,
        engine=engine,
        formats=formats,
        rule_store=rule_store,
        repository=repository,
        evaluator=evaluator,
        lookup=lookup,
        workflow=workflow,
        assignees=assignees,
        query_store=query_store,
        query_creator=query_creator,
        orchestrator=orchestrator,
        management=management,
    )
