"""Database configuration and schema."""

from edcrules.persistence.config import DatabaseConfig, create_db_engine
from edcrules.persistence.schema import initialize_schema, metadata, table_exists

__all__ = [
    "DatabaseConfig",
    "create_db_engine",
    "initialize_schema",
    "metadata",
    "table_exists",
]
