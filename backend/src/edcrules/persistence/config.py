"""Where the engine's database lives and how to connect to it."""

from __future__ import annotations

import os
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

DEFAULT_URL = "sqlite:///edcrules.db"
_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


@dataclass
class DatabaseConfig:
    """A SQLite or PostgreSQL connection URL for the EDC database."""

    url: str

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """EDCRULES_DATABASE_URL, then DATABASE_URL, then a local SQLite file."""
        return cls(
            url=os.environ.get("EDCRULES_DATABASE_URL")
            or os.environ.get("DATABASE_URL")
            or DEFAULT_URL
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.split(":", 1)[0].startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.split(":", 1)[0].startswith("postgresql")

    @property
    def is_memory(self) -> bool:
        return self.url in _MEMORY_URLS

    @property
    def sqlalchemy_url(self) -> str:
        """The URL with a bare postgresql:// scheme pinned to the psycopg 3 driver."""
        scheme, sep, rest = self.url.partition("://")
        if scheme == "postgresql":
            return f"postgresql+psycopg{sep}{rest}"
        return self.url


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Build the engine for `config`.

    In-memory SQLite shares one connection across the process, otherwise
    every pooled connection would see its own empty database.
    """
    if config.is_memory:
        return create_engine(
            config.sqlalchemy_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if config.is_postgresql:
        return create_engine(config.sqlalchemy_url, pool_pre_ping=True)
    if config.is_sqlite:
        return create_engine(config.sqlalchemy_url)
    raise ValueError(f"Unsupported database URL: {config.url}")
