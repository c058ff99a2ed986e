"""Connection helpers shared by the SQL-backed services."""

from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Iterator

from sqlalchemy.engine import Connection, Engine


@contextmanager
def connection(engine: Engine, conn: Connection | None = None) -> Iterator[Connection]:
    """Use the caller's connection (and its transaction) or open a new one."""
    if conn is not None:
        yield conn
        return
    with engine.connect() as own:
        yield own


@contextmanager
def transaction(engine: Engine, conn: Connection | None = None) -> Iterator[Connection]:
    """Join the caller's transaction or run in a new one that commits on exit."""
    if conn is not None:
        yield conn
        return
    with engine.begin() as own:
        yield own


def utc_now() -> str:
    return datetime.now(UTC).isoformat()
