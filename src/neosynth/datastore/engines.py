"""Async engine factory for the auth tables (aiosqlite or asyncpg)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

if TYPE_CHECKING:
    from neosynth.config.settings import DatabaseConfig

# Seconds a SQLite writer waits on a locked database before failing.
SQLITE_BUSY_TIMEOUT = 15


def _is_sqlite(dsn: str) -> bool:
    return dsn.startswith("sqlite")


def _sqlite_on_connect(dbapi_connection: Any, _record: Any) -> None:
    # Credential rows cascade from their user; SQLite only honours that with
    # foreign keys switched on per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_file_on_connect(dbapi_connection: Any, record: Any) -> None:
    _sqlite_on_connect(dbapi_connection, record)
    # WAL lets gate lookups read while a code is being burned.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """Build the async engine described by *config*.

    SQLite connections get a busy timeout and foreign keys; file databases
    also switch to WAL. Other backends get a pre-pinged connection pool
    sized from the idle/open limits.
    """
    kwargs: dict[str, Any] = {"echo": config.debug_sql}

    if not _is_sqlite(config.dsn):
        kwargs["pool_size"] = config.max_idle_connections
        kwargs["max_overflow"] = max(0, config.max_open_connections - config.max_idle_connections)
        kwargs["pool_pre_ping"] = True
        return create_async_engine(config.dsn, **kwargs)

    # Concurrent conditional updates serialize on the database lock.
    kwargs["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT}
    engine = create_async_engine(config.dsn, **kwargs)
    in_memory = ":memory:" in config.dsn or config.dsn.rstrip("/").endswith("sqlite+aiosqlite:")
    listener = _sqlite_on_connect if in_memory else _sqlite_file_on_connect
    event.listen(engine.sync_engine, "connect", listener)
    return engine
