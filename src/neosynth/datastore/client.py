"""Datastore for users, credentials, sessions and API keys.

Services open one short-lived session per operation through
:meth:`Datastore.session`. State changes that must happen at most once
(burning a code, refreshing a session) are single conditional UPDATE
statements whose rowcount decides the outcome.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from neosynth.datastore.engines import create_engine
from neosynth.engine.models.base import Base

if TYPE_CHECKING:
    from neosynth.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

_ERR_NOT_OPEN = "Datastore is not open. Call open() first."


class Datastore:
    """Owns the async engine and the session factory.

    Usage::

        ds = Datastore(db_config)
        await ds.open()
        async with ds.session() as session:
            ...
        await ds.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Return the underlying async engine.

        Raises:
            RuntimeError: If the datastore is not open.
        """
        if self._engine is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def open(self, *, create_tables: bool = True) -> None:
        """Create the engine and, unless told otherwise, any missing auth tables.

        Versioned schema migrations are run outside this service; table
        creation here only fills in what does not exist yet.
        """
        self._engine = create_engine(self._config)
        # Rows are read after commit (e.g. a freshly issued session).
        self._sessions = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        if create_tables:
            await self.create_tables()
        logger.info("Datastore opened (%s)", self._config.engine)

    async def create_tables(self) -> None:
        """Create every auth table that is not there yet."""
        import neosynth.engine.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Round-trip a trivial query. False when the database is unreachable."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Datastore ping failed", exc_info=True)
            return False
        return True

    async def close(self) -> None:
        """Dispose the engine and release all connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None

    def session(self) -> AsyncSession:
        """Create a new async session. Use as an async context manager.

        Raises:
            RuntimeError: If the datastore is not open.
        """
        if self._sessions is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._sessions()
