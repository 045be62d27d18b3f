"""Tests for the datastore: lifecycle, table creation and SQLite connection setup."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import delete, select, text

from neosynth.config.settings import DatabaseConfig
from neosynth.datastore.client import Datastore
from neosynth.engine.models.base import utcnow
from neosynth.engine.models.credential import PasswordCredential
from neosynth.engine.models.user import User

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@pytest.fixture
async def datastore(tmp_path: Path) -> AsyncIterator[Datastore]:
    ds = Datastore(DatabaseConfig(dsn=f"sqlite+aiosqlite:///{tmp_path / 'ds.db'}"))
    await ds.open()
    yield ds
    await ds.close()


class TestLifecycle:
    def test_session_before_open(self) -> None:
        ds = Datastore(DatabaseConfig(dsn="sqlite+aiosqlite://"))
        assert not ds.is_open
        with pytest.raises(RuntimeError, match="not open"):
            ds.session()
        with pytest.raises(RuntimeError):
            _ = ds.engine

    async def test_ping(self, datastore: Datastore) -> None:
        assert await datastore.ping()

    async def test_ping_after_close(self, datastore: Datastore) -> None:
        await datastore.close()
        assert not await datastore.ping()
        # Closing twice is harmless.
        await datastore.close()

    async def test_open_without_tables(self, tmp_path: Path) -> None:
        ds = Datastore(DatabaseConfig(dsn=f"sqlite+aiosqlite:///{tmp_path / 'bare.db'}"))
        await ds.open(create_tables=False)
        async with ds.engine.connect() as conn:
            rows = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
            assert rows.all() == []
        await ds.close()


class TestSqliteSetup:
    async def test_tables_created(self, datastore: Datastore) -> None:
        async with datastore.engine.connect() as conn:
            rows = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
            names = {r[0] for r in rows}
        assert {"users", "user_auth", "user_security", "user_sessions", "api_keys"} <= names

    async def test_wal_for_file_database(self, datastore: Datastore) -> None:
        async with datastore.engine.connect() as conn:
            mode = (await conn.execute(text("PRAGMA journal_mode"))).scalar()
        assert mode == "wal"

    async def test_credentials_cascade_with_user(self, datastore: Datastore) -> None:
        async with datastore.session() as session:
            session.add(User(user_id="alice", username="alice", is_admin=False, auth_enabled=True))
            await session.flush()
            session.add(
                PasswordCredential(
                    user_id="alice", password_hash="x", salt="y", last_password_change=utcnow()
                )
            )
            await session.commit()

        async with datastore.session() as session:
            await session.execute(delete(User).where(User.user_id == "alice"))
            await session.commit()
            remaining = await session.execute(select(PasswordCredential))
            assert remaining.scalars().all() == []
