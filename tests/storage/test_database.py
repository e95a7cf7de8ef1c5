"""Tests for database connection management."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect

from kizo_indexer.storage.database import (
    DatabaseManager,
    DatabaseUnavailableError,
    _normalize_async_database_url,
)


class TestNormalizeUrl:
    """Tests for URL normalization."""

    def test_sync_postgres_url_upgraded(self) -> None:
        assert _normalize_async_database_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_async_urls_unchanged(self) -> None:
        assert _normalize_async_database_url("postgresql+asyncpg://h/db") == "postgresql+asyncpg://h/db"
        assert _normalize_async_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


class TestDatabaseManager:
    """Tests for DatabaseManager."""

    @pytest.mark.asyncio
    async def test_init_schema_creates_tables(self, tmp_path) -> None:
        db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'schema.db'}")
        try:
            await db.check_connection()
            await db.init_schema_async()
            async with db.get_async_session() as session:
                conn = await session.connection()
                tables = await conn.run_sync(lambda c: set(inspect(c).get_table_names()))
        finally:
            await db.dispose_async()

        assert tables == {
            "markets",
            "bets",
            "market_resolutions",
            "winnings_claims",
            "yield_deposits",
            "protocol_fees",
        }

    @pytest.mark.asyncio
    async def test_check_connection_unavailable(self, tmp_path) -> None:
        db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'x.db'}")
        try:
            with pytest.raises(DatabaseUnavailableError):
                await db.check_connection()
        finally:
            await db.dispose_async()

    @pytest.mark.asyncio
    async def test_dispose_resets_factory(self, tmp_path) -> None:
        db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'x.db'}")
        first = db.session_factory
        assert db.session_factory is first
        await db.dispose_async()
        assert db.session_factory is not first
        await db.dispose_async()
