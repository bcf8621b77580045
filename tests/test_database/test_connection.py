"""Tests for database connection module.

Tests the Database pool wrapper and table initialization with the
asyncpg pool mocked out.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from database.connection import Database


@pytest.fixture
def pool():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="CREATE TABLE")
    conn.fetchval = AsyncMock(return_value=42)

    pool = MagicMock()
    pool.acquire = AsyncMock(return_value=conn)
    pool.release = AsyncMock()
    pool.close = AsyncMock()
    pool.conn = conn
    return pool


class TestDatabaseConnection:
    """Test suite for Database class."""

    @pytest.mark.asyncio
    async def test_get_connection_requires_initialize(self):
        db = Database("postgresql://localhost/test")

        with pytest.raises(RuntimeError, match="not initialized"):
            await db.get_connection()

    @pytest.mark.asyncio
    async def test_initialize_creates_tables(self, pool):
        """Initialization creates the pool and every pipeline table."""
        with patch("database.connection.asyncpg.create_pool", AsyncMock(return_value=pool)) as create_pool:
            db = Database("postgresql://localhost/test", min_size=1, max_size=4)
            await db.initialize()

        create_pool.assert_awaited_once_with("postgresql://localhost/test", min_size=1, max_size=4)
        statements = " ".join(call.args[0] for call in pool.conn.execute.call_args_list)
        for table in ("owners", "copy_configs", "copy_records", "fetched_events", "execution_jobs"):
            assert f"CREATE TABLE IF NOT EXISTS {table}" in statements
        pool.release.assert_awaited_once_with(pool.conn)

    @pytest.mark.asyncio
    async def test_fetchval_releases_connection(self, pool):
        with patch("database.connection.asyncpg.create_pool", AsyncMock(return_value=pool)):
            db = Database("postgresql://localhost/test")
            await db.initialize()
        pool.release.reset_mock()

        assert await db.fetchval("SELECT 42") == 42
        pool.release.assert_awaited_once_with(pool.conn)

    @pytest.mark.asyncio
    async def test_close(self, pool):
        with patch("database.connection.asyncpg.create_pool", AsyncMock(return_value=pool)):
            db = Database("postgresql://localhost/test")
            await db.initialize()

        await db.close()
        await db.close()

        pool.close.assert_awaited_once()
