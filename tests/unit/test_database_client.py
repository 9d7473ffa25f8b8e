"""Unit tests for DatabaseClient against throwaway SQLite files."""

import pytest
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

from billtracker.core.database import DatabaseClient


@pytest.fixture
async def client(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'client.db'}")
    yield DatabaseClient(engine)
    await engine.dispose()


@pytest.fixture
async def unreachable_client(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'client.db'}")
    yield DatabaseClient(engine)
    await engine.dispose()


class TestDatabaseClient:
    """Tests for DatabaseClient."""

    async def test_create_tables(self, client):
        await client.connect()
        await client.create_tables()
        # Existing tables are left alone on a second run
        await client.create_tables()

        async with client.engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

        assert {"service_accounts", "bills", "line_items", "alerts", "ingestion_jobs"} <= set(tables)

    async def test_health_check_healthy(self, client):
        health = await client.health_check()

        assert health == {"status": "healthy", "connected": True, "database": "sqlite"}

    async def test_health_check_unhealthy(self, unreachable_client):
        """Test that a failing connection is reported rather than raised."""
        health = await unreachable_client.health_check()

        assert health["status"] == "unhealthy"
        assert health["connected"] is False
        assert health["error"]

    async def test_connect_raises(self, unreachable_client):
        with pytest.raises(Exception):
            await unreachable_client.connect()
