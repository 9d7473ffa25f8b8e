"""Async database engine, session factory and schema management.

This module centralizes the async SQLAlchemy session dependency in the
core layer so it can be reused by the API, the ingestion pipeline and
the migration tooling.
"""

from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from billtracker.core.config import settings
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models.

    Server-generated timestamps are fetched on insert so instances stay
    readable after commit without a lazy load.
    """

    __mapper_args__ = {"eager_defaults": True}


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    Pool sizing and the prepared statement cache only apply to PostgreSQL;
    SQLite (used in tests) takes the defaults.

    Args:
        url: SQLAlchemy database URL
        echo: Whether to log emitted SQL

    Returns:
        AsyncEngine: Configured engine
    """
    engine_kwargs: Dict[str, Any] = {"echo": echo, "future": True}
    if url.startswith("postgresql"):
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            # Disable prepared statement cache for PgBouncer compatibility
            connect_args={"statement_cache_size": 0},
        )
    return create_async_engine(url, **engine_kwargs)


# Create async engine
engine = build_engine(settings.database_url, echo=settings.database_echo)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting async database session.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_maker() as session:
        yield session



class DatabaseClient:
    """Startup checks, schema creation and health reporting for one engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def connect(self) -> None:
        """Run ``SELECT 1``; connection errors are logged and re-raised."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception:
            LOGGER.error("Database connection failed", exc_info=True)
            raise
        LOGGER.info("Database connection successful", extra={"dialect": self.engine.dialect.name})

    async def create_tables(self) -> None:
        """Create missing billing tables; existing tables are left as they are."""
        # Register every model on Base.metadata
        from billtracker.database import models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            LOGGER.error("Failed to create database tables", exc_info=True, extra={"error": str(e)})
            raise
        LOGGER.info("Billing tables created/verified")

    async def health_check(self) -> Dict[str, Any]:
        """Report whether the database answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                value = await conn.scalar(text("SELECT 1"))
        except Exception as e:
            LOGGER.error("Database health check failed", extra={"error": str(e)})
            return {"status": "unhealthy", "connected": False, "error": str(e)}

        return {
            "status": "healthy" if value == 1 else "unhealthy",
            "connected": True,
            "database": self.engine.dialect.name,
        }

    async def dispose(self) -> None:
        await self.engine.dispose()
        LOGGER.info("Database connection pool closed")


db_client = DatabaseClient(engine)


async def init_database(create_schema: bool = True) -> None:
    """Check connectivity and, outside production, create missing tables.

    Args:
        create_schema: Whether to create missing tables; production relies
            on the Alembic migrations instead
    """
    await db_client.connect()
    if create_schema:
        await db_client.create_tables()


async def close_database() -> None:
    await db_client.dispose()
