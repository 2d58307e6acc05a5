"""Database engines and sessions for the content and staging stores.

The content store (documents, document files, links) and the staging store
(rows deposited by the external pipeline) are separate databases with
independent transactions. Each gets its own declarative base, engine and
session factory.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from doclink.core.config import settings
from doclink.core.exceptions import ConfigurationError, DatabaseError
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for content store models."""

    pass


class StagingBase(DeclarativeBase):
    """Base class for staging store models."""

    pass


def build_engine(url: str, pool_size: int, max_overflow: int, echo: bool) -> AsyncEngine:
    """Create an async engine, applying pool settings only where they apply.

    Args:
        url: Async database URL
        pool_size: Connection pool size (server databases only)
        max_overflow: Pool overflow (server databases only)
        echo: SQL query logging

    Returns:
        AsyncEngine: Configured engine
    """
    if not url:
        raise ConfigurationError("Database URL is not configured")

    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("postgresql+asyncpg"):
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            # Disable prepared statement cache for PgBouncer compatibility
            connect_args={"statement_cache_size": 0},
        )
    return create_async_engine(url, **kwargs)


# Create async engines
engine = build_engine(
    settings.database_url,
    settings.db.pool_size,
    settings.db.max_overflow,
    settings.db.echo,
)
staging_engine = build_engine(
    settings.staging_database_url,
    settings.staging_db.pool_size,
    settings.staging_db.max_overflow,
    settings.staging_db.echo,
)

# Create async session factories
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
staging_session_maker = async_sessionmaker(staging_engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting a content store session.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_staging_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting a staging store session.

    Yields:
        AsyncSession: Staging database session
    """
    async with staging_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


class DatabaseClient:
    """Database client with connection and schema management."""

    def __init__(self, engine: AsyncEngine, metadata: MetaData, name: str):
        """Initialize database client.

        Args:
            engine: SQLAlchemy async engine
            metadata: Metadata holding the tables this database owns
            name: Short name used in log lines and health output
        """
        self.engine = engine
        self.metadata = metadata
        self.name = name

    async def connect(self) -> bool:
        """Test database connection."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                await conn.commit()

            LOGGER.info(f"Database connection successful ({self.name})")
            return True

        except Exception as e:
            LOGGER.error(f"Database connection failed ({self.name})", exc_info=True)
            raise DatabaseError(f"Could not connect to the {self.name} database", original_error=e)

    async def disconnect(self) -> None:
        """Close database connection."""
        try:
            await self.engine.dispose()
            LOGGER.info(f"Database connection closed ({self.name})")
        except Exception as e:
            LOGGER.error(
                "Error closing database connection",
                exc_info=True,
                extra={"database": self.name, "error": str(e)},
            )

    async def create_tables(self) -> None:
        """Create all tables owned by this database.

        This will create tables that don't exist without dropping existing ones.
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(self.metadata.create_all)

            LOGGER.info(f"Database tables created/verified successfully ({self.name})")

        except Exception as e:
            LOGGER.error(
                "Failed to create database tables",
                exc_info=True,
                extra={"database": self.name, "error": str(e)},
            )
            raise

    async def health_check(self) -> dict:
        """Check database health."""
        try:
            async with self.engine.connect() as conn:
                val = await conn.scalar(text("SELECT 1"))

            return {
                "status": "healthy",
                "connected": True,
                "database": self.name,
                "latency_test": "passed" if val == 1 else "failed",
            }

        except Exception as e:
            LOGGER.error("Database health check failed", extra={"database": self.name, "error": str(e)})
            return {
                "status": "unhealthy",
                "connected": False,
                "database": self.name,
                "error": str(e),
            }


# Global database client instances
db_client = DatabaseClient(engine, Base.metadata, "content")
staging_db_client = DatabaseClient(staging_engine, StagingBase.metadata, "staging")


async def init_database(create_tables: bool = True) -> None:
    """Initialize both database connections and optionally create tables.

    Args:
        create_tables: Whether to create missing tables on startup
    """
    # Make sure every model is registered on its metadata
    import doclink.database.models  # noqa: F401
    import doclink.database.staging_models  # noqa: F401

    try:
        LOGGER.info("Initializing database connections...")

        for client in (db_client, staging_db_client):
            await client.connect()
            if create_tables:
                await client.create_tables()

        LOGGER.info("Database initialization completed")

    except Exception as e:
        LOGGER.error(
            "Database initialization failed",
            exc_info=True,
            extra={"error": str(e)},
        )
        raise


async def close_database() -> None:
    """Close both database connections."""
    LOGGER.info("Closing database connections...")
    for client in (db_client, staging_db_client):
        await client.disconnect()
    LOGGER.info("Database connections closed successfully")
