"""
Database Connection Module
Handles the async SQLAlchemy engine (PostgreSQL via psycopg in production,
SQLite via aiosqlite in development and tests).
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from orderflow.core.config import get_settings

settings = get_settings()


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create the async engine for ``database_url``.

    SQLite gets a fresh connection per session (no pooling across event
    loops) and every transaction opens with BEGIN IMMEDIATE, so concurrent
    writers queue on the database lock instead of failing half way through
    a reservation.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=settings.database_echo,
            poolclass=NullPool,
            connect_args={"timeout": settings.sqlite_busy_timeout},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_async_engine(
        database_url,
        echo=settings.database_echo,
        pool_size=5,  # Connection pool size
        max_overflow=10,  # Extra connections when pool is full
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_maker() -> async_sessionmaker:
    """Dependency returning the session factory used by the services."""
    return async_session_maker


async def init_db() -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Make sure every model is registered on Base.metadata
    import orderflow.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
