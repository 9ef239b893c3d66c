"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from app.config import get_settings
from app.errors import MatchEngineError, StorageFailure
from app import models  # noqa: F401  (registers tables on SQLModel.metadata)

logger = logging.getLogger(__name__)

settings = get_settings()

T = TypeVar("T")


def get_database_url(url: str) -> str:
    """Convert database URL to async format."""
    # SQLite
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def _enable_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two sessions can both read
    a match as LIVE before either takes the write lock. IMMEDIATE takes the
    reserved lock up front, serializing writers like a row lock would.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with per-dialect pool settings."""
    async_url = get_database_url(url)
    engine_kwargs = {"echo": echo}

    if async_url.startswith("sqlite"):
        # SQLite-specific settings
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        # PostgreSQL-specific settings
        engine_kwargs["pool_pre_ping"] = True  # Verify connection before checkout
        engine_kwargs["pool_size"] = 10
        engine_kwargs["max_overflow"] = 20
        engine_kwargs["pool_recycle"] = 300
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_reset_on_return"] = "rollback"
        # Statement timeout: a timed-out mutation surfaces as StorageFailure
        engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": "30000"}
        }

    engine = create_async_engine(async_url, **engine_kwargs)
    if async_url.startswith("sqlite"):
        _enable_sqlite_immediate_transactions(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async_engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
AsyncSessionLocal = build_session_factory(async_engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency for read paths that open their own (retryable) sessions."""
    return AsyncSessionLocal


async def init_db(engine: AsyncEngine = async_engine) -> None:
    """Initialize database tables."""
    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created successfully.")


async def close_db(engine: AsyncEngine = async_engine) -> None:
    """Close database connections."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed.")


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a multi-step mutation as one transaction.

    Commits on success. On any failure the whole transaction is rolled back,
    so no partial state is ever visible. Driver-level failures (lock timeout,
    dropped connection, statement timeout) are surfaced as StorageFailure and
    are never retried: mutations are not idempotent.

    Example:
        async with unit_of_work(session):
            await transition(session, match_id, ...)
    """
    try:
        yield session
        await session.commit()
    except MatchEngineError:
        await session.rollback()
        raise
    except DBAPIError as e:
        await session.rollback()
        logger.error(f"[UOW] Transaction failed, rolled back: {e}")
        raise StorageFailure("The operation could not be committed. Please retry.") from e
    except BaseException:
        await session.rollback()
        raise


async def read_with_retry(
    session_factory: async_sessionmaker[AsyncSession],
    operation: Callable[[AsyncSession], Awaitable[T]],
    retries: int = 1,
) -> T:
    """
    Run an idempotent read in a fresh session, retrying once on connection errors.

    Only reads go through here. A second failure is surfaced as StorageFailure.
    """
    for attempt in range(retries + 1):
        async with session_factory() as session:
            try:
                return await operation(session)
            except (InterfaceError, OperationalError) as e:
                if attempt < retries:
                    logger.warning(
                        f"Database read failed (attempt {attempt + 1}/{retries + 1}): {e}. Retrying..."
                    )
                    continue
                raise StorageFailure("The read could not be completed. Please retry.") from e
    raise StorageFailure("The read could not be completed.")
