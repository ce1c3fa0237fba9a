"""
Database configuration and session management
"""

from typing import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
import logging

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from ticket_holds.config import settings
from ticket_holds.core.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

# PostgreSQL lock_not_available
PG_LOCK_NOT_AVAILABLE = "55P03"
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite has no row locks, so every transaction is opened with
    BEGIN IMMEDIATE: writers serialise on the database lock and readers inside
    a transaction never observe a half-applied redemption.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("timeout", SQLITE_BUSY_TIMEOUT_SECONDS)
        engine = create_async_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection, connection_record):
            # let the "begin" listener below emit BEGIN itself
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_async_engine(url, **kwargs)


# Create async engine
if settings.is_testing or settings.DATABASE_URL.startswith("sqlite"):
    # NullPool doesn't accept pool parameters
    engine: AsyncEngine = build_engine(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        poolclass=NullPool,
    )
else:
    engine: AsyncEngine = build_engine(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        poolclass=AsyncAdaptedQueuePool,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async session factory
async_session = build_session_factory(engine)

# Create declarative base
Base = declarative_base()


async def init_db(bind: AsyncEngine = engine):
    """
    Create all tables known to the metadata
    """
    # Import models so they are registered on Base.metadata
    import ticket_holds.models  # noqa: F401

    try:
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db(bind: AsyncEngine = engine):
    """
    Close database connections
    """
    await bind.dispose()
    logger.info("Database connections closed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get a read session; writes go through DatabaseManager.atomic()
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def is_lock_timeout(error: DBAPIError) -> bool:
    """Tell a lock-wait timeout apart from any other driver error."""
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == PG_LOCK_NOT_AVAILABLE:
        return True
    message = str(orig or error).lower()
    return "database is locked" in message or "lock timeout" in message


class DatabaseManager:
    """
    Transaction handling for the engine's services
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        lock_timeout_ms: int = settings.DB_LOCK_TIMEOUT_MS,
    ):
        self.session_factory = session_factory
        self.lock_timeout_ms = lock_timeout_ms
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[AsyncSession]:
        """
        Open a new session inside one transaction.

        Commits on normal exit and rolls back on any exception. On PostgreSQL
        the transaction gets a bounded lock wait, and a lock-wait failure from
        either backend is re-raised as a retryable LockTimeoutError.
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    if session.bind.dialect.name == "postgresql":
                        await session.execute(
                            text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}")
                        )
                    yield session
            except DBAPIError as e:
                if is_lock_timeout(e):
                    self.logger.warning(f"Lock wait timed out: {e}")
                    raise LockTimeoutError() from e
                self.logger.error(f"Transaction rolled back: {type(e).__name__}: {e}")
                raise

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[AsyncSession]:
        """
        Session for read-only queries
        """
        async with self.session_factory() as session:
            yield session


# Create global database manager
db_manager = DatabaseManager()


def get_db_manager() -> DatabaseManager:
    return db_manager
