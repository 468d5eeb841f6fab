"""
Async engine and session factory.

PostgreSQL is the production store; the slot row lock (SELECT ... FOR UPDATE)
is the per-slot serialization point for reservations.

SQLite (local development and the test suite) has no row locks. Units of work
that write call `begin_write()` first, which opens their transaction with
BEGIN IMMEDIATE: writers queue on the database lock for up to
SQLITE_BUSY_TIMEOUT seconds instead of failing on upgrade. Every other
transaction opens with a plain BEGIN, so reads never wait behind a writer.
"""

from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings

SQLITE_BEGIN_OPTION = "sqlite_begin_mode"


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    settings = get_settings()

    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT},
        )
        _configure_sqlite(engine)
        return engine

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def _configure_sqlite(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Take over BEGIN from the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION)
        conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


async def begin_write(db: AsyncSession) -> None:
    """
    Procure the session's connection for a read-write unit of work.

    Must run before the first statement of the transaction; the option only
    applies when the connection is procured. Backends other than SQLite
    ignore it.
    """
    await db.connection(execution_options={SQLITE_BEGIN_OPTION: "IMMEDIATE"})


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@lru_cache()
def get_engine() -> AsyncEngine:
    settings = get_settings()
    return create_engine(settings.DATABASE_URL, echo=settings.DEBUG)


@lru_cache()
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return create_session_factory(get_engine())


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
