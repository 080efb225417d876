"""
Async engine, session factory and transaction helpers.

Every waiting-list mutation runs inside `atomic()`: one transaction that is
committed as a unit or rolled back, with driver-level connection/lock errors
translated into TransientStoreError so callers know the call is retry-safe.

SQLite (local runs and tests) opens every transaction with BEGIN IMMEDIATE,
which takes the database write lock up front. That gives SQLite the same
serialization the pool-row lock gives PostgreSQL.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from waitroom.core.config import get_settings
from waitroom.core.errors import TransientStoreError
from waitroom.core.logging import get_logger

logger = get_logger(__name__)


def make_engine(database_url: str, **kw) -> AsyncEngine:
    settings = get_settings()
    kw.setdefault("pool_pre_ping", True)

    if database_url.startswith("postgresql"):
        kw.setdefault("pool_size", settings.DB_POOL_SIZE)
        kw.setdefault("max_overflow", settings.DB_MAX_OVERFLOW)
        kw.setdefault("pool_timeout", settings.DB_POOL_TIMEOUT)
        kw.setdefault("pool_recycle", settings.DB_POOL_RECYCLE)

    engine = create_async_engine(database_url, **kw)

    if database_url.startswith("sqlite"):
        busy_timeout = settings.SQLITE_BUSY_TIMEOUT_MS

        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_connect(dbapi_connection, _):
            # Take over transaction control from the driver
            dbapi_connection.isolation_level = None
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute(f"PRAGMA busy_timeout={int(busy_timeout)};")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@lru_cache()
def get_engine() -> AsyncEngine:
    return make_engine(get_settings().DATABASE_URL)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _session_factory()


@lru_cache()
def _session_factory() -> async_sessionmaker[AsyncSession]:
    return make_session_factory(get_engine())


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run the enclosed statements as one transaction."""
    try:
        yield db
        await db.commit()
    except (OperationalError, InterfaceError) as exc:
        await db.rollback()
        logger.warning("store_transient_error", error=str(exc.orig or exc))
        raise TransientStoreError(str(exc.orig or exc)) from exc
    except Exception:
        await db.rollback()
        raise
