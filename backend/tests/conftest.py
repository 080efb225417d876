"""
Pytest fixtures for test database, client, and requester identity.

Each test gets its own SQLite file. Transactions open with BEGIN IMMEDIATE,
so concurrent sessions are serialized by the database the same way the
pool-row lock serializes them on PostgreSQL.
"""

import os

# Settings are cached on first use: configure before importing the app
os.environ["REDIS_ENABLED"] = "false"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from waitroom.main import app
from waitroom.core.config import get_settings
from waitroom.db.base import Base
from waitroom.db.session import get_db, get_session_factory, make_engine, make_session_factory
from waitroom.models import TicketPool, WaitingListEntry  # noqa: F401 - register tables
from waitroom.repositories.ticket_pool_repository import TicketPoolRepository
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.interfaces.polling_notifier import PollingNotifier
from waitroom.services.notifier_factory import set_notifier
from waitroom.services.pool_service import upsert_pool

# Fixed clock for deterministic offer windows
NOW = 1_700_000_000_000
WINDOW = get_settings().offer_window_ms
EVENT = "evt-1"


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database file per test with every table created."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'waitroom.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def polling_notifier():
    """No Redis in tests; observers poll."""
    notifier = PollingNotifier()
    set_notifier(notifier)
    yield notifier
    set_notifier(None)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB dependencies pointed at the test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def requester_headers(requester_id: str) -> dict:
    return {"X-Requester-Id": requester_id}


async def make_pool(
    session_factory,
    total: int,
    event_id: str = EVENT,
    ticket_type: Optional[str] = None,
    committed: int = 0,
) -> TicketPool:
    """Create a pool, optionally with tickets already sold."""
    async with session_factory() as db:
        await upsert_pool(db, event_id, total, ticket_type, now=NOW)
        if committed:
            pool = await TicketPoolRepository(db).get(event_id, ticket_type)
            await TicketPoolRepository(db).commit_tickets(pool.id, committed)
            await db.commit()
        pool = await TicketPoolRepository(db).get(event_id, ticket_type)
        await db.commit()
        return pool


async def fetch_entry(session_factory, entry_id: int) -> WaitingListEntry:
    """Read an entry in a short-lived session so no transaction stays open."""
    async with session_factory() as db:
        entry = await WaitingListRepository(db).get_by_id(entry_id)
        await db.commit()
        return entry


async def fetch_pool(session_factory, event_id: str = EVENT, ticket_type: Optional[str] = None) -> TicketPool:
    async with session_factory() as db:
        pool = await TicketPoolRepository(db).get(event_id, ticket_type)
        await db.commit()
        return pool
