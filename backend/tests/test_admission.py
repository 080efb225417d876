"""
Tests for joining the waiting list, including concurrency scenarios.
"""

import asyncio

import pytest

from waitroom.core.errors import PoolNotFoundError, QuantityExceedsPoolError
from waitroom.models.waiting_list import EntryStatus
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.admission_service import join_queue
from waitroom.services.sweeper_service import expire_stale_offers, promote_next

from conftest import EVENT, NOW, WINDOW, fetch_entry, fetch_pool, make_pool


async def _join(session_factory, requester_id, quantity=1, ticket_type=None, now=NOW, event_id=EVENT):
    async with session_factory() as db:
        return await join_queue(db, event_id, requester_id, quantity, ticket_type, now)


@pytest.mark.asyncio
async def test_join_offers_immediately_when_capacity_free(session_factory):
    """Capacity 10, nothing held: the join is offered with a fresh window."""
    await make_pool(session_factory, 10)

    result = await _join(session_factory, "u1", quantity=2)

    assert result.created
    assert result.status == EntryStatus.OFFERED.value
    assert result.entry.quantity == 2
    assert result.entry.offer_expires_at == NOW + WINDOW


@pytest.mark.asyncio
async def test_join_waits_when_pool_fully_offered(session_factory):
    """Capacity 2 held by one offer: the next requester waits."""
    await make_pool(session_factory, 2)
    await _join(session_factory, "u1", quantity=2)

    result = await _join(session_factory, "u2", quantity=1)

    assert result.created
    assert result.status == EntryStatus.WAITING.value
    assert result.entry.offer_expires_at is None


@pytest.mark.asyncio
async def test_expiry_then_promotion(session_factory):
    """u1's offer lapses; expire then promote hands the tickets to u2."""
    await make_pool(session_factory, 2)
    first = await _join(session_factory, "u1", quantity=2)
    second = await _join(session_factory, "u2", quantity=1)

    later = NOW + WINDOW + 1
    async with session_factory() as db:
        expired = await expire_stale_offers(db, later)
        promoted = await promote_next(db, EVENT, now=later)

    assert [e.entry_id for e in expired] == [first.entry.id]
    assert promoted.id == second.entry.id
    assert promoted.status == EntryStatus.OFFERED.value
    assert promoted.offer_expires_at == later + WINDOW

    assert (await fetch_entry(session_factory, first.entry.id)).status == EntryStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_duplicate_join_returns_existing_entry(session_factory):
    """A second join by a waiting requester returns the same entry, no new row."""
    await make_pool(session_factory, 1)
    await _join(session_factory, "u0", quantity=1)
    first = await _join(session_factory, "u1")
    assert first.status == EntryStatus.WAITING.value

    again = await _join(session_factory, "u1", quantity=3)

    assert again.already_active
    assert again.entry.id == first.entry.id
    assert again.entry.quantity == 1
    async with session_factory() as db:
        counts = await WaitingListRepository(db).count_by_status(EVENT, NOW)
        assert counts[EntryStatus.WAITING] == 1
        await db.commit()


@pytest.mark.asyncio
async def test_join_unknown_pool_raises(session_factory):
    with pytest.raises(PoolNotFoundError):
        await _join(session_factory, "u1", event_id="no-such-event")


@pytest.mark.asyncio
async def test_join_quantity_larger_than_pool_rejected(session_factory):
    """A request that could never be served is refused instead of queued forever."""
    await make_pool(session_factory, 3)

    with pytest.raises(QuantityExceedsPoolError):
        await _join(session_factory, "u1", quantity=4)


@pytest.mark.asyncio
async def test_join_counts_committed_tickets(session_factory):
    """Sold tickets reduce what can be offered."""
    await make_pool(session_factory, 5, committed=4)

    big = await _join(session_factory, "u1", quantity=2)
    small = await _join(session_factory, "u2", quantity=1)

    assert big.status == EntryStatus.WAITING.value
    # u2 fits but must not jump ahead of u1
    assert small.status == EntryStatus.WAITING.value


@pytest.mark.asyncio
async def test_newcomer_does_not_skip_waiting_entries(session_factory):
    """Freed capacity goes to the FIFO head before any newcomer."""
    await make_pool(session_factory, 2)
    holder = await _join(session_factory, "u1", quantity=2)
    waiting = await _join(session_factory, "u2", quantity=1)

    # u1's offer lapses; u3 joins before any sweep ran
    newcomer = await _join(session_factory, "u3", quantity=1, now=NOW + WINDOW + 1)

    assert newcomer.status == EntryStatus.OFFERED.value
    assert [e.id for e in newcomer.promoted] == [waiting.entry.id]
    assert (await fetch_entry(session_factory, holder.entry.id)).status == EntryStatus.EXPIRED.value
    assert (await fetch_entry(session_factory, waiting.entry.id)).status == EntryStatus.OFFERED.value


@pytest.mark.asyncio
async def test_newcomer_waits_behind_head_that_does_not_fit(session_factory):
    await make_pool(session_factory, 3)
    await _join(session_factory, "u1", quantity=2)
    head = await _join(session_factory, "u2", quantity=3)
    assert head.status == EntryStatus.WAITING.value

    newcomer = await _join(session_factory, "u3", quantity=1)

    assert newcomer.status == EntryStatus.WAITING.value


@pytest.mark.asyncio
async def test_rejoin_after_terminal_state_creates_new_entry(session_factory):
    await make_pool(session_factory, 1)
    first = await _join(session_factory, "u1")
    later = NOW + WINDOW + 1
    async with session_factory() as db:
        await expire_stale_offers(db, later)

    again = await _join(session_factory, "u1", now=later)

    assert again.created
    assert again.entry.id != first.entry.id
    assert again.status == EntryStatus.OFFERED.value


@pytest.mark.asyncio
async def test_pools_are_independent_per_ticket_type(session_factory):
    await make_pool(session_factory, 1, ticket_type="vip")
    await make_pool(session_factory, 1)

    vip = await _join(session_factory, "u1", ticket_type="vip")
    general = await _join(session_factory, "u2")

    assert vip.status == EntryStatus.OFFERED.value
    assert vip.entry.ticket_type == "vip"
    assert general.status == EntryStatus.OFFERED.value
    assert general.entry.ticket_type == ""


@pytest.mark.asyncio
async def test_concurrent_joins_never_oversell(session_factory):
    """Ten requesters race for three tickets: exactly three are offered."""
    await make_pool(session_factory, 3)

    results = await asyncio.gather(*[
        _join(session_factory, f"racer-{i}") for i in range(10)
    ])

    offered = [r for r in results if r.status == EntryStatus.OFFERED.value]
    waiting = [r for r in results if r.status == EntryStatus.WAITING.value]
    assert sum(r.entry.quantity for r in offered) == 3
    assert len(waiting) == 7

    async with session_factory() as db:
        held = await WaitingListRepository(db).held_quantity(EVENT, None)
        await db.commit()
    pool = await fetch_pool(session_factory)
    assert held + pool.tickets_committed <= pool.total_tickets


@pytest.mark.asyncio
async def test_concurrent_mixed_quantities_never_oversell(session_factory):
    await make_pool(session_factory, 5)

    results = await asyncio.gather(*[
        _join(session_factory, f"racer-{i}", quantity=(i % 3) + 1) for i in range(8)
    ])

    offered = sum(r.entry.quantity for r in results if r.status == EntryStatus.OFFERED.value)
    assert offered <= 5


@pytest.mark.asyncio
async def test_concurrent_duplicate_joins_yield_one_active_entry(session_factory):
    """Same requester joining five times at once ends with a single entry."""
    await make_pool(session_factory, 10)

    results = await asyncio.gather(*[_join(session_factory, "u1") for _ in range(5)])

    assert len({r.entry.id for r in results}) == 1
    assert sum(1 for r in results if r.created) == 1


@pytest.mark.asyncio
async def test_unique_violation_resolves_to_existing_entry(session_factory, monkeypatch):
    """Losing the insert race to the same requester returns the winner's entry."""
    await make_pool(session_factory, 10)
    winner = await _join(session_factory, "u1")

    original = WaitingListRepository.get_active
    calls = {"n": 0}

    async def get_active_missing_once(self, event_id, requester_id):
        calls["n"] += 1
        if calls["n"] == 1:
            # Pretend the winner's row was not visible yet
            return None
        return await original(self, event_id, requester_id)

    monkeypatch.setattr(WaitingListRepository, "get_active", get_active_missing_once)

    result = await _join(session_factory, "u1")

    assert not result.created
    assert result.entry.id == winner.entry.id
    assert calls["n"] == 2
