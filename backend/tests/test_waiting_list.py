"""
Tests for terminal transitions and checkout re-validation.
"""

import pytest

from waitroom.core.errors import (
    EntryNotFoundError,
    InvalidTransitionError,
    NotOfferedError,
    OfferExpiredError,
)
from waitroom.models.waiting_list import EntryStatus
from waitroom.services import waiting_list_service
from waitroom.services.admission_service import join_queue
from waitroom.services.sweeper_service import expire_stale_offers
from waitroom.services.waiting_list_service import (
    cancel_entry,
    get_entry,
    get_requester_entry,
    mark_purchased,
    release_offer,
    validate_checkout,
)

from conftest import EVENT, NOW, WINDOW, fetch_entry, fetch_pool, make_pool

LATER = NOW + WINDOW + 1


async def _join(session_factory, requester_id, quantity=1, now=NOW):
    async with session_factory() as db:
        return await join_queue(db, EVENT, requester_id, quantity, now=now)


@pytest.mark.asyncio
async def test_mark_purchased_commits_tickets(session_factory):
    await make_pool(session_factory, 5)
    entry = (await _join(session_factory, "u1", quantity=3)).entry

    async with session_factory() as db:
        purchased = await mark_purchased(db, entry.id, now=NOW + 1000)

    assert purchased.status == EntryStatus.PURCHASED.value
    assert purchased.offer_expires_at is None
    pool = await fetch_pool(session_factory)
    assert pool.tickets_committed == 3


@pytest.mark.asyncio
async def test_mark_purchased_is_idempotent(session_factory):
    """A retried payment callback neither fails nor commits twice."""
    await make_pool(session_factory, 5)
    entry = (await _join(session_factory, "u1", quantity=2)).entry

    async with session_factory() as db:
        await mark_purchased(db, entry.id, now=NOW + 1)
        again = await mark_purchased(db, entry.id, now=NOW + 2)

    assert again.status == EntryStatus.PURCHASED.value
    assert (await fetch_pool(session_factory)).tickets_committed == 2


@pytest.mark.asyncio
async def test_mark_purchased_after_window_expires_offer(session_factory):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry
    waiting = (await _join(session_factory, "u2")).entry

    async with session_factory() as db:
        with pytest.raises(OfferExpiredError):
            await mark_purchased(db, entry.id, now=LATER)

    assert (await fetch_entry(session_factory, entry.id)).status == EntryStatus.EXPIRED.value
    assert (await fetch_pool(session_factory)).tickets_committed == 0
    # The lapsed tickets went to the next in line
    assert (await fetch_entry(session_factory, waiting.id)).status == EntryStatus.OFFERED.value


@pytest.mark.asyncio
async def test_mark_purchased_waiting_entry_rejected(session_factory):
    await make_pool(session_factory, 1)
    await _join(session_factory, "u1")
    waiting = (await _join(session_factory, "u2")).entry

    async with session_factory() as db:
        with pytest.raises(InvalidTransitionError):
            await mark_purchased(db, waiting.id, now=NOW + 1)


@pytest.mark.asyncio
async def test_mark_purchased_unknown_entry(session_factory):
    async with session_factory() as db:
        with pytest.raises(EntryNotFoundError):
            await mark_purchased(db, 999, now=NOW)


@pytest.mark.asyncio
async def test_cancel_offer_promotes_next(session_factory):
    await make_pool(session_factory, 1)
    offered = (await _join(session_factory, "u1")).entry
    waiting = (await _join(session_factory, "u2")).entry

    async with session_factory() as db:
        cancelled = await cancel_entry(db, offered.id, "u1", now=NOW + 1)

    assert cancelled.status == EntryStatus.CANCELLED.value
    promoted = await fetch_entry(session_factory, waiting.id)
    assert promoted.status == EntryStatus.OFFERED.value
    assert promoted.offer_expires_at == NOW + 1 + WINDOW


@pytest.mark.asyncio
async def test_cancel_waiting_entry(session_factory):
    await make_pool(session_factory, 1)
    await _join(session_factory, "u1")
    waiting = (await _join(session_factory, "u2")).entry

    async with session_factory() as db:
        cancelled = await cancel_entry(db, waiting.id, "u2", now=NOW + 1)

    assert cancelled.status == EntryStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_cancel_someone_elses_entry_hidden(session_factory):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry

    async with session_factory() as db:
        with pytest.raises(EntryNotFoundError):
            await cancel_entry(db, entry.id, "intruder", now=NOW + 1)

    assert (await fetch_entry(session_factory, entry.id)).status == EntryStatus.OFFERED.value


@pytest.mark.asyncio
async def test_cancel_terminal_entry_rejected(session_factory):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry
    async with session_factory() as db:
        await mark_purchased(db, entry.id, now=NOW + 1)

    async with session_factory() as db:
        with pytest.raises(InvalidTransitionError):
            await cancel_entry(db, entry.id, "u1", now=NOW + 2)

    assert (await fetch_entry(session_factory, entry.id)).status == EntryStatus.PURCHASED.value


@pytest.mark.asyncio
async def test_release_offer_cancels_and_is_repeatable(session_factory):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry

    async with session_factory() as db:
        released = await release_offer(db, entry.id, now=NOW + 1)
        again = await release_offer(db, entry.id, now=NOW + 2)

    assert released.status == EntryStatus.CANCELLED.value
    assert again.status == EntryStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_release_after_sweeper_won_the_race(session_factory, monkeypatch):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry
    real_cancel = waiting_list_service.cancel_entry

    async def cancel_after_expiry(db, entry_id, *args, **kwargs):
        async with session_factory() as sweeper_db:
            await expire_stale_offers(sweeper_db, LATER)
        return await real_cancel(db, entry_id, *args, **kwargs)

    monkeypatch.setattr(waiting_list_service, "cancel_entry", cancel_after_expiry)

    async with session_factory() as db:
        released = await release_offer(db, entry.id, now=NOW + 1)

    assert released.status == EntryStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_release_purchased_entry_rejected(session_factory):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry
    async with session_factory() as db:
        await mark_purchased(db, entry.id, now=NOW + 1)

    async with session_factory() as db:
        with pytest.raises(InvalidTransitionError):
            await release_offer(db, entry.id, now=NOW + 2)


@pytest.mark.asyncio
async def test_validate_checkout_live_offer(session_factory):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry

    async with session_factory() as db:
        view = await validate_checkout(db, EVENT, "u1", now=NOW + 1000)

    assert view.entry.id == entry.id
    assert view.offer_remaining_ms == WINDOW - 1000


@pytest.mark.asyncio
async def test_validate_checkout_while_waiting(session_factory):
    await make_pool(session_factory, 1)
    await _join(session_factory, "u1")
    await _join(session_factory, "u2")

    async with session_factory() as db:
        with pytest.raises(NotOfferedError):
            await validate_checkout(db, EVENT, "u2", now=NOW + 1)


@pytest.mark.asyncio
async def test_validate_checkout_expired_offer(session_factory):
    """A locally cached offer past its deadline is refused and expired on the spot."""
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry

    async with session_factory() as db:
        with pytest.raises(OfferExpiredError):
            await validate_checkout(db, EVENT, "u1", now=LATER)

    assert (await fetch_entry(session_factory, entry.id)).status == EntryStatus.EXPIRED.value

    async with session_factory() as db:
        with pytest.raises(OfferExpiredError):
            await validate_checkout(db, EVENT, "u1", now=LATER + 1)


@pytest.mark.asyncio
async def test_validate_checkout_without_entry(session_factory):
    await make_pool(session_factory, 1)

    async with session_factory() as db:
        with pytest.raises(EntryNotFoundError):
            await validate_checkout(db, EVENT, "nobody", now=NOW)


@pytest.mark.asyncio
async def test_entry_reads(session_factory):
    await make_pool(session_factory, 1)
    await _join(session_factory, "u1")
    second = (await _join(session_factory, "u2")).entry
    third = (await _join(session_factory, "u3")).entry

    async with session_factory() as db:
        view = await get_requester_entry(db, EVENT, "u3", now=NOW)
        assert view.entry.id == third.id
        assert view.position == 2

        by_id = await get_entry(db, second.id, "u2", now=NOW)
        assert by_id.position == 1

        with pytest.raises(EntryNotFoundError):
            await get_entry(db, second.id, "u3", now=NOW)


@pytest.mark.asyncio
async def test_latest_entry_shown_after_it_ends(session_factory):
    await make_pool(session_factory, 1)
    entry = (await _join(session_factory, "u1")).entry
    async with session_factory() as db:
        await cancel_entry(db, entry.id, "u1", now=NOW + 1)

    async with session_factory() as db:
        view = await get_requester_entry(db, EVENT, "u1", now=NOW + 2)

    assert view.entry.id == entry.id
    assert view.status == EntryStatus.CANCELLED.value
    assert view.position == 0
