"""
Tests for the cart bridge between requesters and their waiting list entry.
"""

import pytest

from waitroom.core.errors import CartItemNotFoundError, EntryNotFoundError, OfferExpiredError
from waitroom.models.waiting_list import EntryStatus
from waitroom.repositories.cart_repository import CartRepository
from waitroom.services.cart_service import (
    add_to_cart,
    clear_cart,
    get_cart,
    remove_cart_item,
    update_cart_item,
)
from waitroom.services.sweeper_service import expire_stale_offers
from waitroom.services.waiting_list_service import mark_purchased

from conftest import EVENT, NOW, WINDOW, fetch_entry, make_pool

LATER = NOW + WINDOW + 1


async def _add(session_factory, requester_id, product_id="ga", quantity=1, unit_price=5000, now=NOW):
    async with session_factory() as db:
        return await add_to_cart(
            db, EVENT, requester_id, product_id, "General Admission", unit_price, quantity, now=now,
        )


@pytest.mark.asyncio
async def test_first_item_joins_queue(session_factory):
    await make_pool(session_factory, 10)

    cart, joined = await _add(session_factory, "u1", quantity=2)

    assert joined is not None and joined.created
    assert joined.status == EntryStatus.OFFERED.value
    assert cart.entry.id == joined.entry.id
    assert len(cart.items) == 1
    assert cart.total_items == 2
    assert cart.total_price == 10000
    assert cart.offer_remaining_ms == WINDOW


@pytest.mark.asyncio
async def test_second_item_reuses_entry(session_factory):
    await make_pool(session_factory, 10)
    _, joined = await _add(session_factory, "u1")

    cart, again = await _add(session_factory, "u1", product_id="vip", unit_price=12000)

    assert again is None
    assert cart.entry.id == joined.entry.id
    assert [i.product_id for i in cart.items] == ["ga", "vip"]
    assert cart.total_price == 17000


@pytest.mark.asyncio
async def test_cart_of_waiting_requester(session_factory):
    await make_pool(session_factory, 1)
    await _add(session_factory, "u1")

    cart, joined = await _add(session_factory, "u2")

    assert joined.status == EntryStatus.WAITING.value
    assert cart.entry_status == EntryStatus.WAITING.value
    assert len(cart.items) == 1
    assert cart.offer_remaining_ms == 0


@pytest.mark.asyncio
async def test_update_and_remove_items(session_factory):
    await make_pool(session_factory, 10)
    cart, _ = await _add(session_factory, "u1")
    item_id = cart.items[0].id

    async with session_factory() as db:
        updated = await update_cart_item(db, EVENT, "u1", item_id, 3, now=NOW + 1)
    assert updated.items[0].quantity == 3

    async with session_factory() as db:
        removed = await update_cart_item(db, EVENT, "u1", item_id, 0, now=NOW + 2)
    assert removed.items == []
    # The place in line is kept
    assert removed.entry_status == EntryStatus.OFFERED.value


@pytest.mark.asyncio
async def test_remove_unknown_item(session_factory):
    await make_pool(session_factory, 10)
    await _add(session_factory, "u1")

    async with session_factory() as db:
        with pytest.raises(CartItemNotFoundError):
            await remove_cart_item(db, EVENT, "u1", 999, now=NOW + 1)


@pytest.mark.asyncio
async def test_items_cannot_be_touched_by_other_requesters(session_factory):
    await make_pool(session_factory, 10)
    cart, _ = await _add(session_factory, "u1")
    await _add(session_factory, "u2")

    async with session_factory() as db:
        with pytest.raises(CartItemNotFoundError):
            await remove_cart_item(db, EVENT, "u2", cart.items[0].id, now=NOW + 1)


@pytest.mark.asyncio
async def test_update_without_entry(session_factory):
    await make_pool(session_factory, 10)

    async with session_factory() as db:
        with pytest.raises(EntryNotFoundError):
            await update_cart_item(db, EVENT, "nobody", 1, 2, now=NOW)


@pytest.mark.asyncio
async def test_update_after_offer_lapsed(session_factory):
    await make_pool(session_factory, 10)
    cart, _ = await _add(session_factory, "u1")

    async with session_factory() as db:
        with pytest.raises(OfferExpiredError):
            await update_cart_item(db, EVENT, "u1", cart.items[0].id, 2, now=LATER)


@pytest.mark.asyncio
async def test_clear_cart_cancels_entry(session_factory):
    await make_pool(session_factory, 10)
    cart, joined = await _add(session_factory, "u1")

    async with session_factory() as db:
        cleared = await clear_cart(db, EVENT, "u1", now=NOW + 1)

    assert cleared.items == []
    assert cleared.entry_status == EntryStatus.CANCELLED.value
    assert (await fetch_entry(session_factory, joined.entry.id)).status == EntryStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_clear_cart_without_entry(session_factory):
    await make_pool(session_factory, 10)

    async with session_factory() as db:
        with pytest.raises(EntryNotFoundError):
            await clear_cart(db, EVENT, "nobody", now=NOW)


@pytest.mark.asyncio
async def test_cart_torn_down_with_expired_offer(session_factory):
    await make_pool(session_factory, 10)
    _, joined = await _add(session_factory, "u1")

    async with session_factory() as db:
        await expire_stale_offers(db, LATER)

    async with session_factory() as db:
        cart = await get_cart(db, EVENT, "u1", now=LATER)
        rows = await CartRepository(db).list_items(joined.entry.id)
        await db.commit()

    assert cart.items == []
    assert cart.entry_status == EntryStatus.EXPIRED.value
    assert rows == []


@pytest.mark.asyncio
async def test_cart_torn_down_on_purchase(session_factory):
    await make_pool(session_factory, 10)
    _, joined = await _add(session_factory, "u1")

    async with session_factory() as db:
        await mark_purchased(db, joined.entry.id, now=NOW + 1)

    async with session_factory() as db:
        cart = await get_cart(db, EVENT, "u1", now=NOW + 2)

    assert cart.items == []
    assert cart.entry_status == EntryStatus.PURCHASED.value


@pytest.mark.asyncio
async def test_adding_after_offer_lapsed_rejoins(session_factory):
    await make_pool(session_factory, 10)
    _, first = await _add(session_factory, "u1")

    cart, joined = await _add(session_factory, "u1", now=LATER)

    assert joined is not None and joined.created
    assert joined.entry.id != first.entry.id
    assert len(cart.items) == 1
    assert (await fetch_entry(session_factory, first.entry.id)).status == EntryStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_get_cart_without_entry(session_factory):
    async with session_factory() as db:
        cart = await get_cart(db, EVENT, "nobody", now=NOW)

    assert cart.entry is None
    assert cart.items == []
    assert cart.total_price == 0
