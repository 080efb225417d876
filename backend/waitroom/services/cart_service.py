"""
Cart bridge: a requester's cart for an event lives on their active
waiting-list entry.

The cart is created by the first item write, which joins the queue when the
requester has no active entry yet, and is torn down in the same transaction
that moves the entry to a terminal state. Reading a cart whose entry has
ended returns no items together with that entry's status.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.clock import now_ms, remaining_ms
from waitroom.core.errors import CartItemNotFoundError, EntryNotFoundError, OfferExpiredError
from waitroom.core.logging import get_logger
from waitroom.db.session import atomic
from waitroom.models.cart import CartItem
from waitroom.models.waiting_list import EntryStatus, WaitingListEntry
from waitroom.repositories.cart_repository import CartRepository
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.admission_service import JoinResult, join_queue
from waitroom.services.waiting_list_service import cancel_entry

logger = get_logger(__name__)


@dataclass
class CartView:
    event_id: str
    requester_id: str
    entry: Optional[WaitingListEntry] = None
    items: List[CartItem] = field(default_factory=list)
    offer_remaining_ms: int = 0

    @property
    def entry_status(self) -> Optional[str]:
        return self.entry.status if self.entry is not None else None

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_price(self) -> int:
        return sum(item.unit_price * item.quantity for item in self.items)


def _is_stale_offer(entry: WaitingListEntry, now: int) -> bool:
    return entry.status == EntryStatus.OFFERED.value and entry.offer_expires_at < now


async def _load(db: AsyncSession, event_id: str, requester_id: str, now: int) -> CartView:
    entries = WaitingListRepository(db)
    entry = await entries.get_active(event_id, requester_id)
    if entry is None:
        entry = await entries.get_latest(event_id, requester_id)
    view = CartView(event_id=event_id, requester_id=requester_id, entry=entry)
    if entry is not None and entry.entry_status.is_active:
        view.items = await CartRepository(db).list_items(entry.id)
        view.offer_remaining_ms = remaining_ms(entry.offer_expires_at, now)
    return view


async def _active_entry(entries: WaitingListRepository, event_id: str, requester_id: str, now: int) -> WaitingListEntry:
    entry = await entries.get_active(event_id, requester_id)
    if entry is None:
        raise EntryNotFoundError()
    if _is_stale_offer(entry, now):
        raise OfferExpiredError(entry.id)
    return entry


async def get_cart(db: AsyncSession, event_id: str, requester_id: str, now: Optional[int] = None) -> CartView:
    now = now if now is not None else now_ms()
    async with atomic(db):
        return await _load(db, event_id, requester_id, now)


async def add_to_cart(
    db: AsyncSession,
    event_id: str,
    requester_id: str,
    product_id: str,
    title: str,
    unit_price: int,
    quantity: int = 1,
    ticket_type: Optional[str] = None,
    now: Optional[int] = None,
) -> Tuple[CartView, Optional[JoinResult]]:
    """
    Add an item to the requester's cart, joining the queue first if needed.

    Returns the cart and the join result when this call joined the queue.
    """
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)

    async with atomic(db):
        entry = await entries.get_active(event_id, requester_id)

    joined = None
    if entry is None or _is_stale_offer(entry, now):
        joined = await join_queue(db, event_id, requester_id, quantity, ticket_type, now)
        entry = joined.entry

    async with atomic(db):
        current = await entries.get_by_id(entry.id)
        if current.entry_status.is_terminal:
            # Ended between the join and this write
            if current.status == EntryStatus.EXPIRED.value:
                raise OfferExpiredError(entry.id)
            raise EntryNotFoundError(entry.id)
        item = await CartRepository(db).add_item(
            entry.id, product_id, title, unit_price, quantity, ticket_type,
        )
        view = await _load(db, event_id, requester_id, now)

    logger.info(
        "cart_item_added",
        event_id=event_id,
        requester_id=requester_id,
        entry_id=entry.id,
        item_id=item.id,
        product_id=product_id,
        quantity=quantity,
    )
    return view, joined


async def update_cart_item(
    db: AsyncSession,
    event_id: str,
    requester_id: str,
    item_id: int,
    quantity: int,
    now: Optional[int] = None,
) -> CartView:
    """Set an item's quantity; zero or less removes the item."""
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)
    carts = CartRepository(db)

    async with atomic(db):
        entry = await _active_entry(entries, event_id, requester_id, now)
        item = await carts.get_item(entry.id, item_id)
        if item is None:
            raise CartItemNotFoundError(item_id)
        if quantity <= 0:
            await carts.delete_item(item)
        else:
            item.quantity = quantity
            await db.flush()
        view = await _load(db, event_id, requester_id, now)

    logger.info("cart_item_updated", event_id=event_id, entry_id=entry.id, item_id=item_id, quantity=quantity)
    return view


async def remove_cart_item(
    db: AsyncSession,
    event_id: str,
    requester_id: str,
    item_id: int,
    now: Optional[int] = None,
) -> CartView:
    return await update_cart_item(db, event_id, requester_id, item_id, 0, now)


async def clear_cart(db: AsyncSession, event_id: str, requester_id: str, now: Optional[int] = None) -> CartView:
    """Empty the cart by cancelling the entry it belongs to."""
    now = now if now is not None else now_ms()
    async with atomic(db):
        entry = await WaitingListRepository(db).get_active(event_id, requester_id)
    if entry is None:
        raise EntryNotFoundError()

    await cancel_entry(db, entry.id, requester_id, now, reason="cart_cleared")
    return await get_cart(db, event_id, requester_id, now)
