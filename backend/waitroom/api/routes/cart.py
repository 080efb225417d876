"""
Cart endpoints. A cart is bound to the requester's active entry for the event.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.clock import now_ms, remaining_ms
from waitroom.core.identity import get_requester_id
from waitroom.core.logging import get_logger
from waitroom.db.session import get_db
from waitroom.schemas.cart import CartItemCreate, CartItemUpdate, CartResponse
from waitroom.schemas.waiting_list import EntryResponse, JoinResponse
from waitroom.services.cart_service import (
    add_to_cart,
    clear_cart,
    get_cart,
    remove_cart_item,
    update_cart_item,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/events/{event_id}/cart", tags=["Cart"])


@router.get("", response_model=CartResponse)
async def get_cart_endpoint(
    event_id: str,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """The requester's cart. Empty once the bound entry has ended."""
    return CartResponse.from_view(await get_cart(db, event_id, requester_id))


@router.post("/items", response_model=CartResponse)
async def add_cart_item_endpoint(
    event_id: str,
    item_data: CartItemCreate,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Add an item. Joins the waiting list first when the requester has no
    active entry; the join outcome is returned alongside the cart.
    """
    now = now_ms()
    view, joined = await add_to_cart(
        db,
        event_id,
        requester_id,
        item_data.product_id,
        item_data.title,
        item_data.unit_price,
        item_data.quantity,
        item_data.ticket_type,
        now,
    )
    join = None
    if joined is not None:
        join = JoinResponse(
            status=joined.status,
            entry_id=joined.entry.id,
            offer_expires_at=joined.entry.offer_expires_at,
            already_active=joined.already_active,
            entry=EntryResponse.from_entry(
                joined.entry, offer_remaining_ms=remaining_ms(joined.entry.offer_expires_at, now)
            ),
        )
    return CartResponse.from_view(view, join)


@router.patch("/items/{item_id}", response_model=CartResponse)
async def update_cart_item_endpoint(
    event_id: str,
    item_id: int,
    item_data: CartItemUpdate,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """Change an item's quantity. Zero or less removes it."""
    view = await update_cart_item(db, event_id, requester_id, item_id, item_data.quantity)
    return CartResponse.from_view(view)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item_endpoint(
    event_id: str,
    item_id: int,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    return CartResponse.from_view(await remove_cart_item(db, event_id, requester_id, item_id))


@router.delete("", response_model=CartResponse)
async def clear_cart_endpoint(
    event_id: str,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """Empty the cart. This cancels the requester's place in the waiting list."""
    return CartResponse.from_view(await clear_cart(db, event_id, requester_id))
