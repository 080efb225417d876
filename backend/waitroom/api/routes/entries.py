"""
Waiting list entry endpoints: reads and terminal transitions.

`purchase` and `release` are the downstream signals from payment handling
(completed, abandoned/failed). Both are safe to retry, and both require
the X-Callback-Secret header once PAYMENT_CALLBACK_SECRET is configured.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.identity import get_requester_id, require_payment_callback
from waitroom.core.logging import get_logger
from waitroom.db.session import get_db
from waitroom.schemas.waiting_list import EntryResponse, EntryStatusResponse
from waitroom.services.waiting_list_service import cancel_entry, get_entry, mark_purchased, release_offer

logger = get_logger(__name__)
router = APIRouter(prefix="/waiting-list", tags=["Waiting List"])


@router.get("/{entry_id}", response_model=EntryResponse)
async def get_entry_endpoint(
    entry_id: int,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """Get one of the requester's entries."""
    view = await get_entry(db, entry_id, requester_id)
    return EntryResponse.from_view(view)


@router.delete("/{entry_id}", response_model=EntryStatusResponse)
async def cancel_entry_endpoint(
    entry_id: int,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """Leave the queue or give back an offer. The next waiting entry is promoted."""
    entry = await cancel_entry(db, entry_id, requester_id)
    return EntryStatusResponse(
        message="Entry cancelled successfully",
        entry_id=entry.id,
        status=entry.status,
    )


@router.post(
    "/{entry_id}/purchase",
    response_model=EntryResponse,
    dependencies=[Depends(require_payment_callback)],
)
async def purchase_entry_endpoint(
    entry_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Payment completed: offered -> purchased.

    410 if the offer window had already passed.
    """
    entry = await mark_purchased(db, entry_id)
    return EntryResponse.from_entry(entry)


@router.post(
    "/{entry_id}/release",
    response_model=EntryStatusResponse,
    dependencies=[Depends(require_payment_callback)],
)
async def release_entry_endpoint(
    entry_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Payment abandoned or failed: cancel the offer and promote the queue."""
    entry = await release_offer(db, entry_id)
    return EntryStatusResponse(
        message="Offer released",
        entry_id=entry.id,
        status=entry.status,
    )
