"""
Waiting list endpoints: join, own standing, statistics, change stream and
checkout re-validation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from waitroom.core.clock import now_ms, remaining_ms
from waitroom.core.identity import get_optional_requester_id, get_requester_id
from waitroom.core.logging import get_logger
from waitroom.db.session import get_db, get_session_factory
from waitroom.schemas.waiting_list import (
    EntryResponse,
    JoinRequest,
    JoinResponse,
    QueueStatsResponse,
)
from waitroom.services.admission_service import join_queue
from waitroom.services.queue_stats_service import get_queue_stats, stream_queue_stats
from waitroom.services.waiting_list_service import get_requester_entry, validate_checkout

logger = get_logger(__name__)
router = APIRouter(prefix="/events/{event_id}", tags=["Waiting List"])


@router.post("/queue", response_model=JoinResponse, status_code=status.HTTP_201_CREATED)
async def join_queue_endpoint(
    event_id: str,
    join_data: JoinRequest,
    response: Response,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Join the waiting list for an event (or one ticket type of it).

    The capacity check and the insert are one atomic step, so concurrent
    joins can never offer more tickets than the pool has left. Returns 201
    with a new entry (offered or waiting), or 200 with the requester's
    existing active entry.
    """
    now = now_ms()
    result = await join_queue(db, event_id, requester_id, join_data.quantity, join_data.ticket_type, now)
    if result.already_active:
        response.status_code = status.HTTP_200_OK

    entry = EntryResponse.from_entry(
        result.entry, offer_remaining_ms=remaining_ms(result.entry.offer_expires_at, now),
    )
    return JoinResponse(
        status=result.status,
        entry_id=result.entry.id,
        offer_expires_at=result.entry.offer_expires_at,
        already_active=result.already_active,
        entry=entry,
    )


@router.get("/queue/me", response_model=EntryResponse)
async def my_entry_endpoint(
    event_id: str,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """The requester's active entry, or their most recent one once it has ended."""
    view = await get_requester_entry(db, event_id, requester_id)
    return EntryResponse.from_view(view)


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def queue_stats_endpoint(
    event_id: str,
    ticket_type: Optional[str] = Query(None, max_length=64),
    requester_id: Optional[str] = Depends(get_optional_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """Live queue counts, re-derived from the store on every call."""
    stats = await get_queue_stats(db, event_id, ticket_type, requester_id)
    return QueueStatsResponse(**stats.to_dict())


@router.get("/queue/stream")
async def queue_stream_endpoint(
    request: Request,
    event_id: str,
    ticket_type: Optional[str] = Query(None, max_length=64),
    requester_id: Optional[str] = Depends(get_optional_requester_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Server-Sent Events: a `stats` frame on connect, then one after every
    change to the event's waiting list, with a periodic refresh in case a
    notification is missed.
    """
    stream = stream_queue_stats(
        session_factory,
        event_id,
        ticket_type=ticket_type,
        requester_id=requester_id,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/checkout", response_model=EntryResponse)
async def validate_checkout_endpoint(
    event_id: str,
    requester_id: str = Depends(get_requester_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Server-side offer check before checkout.

    410 once the offer has expired, 409 while still waiting.
    """
    view = await validate_checkout(db, event_id, requester_id)
    return EntryResponse.from_view(view)
