"""
Operational endpoints: on-demand queue processing and guest sessions.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.identity import REQUESTER_HEADER, new_guest_session_id
from waitroom.core.logging import get_logger
from waitroom.db.session import get_db
from waitroom.schemas.cart import GuestSessionResponse
from waitroom.schemas.waiting_list import ProcessQueueRequest, ProcessQueueResponse
from waitroom.services.sweeper_service import expire_stale_offers, promote_pool, run_sweep

logger = get_logger(__name__)
router = APIRouter(tags=["Operations"])


@router.post("/queue/process", response_model=ProcessQueueResponse)
async def process_queue_endpoint(
    request_data: ProcessQueueRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Run the offer sweeper now.

    - expire_reservations: expire every offer past its deadline
    - process_next: promote the waiting entries of one pool that fit
    - process_queue: both, for every pool with people waiting
    """
    action = request_data.action
    logger.info("queue_processing_triggered", action=action, event_id=request_data.event_id)

    if action == "expire_reservations":
        expired = await expire_stale_offers(db)
        return ProcessQueueResponse(action=action, expired=[e.entry_id for e in expired])

    if action == "process_next":
        if not request_data.event_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="event_id is required for process_next",
            )
        promoted = await promote_pool(db, request_data.event_id, request_data.ticket_type)
        return ProcessQueueResponse(action=action, promoted=[e.id for e in promoted])

    report = await run_sweep(db)
    return ProcessQueueResponse(
        action=action,
        expired=[e.entry_id for e in report.expired],
        promoted=[e.id for e in report.promoted],
        failures=report.failures,
    )


@router.post("/guest-sessions", response_model=GuestSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_guest_session_endpoint():
    """Mint a guest requester id to send in the X-Requester-Id header."""
    requester_id = new_guest_session_id()
    logger.info("guest_session_created", requester_id=requester_id)
    return GuestSessionResponse(requester_id=requester_id, header=REQUESTER_HEADER)
