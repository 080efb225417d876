"""
Ticket pool endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.logging import get_logger
from waitroom.db.session import get_db
from waitroom.schemas.pool import PoolCapacityResponse, PoolUpsert
from waitroom.services.pool_service import get_capacity, list_capacity, upsert_pool

logger = get_logger(__name__)
router = APIRouter(prefix="/pools", tags=["Ticket Pools"])


@router.put("/{event_id}", response_model=PoolCapacityResponse)
async def upsert_pool_endpoint(
    event_id: str,
    pool_data: PoolUpsert,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a pool (201) or resize it (200).

    Shrinking below sold plus offered tickets is rejected with 409. New
    capacity is offered to the queue immediately.
    """
    capacity, created = await upsert_pool(db, event_id, pool_data.total_tickets, pool_data.ticket_type)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return PoolCapacityResponse.from_capacity(capacity)


@router.get("/{event_id}", response_model=list[PoolCapacityResponse])
async def list_pools_endpoint(
    event_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Capacity of every pool of an event."""
    return [PoolCapacityResponse.from_capacity(c) for c in await list_capacity(db, event_id)]


@router.get("/{event_id}/capacity", response_model=PoolCapacityResponse)
async def pool_capacity_endpoint(
    event_id: str,
    ticket_type: Optional[str] = Query(None, max_length=64),
    db: AsyncSession = Depends(get_db),
):
    """Total, committed, held and remaining tickets of one pool."""
    capacity = await get_capacity(db, event_id, ticket_type)
    return PoolCapacityResponse.from_capacity(capacity)
