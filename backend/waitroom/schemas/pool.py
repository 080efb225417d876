"""
Pydantic schemas for ticket pool management.
"""

from typing import Optional
from pydantic import BaseModel, Field


class PoolUpsert(BaseModel):
    total_tickets: int = Field(..., gt=0, le=1000000)
    ticket_type: Optional[str] = Field(None, max_length=64)


class PoolCapacityResponse(BaseModel):
    event_id: str
    ticket_type: Optional[str]
    total: int
    committed: int
    held: int
    remaining: int

    @classmethod
    def from_capacity(cls, capacity) -> "PoolCapacityResponse":
        return cls(
            event_id=capacity.event_id,
            ticket_type=capacity.ticket_type or None,
            total=capacity.total,
            committed=capacity.committed,
            held=capacity.held,
            remaining=capacity.remaining,
        )
