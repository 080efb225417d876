"""
Pydantic schemas for waiting list request/response validation.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

from waitroom.core.config import get_settings


def ticket_type_out(value: Optional[str]) -> Optional[str]:
    """The default pool is stored as '' and shown as null."""
    return value or None


class JoinRequest(BaseModel):
    quantity: int = Field(default=1, gt=0, le=get_settings().MAX_TICKETS_PER_REQUEST)
    ticket_type: Optional[str] = Field(None, max_length=64)


class EntryResponse(BaseModel):
    id: int
    event_id: str
    requester_id: str
    ticket_type: Optional[str]
    quantity: int
    status: str
    offer_expires_at: Optional[int]
    offer_remaining_ms: int = 0
    position: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_entry(cls, entry, position: int = 0, offer_remaining_ms: int = 0) -> "EntryResponse":
        return cls(
            id=entry.id,
            event_id=entry.event_id,
            requester_id=entry.requester_id,
            ticket_type=ticket_type_out(entry.ticket_type),
            quantity=entry.quantity,
            status=entry.status,
            offer_expires_at=entry.offer_expires_at,
            offer_remaining_ms=offer_remaining_ms,
            position=position,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )

    @classmethod
    def from_view(cls, view) -> "EntryResponse":
        return cls.from_entry(view.entry, view.position, view.offer_remaining_ms)


class JoinResponse(BaseModel):
    status: str
    entry_id: int
    offer_expires_at: Optional[int]
    already_active: bool
    entry: EntryResponse


class EntryStatusResponse(BaseModel):
    message: str
    entry_id: int
    status: str


class QueueStatsResponse(BaseModel):
    event_id: str
    ticket_type: Optional[str]
    total_waiting: int
    active_offers: int
    total_in_system: int
    user_in_queue: bool
    current_position: Optional[int]
    entry_id: Optional[int]
    entry_status: Optional[str]
    offer_expires_at: Optional[int]
    offer_remaining_ms: int
    generated_at: int


class ProcessQueueRequest(BaseModel):
    action: Literal["expire_reservations", "process_next", "process_queue"]
    event_id: Optional[str] = Field(None, max_length=64)
    ticket_type: Optional[str] = Field(None, max_length=64)


class ProcessQueueResponse(BaseModel):
    action: str
    expired: list[int] = []
    promoted: list[int] = []
    failures: int = 0
