"""
Pydantic schemas for the cart bridge.
"""

from typing import Optional
from pydantic import BaseModel, Field

from waitroom.core.config import get_settings
from waitroom.schemas.waiting_list import JoinResponse


class CartItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    unit_price: int = Field(..., ge=0)
    quantity: int = Field(default=1, gt=0, le=get_settings().MAX_TICKETS_PER_REQUEST)
    ticket_type: Optional[str] = Field(None, max_length=64)


class CartItemUpdate(BaseModel):
    # Zero or less removes the item
    quantity: int = Field(..., le=get_settings().MAX_TICKETS_PER_REQUEST)


class CartItemResponse(BaseModel):
    id: int
    product_id: str
    title: str
    unit_price: int
    quantity: int
    ticket_type: Optional[str]

    model_config = {"from_attributes": True}


class CartResponse(BaseModel):
    event_id: str
    requester_id: str
    entry_id: Optional[int]
    entry_status: Optional[str]
    items: list[CartItemResponse]
    total_items: int
    total_price: int
    offer_remaining_ms: int
    join: Optional[JoinResponse] = None

    @classmethod
    def from_view(cls, view, join: Optional[JoinResponse] = None) -> "CartResponse":
        return cls(
            event_id=view.event_id,
            requester_id=view.requester_id,
            entry_id=view.entry.id if view.entry is not None else None,
            entry_status=view.entry_status,
            items=[CartItemResponse.model_validate(item) for item in view.items],
            total_items=view.total_items,
            total_price=view.total_price,
            offer_remaining_ms=view.offer_remaining_ms,
            join=join,
        )


class GuestSessionResponse(BaseModel):
    requester_id: str
    header: str
