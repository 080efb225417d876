from waitroom.schemas.waiting_list import (
    JoinRequest, EntryResponse, JoinResponse, EntryStatusResponse,
    QueueStatsResponse, ProcessQueueRequest, ProcessQueueResponse,
)
from waitroom.schemas.pool import PoolUpsert, PoolCapacityResponse
from waitroom.schemas.cart import (
    CartItemCreate, CartItemUpdate, CartItemResponse, CartResponse, GuestSessionResponse,
)

__all__ = [
    "JoinRequest", "EntryResponse", "JoinResponse", "EntryStatusResponse",
    "QueueStatsResponse", "ProcessQueueRequest", "ProcessQueueResponse",
    "PoolUpsert", "PoolCapacityResponse",
    "CartItemCreate", "CartItemUpdate", "CartItemResponse", "CartResponse", "GuestSessionResponse",
]
