"""
Domain errors for the waiting list.

Every error carries a stable code and a user-safe message. `retryable`
tells the API layer whether the caller may simply try again (transient
store trouble) or has to act on the outcome (expired offer, unknown pool).
"""

from enum import Enum


class ErrorCode(Enum):
    POOL_NOT_FOUND = "POOL_NOT_FOUND"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    CART_ITEM_NOT_FOUND = "CART_ITEM_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    QUANTITY_EXCEEDS_POOL = "QUANTITY_EXCEEDS_POOL"
    POOL_SHRINK_CONFLICT = "POOL_SHRINK_CONFLICT"
    NOT_OFFERED = "NOT_OFFERED"
    OFFER_EXPIRED = "OFFER_EXPIRED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    CAPACITY_INVARIANT_VIOLATED = "CAPACITY_INVARIANT_VIOLATED"


class WaitroomError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    retryable = False

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class PoolNotFoundError(WaitroomError):
    def __init__(self, event_id: str, ticket_type: str | None = None) -> None:
        super().__init__(ErrorCode.POOL_NOT_FOUND, "No ticket pool for this event")
        self.event_id = event_id
        self.ticket_type = ticket_type


class EntryNotFoundError(WaitroomError):
    def __init__(self, entry_id=None) -> None:
        super().__init__(ErrorCode.ENTRY_NOT_FOUND, "Waiting list entry not found")
        self.entry_id = entry_id


class CartItemNotFoundError(WaitroomError):
    def __init__(self, item_id: int) -> None:
        super().__init__(ErrorCode.CART_ITEM_NOT_FOUND, "Cart item not found")
        self.item_id = item_id


class InvalidTransitionError(WaitroomError):
    """Raised when an entry cannot move to the requested status."""

    def __init__(self, entry_id: int, current: str, target: str) -> None:
        super().__init__(
            ErrorCode.INVALID_TRANSITION,
            f"Entry is {current} and cannot become {target}",
        )
        self.entry_id = entry_id
        self.current = current
        self.target = target


class QuantityExceedsPoolError(WaitroomError):
    def __init__(self, quantity: int, total: int) -> None:
        super().__init__(
            ErrorCode.QUANTITY_EXCEEDS_POOL,
            f"Requested {quantity} tickets but the pool only has {total}",
        )
        self.quantity = quantity
        self.total = total


class PoolShrinkConflictError(WaitroomError):
    def __init__(self, requested_total: int, in_use: int) -> None:
        super().__init__(
            ErrorCode.POOL_SHRINK_CONFLICT,
            f"Cannot shrink pool to {requested_total}; {in_use} tickets are sold or on offer",
        )
        self.requested_total = requested_total
        self.in_use = in_use


class NotOfferedError(WaitroomError):
    def __init__(self, entry_id: int) -> None:
        super().__init__(ErrorCode.NOT_OFFERED, "Tickets have not been offered yet")
        self.entry_id = entry_id


class OfferExpiredError(WaitroomError):
    """The requester's offer window has passed. A fresh join is required."""

    def __init__(self, entry_id: int | None = None) -> None:
        super().__init__(ErrorCode.OFFER_EXPIRED, "Your ticket offer has expired")
        self.entry_id = entry_id


class TransientStoreError(WaitroomError):
    retryable = True

    def __init__(self, detail: str = "") -> None:
        super().__init__(
            ErrorCode.STORE_UNAVAILABLE,
            "The waiting list is temporarily unavailable, please retry",
        )
        self.detail = detail


class CapacityInvariantViolation(WaitroomError):
    """Offered plus committed quantity exceeded the pool. Always a bug."""

    def __init__(self, event_id: str, ticket_type: str, total: int, in_use: int) -> None:
        super().__init__(
            ErrorCode.CAPACITY_INVARIANT_VIOLATED,
            "Ticket pool accounting is inconsistent",
        )
        self.event_id = event_id
        self.ticket_type = ticket_type
        self.total = total
        self.in_use = in_use
