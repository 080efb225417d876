"""
Waiting list entry: one requester's claim on a ticket pool.

Key design decisions:
- Integer primary key: insertion order doubles as the FIFO tie-break
- Partial unique index on (event_id, requester_id) over waiting/offered rows
  enforces at most one active entry per requester per event in the store
- `offer_expires_at` is epoch milliseconds and is set iff status is offered
  (CHECK constraint)
- Rows are never deleted; terminal states are kept for audit and statistics
"""

import enum

from sqlalchemy import BigInteger, Column, Integer, String, Index, CheckConstraint, text

from waitroom.db.base import Base, TimestampMixin
from waitroom.models.ticket_pool import DEFAULT_TICKET_TYPE


class EntryStatus(str, enum.Enum):
    WAITING = "waiting"
    OFFERED = "offered"
    PURCHASED = "purchased"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


ACTIVE_STATUSES = (EntryStatus.WAITING, EntryStatus.OFFERED)
ACTIVE_STATUS_VALUES = tuple(s.value for s in ACTIVE_STATUSES)

_ACTIVE_PREDICATE = text("status IN ('waiting', 'offered')")


class WaitingListEntry(Base, TimestampMixin):
    __tablename__ = "waiting_list"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False)
    requester_id = Column(String(128), nullable=False)
    ticket_type = Column(String(64), nullable=False, default=DEFAULT_TICKET_TYPE)
    quantity = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=EntryStatus.WAITING.value)
    offer_expires_at = Column(BigInteger, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_entry_quantity_positive"),
        CheckConstraint(
            "status IN ('waiting', 'offered', 'purchased', 'expired', 'cancelled')",
            name="check_entry_status",
        ),
        CheckConstraint(
            "(status = 'offered') = (offer_expires_at IS NOT NULL)",
            name="check_offer_expiry_iff_offered",
        ),
        # One active entry per requester per event
        Index(
            "uq_waiting_list_active_requester",
            "event_id",
            "requester_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        # FIFO scan of a pool: WHERE event/type/status ORDER BY created_at, id
        Index("ix_waiting_list_pool_status", "event_id", "ticket_type", "status", "created_at", "id"),
        # Sweeper scan: WHERE status = 'offered' AND offer_expires_at < now
        Index("ix_waiting_list_status_expiry", "status", "offer_expires_at"),
        Index("ix_waiting_list_requester", "requester_id"),
    )

    @property
    def entry_status(self) -> EntryStatus:
        return EntryStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<WaitingListEntry(id={self.id}, event={self.event_id}, "
            f"requester={self.requester_id}, status={self.status})>"
        )
