"""
Ticket pool: the capacity unit contended for, one event or event + ticket type.

Key design decisions:
- `ticket_type` is '' for an event's default pool so (event_id, ticket_type)
  can be a plain unique key
- `tickets_committed` only moves on completed purchases; tickets held by live
  offers are derived from the waiting list, never stored here
- `version` is bumped by every mutation touching the pool; that UPDATE is the
  row lock serializing joins, promotions, purchases and cancellations
"""

from sqlalchemy import Column, Integer, String, UniqueConstraint, CheckConstraint

from waitroom.db.base import Base, TimestampMixin

DEFAULT_TICKET_TYPE = ""


class TicketPool(Base, TimestampMixin):
    __tablename__ = "ticket_pools"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False, index=True)
    ticket_type = Column(String(64), nullable=False, default=DEFAULT_TICKET_TYPE)
    total_tickets = Column(Integer, nullable=False)
    tickets_committed = Column(Integer, nullable=False, default=0)

    # Lock/version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("event_id", "ticket_type", name="uq_ticket_pool_event_type"),
        CheckConstraint("total_tickets > 0", name="check_pool_total_positive"),
        CheckConstraint("tickets_committed >= 0", name="check_pool_committed_non_negative"),
        CheckConstraint("tickets_committed <= total_tickets", name="check_pool_committed_lte_total"),
    )

    def __repr__(self) -> str:
        return (
            f"<TicketPool(event={self.event_id}, type={self.ticket_type!r}, "
            f"committed={self.tickets_committed}/{self.total_tickets})>"
        )
