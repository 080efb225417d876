from typing import Optional, List
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.models.ticket_pool import TicketPool, DEFAULT_TICKET_TYPE


def pool_key(ticket_type: Optional[str]) -> str:
    return ticket_type or DEFAULT_TICKET_TYPE


class TicketPoolRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, event_id: str, ticket_type: Optional[str] = None) -> Optional[TicketPool]:
        result = await self.db.execute(
            select(TicketPool)
            .where(
                TicketPool.event_id == event_id,
                TicketPool.ticket_type == pool_key(ticket_type),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_event(self, event_id: str) -> List[TicketPool]:
        result = await self.db.execute(
            select(TicketPool)
            .where(TicketPool.event_id == event_id)
            .order_by(TicketPool.ticket_type)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def lock(self, event_id: str, ticket_type: Optional[str] = None) -> Optional[TicketPool]:
        """
        Bump the pool version and return the fresh row.

        The UPDATE takes the row lock (PostgreSQL) or is already under the
        write lock (SQLite), so everything after it in the same transaction
        sees the pool exclusively until commit.
        """
        result = await self.db.execute(
            update(TicketPool)
            .where(
                TicketPool.event_id == event_id,
                TicketPool.ticket_type == pool_key(ticket_type),
            )
            .values(version=TicketPool.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get(event_id, ticket_type)

    async def create(self, event_id: str, ticket_type: Optional[str], total_tickets: int) -> TicketPool:
        pool = TicketPool(
            event_id=event_id,
            ticket_type=pool_key(ticket_type),
            total_tickets=total_tickets,
            tickets_committed=0,
            version=1,
        )
        self.db.add(pool)
        await self.db.flush()
        return pool

    async def set_total(self, pool_id: int, total_tickets: int) -> None:
        await self.db.execute(
            update(TicketPool)
            .where(TicketPool.id == pool_id)
            .values(total_tickets=total_tickets)
            .execution_options(synchronize_session=False)
        )

    async def commit_tickets(self, pool_id: int, quantity: int) -> bool:
        """Move `quantity` into the committed count unless that would oversell."""
        result = await self.db.execute(
            update(TicketPool)
            .where(
                TicketPool.id == pool_id,
                TicketPool.tickets_committed + quantity <= TicketPool.total_tickets,
            )
            .values(tickets_committed=TicketPool.tickets_committed + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
