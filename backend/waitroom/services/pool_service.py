"""
Ticket pool management and capacity reads.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.clock import now_ms
from waitroom.core.errors import PoolNotFoundError, PoolShrinkConflictError
from waitroom.core.logging import get_logger
from waitroom.core.metrics import record_transition
from waitroom.db.session import atomic
from waitroom.models.ticket_pool import TicketPool
from waitroom.models.waiting_list import EntryStatus
from waitroom.repositories.ticket_pool_repository import TicketPoolRepository
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.admission_service import reclaim_stale_offers
from waitroom.services.notifier_factory import announce
from waitroom.services.sweeper_service import promote_pool

logger = get_logger(__name__)

MAX_RETRY_ATTEMPTS = 2


@dataclass(frozen=True)
class PoolCapacity:
    event_id: str
    ticket_type: str
    total: int
    committed: int
    held: int

    @property
    def remaining(self) -> int:
        return self.total - self.committed - self.held


async def _capacity(db: AsyncSession, pool: TicketPool, now: Optional[int] = None) -> PoolCapacity:
    held = await WaitingListRepository(db).held_quantity(pool.event_id, pool.ticket_type, live_at=now)
    return PoolCapacity(
        event_id=pool.event_id,
        ticket_type=pool.ticket_type,
        total=pool.total_tickets,
        committed=pool.tickets_committed,
        held=held,
    )


async def get_capacity(
    db: AsyncSession,
    event_id: str,
    ticket_type: Optional[str] = None,
    now: Optional[int] = None,
) -> PoolCapacity:
    """
    Total, committed, held-by-offers and remaining tickets of one pool.

    Offers past their deadline no longer count as held, swept or not.
    """
    now = now if now is not None else now_ms()
    async with atomic(db):
        pool = await TicketPoolRepository(db).get(event_id, ticket_type)
        if pool is None:
            raise PoolNotFoundError(event_id, ticket_type)
        return await _capacity(db, pool, now)


async def list_capacity(db: AsyncSession, event_id: str, now: Optional[int] = None) -> List[PoolCapacity]:
    now = now if now is not None else now_ms()
    async with atomic(db):
        pools = await TicketPoolRepository(db).list_for_event(event_id)
        if not pools:
            raise PoolNotFoundError(event_id)
        return [await _capacity(db, pool, now) for pool in pools]


async def upsert_pool(
    db: AsyncSession,
    event_id: str,
    total_tickets: int,
    ticket_type: Optional[str] = None,
    now: Optional[int] = None,
) -> Tuple[PoolCapacity, bool]:
    """
    Create a pool or change its size. Returns (capacity, created).

    A pool can never shrink below what is already sold plus what is on
    offer. Growing a pool hands the new tickets to the queue straight away.
    """
    if total_tickets < 1:
        raise ValueError("total_tickets must be at least 1")
    now = now if now is not None else now_ms()
    pools = TicketPoolRepository(db)

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        expired: List[int] = []
        try:
            async with atomic(db):
                pool = await pools.lock(event_id, ticket_type)
                if pool is None:
                    pool = await pools.create(event_id, ticket_type, total_tickets)
                    created, grew = True, True
                else:
                    expired = await reclaim_stale_offers(db, pool, now)
                    capacity = await _capacity(db, pool)
                    in_use = capacity.committed + capacity.held
                    if total_tickets < in_use:
                        logger.warning(
                            "pool_shrink_rejected",
                            event_id=event_id,
                            ticket_type=pool.ticket_type,
                            requested_total=total_tickets,
                            in_use=in_use,
                        )
                        raise PoolShrinkConflictError(total_tickets, in_use)
                    created, grew = False, total_tickets > pool.total_tickets
                    await pools.set_total(pool.id, total_tickets)
            break
        except IntegrityError:
            # Another request created the same pool first; resize it instead
            logger.info("pool_create_retry", event_id=event_id, attempt=attempt)
            if attempt == MAX_RETRY_ATTEMPTS:
                raise

    logger.info(
        "pool_created" if created else "pool_resized",
        event_id=event_id,
        ticket_type=pool.ticket_type,
        total_tickets=total_tickets,
    )
    record_transition(EntryStatus.EXPIRED.value, len(expired))
    for entry_id in expired:
        await announce(event_id, entry_id, EntryStatus.EXPIRED)
    if grew or expired:
        await promote_pool(db, event_id, pool.ticket_type, now)

    return await get_capacity(db, event_id, pool.ticket_type, now), created
