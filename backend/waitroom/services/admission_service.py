"""
Admission controller: turns a join request into an offer or a queue slot.

CONCURRENCY STRATEGY: Pool-row lock + store-enforced uniqueness
================================================================

Problem:
  Two requesters join the last ticket simultaneously.
  Both read remaining=1, both insert an "offered" row.
  Result: Oversold pool.

Solution:
  Every join runs as ONE transaction whose first write is

    UPDATE ticket_pools SET version = version + 1
    WHERE event_id = :event AND ticket_type = :type

  That statement takes the pool's row lock (PostgreSQL) or the database
  write lock (SQLite, BEGIN IMMEDIATE). Everything after it - reclaiming
  stale offers, summing held quantity, inserting the entry - happens while
  no other join, promotion, purchase or cancellation of the same pool can
  run. Capacity check and insert are therefore a single atomic unit.

  Duplicate joins from the same requester are stopped by the partial unique
  index on (event_id, requester_id) over waiting/offered rows. Losing that
  race is not an error: the IntegrityError path re-reads and returns the
  entry that won.

Fairness:
  A newcomer is only offered tickets when nobody is waiting in the pool.
  Capacity freed by offers reclaimed during the join goes to the FIFO head
  first; if the head does not fit, the newcomer queues behind it.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.clock import now_ms
from waitroom.core.config import get_settings
from waitroom.core.errors import CapacityInvariantViolation, PoolNotFoundError, QuantityExceedsPoolError
from waitroom.core.logging import get_logger
from waitroom.core.metrics import (
    capacity_invariant_violations,
    join_latency,
    record_join,
    record_promotions,
    record_transition,
)
from waitroom.db.session import atomic
from waitroom.models.ticket_pool import TicketPool
from waitroom.models.waiting_list import EntryStatus, WaitingListEntry
from waitroom.repositories.cart_repository import CartRepository
from waitroom.repositories.ticket_pool_repository import TicketPoolRepository
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.notifier_factory import announce

logger = get_logger(__name__)


@dataclass
class JoinResult:
    entry: WaitingListEntry
    created: bool
    promoted: List[WaitingListEntry] = field(default_factory=list)

    @property
    def already_active(self) -> bool:
        return not self.created

    @property
    def status(self) -> str:
        return self.entry.status


async def lock_pool(db: AsyncSession, event_id: str, ticket_type: Optional[str]) -> TicketPool:
    pool = await TicketPoolRepository(db).lock(event_id, ticket_type)
    if pool is None:
        raise PoolNotFoundError(event_id, ticket_type)
    return pool


async def reclaim_stale_offers(db: AsyncSession, pool: TicketPool, now: int) -> List[int]:
    """Expire the pool's lapsed offers. Caller must hold the pool lock."""
    entries = WaitingListRepository(db)
    expired = []
    for entry_id, _, _ in await entries.find_stale_offers(now, pool.event_id, pool.ticket_type):
        if await entries.expire_offer(entry_id, now):
            expired.append(entry_id)
    if expired:
        await CartRepository(db).clear(expired)
    return expired


async def remaining_capacity(db: AsyncSession, pool: TicketPool) -> int:
    held = await WaitingListRepository(db).held_quantity(pool.event_id, pool.ticket_type)
    remaining = pool.total_tickets - pool.tickets_committed - held
    if remaining < 0:
        capacity_invariant_violations.inc()
        logger.critical(
            "capacity_invariant_violated",
            event_id=pool.event_id,
            ticket_type=pool.ticket_type,
            total=pool.total_tickets,
            committed=pool.tickets_committed,
            held=held,
        )
        raise CapacityInvariantViolation(
            pool.event_id, pool.ticket_type, pool.total_tickets, pool.tickets_committed + held
        )
    return remaining


async def offer_head(
    db: AsyncSession,
    pool: TicketPool,
    now: int,
    offer_window_ms: int,
) -> Optional[WaitingListEntry]:
    """
    Offer the oldest waiting entry of the pool if its quantity fits.

    No partial offers and no skipping: when the head does not fit, nobody
    behind it is considered. Caller must hold the pool lock.
    """
    entries = WaitingListRepository(db)
    head = await entries.oldest_waiting(pool.event_id, pool.ticket_type)
    if head is None:
        return None
    if head.quantity > await remaining_capacity(db, pool):
        return None
    if not await entries.transition(
        head.id, (EntryStatus.WAITING,), EntryStatus.OFFERED, offer_expires_at=now + offer_window_ms
    ):
        return None
    await remaining_capacity(db, pool)
    return await entries.get_by_id(head.id)


async def join_queue(
    db: AsyncSession,
    event_id: str,
    requester_id: str,
    quantity: int = 1,
    ticket_type: Optional[str] = None,
    now: Optional[int] = None,
) -> JoinResult:
    """
    Join the waiting list for a pool, atomically.

    Returns the requester's existing active entry (created=False) when one
    exists, otherwise a new entry that is either offered or waiting.
    """
    if quantity < 1:
        raise ValueError("quantity must be at least 1")

    settings = get_settings()
    now = now if now is not None else now_ms()
    window = settings.offer_window_ms
    entries = WaitingListRepository(db)
    start = time.perf_counter()
    expired: List[int] = []

    try:
        async with atomic(db):
            pool = await lock_pool(db, event_id, ticket_type)
            expired = await reclaim_stale_offers(db, pool, now)

            existing = await entries.get_active(event_id, requester_id)
            if existing is not None and existing.status == EntryStatus.OFFERED.value \
                    and existing.offer_expires_at < now:
                # Stale offer held in another pool of the same event
                if await entries.expire_offer(existing.id, now):
                    await CartRepository(db).clear([existing.id])
                    expired.append(existing.id)
                existing = None

            if existing is not None:
                result = JoinResult(entry=existing, created=False)
            else:
                if quantity > pool.total_tickets:
                    raise QuantityExceedsPoolError(quantity, pool.total_tickets)

                promoted = []
                while len(promoted) < settings.SWEEP_MAX_PROMOTIONS:
                    offered = await offer_head(db, pool, now, window)
                    if offered is None:
                        break
                    promoted.append(offered)

                someone_waiting = await entries.oldest_waiting(event_id, pool.ticket_type) is not None
                if not someone_waiting and quantity <= await remaining_capacity(db, pool):
                    entry = await entries.create(
                        event_id, requester_id, pool.ticket_type, quantity,
                        EntryStatus.OFFERED, offer_expires_at=now + window,
                    )
                    await remaining_capacity(db, pool)
                else:
                    entry = await entries.create(
                        event_id, requester_id, pool.ticket_type, quantity, EntryStatus.WAITING,
                    )
                result = JoinResult(entry=entry, created=True, promoted=promoted)
    except IntegrityError:
        # Lost the race against a concurrent join by the same requester
        expired = []
        existing = await entries.get_active(event_id, requester_id)
        await db.rollback()
        if existing is None:
            record_join("error")
            raise
        logger.info("queue_join_conflict_resolved", event_id=event_id, requester_id=requester_id,
                    entry_id=existing.id)
        result = JoinResult(entry=existing, created=False)
    except (QuantityExceedsPoolError, PoolNotFoundError):
        record_join("rejected")
        raise
    except Exception:
        record_join("error")
        raise
    finally:
        join_latency.observe(time.perf_counter() - start)

    record_transition(EntryStatus.EXPIRED.value, len(expired))
    record_transition(EntryStatus.OFFERED.value, len(result.promoted))
    record_promotions("join", len(result.promoted))
    if result.created:
        record_join(result.status)
        if result.status == EntryStatus.OFFERED.value:
            record_transition(EntryStatus.OFFERED.value)
        logger.info(
            "queue_joined",
            event_id=event_id,
            ticket_type=result.entry.ticket_type,
            requester_id=requester_id,
            entry_id=result.entry.id,
            status=result.status,
            quantity=quantity,
            offer_expires_at=result.entry.offer_expires_at,
        )
    else:
        record_join("already_active")
        logger.info("queue_join_already_active", event_id=event_id, requester_id=requester_id,
                    entry_id=result.entry.id, status=result.status)

    for entry_id in expired:
        await announce(event_id, entry_id, EntryStatus.EXPIRED)
    for entry in result.promoted:
        logger.info("offer_promoted", event_id=event_id, entry_id=entry.id, requester_id=entry.requester_id,
                    offer_expires_at=entry.offer_expires_at)
        await announce(event_id, entry.id, EntryStatus.OFFERED)
    if result.created:
        await announce(event_id, result.entry.id, EntryStatus(result.status))
    return result
