"""
Offer expiry sweeper.

Two idempotent operations, safe to run from any number of instances on a
timer or on demand:

  expire_stale_offers(now)
    offered -> expired for every offer whose deadline passed. Each row is its
    own transaction: lock the pool, then
      UPDATE waiting_list SET status = 'expired', offer_expires_at = NULL
      WHERE id = :id AND status = 'offered' AND offer_expires_at < :now
    A row already expired, purchased or cancelled by someone else matches
    nothing, so re-runs and concurrent sweepers are no-ops. A failing row is
    logged and skipped; the rest of the sweep continues.

  promote_next(event_id, ticket_type)
    waiting -> offered for the FIFO head of a pool when its quantity fits the
    capacity remaining *now* (re-read under the pool lock, never passed in).
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from waitroom.core.clock import now_ms
from waitroom.core.config import get_settings
from waitroom.core.errors import WaitroomError
from waitroom.core.logging import get_logger
from waitroom.core.metrics import (
    record_promotions,
    record_transition,
    sweep_latency,
    sweep_row_failures,
    sweep_runs,
)
from waitroom.db.session import atomic
from waitroom.models.waiting_list import EntryStatus, WaitingListEntry
from waitroom.repositories.cart_repository import CartRepository
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.admission_service import lock_pool, offer_head, reclaim_stale_offers
from waitroom.services.notifier_factory import announce

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExpiredOffer:
    entry_id: int
    event_id: str
    ticket_type: str


@dataclass
class SweepReport:
    expired: List[ExpiredOffer] = field(default_factory=list)
    promoted: List[WaitingListEntry] = field(default_factory=list)
    failures: int = 0


async def expire_stale_offers(
    db: AsyncSession,
    now: Optional[int] = None,
    batch_size: int = 500,
) -> List[ExpiredOffer]:
    """Expire every lapsed offer, scanning in batches. Failed rows are skipped until the next call."""
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)

    expired = []
    failed: Set[int] = set()
    while True:
        async with atomic(db):
            stale = await entries.find_stale_offers(now, limit=batch_size, exclude_ids=failed)

        for entry_id, event_id, ticket_type in stale:
            try:
                async with atomic(db):
                    await lock_pool(db, event_id, ticket_type)
                    changed = await entries.expire_offer(entry_id, now)
                    if changed:
                        await CartRepository(db).clear([entry_id])
            except WaitroomError as e:
                failed.add(entry_id)
                sweep_row_failures.labels(operation="expire").inc()
                logger.warning("sweep_row_failed", operation="expire", entry_id=entry_id, error=str(e))
                continue
            if changed:
                expired.append(ExpiredOffer(entry_id, event_id, ticket_type))
                logger.info("offer_expired", entry_id=entry_id, event_id=event_id, ticket_type=ticket_type)
                await announce(event_id, entry_id, EntryStatus.EXPIRED)

        if len(stale) < batch_size:
            break

    record_transition(EntryStatus.EXPIRED.value, len(expired))
    return expired


async def promote_next(
    db: AsyncSession,
    event_id: str,
    ticket_type: Optional[str] = None,
    now: Optional[int] = None,
) -> Optional[WaitingListEntry]:
    """Offer tickets to the pool's oldest waiting entry if it fits. One entry at most."""
    now = now if now is not None else now_ms()
    window = get_settings().offer_window_ms

    async with atomic(db):
        pool = await lock_pool(db, event_id, ticket_type)
        expired = await reclaim_stale_offers(db, pool, now)
        entry = await offer_head(db, pool, now, window)

    record_transition(EntryStatus.EXPIRED.value, len(expired))
    for entry_id in expired:
        await announce(event_id, entry_id, EntryStatus.EXPIRED)
    if entry is not None:
        record_transition(EntryStatus.OFFERED.value)
        record_promotions("promote")
        logger.info(
            "offer_promoted",
            event_id=event_id,
            ticket_type=entry.ticket_type,
            entry_id=entry.id,
            requester_id=entry.requester_id,
            offer_expires_at=entry.offer_expires_at,
        )
        await announce(event_id, entry.id, EntryStatus.OFFERED)
    return entry


async def promote_pool(
    db: AsyncSession,
    event_id: str,
    ticket_type: Optional[str] = None,
    now: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[WaitingListEntry]:
    """Promote FIFO heads until the next one no longer fits."""
    limit = limit or get_settings().SWEEP_MAX_PROMOTIONS
    promoted = []
    while len(promoted) < limit:
        entry = await promote_next(db, event_id, ticket_type, now)
        if entry is None:
            break
        promoted.append(entry)
    return promoted


async def run_sweep(db: AsyncSession, now: Optional[int] = None) -> SweepReport:
    """Expire lapsed offers, then refill every pool that has people waiting."""
    now = now if now is not None else now_ms()
    start = time.perf_counter()
    report = SweepReport()

    try:
        report.expired = await expire_stale_offers(db, now)

        pools: Set[Tuple[str, str]] = {(e.event_id, e.ticket_type) for e in report.expired}
        async with atomic(db):
            pools.update(await WaitingListRepository(db).pools_with_waiting())

        for event_id, ticket_type in sorted(pools):
            try:
                report.promoted.extend(await promote_pool(db, event_id, ticket_type, now))
            except WaitroomError as e:
                report.failures += 1
                sweep_row_failures.labels(operation="promote").inc()
                logger.warning("sweep_row_failed", operation="promote", event_id=event_id,
                               ticket_type=ticket_type, error=str(e))
    except Exception:
        sweep_runs.labels(result="error").inc()
        raise
    finally:
        sweep_latency.observe(time.perf_counter() - start)

    sweep_runs.labels(result="ok").inc()
    if report.expired or report.promoted or report.failures:
        logger.info(
            "sweep_completed",
            expired=len(report.expired),
            promoted=len(report.promoted),
            failures=report.failures,
        )
    return report


class OfferSweeper:
    """Background task that runs `run_sweep` on a fixed interval."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval: Optional[float] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.session_factory = session_factory
        self.interval = interval if interval is not None else get_settings().SWEEP_INTERVAL_SECONDS
        self.clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def process_once(self) -> SweepReport:
        async with self.session_factory() as db:
            return await run_sweep(db, self.clock())

    async def run_forever(self) -> None:
        self._running = True
        logger.info("sweeper_started", interval=self.interval)
        while self._running:
            try:
                await self.process_once()
            except Exception:
                logger.exception("sweep_failed")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run_forever(), name="offer-sweeper")
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("sweeper_stopped")
