"""
Read-side queue statistics and the change stream built on them.

Nothing here keeps counters of its own. Every snapshot is re-derived from
the waiting list, so a missed notification costs at most one poll interval
of staleness and never a wrong number.
"""

import json
from dataclasses import asdict, dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from waitroom.core.clock import now_ms, remaining_ms
from waitroom.core.config import get_settings
from waitroom.core.logging import get_logger
from waitroom.db.session import atomic
from waitroom.models.waiting_list import EntryStatus
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.interfaces.notifier import ChangeNotifier
from waitroom.services.notifier_factory import get_notifier

logger = get_logger(__name__)


@dataclass
class QueueStats:
    event_id: str
    ticket_type: Optional[str]
    total_waiting: int
    active_offers: int
    total_in_system: int
    user_in_queue: bool = False
    current_position: Optional[int] = None
    entry_id: Optional[int] = None
    entry_status: Optional[str] = None
    offer_expires_at: Optional[int] = None
    offer_remaining_ms: int = 0
    generated_at: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


async def get_queue_stats(
    db: AsyncSession,
    event_id: str,
    ticket_type: Optional[str] = None,
    requester_id: Optional[str] = None,
    now: Optional[int] = None,
) -> QueueStats:
    """
    Aggregate counts for an event, or one pool of it, plus the requester's
    own standing when `requester_id` is given.

    Offers past their deadline are not counted as active even before the
    sweeper expires them, and a requester holding one is reported with no
    remaining time.
    """
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)

    async with atomic(db):
        counts = await entries.count_by_status(event_id, now, ticket_type)
        stats = QueueStats(
            event_id=event_id,
            ticket_type=ticket_type,
            total_waiting=counts[EntryStatus.WAITING],
            active_offers=counts[EntryStatus.OFFERED],
            total_in_system=counts[EntryStatus.WAITING] + counts[EntryStatus.OFFERED],
            generated_at=now,
        )
        if requester_id is None:
            return stats

        entry = await entries.get_active(event_id, requester_id)
        if entry is None:
            entry = await entries.get_latest(event_id, requester_id)
        if entry is None:
            return stats

        stats.entry_id = entry.id
        stats.entry_status = entry.status
        if entry.status == EntryStatus.OFFERED.value and entry.offer_expires_at < now:
            stats.entry_status = EntryStatus.EXPIRED.value
        stats.user_in_queue = EntryStatus(stats.entry_status).is_active
        if entry.status == EntryStatus.WAITING.value:
            stats.current_position = await entries.position_of(entry)
        if stats.entry_status == EntryStatus.OFFERED.value:
            stats.offer_expires_at = entry.offer_expires_at
            stats.offer_remaining_ms = remaining_ms(entry.offer_expires_at, now)
        return stats


def format_sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def stream_queue_stats(
    session_factory: async_sessionmaker[AsyncSession],
    event_id: str,
    ticket_type: Optional[str] = None,
    requester_id: Optional[str] = None,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    poll_interval: Optional[float] = None,
    notifier: Optional[ChangeNotifier] = None,
    clock: Callable[[], int] = now_ms,
    max_events: Optional[int] = None,
) -> AsyncIterator[str]:
    """
    Yield an SSE `stats` frame now, then again after every change
    notification or poll interval, until the client goes away.
    """
    poll_interval = poll_interval if poll_interval is not None else get_settings().OBSERVER_POLL_SECONDS
    notifier = notifier or get_notifier()
    subscription = await notifier.subscribe(event_id)
    sent = 0

    logger.info("queue_stream_opened", event_id=event_id, requester_id=requester_id)
    try:
        while True:
            async with session_factory() as db:
                stats = await get_queue_stats(db, event_id, ticket_type, requester_id, clock())
            yield format_sse("stats", stats.to_dict())
            sent += 1
            if max_events is not None and sent >= max_events:
                break

            await subscription.wait(poll_interval)
            if is_disconnected is not None and await is_disconnected():
                break
    finally:
        await subscription.close()
        logger.info("queue_stream_closed", event_id=event_id, requester_id=requester_id, frames=sent)
