"""
Entry lifecycle after admission: purchase, cancellation, abandonment and
checkout re-validation.

Every transition is a compare-and-set under the pool lock, so it races
safely with the sweeper and with concurrent requests for the same entry.
Terminal entries (purchased, expired, cancelled) never change again; the
only exception is that marking an already purchased entry purchased is a
no-op, so payment callbacks can be retried.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.clock import now_ms, remaining_ms
from waitroom.core.errors import (
    CapacityInvariantViolation,
    EntryNotFoundError,
    InvalidTransitionError,
    NotOfferedError,
    OfferExpiredError,
)
from waitroom.core.logging import get_logger
from waitroom.core.metrics import capacity_invariant_violations, record_transition
from waitroom.db.session import atomic
from waitroom.models.waiting_list import ACTIVE_STATUSES, EntryStatus, WaitingListEntry
from waitroom.repositories.cart_repository import CartRepository
from waitroom.repositories.ticket_pool_repository import TicketPoolRepository
from waitroom.repositories.waiting_list_repository import WaitingListRepository
from waitroom.services.admission_service import lock_pool
from waitroom.services.notifier_factory import announce
from waitroom.services.sweeper_service import promote_pool

logger = get_logger(__name__)

RELEASED_STATUSES = (EntryStatus.EXPIRED.value, EntryStatus.CANCELLED.value)


@dataclass
class EntryView:
    """An entry plus the values derived from it at read time."""

    entry: WaitingListEntry
    position: int
    offer_remaining_ms: int

    @property
    def status(self) -> str:
        return self.entry.status


async def _describe(entries: WaitingListRepository, entry: WaitingListEntry, now: int) -> EntryView:
    return EntryView(
        entry=entry,
        position=await entries.position_of(entry),
        offer_remaining_ms=remaining_ms(entry.offer_expires_at, now),
    )


async def get_entry(
    db: AsyncSession,
    entry_id: int,
    requester_id: Optional[str] = None,
    now: Optional[int] = None,
) -> EntryView:
    """Fetch an entry by id. With `requester_id`, other requesters' entries are hidden."""
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)
    async with atomic(db):
        entry = await entries.get_by_id(entry_id)
        if entry is None or (requester_id is not None and entry.requester_id != requester_id):
            raise EntryNotFoundError(entry_id)
        return await _describe(entries, entry, now)


async def get_requester_entry(
    db: AsyncSession,
    event_id: str,
    requester_id: str,
    now: Optional[int] = None,
) -> EntryView:
    """The requester's active entry for an event, else their most recent one."""
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)
    async with atomic(db):
        entry = await entries.get_active(event_id, requester_id)
        if entry is None:
            entry = await entries.get_latest(event_id, requester_id)
        if entry is None:
            raise EntryNotFoundError()
        return await _describe(entries, entry, now)


async def _expire_lapsed(db: AsyncSession, entry: WaitingListEntry, now: int) -> bool:
    """Expire one lapsed offer and drop its cart. Caller holds the pool lock."""
    if await WaitingListRepository(db).expire_offer(entry.id, now):
        await CartRepository(db).clear([entry.id])
        return True
    return False


async def mark_purchased(db: AsyncSession, entry_id: int, now: Optional[int] = None) -> WaitingListEntry:
    """
    Payment succeeded: offered -> purchased.

    The offered quantity moves from "held" to "committed" on the pool in the
    same transaction. Retrying on an already purchased entry returns it
    unchanged. An offer whose window has passed is expired instead and
    OfferExpiredError is raised.
    """
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)
    expired = False

    async with atomic(db):
        entry = await entries.get_by_id(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        pool = await lock_pool(db, entry.event_id, entry.ticket_type)
        entry = await entries.get_by_id(entry_id)

        if entry.status == EntryStatus.PURCHASED.value:
            logger.info("purchase_already_recorded", entry_id=entry_id)
            return entry
        if entry.status != EntryStatus.OFFERED.value:
            raise InvalidTransitionError(entry_id, entry.status, EntryStatus.PURCHASED.value)

        if entry.offer_expires_at < now:
            expired = await _expire_lapsed(db, entry, now)
        else:
            changed = await entries.transition(
                entry_id,
                (EntryStatus.OFFERED,),
                EntryStatus.PURCHASED,
                extra_where=(WaitingListEntry.offer_expires_at >= now,),
            )
            if not changed:
                current = await entries.get_by_id(entry_id)
                raise InvalidTransitionError(entry_id, current.status, EntryStatus.PURCHASED.value)
            if not await TicketPoolRepository(db).commit_tickets(pool.id, entry.quantity):
                capacity_invariant_violations.inc()
                logger.critical(
                    "capacity_invariant_violated",
                    event_id=pool.event_id,
                    ticket_type=pool.ticket_type,
                    total=pool.total_tickets,
                    committed=pool.tickets_committed,
                    quantity=entry.quantity,
                )
                raise CapacityInvariantViolation(
                    pool.event_id, pool.ticket_type, pool.total_tickets,
                    pool.tickets_committed + entry.quantity,
                )
            await CartRepository(db).clear([entry_id])
            entry = await entries.get_by_id(entry_id)

    if expired:
        record_transition(EntryStatus.EXPIRED.value)
        logger.info("purchase_rejected_offer_expired", entry_id=entry_id, event_id=entry.event_id)
        await announce(entry.event_id, entry_id, EntryStatus.EXPIRED)
        await promote_pool(db, entry.event_id, entry.ticket_type, now)
        raise OfferExpiredError(entry_id)
    if entry.status != EntryStatus.PURCHASED.value:
        # Someone else expired it between our read and the lock
        raise OfferExpiredError(entry_id)

    record_transition(EntryStatus.PURCHASED.value)
    logger.info(
        "entry_purchased",
        entry_id=entry_id,
        event_id=entry.event_id,
        ticket_type=entry.ticket_type,
        requester_id=entry.requester_id,
        quantity=entry.quantity,
    )
    await announce(entry.event_id, entry_id, EntryStatus.PURCHASED)
    return entry


async def cancel_entry(
    db: AsyncSession,
    entry_id: int,
    requester_id: Optional[str] = None,
    now: Optional[int] = None,
    reason: str = "requester",
) -> WaitingListEntry:
    """
    waiting|offered -> cancelled.

    Cancelling an offer frees its quantity, so the pool is refilled from the
    queue afterwards.
    """
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)

    async with atomic(db):
        entry = await entries.get_by_id(entry_id)
        if entry is None or (requester_id is not None and entry.requester_id != requester_id):
            raise EntryNotFoundError(entry_id)
        await lock_pool(db, entry.event_id, entry.ticket_type)
        entry = await entries.get_by_id(entry_id)
        previous = entry.status

        if not await entries.transition(entry_id, ACTIVE_STATUSES, EntryStatus.CANCELLED):
            raise InvalidTransitionError(entry_id, entry.status, EntryStatus.CANCELLED.value)
        await CartRepository(db).clear([entry_id])
        entry = await entries.get_by_id(entry_id)

    record_transition(EntryStatus.CANCELLED.value)
    logger.info(
        "entry_cancelled",
        entry_id=entry_id,
        event_id=entry.event_id,
        requester_id=entry.requester_id,
        previous_status=previous,
        reason=reason,
    )
    await announce(entry.event_id, entry_id, EntryStatus.CANCELLED)

    if previous == EntryStatus.OFFERED.value:
        await promote_pool(db, entry.event_id, entry.ticket_type, now)
    return entry


async def release_offer(db: AsyncSession, entry_id: int, now: Optional[int] = None) -> WaitingListEntry:
    """
    Payment failed or was abandoned: give the offered tickets back.

    Safe to repeat. An entry that already expired or was cancelled is
    returned as is; a waiting or purchased entry cannot be released.
    """
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)

    async with atomic(db):
        entry = await entries.get_by_id(entry_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    if entry.status in RELEASED_STATUSES:
        return entry
    if entry.status != EntryStatus.OFFERED.value:
        raise InvalidTransitionError(entry_id, entry.status, EntryStatus.CANCELLED.value)
    try:
        return await cancel_entry(db, entry_id, now=now, reason="payment_abandoned")
    except InvalidTransitionError:
        # The sweeper or another release got there first
        async with atomic(db):
            entry = await entries.get_by_id(entry_id)
        if entry.status in RELEASED_STATUSES:
            return entry
        raise


async def validate_checkout(
    db: AsyncSession,
    event_id: str,
    requester_id: str,
    now: Optional[int] = None,
) -> EntryView:
    """
    Re-check that the requester still holds a live offer before checkout.

    Raises NotOfferedError while the requester is still waiting and
    OfferExpiredError once the window has passed (expiring the entry on the
    spot if the sweeper has not reached it yet).
    """
    now = now if now is not None else now_ms()
    entries = WaitingListRepository(db)
    expired = False

    async with atomic(db):
        entry = await entries.get_active(event_id, requester_id)
        if entry is None:
            latest = await entries.get_latest(event_id, requester_id)
            if latest is not None and latest.status == EntryStatus.EXPIRED.value:
                raise OfferExpiredError(latest.id)
            raise EntryNotFoundError()
        if entry.status == EntryStatus.WAITING.value:
            raise NotOfferedError(entry.id)
        if entry.offer_expires_at < now:
            await lock_pool(db, entry.event_id, entry.ticket_type)
            expired = await _expire_lapsed(db, entry, now)
        else:
            view = await _describe(entries, entry, now)

    if expired:
        record_transition(EntryStatus.EXPIRED.value)
        logger.info("checkout_rejected_offer_expired", entry_id=entry.id, event_id=event_id)
        await announce(event_id, entry.id, EntryStatus.EXPIRED)
        await promote_pool(db, event_id, entry.ticket_type, now)
        raise OfferExpiredError(entry.id)
    if entry.offer_expires_at is None or entry.offer_expires_at < now:
        raise OfferExpiredError(entry.id)
    return view
