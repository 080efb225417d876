from typing import Optional, List, Iterable, Sequence, Tuple
from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from waitroom.models.waiting_list import WaitingListEntry, EntryStatus, ACTIVE_STATUS_VALUES
from waitroom.repositories.ticket_pool_repository import pool_key


class WaitingListRepository:
    """
    Row-level access to the waiting list.

    Status changes only go through `transition`, a compare-and-set on the
    current status, so a caller that lost a race sees `False` instead of
    overwriting someone else's update.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, entry_id: int) -> Optional[WaitingListEntry]:
        result = await self.db.execute(
            select(WaitingListEntry)
            .where(WaitingListEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active(self, event_id: str, requester_id: str) -> Optional[WaitingListEntry]:
        result = await self.db.execute(
            select(WaitingListEntry)
            .where(
                WaitingListEntry.event_id == event_id,
                WaitingListEntry.requester_id == requester_id,
                WaitingListEntry.status.in_(ACTIVE_STATUS_VALUES),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_latest(self, event_id: str, requester_id: str) -> Optional[WaitingListEntry]:
        result = await self.db.execute(
            select(WaitingListEntry)
            .where(
                WaitingListEntry.event_id == event_id,
                WaitingListEntry.requester_id == requester_id,
            )
            .order_by(WaitingListEntry.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        event_id: str,
        requester_id: str,
        ticket_type: Optional[str],
        quantity: int,
        status: EntryStatus,
        offer_expires_at: Optional[int] = None,
    ) -> WaitingListEntry:
        """Insert a new entry. IntegrityError propagates to the caller."""
        entry = WaitingListEntry(
            event_id=event_id,
            requester_id=requester_id,
            ticket_type=pool_key(ticket_type),
            quantity=quantity,
            status=status.value,
            offer_expires_at=offer_expires_at,
        )
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return entry

    async def held_quantity(
        self, event_id: str, ticket_type: Optional[str], live_at: Optional[int] = None,
    ) -> int:
        """Tickets reserved by offered entries of one pool; with `live_at`, only offers still open then."""
        query = select(func.coalesce(func.sum(WaitingListEntry.quantity), 0)).where(
            WaitingListEntry.event_id == event_id,
            WaitingListEntry.ticket_type == pool_key(ticket_type),
            WaitingListEntry.status == EntryStatus.OFFERED.value,
        )
        if live_at is not None:
            query = query.where(WaitingListEntry.offer_expires_at >= live_at)
        result = await self.db.execute(query)
        return int(result.scalar() or 0)

    async def oldest_waiting(self, event_id: str, ticket_type: Optional[str]) -> Optional[WaitingListEntry]:
        result = await self.db.execute(
            select(WaitingListEntry)
            .where(
                WaitingListEntry.event_id == event_id,
                WaitingListEntry.ticket_type == pool_key(ticket_type),
                WaitingListEntry.status == EntryStatus.WAITING.value,
            )
            .order_by(WaitingListEntry.created_at, WaitingListEntry.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        entry_id: int,
        from_statuses: Iterable[EntryStatus],
        to_status: EntryStatus,
        offer_expires_at: Optional[int] = None,
        extra_where: Sequence = (),
    ) -> bool:
        """Compare-and-set one entry's status. True iff the row changed."""
        values = {"status": to_status.value, "offer_expires_at": None}
        if to_status is EntryStatus.OFFERED:
            values["offer_expires_at"] = offer_expires_at

        result = await self.db.execute(
            update(WaitingListEntry)
            .where(
                WaitingListEntry.id == entry_id,
                WaitingListEntry.status.in_([s.value for s in from_statuses]),
                *extra_where,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_offer(self, entry_id: int, now: int) -> bool:
        return await self.transition(
            entry_id,
            (EntryStatus.OFFERED,),
            EntryStatus.EXPIRED,
            extra_where=(WaitingListEntry.offer_expires_at < now,),
        )

    async def find_stale_offers(
        self,
        now: int,
        event_id: Optional[str] = None,
        ticket_type: Optional[str] = None,
        limit: Optional[int] = None,
        exclude_ids: Iterable[int] = (),
    ) -> List[Tuple[int, str, str]]:
        """(id, event_id, ticket_type) of offers whose window has passed."""
        query = select(
            WaitingListEntry.id, WaitingListEntry.event_id, WaitingListEntry.ticket_type
        ).where(
            WaitingListEntry.status == EntryStatus.OFFERED.value,
            WaitingListEntry.offer_expires_at < now,
        )
        if event_id is not None:
            query = query.where(
                WaitingListEntry.event_id == event_id,
                WaitingListEntry.ticket_type == pool_key(ticket_type),
            )
        exclude_ids = list(exclude_ids)
        if exclude_ids:
            query = query.where(WaitingListEntry.id.notin_(exclude_ids))
        query = query.order_by(WaitingListEntry.offer_expires_at, WaitingListEntry.id)
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return [tuple(row) for row in result.all()]

    async def pools_with_waiting(self) -> List[Tuple[str, str]]:
        result = await self.db.execute(
            select(WaitingListEntry.event_id, WaitingListEntry.ticket_type)
            .where(WaitingListEntry.status == EntryStatus.WAITING.value)
            .group_by(WaitingListEntry.event_id, WaitingListEntry.ticket_type)
            .order_by(WaitingListEntry.event_id, WaitingListEntry.ticket_type)
        )
        return [tuple(row) for row in result.all()]

    async def count_by_status(
        self,
        event_id: str,
        now: int,
        ticket_type: Optional[str] = None,
    ) -> dict:
        """
        Live counts for an event (or one pool of it).

        Offers past their deadline that the sweeper has not reached yet are
        counted as expired, not as active offers.
        """
        live_offer = and_(
            WaitingListEntry.status == EntryStatus.OFFERED.value,
            WaitingListEntry.offer_expires_at >= now,
        )
        stale_offer = and_(
            WaitingListEntry.status == EntryStatus.OFFERED.value,
            WaitingListEntry.offer_expires_at < now,
        )
        query = select(
            func.count().filter(WaitingListEntry.status == EntryStatus.WAITING.value),
            func.count().filter(live_offer),
            func.count().filter(
                or_(WaitingListEntry.status == EntryStatus.EXPIRED.value, stale_offer)
            ),
            func.count().filter(WaitingListEntry.status == EntryStatus.PURCHASED.value),
            func.count().filter(WaitingListEntry.status == EntryStatus.CANCELLED.value),
        ).where(WaitingListEntry.event_id == event_id)
        if ticket_type is not None:
            query = query.where(WaitingListEntry.ticket_type == pool_key(ticket_type))

        waiting, offered, expired, purchased, cancelled = (await self.db.execute(query)).one()
        return {
            EntryStatus.WAITING: waiting or 0,
            EntryStatus.OFFERED: offered or 0,
            EntryStatus.EXPIRED: expired or 0,
            EntryStatus.PURCHASED: purchased or 0,
            EntryStatus.CANCELLED: cancelled or 0,
        }

    async def position_of(self, entry: WaitingListEntry) -> int:
        """1-based FIFO position among waiting entries of the entry's pool."""
        if entry.status != EntryStatus.WAITING.value:
            return 0
        me = aliased(WaitingListEntry)
        ahead = WaitingListEntry
        # Compare against the stored row, not a re-bound timestamp
        result = await self.db.execute(
            select(func.count(ahead.id))
            .select_from(me)
            .join(
                ahead,
                and_(
                    ahead.event_id == me.event_id,
                    ahead.ticket_type == me.ticket_type,
                    ahead.status == EntryStatus.WAITING.value,
                    or_(
                        ahead.created_at < me.created_at,
                        and_(ahead.created_at == me.created_at, ahead.id < me.id),
                    ),
                ),
            )
            .where(me.id == entry.id)
        )
        return int(result.scalar() or 0) + 1
