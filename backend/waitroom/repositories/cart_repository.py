from typing import Optional, List, Iterable
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.models.cart import CartItem


class CartRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_items(self, entry_id: int) -> List[CartItem]:
        result = await self.db.execute(
            select(CartItem)
            .where(CartItem.entry_id == entry_id)
            .order_by(CartItem.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_item(self, entry_id: int, item_id: int) -> Optional[CartItem]:
        result = await self.db.execute(
            select(CartItem).where(CartItem.id == item_id, CartItem.entry_id == entry_id)
        )
        return result.scalar_one_or_none()

    async def add_item(
        self,
        entry_id: int,
        product_id: str,
        title: str,
        unit_price: int,
        quantity: int,
        ticket_type: Optional[str] = None,
    ) -> CartItem:
        item = CartItem(
            entry_id=entry_id,
            product_id=product_id,
            title=title,
            unit_price=unit_price,
            quantity=quantity,
            ticket_type=ticket_type,
        )
        self.db.add(item)
        await self.db.flush()
        return item

    async def delete_item(self, item: CartItem) -> None:
        await self.db.delete(item)
        await self.db.flush()

    async def clear(self, entry_ids: Iterable[int]) -> int:
        ids = list(entry_ids)
        if not ids:
            return 0
        result = await self.db.execute(
            delete(CartItem)
            .where(CartItem.entry_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
