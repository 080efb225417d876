"""
Cart line items bound to a waiting list entry.

A cart exists only as long as its entry is active: rows are deleted in the
same transaction that moves the entry to purchased, expired or cancelled.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint

from waitroom.db.base import Base, TimestampMixin


class CartItem(Base, TimestampMixin):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(
        Integer,
        ForeignKey("waiting_list.id"),
        nullable=False,
        index=True,
    )
    product_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    unit_price = Column(Integer, nullable=False, default=0)  # minor currency units
    quantity = Column(Integer, nullable=False, default=1)
    ticket_type = Column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_cart_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="check_cart_item_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<CartItem(id={self.id}, entry={self.entry_id}, product={self.product_id}, qty={self.quantity})>"
