"""Initial schema: ticket pools, waiting list, cart items with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_PREDICATE = sa.text("status IN ('waiting', 'offered')")


def upgrade() -> None:
    # Ticket pools table
    op.create_table(
        "ticket_pools",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("ticket_type", sa.String(64), nullable=False, server_default=sa.text("''")),
        sa.Column("total_tickets", sa.Integer(), nullable=False),
        sa.Column("tickets_committed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "ticket_type", name="uq_ticket_pool_event_type"),
        sa.CheckConstraint("total_tickets > 0", name="check_pool_total_positive"),
        sa.CheckConstraint("tickets_committed >= 0", name="check_pool_committed_non_negative"),
        sa.CheckConstraint("tickets_committed <= total_tickets", name="check_pool_committed_lte_total"),
    )
    op.create_index("ix_ticket_pools_id", "ticket_pools", ["id"])
    op.create_index("ix_ticket_pools_event_id", "ticket_pools", ["event_id"])

    # Waiting list table
    op.create_table(
        "waiting_list",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("requester_id", sa.String(128), nullable=False),
        sa.Column("ticket_type", sa.String(64), nullable=False, server_default=sa.text("''")),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'waiting'")),
        sa.Column("offer_expires_at", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="check_entry_quantity_positive"),
        sa.CheckConstraint(
            "status IN ('waiting', 'offered', 'purchased', 'expired', 'cancelled')",
            name="check_entry_status",
        ),
        sa.CheckConstraint(
            "(status = 'offered') = (offer_expires_at IS NOT NULL)",
            name="check_offer_expiry_iff_offered",
        ),
    )
    op.create_index("ix_waiting_list_id", "waiting_list", ["id"])
    # AT MOST ONE ACTIVE ENTRY: enforced by the store, not by the caller.
    # Two concurrent joins by the same requester race on this index; the
    # loser gets an IntegrityError and returns the winner's entry.
    op.create_index(
        "uq_waiting_list_active_requester",
        "waiting_list",
        ["event_id", "requester_id"],
        unique=True,
        postgresql_where=ACTIVE_PREDICATE,
        sqlite_where=ACTIVE_PREDICATE,
    )
    # FIFO head of a pool: WHERE event_id, ticket_type, status ORDER BY created_at, id
    op.create_index(
        "ix_waiting_list_pool_status",
        "waiting_list",
        ["event_id", "ticket_type", "status", "created_at", "id"],
    )
    # Sweeper scan: WHERE status = 'offered' AND offer_expires_at < now
    op.create_index("ix_waiting_list_status_expiry", "waiting_list", ["status", "offer_expires_at"])
    op.create_index("ix_waiting_list_requester", "waiting_list", ["requester_id"])

    # Cart items table
    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entry_id", sa.Integer(), sa.ForeignKey("waiting_list.id"), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("unit_price", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("ticket_type", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="check_cart_item_quantity_positive"),
        sa.CheckConstraint("unit_price >= 0", name="check_cart_item_price_non_negative"),
    )
    op.create_index("ix_cart_items_id", "cart_items", ["id"])
    op.create_index("ix_cart_items_entry_id", "cart_items", ["entry_id"])


def downgrade() -> None:
    op.drop_table("cart_items")
    op.drop_table("waiting_list")
    op.drop_table("ticket_pools")
