"""initial riphouse schema (users, shops, auctions, bids, riplimit, categories)

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01 10:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


AUCTION_STATUS = sa.Enum("scheduled", "active", "ended", "cancelled", name="auctionstatus")
TX_TYPE = sa.Enum(
    "PURCHASE",
    "REFUND",
    "BID_BLOCK",
    "BID_RELEASE",
    "AUCTION_PAYMENT",
    "ADMIN_ADJUST",
    name="riplimittransactiontype",
)


# ---------- helpers ----------
def _has_table(name: str) -> bool:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    return insp.has_table(name)


def upgrade() -> None:
    # -----------------------------
    # users / shops
    # -----------------------------
    if not _has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("hashed_password", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("role", sa.String(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_id", "users", ["id"])
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _has_table("shops"):
        op.create_table(
            "shops",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("slug", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("is_verified", sa.Boolean(), nullable=False),
            sa.Column("is_banned", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shops_id", "shops", ["id"])
        op.create_index("ix_shops_slug", "shops", ["slug"], unique=True)
        op.create_index("ix_shops_owner_id", "shops", ["owner_id"])

    # -----------------------------
    # categories (다중 부모 DAG)
    # -----------------------------
    if not _has_table("categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("slug", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("is_featured", sa.Boolean(), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_categories_id", "categories", ["id"])
        op.create_index("ix_categories_slug", "categories", ["slug"], unique=True)

    if not _has_table("category_parents"):
        op.create_table(
            "category_parents",
            sa.Column("child_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False),
            sa.Column("parent_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False),
            sa.PrimaryKeyConstraint("child_id", "parent_id"),
            sa.CheckConstraint("child_id <> parent_id", name="ck_category_no_self_parent"),
        )

    # -----------------------------
    # auctions / bids / watches
    # -----------------------------
    if not _has_table("auctions"):
        op.create_table(
            "auctions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("slug", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("starting_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("current_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("reserve_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("bid_increment", sa.Numeric(12, 2), nullable=False),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", AUCTION_STATUS, nullable=False),
            sa.Column("total_bids", sa.Integer(), nullable=False),
            sa.Column("watchers", sa.Integer(), nullable=False),
            sa.Column("featured", sa.Boolean(), nullable=False),
            sa.Column("featured_priority", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("shop_id", sa.Integer(), sa.ForeignKey("shops.id"), nullable=False),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
            sa.Column("highest_bidder_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("winner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("is_sold", sa.Boolean(), nullable=False),
            sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("current_price >= starting_price", name="ck_auction_price_floor"),
            sa.CheckConstraint("bid_increment > 0", name="ck_auction_increment_positive"),
            sa.CheckConstraint("total_bids >= 0", name="ck_auction_total_bids_nonneg"),
        )
        op.create_index("ix_auctions_id", "auctions", ["id"])
        op.create_index("ix_auctions_slug", "auctions", ["slug"], unique=True)
        op.create_index("ix_auctions_seller_id", "auctions", ["seller_id"])
        op.create_index("ix_auctions_shop_id", "auctions", ["shop_id"])
        op.create_index("ix_auctions_category_id", "auctions", ["category_id"])
        op.create_index("ix_auction_status_end", "auctions", ["status", "end_time"])
        op.create_index("ix_auction_featured", "auctions", ["featured", "featured_priority"])

    if not _has_table("bids"):
        op.create_table(
            "bids",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("auction_id", sa.Integer(), sa.ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("is_auto_bid", sa.Boolean(), nullable=False),
            sa.Column("max_auto_bid_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("is_system", sa.Boolean(), nullable=False),
            sa.Column("is_winning", sa.Boolean(), nullable=False),
            sa.Column("idempotency_key", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("amount > 0", name="ck_bid_amount_positive"),
        )
        op.create_index("ix_bids_id", "bids", ["id"])
        op.create_index("ix_bids_auction_id", "bids", ["auction_id"])
        op.create_index("ix_bids_user_id", "bids", ["user_id"])
        op.create_index("ix_bids_idempotency_key", "bids", ["idempotency_key"], unique=True)
        op.create_index("ix_bid_auction_created", "bids", ["auction_id", "created_at"])
        op.create_index("ix_bid_user_auction", "bids", ["user_id", "auction_id"])

    if not _has_table("auction_watches"):
        op.create_table(
            "auction_watches",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("auction_id", sa.Integer(), sa.ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("auction_id", "user_id", name="uq_watch_once_per_user"),
        )
        op.create_index("ix_auction_watches_id", "auction_watches", ["id"])
        op.create_index("ix_auction_watches_auction_id", "auction_watches", ["auction_id"])
        op.create_index("ix_auction_watches_user_id", "auction_watches", ["user_id"])

    # -----------------------------
    # riplimit 계정 / 홀드 / 원장
    # -----------------------------
    if not _has_table("riplimit_accounts"):
        op.create_table(
            "riplimit_accounts",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("available_balance", sa.Integer(), nullable=False),
            sa.Column("blocked_balance", sa.Integer(), nullable=False),
            sa.Column("lifetime_purchases", sa.Integer(), nullable=False),
            sa.Column("lifetime_spent", sa.Integer(), nullable=False),
            sa.Column("has_unpaid_auctions", sa.Boolean(), nullable=False),
            sa.Column("unpaid_auction_ids", sa.JSON(), nullable=False),
            sa.Column("strikes", sa.Integer(), nullable=False),
            sa.Column("is_blocked", sa.Boolean(), nullable=False),
            sa.Column("block_reason", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("user_id"),
            sa.CheckConstraint("available_balance >= 0", name="ck_riplimit_available_nonneg"),
            sa.CheckConstraint("blocked_balance >= 0", name="ck_riplimit_blocked_nonneg"),
        )

    if not _has_table("riplimit_blocked_bids"):
        op.create_table(
            "riplimit_blocked_bids",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("riplimit_accounts.user_id"), nullable=False),
            sa.Column("auction_id", sa.Integer(), sa.ForeignKey("auctions.id"), nullable=False),
            sa.Column("bid_id", sa.Integer(), nullable=True),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("bid_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "auction_id", name="uq_blocked_bid_user_auction"),
            sa.CheckConstraint("amount >= 0", name="ck_blocked_bid_amount_nonneg"),
        )
        op.create_index("ix_riplimit_blocked_bids_id", "riplimit_blocked_bids", ["id"])
        op.create_index("ix_riplimit_blocked_bids_user_id", "riplimit_blocked_bids", ["user_id"])
        op.create_index("ix_riplimit_blocked_bids_auction_id", "riplimit_blocked_bids", ["auction_id"])

    if not _has_table("riplimit_transactions"):
        op.create_table(
            "riplimit_transactions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("riplimit_accounts.user_id"), nullable=False),
            sa.Column("type", TX_TYPE, nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("balance_after", sa.Integer(), nullable=False),
            sa.Column("auction_id", sa.Integer(), nullable=True),
            sa.Column("bid_id", sa.Integer(), nullable=True),
            sa.Column("order_id", sa.String(), nullable=True),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("reason", sa.String(), nullable=True),
            sa.Column("meta", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_riplimit_transactions_id", "riplimit_transactions", ["id"])
        op.create_index("ix_riplimit_transactions_user_id", "riplimit_transactions", ["user_id"])
        op.create_index("ix_riplimit_transactions_auction_id", "riplimit_transactions", ["auction_id"])
        op.create_index("ix_riplimit_transactions_created_at", "riplimit_transactions", ["created_at"])
        op.create_index("ix_riplimit_tx_user_created", "riplimit_transactions", ["user_id", "created_at"])


def downgrade() -> None:
    for table in (
        "riplimit_transactions",
        "riplimit_blocked_bids",
        "riplimit_accounts",
        "auction_watches",
        "bids",
        "auctions",
        "category_parents",
        "categories",
        "shops",
        "users",
    ):
        if _has_table(table):
            op.drop_table(table)

    bind = op.get_bind()
    TX_TYPE.drop(bind, checkfirst=True)
    AUCTION_STATUS.drop(bind, checkfirst=True)
