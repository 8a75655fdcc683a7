# riphouse/models.py
# 경매(Auction)/입찰(Bid)/RipLimit 원장/카테고리 DAG 모델
from sqlalchemy import (
    Column, Integer, Numeric, String, DateTime, ForeignKey, Text, Boolean, Table,
    Enum as SAEnum, JSON, Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from decimal import Decimal
from .database import Base
from .config import project_rules as R
import enum

# INR 금액 (소수 둘째 자리). RipLimit 잔액은 Integer
Money = Numeric(12, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -------------------------------------------------------
# 🧩 User (인증/권한)
# -------------------------------------------------------
class UserRole(str, enum.Enum):
    USER = "user"
    SELLER = "seller"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=False, default="")
    role = Column(String, default=UserRole.USER.value, nullable=False)  # 'user' | 'seller' | 'admin'
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    shops = relationship("Shop", back_populates="owner")

    def __repr__(self):
        return f"<User(email='{self.email}', role='{self.role}', active={self.is_active})>"


# -------------------------------------------------------
# 🏪 Shop (판매자 1명 : 샵 N개)
# -------------------------------------------------------
class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # 미인증/밴 샵의 경매는 소유자/관리자 외에는 404
    is_verified = Column(Boolean, default=False, nullable=False)
    is_banned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    owner = relationship("User", back_populates="shops")
    auctions = relationship("Auction", back_populates="shop")


# -------------------------------------------------------
# 🔨 Auction
# -------------------------------------------------------
class AuctionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class Auction(Base):
    __tablename__ = "auctions"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")

    # 금액 (INR 정수 단위)
    starting_price = Column(Money, nullable=False)
    current_price = Column(Money, nullable=False)
    reserve_price = Column(Money, nullable=True)
    bid_increment = Column(Money, nullable=False, default=1)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(SAEnum(AuctionStatus, name="auctionstatus", values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=AuctionStatus.SCHEDULED)

    # 집계
    total_bids = Column(Integer, nullable=False, default=0)
    watchers = Column(Integer, nullable=False, default=0)
    featured = Column(Boolean, nullable=False, default=False)
    featured_priority = Column(Integer, nullable=False, default=0)

    # 소유
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)

    # 낙찰
    highest_bidder_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    winner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_sold = Column(Boolean, nullable=False, default=False)

    ended_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # 낙관적 동시성 (current_price/total_bids CAS)
    version = Column(Integer, nullable=False, default=1)

    shop = relationship("Shop", back_populates="auctions")
    bids = relationship("Bid", back_populates="auction", cascade="all, delete-orphan",
                        order_by="Bid.id")

    @property
    def min_next_bid(self) -> Decimal:
        return R.to_money(self.current_price) + R.to_money(self.bid_increment)

    @property
    def has_reserve(self) -> bool:
        return self.reserve_price is not None

    @property
    def reserve_met(self) -> bool:
        return self.reserve_price is None or R.to_money(self.current_price) >= R.to_money(self.reserve_price)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("current_price >= starting_price", name="ck_auction_price_floor"),
        CheckConstraint("bid_increment > 0", name="ck_auction_increment_positive"),
        CheckConstraint("total_bids >= 0", name="ck_auction_total_bids_nonneg"),
        Index("ix_auction_status_end", "status", "end_time"),
        Index("ix_auction_featured", "featured", "featured_priority"),
    )


# -------------------------------------------------------
# 💸 Bid (수락 후 불변)
# -------------------------------------------------------
class Bid(Base):
    __tablename__ = "bids"

    id = Column(Integer, primary_key=True, index=True)
    auction_id = Column(Integer, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)

    is_auto_bid = Column(Boolean, nullable=False, default=False)
    max_auto_bid_amount = Column(Money, nullable=True)
    is_system = Column(Boolean, nullable=False, default=False)  # 프록시 입찰이 대신 넣은 건
    is_winning = Column(Boolean, nullable=False, default=False)

    idempotency_key = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    auction = relationship("Auction", back_populates="bids")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bid_amount_positive"),
        Index("ix_bid_auction_created", "auction_id", "created_at"),
        Index("ix_bid_user_auction", "user_id", "auction_id"),
    )


class AuctionWatch(Base):
    __tablename__ = "auction_watches"

    id = Column(Integer, primary_key=True, index=True)
    auction_id = Column(Integer, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("auction_id", "user_id", name="uq_watch_once_per_user"),
    )


# -------------------------------------------------------
# 🪙 RipLimit 계정 / 블록 / 원장
# -------------------------------------------------------
class RipLimitAccount(Base):
    __tablename__ = "riplimit_accounts"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    available_balance = Column(Integer, nullable=False, default=0)
    blocked_balance = Column(Integer, nullable=False, default=0)
    lifetime_purchases = Column(Integer, nullable=False, default=0)
    lifetime_spent = Column(Integer, nullable=False, default=0)

    has_unpaid_auctions = Column(Boolean, nullable=False, default=False)
    unpaid_auction_ids = Column(JSON, nullable=False, default=list)
    strikes = Column(Integer, nullable=False, default=0)
    is_blocked = Column(Boolean, nullable=False, default=False)
    block_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_riplimit_available_nonneg"),
        CheckConstraint("blocked_balance >= 0", name="ck_riplimit_blocked_nonneg"),
    )


class RipLimitBlockedBid(Base):
    __tablename__ = "riplimit_blocked_bids"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("riplimit_accounts.user_id"), nullable=False, index=True)
    auction_id = Column(Integer, ForeignKey("auctions.id"), nullable=False, index=True)
    bid_id = Column(Integer, nullable=True)
    amount = Column(Integer, nullable=False)       # RipLimit 단위
    bid_amount = Column(Money, nullable=False)   # INR 단위
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "auction_id", name="uq_blocked_bid_user_auction"),
        CheckConstraint("amount >= 0", name="ck_blocked_bid_amount_nonneg"),
    )


class RipLimitTransactionType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    REFUND = "REFUND"
    BID_BLOCK = "BID_BLOCK"
    BID_RELEASE = "BID_RELEASE"
    AUCTION_PAYMENT = "AUCTION_PAYMENT"
    ADMIN_ADJUST = "ADMIN_ADJUST"


class RipLimitTransaction(Base):
    __tablename__ = "riplimit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("riplimit_accounts.user_id"), nullable=False, index=True)
    type = Column(SAEnum(RipLimitTransactionType, name="riplimittransactiontype"), nullable=False)
    amount = Column(Integer, nullable=False)  # +적립 / -차감 (available 기준)
    balance_after = Column(Integer, nullable=False)
    auction_id = Column(Integer, nullable=True, index=True)
    bid_id = Column(Integer, nullable=True)
    order_id = Column(String, nullable=True)
    description = Column(String, nullable=True)

    # 감사(audit) 필드
    actor_id = Column(Integer, nullable=True)
    reason = Column(String, nullable=True)
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    __table_args__ = (
        Index("ix_riplimit_tx_user_created", "user_id", "created_at"),
    )


# -------------------------------------------------------
# 🗂 Category (다중 부모 DAG)
# -------------------------------------------------------
category_parents = Table(
    "category_parents",
    Base.metadata,
    Column("child_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
    Column("parent_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
    CheckConstraint("child_id <> parent_id", name="ck_category_no_self_parent"),
)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    is_featured = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # 하나의 엣지 집합을 양방향으로 본다 (parents <-> children)
    parents = relationship(
        "Category",
        secondary=category_parents,
        primaryjoin=lambda: Category.id == category_parents.c.child_id,
        secondaryjoin=lambda: Category.id == category_parents.c.parent_id,
        back_populates="children",
        order_by=lambda: Category.id,
    )
    children = relationship(
        "Category",
        secondary=category_parents,
        primaryjoin=lambda: Category.id == category_parents.c.parent_id,
        secondaryjoin=lambda: Category.id == category_parents.c.child_id,
        back_populates="parents",
        order_by=lambda: Category.id,
    )

    @property
    def parent_ids(self) -> list:
        return [p.id for p in self.parents]

    @property
    def children_ids(self) -> list:
        return [c.id for c in self.children]
