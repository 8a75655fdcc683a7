# ===== RipHouse API Schemas (Auctions / Bids / RipLimit / Categories) =====
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from riphouse.config.time_policy import ensure_aware_utc
from riphouse.models import AuctionStatus, RipLimitTransactionType

# SQLite 는 tz 를 버리므로 읽은 시각에 UTC 를 다시 붙인다 (JSON 은 ...Z)
UtcDatetime = Annotated[datetime, AfterValidator(ensure_aware_utc)]

# 경매 가격 입력: INR, 소수 둘째 자리까지
MoneyIn = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]


# ─────────────────────────────────────────────────────────
# 공통 베이스: JSON 은 camelCase, 파이썬 쪽은 snake_case 둘 다 허용
# ─────────────────────────────────────────────────────────
class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def envelope(data: Any = None, **extra: Any) -> Dict[str, Any]:
    """{success, data, ...} 응답 봉투."""
    out: Dict[str, Any] = {"success": True, "data": data}
    out.update(extra)
    return out


class PageInfo(CamelModel):
    limit: int
    has_more: bool = False
    next_cursor: Optional[int] = None


# ---------------- Auth / User ----------------
class UserCreate(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = ""
    role: Literal["user", "seller"] = "user"


class UserOut(CamelModel):
    id: int
    email: str
    name: str
    role: str
    is_active: bool
    created_at: Optional[UtcDatetime] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ---------------- Shop ----------------
class ShopCreate(CamelModel):
    slug: str
    name: str


class ShopAdminUpdate(CamelModel):
    is_verified: Optional[bool] = None
    is_banned: Optional[bool] = None


class ShopOut(CamelModel):
    id: int
    slug: str
    name: str
    owner_id: int
    is_verified: bool
    is_banned: bool


# ---------------- Auction ----------------
class AuctionCreate(CamelModel):
    name: str = Field(..., min_length=1)
    slug: str
    description: str = ""
    shop_id: int
    category_id: Optional[int] = None
    starting_price: MoneyIn
    reserve_price: Optional[MoneyIn] = None
    bid_increment: Optional[MoneyIn] = None
    start_time: UtcDatetime
    end_time: UtcDatetime


class AuctionUpdate(CamelModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    starting_price: Optional[MoneyIn] = None
    reserve_price: Optional[MoneyIn] = None
    bid_increment: Optional[MoneyIn] = None
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None


class AuctionOut(CamelModel):
    id: int
    slug: str
    name: str
    description: str
    starting_price: float
    current_price: float
    # 판매자/관리자에게만 채워서 보냄
    reserve_price: Optional[float] = None
    has_reserve: bool = False
    reserve_met: bool = True
    bid_increment: float
    min_next_bid: float
    start_time: UtcDatetime
    end_time: UtcDatetime
    status: AuctionStatus
    total_bids: int
    watchers: int
    featured: bool
    featured_priority: int
    seller_id: int
    shop_id: int
    category_id: Optional[int] = None
    highest_bidder_id: Optional[int] = None
    winner_id: Optional[int] = None
    is_sold: bool = False
    ended_at: Optional[UtcDatetime] = None
    cancelled_at: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


class FeatureRequest(CamelModel):
    featured: bool = True
    priority: int = 0


class WatchOut(CamelModel):
    watching: bool
    watchers: int


class MyBidOut(CamelModel):
    auction: AuctionOut
    my_highest_bid: float
    bid_count: int
    is_winning: bool


BulkAction = Literal["start", "end", "cancel", "feature", "unfeature", "delete", "update"]


class BulkRequest(CamelModel):
    action: BulkAction
    ids: List[int] = Field(default_factory=list)
    updates: Optional[AuctionUpdate] = None


class BulkResults(CamelModel):
    successful_ids: List[int] = Field(default_factory=list)
    failed_ids: List[int] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class BatchRequest(CamelModel):
    ids: Optional[List[int]] = None


# ---------------- Bid ----------------
class BidCreate(CamelModel):
    # 소수 둘째 자리까지 허용. 그 이상/NaN/무한대는 도메인 검증에서 400
    amount: float
    is_auto_bid: bool = False
    max_auto_bid_amount: Optional[float] = None
    idempotency_key: Optional[str] = None


class BidOut(CamelModel):
    id: int
    auction_id: int
    user_id: int
    amount: float
    is_auto_bid: bool
    # 본인 입찰에서만 노출
    max_auto_bid_amount: Optional[float] = None
    is_system: bool
    is_winning: bool
    created_at: Optional[UtcDatetime] = None


# ---------------- RipLimit ----------------
class BlockedBidOut(CamelModel):
    auction_id: int
    bid_id: Optional[int] = None
    amount: int
    bid_amount: float


class RipLimitBalanceOut(CamelModel):
    user_id: int
    available_balance: int
    blocked_balance: int
    total_balance: int
    available_balance_inr: float
    blocked_balance_inr: float
    total_balance_inr: float
    has_unpaid_auctions: bool
    unpaid_auction_ids: List[int] = Field(default_factory=list)
    strikes: int
    is_blocked: bool
    block_reason: Optional[str] = None
    blocked_bids: List[BlockedBidOut] = Field(default_factory=list)


class RipLimitTransactionOut(CamelModel):
    id: int
    user_id: int
    type: RipLimitTransactionType
    amount: int
    balance_after: int
    auction_id: Optional[int] = None
    bid_id: Optional[int] = None
    order_id: Optional[str] = None
    description: Optional[str] = None
    actor_id: Optional[int] = None
    reason: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


class RipLimitAccountOut(CamelModel):
    user_id: int
    available_balance: int
    blocked_balance: int
    lifetime_purchases: int
    lifetime_spent: int
    has_unpaid_auctions: bool
    unpaid_auction_ids: List[int] = Field(default_factory=list)
    strikes: int
    is_blocked: bool
    block_reason: Optional[str] = None


class RipLimitStatsOut(CamelModel):
    total_accounts: int
    total_available: int
    total_blocked: int
    total_outstanding: int
    total_purchased: int
    total_spent: int
    blocked_accounts: int
    accounts_with_unpaid: int


class PurchaseRequest(CamelModel):
    amount: int = Field(..., gt=0, description="충전 금액(INR)")
    order_id: Optional[str] = None


class RefundRequest(CamelModel):
    amount: int = Field(..., gt=0, description="환불 RipLimit")
    reason: Optional[str] = None


class PayRequest(CamelModel):
    order_id: Optional[str] = None


class AdjustRequest(CamelModel):
    amount: int
    # 비어 있으면 도메인에서 400 (변경 전 거절)
    reason: Optional[str] = None


# ---------------- Category ----------------
class CategoryCreate(CamelModel):
    slug: str
    name: str
    parent_ids: List[int] = Field(default_factory=list)
    is_featured: bool = False
    sort_order: int = 0


class CategoryOut(CamelModel):
    id: int
    slug: str
    name: str
    is_featured: bool
    sort_order: int
    parent_ids: List[int] = Field(default_factory=list)
    children_ids: List[int] = Field(default_factory=list)


class ParentRequest(CamelModel):
    parent_id: int


class CategoryHierarchyOut(CamelModel):
    category: CategoryOut
    ancestors: List[CategoryOut] = Field(default_factory=list)
    paths: List[List[CategoryOut]] = Field(default_factory=list)
