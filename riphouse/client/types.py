# riphouse/client/types.py
"""
API 응답 DTO. camelCase JSON 을 경계에서 한 번만 변환한다.
호출하는 쪽은 필드 이름 추측 없이 속성만 읽으면 된다.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


def _dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # 서버는 UTC 로 저장 (tz 정보가 빠져 올 수 있음)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _int(value: Any, default: int = 0) -> int:
    return default if value is None else int(value)


def _money(value: Any) -> Optional[Decimal]:
    # JSON float 1100.5 → Decimal("1100.5") (이진 오차 없이)
    return None if value is None else Decimal(str(value))


@dataclass
class Auction:
    id: int
    slug: str
    name: str
    status: str
    starting_price: Decimal
    current_price: Decimal
    bid_increment: Decimal
    min_next_bid: Decimal
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    seller_id: int
    shop_id: int
    description: str = ""
    reserve_price: Optional[Decimal] = None
    has_reserve: bool = False
    reserve_met: bool = True
    total_bids: int = 0
    watchers: int = 0
    featured: bool = False
    featured_priority: int = 0
    category_id: Optional[int] = None
    highest_bidder_id: Optional[int] = None
    winner_id: Optional[int] = None
    is_sold: bool = False
    ended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "Auction":
        return cls(
            id=int(d["id"]),
            slug=d["slug"],
            name=d["name"],
            status=d["status"],
            starting_price=_money(d.get("startingPrice")) or Decimal(0),
            current_price=_money(d.get("currentPrice")) or Decimal(0),
            bid_increment=_money(d.get("bidIncrement")) or Decimal(0),
            min_next_bid=_money(d.get("minNextBid")) or Decimal(0),
            start_time=_dt(d.get("startTime")),
            end_time=_dt(d.get("endTime")),
            seller_id=int(d["sellerId"]),
            shop_id=int(d["shopId"]),
            description=d.get("description") or "",
            reserve_price=_money(d.get("reservePrice")),
            has_reserve=bool(d.get("hasReserve", False)),
            reserve_met=bool(d.get("reserveMet", True)),
            total_bids=_int(d.get("totalBids")),
            watchers=_int(d.get("watchers")),
            featured=bool(d.get("featured", False)),
            featured_priority=_int(d.get("featuredPriority")),
            category_id=d.get("categoryId"),
            highest_bidder_id=d.get("highestBidderId"),
            winner_id=d.get("winnerId"),
            is_sold=bool(d.get("isSold", False)),
            ended_at=_dt(d.get("endedAt")),
            cancelled_at=_dt(d.get("cancelledAt")),
            created_at=_dt(d.get("createdAt")),
        )


@dataclass
class Bid:
    id: int
    auction_id: int
    user_id: int
    amount: Decimal
    is_auto_bid: bool = False
    max_auto_bid_amount: Optional[Decimal] = None
    is_system: bool = False
    is_winning: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "Bid":
        return cls(
            id=int(d["id"]),
            auction_id=int(d["auctionId"]),
            user_id=int(d["userId"]),
            amount=_money(d["amount"]),
            is_auto_bid=bool(d.get("isAutoBid", False)),
            max_auto_bid_amount=_money(d.get("maxAutoBidAmount")),
            is_system=bool(d.get("isSystem", False)),
            is_winning=bool(d.get("isWinning", False)),
            created_at=_dt(d.get("createdAt")),
        )


@dataclass
class MyBid:
    auction: Auction
    my_highest_bid: Decimal
    bid_count: int
    is_winning: bool

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "MyBid":
        return cls(
            auction=Auction.from_api(d["auction"]),
            my_highest_bid=_money(d["myHighestBid"]),
            bid_count=int(d["bidCount"]),
            is_winning=bool(d["isWinning"]),
        )


@dataclass
class Page(Generic[T]):
    items: List[T]
    limit: Optional[int] = None
    has_more: bool = False
    next_cursor: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    total: Optional[int] = None
    total_pages: Optional[int] = None

    @classmethod
    def from_api(cls, body: Dict[str, Any], item) -> "Page":
        p = body.get("pagination") or {}
        items = [item(x) for x in (body.get("data") or [])]
        total_pages = p.get("totalPages")
        page = p.get("page")
        has_more = p.get("hasMore")
        if has_more is None and page is not None and total_pages is not None:
            has_more = page < total_pages
        return cls(
            items=items,
            limit=p.get("limit"),
            has_more=bool(has_more),
            next_cursor=p.get("nextCursor"),
            page=page,
            page_size=p.get("pageSize"),
            total=p.get("total"),
            total_pages=total_pages,
        )


@dataclass
class BulkResult:
    success: bool
    message: str
    successful_ids: List[int] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> "BulkResult":
        r = body.get("results") or {}
        return cls(
            success=bool(body.get("success")),
            message=body.get("message") or "",
            successful_ids=[int(i) for i in r.get("successfulIds") or []],
            failed_ids=[int(i) for i in r.get("failedIds") or []],
            errors=dict(r.get("errors") or {}),
        )


@dataclass
class BlockedBid:
    auction_id: int
    amount: int
    bid_amount: Decimal
    bid_id: Optional[int] = None


@dataclass
class RipLimitBalance:
    user_id: int
    available_balance: int
    blocked_balance: int
    total_balance: int
    available_balance_inr: float = 0.0
    blocked_balance_inr: float = 0.0
    total_balance_inr: float = 0.0
    has_unpaid_auctions: bool = False
    unpaid_auction_ids: List[int] = field(default_factory=list)
    strikes: int = 0
    is_blocked: bool = False
    block_reason: Optional[str] = None
    blocked_bids: List[BlockedBid] = field(default_factory=list)

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "RipLimitBalance":
        return cls(
            user_id=int(d["userId"]),
            available_balance=int(d["availableBalance"]),
            blocked_balance=int(d["blockedBalance"]),
            total_balance=int(d["totalBalance"]),
            available_balance_inr=float(d.get("availableBalanceInr") or 0),
            blocked_balance_inr=float(d.get("blockedBalanceInr") or 0),
            total_balance_inr=float(d.get("totalBalanceInr") or 0),
            has_unpaid_auctions=bool(d.get("hasUnpaidAuctions", False)),
            unpaid_auction_ids=list(d.get("unpaidAuctionIds") or []),
            strikes=_int(d.get("strikes")),
            is_blocked=bool(d.get("isBlocked", False)),
            block_reason=d.get("blockReason"),
            blocked_bids=[
                BlockedBid(
                    auction_id=int(b["auctionId"]),
                    amount=int(b["amount"]),
                    bid_amount=_money(b["bidAmount"]),
                    bid_id=b.get("bidId"),
                )
                for b in d.get("blockedBids") or []
            ],
        )


@dataclass
class RipLimitTransaction:
    id: int
    user_id: int
    type: str
    amount: int
    balance_after: int
    auction_id: Optional[int] = None
    bid_id: Optional[int] = None
    order_id: Optional[str] = None
    description: Optional[str] = None
    actor_id: Optional[int] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "RipLimitTransaction":
        return cls(
            id=int(d["id"]),
            user_id=int(d["userId"]),
            type=d["type"],
            amount=int(d["amount"]),
            balance_after=int(d["balanceAfter"]),
            auction_id=d.get("auctionId"),
            bid_id=d.get("bidId"),
            order_id=d.get("orderId"),
            description=d.get("description"),
            actor_id=d.get("actorId"),
            reason=d.get("reason"),
            created_at=_dt(d.get("createdAt")),
        )


@dataclass
class RipLimitAccount:
    user_id: int
    available_balance: int
    blocked_balance: int
    lifetime_purchases: int = 0
    lifetime_spent: int = 0
    has_unpaid_auctions: bool = False
    unpaid_auction_ids: List[int] = field(default_factory=list)
    strikes: int = 0
    is_blocked: bool = False
    block_reason: Optional[str] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "RipLimitAccount":
        return cls(
            user_id=int(d["userId"]),
            available_balance=int(d["availableBalance"]),
            blocked_balance=int(d["blockedBalance"]),
            lifetime_purchases=_int(d.get("lifetimePurchases")),
            lifetime_spent=_int(d.get("lifetimeSpent")),
            has_unpaid_auctions=bool(d.get("hasUnpaidAuctions", False)),
            unpaid_auction_ids=list(d.get("unpaidAuctionIds") or []),
            strikes=_int(d.get("strikes")),
            is_blocked=bool(d.get("isBlocked", False)),
            block_reason=d.get("blockReason"),
        )


@dataclass
class RipLimitStats:
    total_accounts: int
    total_available: int
    total_blocked: int
    total_outstanding: int
    total_purchased: int
    total_spent: int
    blocked_accounts: int
    accounts_with_unpaid: int

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "RipLimitStats":
        return cls(
            total_accounts=_int(d.get("totalAccounts")),
            total_available=_int(d.get("totalAvailable")),
            total_blocked=_int(d.get("totalBlocked")),
            total_outstanding=_int(d.get("totalOutstanding")),
            total_purchased=_int(d.get("totalPurchased")),
            total_spent=_int(d.get("totalSpent")),
            blocked_accounts=_int(d.get("blockedAccounts")),
            accounts_with_unpaid=_int(d.get("accountsWithUnpaid")),
        )


@dataclass
class Category:
    id: int
    slug: str
    name: str
    is_featured: bool = False
    sort_order: int = 0
    parent_ids: List[int] = field(default_factory=list)
    children_ids: List[int] = field(default_factory=list)

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "Category":
        return cls(
            id=int(d["id"]),
            slug=d["slug"],
            name=d["name"],
            is_featured=bool(d.get("isFeatured", False)),
            sort_order=_int(d.get("sortOrder")),
            parent_ids=[int(i) for i in d.get("parentIds") or []],
            children_ids=[int(i) for i in d.get("childrenIds") or []],
        )


@dataclass
class CategoryHierarchy:
    category: Category
    ancestors: List[Category] = field(default_factory=list)
    paths: List[List[Category]] = field(default_factory=list)

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "CategoryHierarchy":
        return cls(
            category=Category.from_api(d["category"]),
            ancestors=[Category.from_api(c) for c in d.get("ancestors") or []],
            paths=[[Category.from_api(c) for c in path] for path in d.get("paths") or []],
        )
