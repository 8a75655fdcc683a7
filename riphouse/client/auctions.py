# riphouse/client/auctions.py
from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from riphouse.client.api import (
    ApiClient,
    ApiError,
    BidRejected,
    StateConflict,
    ValidationRejected,
    log_errors,
    unwrap,
)
from riphouse.client.types import Auction, Bid, BulkResult, MyBid, Page

logger = logging.getLogger(__name__)

_BID_CODES = {
    "AuctionNotActive",
    "SelfBid",
    "BidTooLow",
    "InsufficientBalance",
    "AccountBlocked",
    "UnpaidAuctions",
}

# 파이썬 인자명 → 쿼리 파라미터
_LIST_PARAMS = {
    "status": "status",
    "shop_id": "shopId",
    "category_id": "categoryId",
    "seller_id": "sellerId",
    "featured": "featured",
    "search": "search",
    "sort_by": "sortBy",
    "sort_order": "sortOrder",
    "limit": "limit",
    "start_after": "startAfter",
}


def slugify(text: str) -> str:
    """'Vintage Pokémon Card #1' → 'vintage-pokemon-card-1'"""
    text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return text.strip("-")


def _auctions(body: Any) -> List[Auction]:
    return [Auction.from_api(a) for a in unwrap(body) or []]


class AuctionsService:
    """경매 API 래퍼. 로컬 상태 없음."""

    def __init__(self, api: ApiClient):
        self.api = api

    # ---- 목록 / 단건 -------------------------------------------------
    @log_errors("auctions.list")
    def list(self, **filters: Any) -> Page[Auction]:
        unknown = set(filters) - set(_LIST_PARAMS)
        if unknown:
            raise TypeError(f"unknown filters: {sorted(unknown)}")
        params = {_LIST_PARAMS[k]: v for k, v in filters.items()}
        if isinstance(params.get("featured"), bool):
            params["featured"] = "true" if params["featured"] else "false"
        return Page.from_api(self.api.get("/auctions", params), Auction.from_api)

    @log_errors("auctions.get_by_id")
    def get_by_id(self, auction_id: int) -> Auction:
        return Auction.from_api(unwrap(self.api.get(f"/auctions/{int(auction_id)}")))

    @log_errors("auctions.get_by_slug")
    def get_by_slug(self, slug: str) -> Auction:
        return Auction.from_api(unwrap(self.api.get(f"/auctions/{slug}")))

    @log_errors("auctions.validate_slug")
    def validate_slug(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        data = unwrap(self.api.get("/auctions/validate-slug", {"slug": slug, "excludeId": exclude_id}))
        return bool(data["available"])

    # ---- 생성 / 수정 / 삭제 ---------------------------------------------
    @log_errors("auctions.create")
    def create(self, data: Dict[str, Any]) -> Auction:
        return Auction.from_api(unwrap(self.api.post("/auctions", data)))

    def quick_create(
        self,
        *,
        name: str,
        shop_id: int,
        starting_price: Union[int, Decimal],
        start_time: datetime,
        end_time: datetime,
        **extra: Any,
    ) -> Auction:
        """이름에서 slug 생성, 설명 기본값 ""."""
        payload: Dict[str, Any] = {
            "name": name,
            "slug": extra.pop("slug", None) or slugify(name),
            "description": extra.pop("description", ""),
            "shopId": shop_id,
            "startingPrice": starting_price,
            "startTime": start_time,
            "endTime": end_time,
        }
        payload.update(extra)
        return self.create(payload)

    @log_errors("auctions.update")
    def update(self, auction_id: int, data: Dict[str, Any]) -> Auction:
        return Auction.from_api(unwrap(self.api.patch(f"/auctions/{int(auction_id)}", data)))

    def quick_update(self, auction_id: int, **fields: Any) -> Auction:
        return self.update(auction_id, fields)

    @log_errors("auctions.delete")
    def delete(self, auction_id: int) -> None:
        self.api.delete(f"/auctions/{int(auction_id)}")

    # ---- 입찰 -------------------------------------------------------
    def place_bid(
        self,
        auction_id: int,
        amount: Union[int, Decimal],
        *,
        is_auto_bid: bool = False,
        max_auto_bid_amount: Optional[Union[int, Decimal]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Bid:
        """수락된 Bid 반환. 거절되면 사유 code 를 가진 BidRejected."""
        payload = {
            "amount": amount,
            "isAutoBid": is_auto_bid,
            "maxAutoBidAmount": max_auto_bid_amount,
            "idempotencyKey": idempotency_key,
        }
        try:
            body = self.api.post(f"/auctions/{int(auction_id)}/bid", payload)
        except (ValidationRejected, StateConflict) as e:
            logger.error("[auctions.place_bid] auction=%s rejected: %s (%s)", auction_id, e.message, e.code)
            if e.code in _BID_CODES:
                raise BidRejected(e.message, status=e.status, code=e.code, payload=e.payload) from e
            raise
        except ApiError as e:
            logger.error("[auctions.place_bid] auction=%s %s (status=%s)", auction_id, e.message, e.status)
            raise
        return Bid.from_api(unwrap(body))

    @log_errors("auctions.get_bids")
    def get_bids(
        self,
        auction_id: int,
        limit: Optional[int] = None,
        start_after: Optional[int] = None,
        sort_order: str = "desc",
    ) -> Page[Bid]:
        body = self.api.get(
            f"/auctions/{int(auction_id)}/bids",
            {"limit": limit, "startAfter": start_after, "sortOrder": sort_order},
        )
        return Page.from_api(body, Bid.from_api)

    # ---- 파생 뷰 -----------------------------------------------------
    @log_errors("auctions.set_featured")
    def set_featured(self, auction_id: int, featured: bool = True, priority: int = 0) -> Auction:
        body = self.api.patch(f"/auctions/{int(auction_id)}/feature", {"featured": featured, "priority": priority})
        return Auction.from_api(unwrap(body))

    def get_featured(self, limit: Optional[int] = None) -> List[Auction]:
        """실패해도 빈 목록 (홈 화면 한 섹션이라 전체 에러로 만들지 않음)."""
        try:
            return _auctions(self.api.get("/auctions/featured", {"limit": limit}))
        except ApiError as e:
            logger.warning("[auctions.get_featured] degraded to empty: %s (status=%s)", e.message, e.status)
            return []

    @log_errors("auctions.get_live")
    def get_live(self, limit: Optional[int] = None) -> List[Auction]:
        return _auctions(self.api.get("/auctions/live", {"limit": limit}))

    @log_errors("auctions.get_homepage")
    def get_homepage(self) -> Dict[str, List[Auction]]:
        data = unwrap(self.api.get("/auctions/homepage"))
        return {
            "featured": [Auction.from_api(a) for a in data.get("featured") or []],
            "live": [Auction.from_api(a) for a in data.get("live") or []],
            "ending_soon": [Auction.from_api(a) for a in data.get("endingSoon") or []],
            "upcoming": [Auction.from_api(a) for a in data.get("upcoming") or []],
        }

    @log_errors("auctions.get_similar")
    def get_similar(self, auction_id: int, limit: Optional[int] = None) -> List[Auction]:
        return _auctions(self.api.get(f"/auctions/{int(auction_id)}/similar", {"limit": limit}))

    @log_errors("auctions.get_seller_auctions")
    def get_seller_auctions(self, auction_id: int, limit: Optional[int] = None) -> List[Auction]:
        return _auctions(self.api.get(f"/auctions/{int(auction_id)}/seller-items", {"limit": limit}))

    @log_errors("auctions.toggle_watch")
    def toggle_watch(self, auction_id: int) -> Dict[str, Any]:
        data = unwrap(self.api.post(f"/auctions/{int(auction_id)}/watch"))
        return {"watching": bool(data["watching"]), "watchers": int(data["watchers"])}

    @log_errors("auctions.get_watchlist")
    def get_watchlist(self) -> List[Auction]:
        return _auctions(self.api.get("/auctions/watchlist"))

    @log_errors("auctions.get_my_bids")
    def get_my_bids(self) -> List[MyBid]:
        return [MyBid.from_api(r) for r in unwrap(self.api.get("/auctions/my-bids")) or []]

    @log_errors("auctions.get_won_auctions")
    def get_won_auctions(self) -> List[Auction]:
        return _auctions(self.api.get("/auctions/won"))

    # ---- 상태 전이 ----------------------------------------------------
    @log_errors("auctions.start")
    def start(self, auction_id: int) -> Auction:
        return Auction.from_api(unwrap(self.api.post(f"/auctions/{int(auction_id)}/start")))

    @log_errors("auctions.end")
    def end(self, auction_id: int) -> Auction:
        return Auction.from_api(unwrap(self.api.post(f"/auctions/{int(auction_id)}/end")))

    @log_errors("auctions.cancel")
    def cancel(self, auction_id: int) -> Auction:
        return Auction.from_api(unwrap(self.api.post(f"/auctions/{int(auction_id)}/cancel")))

    # ---- bulk / batch ------------------------------------------------
    @log_errors("auctions.bulk_action")
    def bulk_action(
        self,
        action: str,
        ids: Iterable[int],
        updates: Optional[Dict[str, Any]] = None,
    ) -> BulkResult:
        """부분 성공 가능: successful_ids / failed_ids 를 확인할 것."""
        payload: Dict[str, Any] = {"action": action, "ids": [int(i) for i in ids]}
        if updates:
            payload["updates"] = updates
        return BulkResult.from_api(self.api.post("/auctions/bulk", payload))

    def bulk_start(self, ids: Iterable[int]) -> BulkResult:
        return self.bulk_action("start", ids)

    def bulk_end(self, ids: Iterable[int]) -> BulkResult:
        return self.bulk_action("end", ids)

    def bulk_cancel(self, ids: Iterable[int]) -> BulkResult:
        return self.bulk_action("cancel", ids)

    def bulk_feature(self, ids: Iterable[int]) -> BulkResult:
        return self.bulk_action("feature", ids)

    def bulk_unfeature(self, ids: Iterable[int]) -> BulkResult:
        return self.bulk_action("unfeature", ids)

    def bulk_delete(self, ids: Iterable[int]) -> BulkResult:
        return self.bulk_action("delete", ids)

    def bulk_update(self, ids: Iterable[int], updates: Dict[str, Any]) -> BulkResult:
        return self.bulk_action("update", ids, updates)

    @log_errors("auctions.get_by_ids")
    def get_by_ids(self, ids: Optional[Iterable[int]]) -> List[Auction]:
        """빈 입력은 요청 없이 []."""
        if not ids:
            return []
        ids = [int(i) for i in ids]
        if not ids:
            return []
        return _auctions(self.api.post("/auctions/batch", {"ids": ids}))


__all__ = ["AuctionsService", "slugify"]
