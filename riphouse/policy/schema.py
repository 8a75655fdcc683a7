from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AuctionPolicy:
    """경매/입찰 정책."""

    # 목록 API 기본/최대 페이지 크기
    default_page_limit: int
    max_page_limit: int

    # 벌크 작업 1회 최대 건수
    max_bulk_items: int

    # 신규 경매 기본 최소 입찰 단위(INR)
    default_bid_increment: int

    # 라이브 경매/홈 노출 개수
    homepage_limit: int = 8
    similar_limit: int = 6


@dataclass(frozen=True)
class RipLimitPolicy:
    """RipLimit(입찰 보증 화폐) 정책."""

    # 1 INR 당 RipLimit
    exchange_rate: int

    # 미결제 낙찰 누적 N회 → 계정 차단
    strike_block_threshold: int

    # 최소 충전 금액(INR)
    min_purchase_inr: int = 100


@dataclass(frozen=True)
class PolicyBundle:
    auction: AuctionPolicy
    riplimit: RipLimitPolicy
