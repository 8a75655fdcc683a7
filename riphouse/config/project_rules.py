# riphouse/config/project_rules.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from riphouse.config.time_policy import (
    now_utc as _now_utc,
    ensure_aware_utc,
    set_now_utc_for_testing as _set_now_utc_for_testing,
    is_now_overridden as _is_now_overridden,
)
from riphouse.policy.loader import load_policy_yaml

_POLICY = load_policy_yaml()


# ---------------- now() 래퍼 & 테스트 후크 ----------------
def now_utc() -> datetime:
    return _now_utc()


def set_test_now_utc(dt: Optional[datetime]) -> None:
    """테스트용 현재시각 오버라이드(퍼블릭). None이면 해제."""
    _set_now_utc_for_testing(dt)


def is_test_time_overridden() -> bool:
    return bool(_is_now_overridden())


# ── 목록/벌크 ─────────────────────────────────────────────────────────────
DEFAULT_PAGE_LIMIT: int = _POLICY.auction.default_page_limit
MAX_PAGE_LIMIT: int = _POLICY.auction.max_page_limit

# 벌크 작업 1회 최대 건수 (초과 시 400)
MAX_BULK_OPERATION_ITEMS: int = _POLICY.auction.max_bulk_items

DEFAULT_BID_INCREMENT: int = _POLICY.auction.default_bid_increment
HOMEPAGE_AUCTION_LIMIT: int = _POLICY.auction.homepage_limit
SIMILAR_AUCTION_LIMIT: int = _POLICY.auction.similar_limit

# ── RipLimit ──────────────────────────────────────────────────────────────
# 1 INR 당 RipLimit. 입찰 홀드 = 입찰액(INR) × 환율
RIPLIMIT_EXCHANGE_RATE: int = _POLICY.riplimit.exchange_rate

# 미결제 누적 스트라이크 → 계정 차단
STRIKE_BLOCK_THRESHOLD: int = _POLICY.riplimit.strike_block_threshold

MIN_RIPLIMIT_PURCHASE_INR: int = _POLICY.riplimit.min_purchase_inr

# ── 금액 ─────────────────────────────────────────────────────────────────
# 경매 가격/입찰액은 INR 소수 둘째 자리까지, RipLimit 은 정수 단위
MONEY_QUANT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    return d.quantize(MONEY_QUANT)


def fmt_money(value: Any) -> str:
    """1100.00 -> "1100", 1500.50 -> "1500.5" (메시지용)"""
    s = format(to_money(value), "f")
    return s.rstrip("0").rstrip(".")


# 슬러그 형식: 소문자/숫자/하이픈
SLUG_PATTERN: str = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"

# ── 백그라운드 워커 ────────────────────────────────────────────────────────
LIFECYCLE_SWEEP_INTERVAL_SECONDS: int = 30

__all__ = [
    "now_utc", "ensure_aware_utc",
    "set_test_now_utc", "is_test_time_overridden",
    "DEFAULT_PAGE_LIMIT", "MAX_PAGE_LIMIT", "MAX_BULK_OPERATION_ITEMS",
    "DEFAULT_BID_INCREMENT", "HOMEPAGE_AUCTION_LIMIT", "SIMILAR_AUCTION_LIMIT",
    "RIPLIMIT_EXCHANGE_RATE", "STRIKE_BLOCK_THRESHOLD", "MIN_RIPLIMIT_PURCHASE_INR",
    "MONEY_QUANT", "to_money", "fmt_money",
    "SLUG_PATTERN", "LIFECYCLE_SWEEP_INTERVAL_SECONDS",
]
