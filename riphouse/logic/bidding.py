# riphouse/logic/bidding.py
"""
입찰 수락.

같은 경매에 대한 입찰은 한 번에 하나만 평가한다 (프로세스 내 경매별 락 + 행 락 +
Auction.version 낙관적 잠금). 서로 다른 경매는 병렬로 처리된다.

수락 1건 = 트랜잭션 1개:
  Bid 추가, 입찰자 홀드(순증분), 직전 최고 입찰자 홀드 해제, current_price/total_bids 갱신,
  그리고 자동입찰(프록시) 상한 보유자의 반격 입찰까지.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from riphouse.config import project_rules as R
from riphouse.config.feature_flags import FEATURE_FLAGS
from riphouse.errors import (
    BidRejected,
    ConflictError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from riphouse.logic import lifecycle, riplimit
from riphouse.models import Auction, AuctionStatus, Bid

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────
# 경매별 직렬화
# ─────────────────────────────────────────────────────────
class KeyedLocks:
    """키별 threading.Lock. 같은 키는 직렬, 다른 키는 독립."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def get(self, key: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


_auction_locks = KeyedLocks()


# ─────────────────────────────────────────────────────────
# 검증
# ─────────────────────────────────────────────────────────
def _to_amount(value, what: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(f"{what} must be a number")
    d = Decimal(str(value))
    if not d.is_finite():
        raise ValidationError(f"{what} must be a finite number")
    if d <= 0:
        raise ValidationError(f"{what} must be positive")
    if d != d.quantize(R.MONEY_QUANT):
        raise ValidationError(f"{what} must have at most 2 decimal places")
    return d.quantize(R.MONEY_QUANT)


def _validate_amounts(amount, is_auto_bid: bool, max_auto_bid_amount) -> Tuple[Decimal, Optional[Decimal]]:
    amount = _to_amount(amount, "Bid amount")

    ceiling = None
    if is_auto_bid:
        if not FEATURE_FLAGS.get("ENABLE_AUTO_BID"):
            raise ValidationError("Auto-bid is disabled")
        if max_auto_bid_amount is None:
            raise ValidationError("maxAutoBidAmount is required for auto-bids")
        ceiling = _to_amount(max_auto_bid_amount, "maxAutoBidAmount")
        if ceiling < amount:
            raise ValidationError("maxAutoBidAmount must be >= amount")
    return amount, ceiling


def _load_for_update(db: Session, auction_id: int) -> Auction:
    auction = (
        db.query(Auction)
        .filter(Auction.id == auction_id)
        .with_for_update()
        .first()
    )
    if not auction:
        raise NotFoundError(f"Auction not found: {auction_id}")
    return auction


def _check_acceptable(auction: Auction, user_id: int, amount: Decimal) -> None:
    if auction.status != AuctionStatus.ACTIVE or R.ensure_aware_utc(auction.end_time) <= R.now_utc():
        raise BidRejected("AuctionNotActive", "Auction is not active")
    if auction.seller_id == user_id:
        raise BidRejected("SelfBid", "You cannot bid on your own auction")
    minimum = auction.min_next_bid
    if amount < minimum:
        raise BidRejected("BidTooLow", f"Bid must be at least {R.fmt_money(minimum)}")


# ─────────────────────────────────────────────────────────
# 수락 (락 보유 상태에서만 호출)
# ─────────────────────────────────────────────────────────
def _accept(
    db: Session,
    auction: Auction,
    *,
    user_id: int,
    amount: Decimal,
    is_auto_bid: bool = False,
    ceiling: Optional[Decimal] = None,
    is_system: bool = False,
    idempotency_key: Optional[str] = None,
) -> Bid:
    previous_leader = auction.highest_bidder_id

    try:
        riplimit.check_bid_hold(db, user_id=user_id, auction_id=auction.id, bid_amount=amount)
    except LedgerError as e:
        raise BidRejected(e.code, str(e)) from e

    bid = Bid(
        auction_id=auction.id,
        user_id=user_id,
        amount=amount,
        is_auto_bid=is_auto_bid,
        max_auto_bid_amount=ceiling,
        is_system=is_system,
        is_winning=True,
        idempotency_key=idempotency_key,
        created_at=R.now_utc(),
    )
    db.add(bid)
    db.flush()

    riplimit.hold_for_bid(
        db, user_id=user_id, auction_id=auction.id, bid_id=bid.id, bid_amount=amount,
    )
    if previous_leader is not None and previous_leader != user_id:
        riplimit.release_bid(db, user_id=previous_leader, auction_id=auction.id, reason="Outbid")

    (
        db.query(Bid)
        .filter(Bid.auction_id == auction.id, Bid.is_winning.is_(True), Bid.id != bid.id)
        .update({Bid.is_winning: False}, synchronize_session="fetch")
    )

    auction.current_price = amount
    auction.total_bids = int(auction.total_bids or 0) + 1
    auction.highest_bidder_id = user_id
    db.add(auction)
    db.flush()

    logger.info(
        "[bidding] accepted auction=%s user=%s amount=%s system=%s prev_leader=%s",
        auction.id, user_id, amount, is_system, previous_leader,
    )
    return bid


@dataclass
class _Ceiling:
    user_id: int
    amount: Decimal
    seq: int  # 상한을 설정한 입찰 id (동률이면 먼저 건 쪽 우선)


def _ceilings(db: Session, auction_id: int) -> Dict[int, _Ceiling]:
    """사용자별 가장 최근 입찰이 자동입찰이면 그 상한."""
    latest: Dict[int, Bid] = {}
    for b in db.query(Bid).filter(Bid.auction_id == auction_id).order_by(Bid.id.asc()).all():
        if b.is_system:
            continue
        latest[b.user_id] = b
    return {
        uid: _Ceiling(uid, R.to_money(b.max_auto_bid_amount), b.id)
        for uid, b in latest.items()
        if b.is_auto_bid and b.max_auto_bid_amount is not None
    }


def _run_proxy_bidding(db: Session, auction: Auction) -> int:
    """
    상한 보유자 반격 루프. 반복마다 최소 한 명의 상한이 소진되므로
    (상한 보유자 수 + 1) 회를 넘지 않는다.
    """
    holders = _ceilings(db, auction.id)
    if not holders:
        return 0

    exhausted: set = set()
    placed = 0
    for _ in range(len(holders) + 1):
        leader = auction.highest_bidder_id
        price = R.to_money(auction.current_price)
        step = R.to_money(auction.bid_increment)

        challengers = [
            h for h in holders.values()
            if h.user_id != leader and h.user_id not in exhausted and h.amount >= price + step
        ]
        if not challengers:
            break
        best = max(challengers, key=lambda h: (h.amount, -h.seq))

        own = holders.get(leader)
        leader_ceiling = own.amount if own and leader not in exhausted else price

        defending = not (
            best.amount > leader_ceiling
            or (best.amount == leader_ceiling and own and best.seq < own.seq)
        )
        if defending:
            # 현재 선두가 상한으로 방어
            bidder = own
            target = min(own.amount, best.amount + step)
            if target < price + step:
                exhausted.add(best.user_id)
                continue
        else:
            bidder = best
            target = max(price + step, min(best.amount, leader_ceiling + step))

        try:
            _accept(
                db, auction,
                user_id=bidder.user_id,
                amount=target,
                is_auto_bid=True,
                ceiling=bidder.amount,
                is_system=True,
            )
            placed += 1
        except BidRejected as e:
            # 홀드 실패: 이 사용자의 상한만 제외, 상대는 다음 반복에서 다시 입찰
            logger.warning(
                "[bidding] proxy bid skipped auction=%s user=%s amount=%s reason=%s",
                auction.id, bidder.user_id, target, e.code,
            )
            exhausted.add(bidder.user_id)
            continue
        if defending:
            # 방어 성공: 도전자 상한은 소진
            exhausted.add(best.user_id)
    return placed


# ─────────────────────────────────────────────────────────
# 공개 API
# ─────────────────────────────────────────────────────────
def place_bid(
    db: Session,
    *,
    auction_id: int,
    user_id: int,
    amount,
    is_auto_bid: bool = False,
    max_auto_bid_amount=None,
    idempotency_key: Optional[str] = None,
) -> Bid:
    """
    입찰 1건 처리 후 commit.
    거절 사유: AuctionNotActive / SelfBid / BidTooLow / InsufficientBalance /
    AccountBlocked / UnpaidAuctions (모두 BidRejected, 상태 변경 없음)
    """
    amount, ceiling = _validate_amounts(amount, is_auto_bid, max_auto_bid_amount)

    with _auction_locks.get(auction_id):
        try:
            if idempotency_key:
                prior = db.query(Bid).filter(Bid.idempotency_key == idempotency_key).first()
                if prior:
                    if prior.user_id != user_id or prior.auction_id != auction_id:
                        raise ConflictError("Idempotency key already used for a different bid")
                    logger.info("[bidding] idempotent replay key=%s bid=%s", idempotency_key, prior.id)
                    return prior

            auction = _load_for_update(db, auction_id)
            if lifecycle.sync_status(db, auction):
                db.commit()
                auction = _load_for_update(db, auction_id)

            _check_acceptable(auction, user_id, amount)
            bid = _accept(
                db, auction,
                user_id=user_id,
                amount=amount,
                is_auto_bid=is_auto_bid,
                ceiling=ceiling,
                idempotency_key=idempotency_key,
            )
            if FEATURE_FLAGS.get("ENABLE_AUTO_BID"):
                _run_proxy_bidding(db, auction)

            db.commit()
        except StaleDataError as e:
            db.rollback()
            logger.warning("[bidding] concurrent update auction=%s: %s", auction_id, e)
            raise ConflictError("Concurrent bid, retry") from e
        except IntegrityError as e:
            db.rollback()
            logger.warning("[bidding] integrity error auction=%s: %s", auction_id, e)
            raise ConflictError("Bid conflicts with an existing record") from e
        except Exception:
            db.rollback()
            raise

    db.refresh(bid)
    return bid


def list_bids(
    db: Session,
    auction_id: int,
    *,
    limit: int = R.DEFAULT_PAGE_LIMIT,
    start_after: Optional[int] = None,
    sort_order: str = "desc",
) -> Tuple[List[Bid], bool, Optional[int]]:
    """(items, has_more, next_cursor). limit+1 을 읽어 다음 페이지 유무 판단."""
    limit = max(1, min(int(limit), R.MAX_PAGE_LIMIT))
    asc = (sort_order or "desc").lower() == "asc"

    q = db.query(Bid).filter(Bid.auction_id == auction_id)
    if start_after is not None:
        q = q.filter(Bid.id > start_after) if asc else q.filter(Bid.id < start_after)
    q = q.order_by(Bid.id.asc() if asc else Bid.id.desc())

    rows = q.limit(limit + 1).all()
    has_more = len(rows) > limit
    items = rows[:limit]
    next_cursor = items[-1].id if has_more and items else None
    return items, has_more, next_cursor


__all__ = ["KeyedLocks", "place_bid", "list_bids"]
