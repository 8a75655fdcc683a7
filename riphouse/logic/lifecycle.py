# riphouse/logic/lifecycle.py
"""
경매 상태 전이.

    scheduled ──(start_time 도달 / start)──▶ active ──(end_time 도달 / end)──▶ ended
        └──────────────(cancel, 입찰 없을 때만)──────────┴──▶ cancelled

마감 시 정산:
- 최고 입찰자 있음 + 리저브 충족(또는 없음) → winner_id, is_sold, 홀드 유지 + 미결제 등록
- 리저브 미달 → 최고 입찰자 홀드 해제, is_sold=False
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from riphouse.config import project_rules as R
from riphouse.errors import ConflictError
from riphouse.logic import riplimit
from riphouse.models import Auction, AuctionStatus, Bid

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return R.ensure_aware_utc(now) if now else R.now_utc()


def _settle(db: Session, auction: Auction) -> None:
    leader = auction.highest_bidder_id
    if leader is None:
        auction.is_sold = False
        return

    if auction.reserve_met:
        auction.winner_id = leader
        auction.is_sold = True
        riplimit.mark_auction_unpaid(db, user_id=leader, auction_id=auction.id)
        logger.info("[lifecycle] auction=%s sold to user=%s at %s", auction.id, leader, auction.current_price)
    else:
        auction.is_sold = False
        riplimit.release_bid(db, user_id=leader, auction_id=auction.id, reason="Reserve not met")
        (
            db.query(Bid)
            .filter(Bid.auction_id == auction.id, Bid.is_winning.is_(True))
            .update({Bid.is_winning: False}, synchronize_session="fetch")
        )
        logger.info(
            "[lifecycle] auction=%s closed below reserve (%s < %s)",
            auction.id, auction.current_price, auction.reserve_price,
        )


def _close(db: Session, auction: Auction, now: datetime) -> None:
    auction.status = AuctionStatus.ENDED
    auction.ended_at = now
    _settle(db, auction)
    db.add(auction)


def initial_status(start_time: datetime, now: Optional[datetime] = None) -> AuctionStatus:
    return AuctionStatus.ACTIVE if R.ensure_aware_utc(start_time) <= _now(now) else AuctionStatus.SCHEDULED


def sync_status(db: Session, auction: Auction, now: Optional[datetime] = None) -> bool:
    """시간 기반 전이만 적용. 바뀌었으면 True (commit 은 호출자)."""
    now = _now(now)
    changed = False

    if auction.status == AuctionStatus.SCHEDULED and R.ensure_aware_utc(auction.start_time) <= now:
        auction.status = AuctionStatus.ACTIVE
        changed = True

    if auction.status == AuctionStatus.ACTIVE and R.ensure_aware_utc(auction.end_time) <= now:
        _close(db, auction, now)
        changed = True

    if changed:
        db.add(auction)
        db.flush()
        logger.info("[lifecycle] auction=%s -> %s", auction.id, auction.status.value)
    return changed


def sweep_due_auctions(db: Session, now: Optional[datetime] = None) -> int:
    """시작/마감 시각이 지난 경매 일괄 전이. 백그라운드 워커가 주기적으로 호출."""
    now = _now(now)
    rows: List[Auction] = (
        db.query(Auction)
        .filter(
            ((Auction.status == AuctionStatus.SCHEDULED) & (Auction.start_time <= now))
            | ((Auction.status == AuctionStatus.ACTIVE) & (Auction.end_time <= now))
        )
        .order_by(Auction.id.asc())
        .all()
    )
    count = 0
    for a in rows:
        if sync_status(db, a, now):
            count += 1
    db.commit()
    return count


# ─────────────────────────────────────────────────────────
# 명시적 액션 (판매자/관리자)
# ─────────────────────────────────────────────────────────
def start(db: Session, auction: Auction, now: Optional[datetime] = None) -> Auction:
    now = _now(now)
    sync_status(db, auction, now)
    if auction.status != AuctionStatus.SCHEDULED:
        raise ConflictError(f"Only scheduled auctions can be started (status={auction.status.value})")
    auction.status = AuctionStatus.ACTIVE
    auction.start_time = now
    db.add(auction)
    db.flush()
    logger.info("[lifecycle] auction=%s started manually", auction.id)
    return auction


def end(db: Session, auction: Auction, now: Optional[datetime] = None) -> Auction:
    now = _now(now)
    sync_status(db, auction, now)
    if auction.status != AuctionStatus.ACTIVE:
        raise ConflictError(f"Only active auctions can be ended (status={auction.status.value})")
    auction.end_time = now
    _close(db, auction, now)
    db.flush()
    logger.info("[lifecycle] auction=%s ended early", auction.id)
    return auction


def cancel(db: Session, auction: Auction, now: Optional[datetime] = None) -> Auction:
    now = _now(now)
    sync_status(db, auction, now)
    if auction.status not in (AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE):
        raise ConflictError(f"Cannot cancel auction in status {auction.status.value}")
    if int(auction.total_bids or 0) > 0:
        raise ConflictError("Cannot cancel an auction that already has bids")
    auction.status = AuctionStatus.CANCELLED
    auction.cancelled_at = now
    db.add(auction)
    db.flush()
    logger.info("[lifecycle] auction=%s cancelled", auction.id)
    return auction


__all__ = [
    "initial_status",
    "sync_status",
    "sweep_due_auctions",
    "start",
    "end",
    "cancel",
]
