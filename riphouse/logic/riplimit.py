# riphouse/logic/riplimit.py
"""
RipLimit 원장.

available / blocked 두 버킷을 가진 계정. 입찰 홀드/해제는 버킷 사이의 이동일 뿐이고
available + blocked 합계는 purchase / refund / adjust / 낙찰 결제 에서만 바뀐다.

모든 함수는 호출자의 세션 안에서 변경만 하고 commit 하지 않는다.
(입찰 1건이 두 계정을 건드릴 때 한 트랜잭션으로 묶기 위해)
"""
from __future__ import annotations

import logging
from decimal import ROUND_CEILING, Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from riphouse.config import project_rules as R
from riphouse.errors import (
    AccountBlocked,
    InsufficientBalance,
    LedgerInvariantError,
    NotFoundError,
    UnpaidAuctions,
    ValidationError,
)
from riphouse.models import (
    RipLimitAccount,
    RipLimitBlockedBid,
    RipLimitTransaction,
    RipLimitTransactionType as TxType,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────
# 내부 유틸
# ─────────────────────────────────────────────────────────
def _snapshot(acct: RipLimitAccount) -> Dict[str, int]:
    return {
        "available": int(acct.available_balance or 0),
        "blocked": int(acct.blocked_balance or 0),
    }


def _check_invariants(acct: RipLimitAccount) -> None:
    if (acct.available_balance or 0) < 0 or (acct.blocked_balance or 0) < 0:
        logger.critical(
            "[riplimit] invariant broken user=%s available=%s blocked=%s",
            acct.user_id, acct.available_balance, acct.blocked_balance,
        )
        raise LedgerInvariantError(f"RipLimit invariant broken for user {acct.user_id}")


def _record(
    db: Session,
    acct: RipLimitAccount,
    tx_type: TxType,
    amount: int,
    *,
    before: Dict[str, int],
    auction_id: Optional[int] = None,
    bid_id: Optional[int] = None,
    order_id: Optional[str] = None,
    description: Optional[str] = None,
    actor_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> RipLimitTransaction:
    _check_invariants(acct)
    after = _snapshot(acct)
    tx = RipLimitTransaction(
        user_id=acct.user_id,
        type=tx_type,
        amount=amount,
        balance_after=after["available"],
        auction_id=auction_id,
        bid_id=bid_id,
        order_id=order_id,
        description=description,
        actor_id=actor_id,
        reason=reason,
        meta={"before": before, "after": after},
    )
    db.add(tx)
    db.add(acct)
    db.flush()
    logger.info(
        "[riplimit] %s user=%s amount=%s before=%s after=%s auction=%s",
        tx_type.value, acct.user_id, amount, before, after, auction_id,
    )
    return tx


def _lock_account(db: Session, user_id: int) -> Optional[RipLimitAccount]:
    return (
        db.query(RipLimitAccount)
        .filter(RipLimitAccount.user_id == user_id)
        .with_for_update()
        .first()
    )


def _require_account(db: Session, user_id: int) -> RipLimitAccount:
    acct = _lock_account(db, user_id)
    if not acct:
        raise NotFoundError("RipLimit account not found")
    return acct


def _positive(amount: int, what: str = "amount") -> int:
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise ValidationError(f"{what} must be an integer")
    if amount <= 0:
        raise ValidationError(f"{what} must be > 0")
    return amount


def to_riplimit(amount_inr: int) -> int:
    return int(amount_inr) * R.RIPLIMIT_EXCHANGE_RATE


def bid_hold_amount(bid_amount) -> int:
    """입찰액(INR, 소수 가능) → 홀드할 RipLimit. 정수 단위로 올림."""
    units = R.to_money(bid_amount) * R.RIPLIMIT_EXCHANGE_RATE
    return int(units.to_integral_value(rounding=ROUND_CEILING))


def to_inr(amount: int) -> float:
    return round(amount / R.RIPLIMIT_EXCHANGE_RATE, 2)


# ─────────────────────────────────────────────────────────
# 계정
# ─────────────────────────────────────────────────────────
def get_account(db: Session, user_id: int) -> Optional[RipLimitAccount]:
    return db.get(RipLimitAccount, user_id)


def get_or_create_account(db: Session, user_id: int) -> RipLimitAccount:
    acct = _lock_account(db, user_id)
    if acct:
        return acct
    acct = RipLimitAccount(
        user_id=user_id,
        available_balance=0,
        blocked_balance=0,
        lifetime_purchases=0,
        lifetime_spent=0,
        has_unpaid_auctions=False,
        unpaid_auction_ids=[],
        strikes=0,
        is_blocked=False,
    )
    db.add(acct)
    db.flush()
    logger.info("[riplimit] account created user=%s", user_id)
    return acct


# ─────────────────────────────────────────────────────────
# 버킷 이동 (합계 불변)
# ─────────────────────────────────────────────────────────
def hold(
    db: Session,
    user_id: int,
    amount: int,
    *,
    auction_id: Optional[int] = None,
    bid_id: Optional[int] = None,
    description: Optional[str] = None,
) -> RipLimitTransaction:
    """available → blocked. available < amount 면 InsufficientBalance."""
    amount = _positive(amount)
    acct = _require_account(db, user_id)
    before = _snapshot(acct)
    if before["available"] < amount:
        raise InsufficientBalance(
            f"Insufficient RipLimit. Required: {amount}, Available: {before['available']}"
        )
    acct.available_balance = before["available"] - amount
    acct.blocked_balance = before["blocked"] + amount
    return _record(
        db, acct, TxType.BID_BLOCK, -amount,
        before=before, auction_id=auction_id, bid_id=bid_id,
        description=description or "RipLimit blocked",
    )


def release(
    db: Session,
    user_id: int,
    amount: int,
    *,
    auction_id: Optional[int] = None,
    bid_id: Optional[int] = None,
    description: Optional[str] = None,
) -> RipLimitTransaction:
    """blocked → available. blocked < amount 는 장부 버그: CRITICAL 로그 후 LedgerInvariantError."""
    amount = _positive(amount)
    acct = _require_account(db, user_id)
    before = _snapshot(acct)
    if before["blocked"] < amount:
        logger.critical(
            "[riplimit] release exceeds blocked user=%s blocked=%s amount=%s auction=%s",
            user_id, before["blocked"], amount, auction_id,
        )
        raise LedgerInvariantError(
            f"Cannot release {amount}: only {before['blocked']} blocked for user {user_id}"
        )
    acct.blocked_balance = before["blocked"] - amount
    acct.available_balance = before["available"] + amount
    return _record(
        db, acct, TxType.BID_RELEASE, amount,
        before=before, auction_id=auction_id, bid_id=bid_id,
        description=description or "RipLimit released",
    )


# ─────────────────────────────────────────────────────────
# 입찰 홀드 (경매당 1건, 순증분만 이동)
# ─────────────────────────────────────────────────────────
def get_blocked_bid(db: Session, user_id: int, auction_id: int) -> Optional[RipLimitBlockedBid]:
    return (
        db.query(RipLimitBlockedBid)
        .filter(RipLimitBlockedBid.user_id == user_id, RipLimitBlockedBid.auction_id == auction_id)
        .first()
    )


def get_blocked_bids(db: Session, user_id: int) -> List[RipLimitBlockedBid]:
    return (
        db.query(RipLimitBlockedBid)
        .filter(RipLimitBlockedBid.user_id == user_id)
        .order_by(RipLimitBlockedBid.id.asc())
        .all()
    )


def check_bid_hold(db: Session, *, user_id: int, auction_id: int, bid_amount: Decimal) -> int:
    """
    입찰 홀드 가능 여부만 검사 (변경 없음). 이동할 순증분(RipLimit) 반환.
    - 차단 계정 / 미결제 낙찰 보유 시 거절
    - 같은 경매에 기존 홀드가 있으면 (새 금액 - 기존 금액) 만 필요
    """
    acct = _lock_account(db, user_id)
    if acct is not None and acct.is_blocked:
        raise AccountBlocked(acct.block_reason or "Account is blocked")
    if acct is not None and acct.has_unpaid_auctions:
        raise UnpaidAuctions("You have unpaid won auctions")

    existing = get_blocked_bid(db, user_id, auction_id)
    delta = bid_hold_amount(bid_amount) - (int(existing.amount) if existing else 0)
    available = int(acct.available_balance or 0) if acct is not None else 0
    if delta > 0 and available < delta:
        raise InsufficientBalance(
            f"Insufficient RipLimit. Required: {delta}, Available: {available}"
        )
    return delta


def hold_for_bid(
    db: Session,
    *,
    user_id: int,
    auction_id: int,
    bid_id: Optional[int],
    bid_amount: Decimal,
) -> Optional[RipLimitTransaction]:
    """
    입찰 보증 홀드. 순증분이 음수면 그만큼 해제, 0 이면 거래 기록 없음.
    """
    delta = check_bid_hold(db, user_id=user_id, auction_id=auction_id, bid_amount=bid_amount)
    acct = get_or_create_account(db, user_id)
    required = bid_hold_amount(bid_amount)
    existing = get_blocked_bid(db, user_id, auction_id)
    before = _snapshot(acct)

    if existing:
        existing.amount = required
        existing.bid_amount = R.to_money(bid_amount)
        existing.bid_id = bid_id
        db.add(existing)
    else:
        db.add(RipLimitBlockedBid(
            user_id=user_id,
            auction_id=auction_id,
            bid_id=bid_id,
            amount=required,
            bid_amount=R.to_money(bid_amount),
        ))

    if delta == 0:
        db.flush()
        return None

    acct.available_balance = before["available"] - delta
    acct.blocked_balance = before["blocked"] + delta
    return _record(
        db, acct, TxType.BID_BLOCK, -delta,
        before=before, auction_id=auction_id, bid_id=bid_id,
        description=f"RipLimit blocked for bid of {R.fmt_money(bid_amount)}",
    )


def release_bid(
    db: Session,
    *,
    user_id: int,
    auction_id: int,
    reason: str = "Outbid",
) -> int:
    """(user, auction) 홀드 전체 해제. 해제된 RipLimit 반환."""
    acct = _require_account(db, user_id)
    blocked = get_blocked_bid(db, user_id, auction_id)
    if not blocked:
        raise NotFoundError("No blocked bid found for this auction")

    amount = int(blocked.amount)
    bid_id = blocked.bid_id
    db.delete(blocked)
    if amount == 0:
        db.flush()
        return 0

    before = _snapshot(acct)
    if before["blocked"] < amount:
        logger.critical(
            "[riplimit] blocked bid exceeds account bucket user=%s blocked=%s hold=%s auction=%s",
            user_id, before["blocked"], amount, auction_id,
        )
        raise LedgerInvariantError(
            f"Cannot release {amount}: only {before['blocked']} blocked for user {user_id}"
        )
    acct.blocked_balance = before["blocked"] - amount
    acct.available_balance = before["available"] + amount
    _record(
        db, acct, TxType.BID_RELEASE, amount,
        before=before, auction_id=auction_id, bid_id=bid_id,
        description=f"RipLimit released: {reason}",
    )
    return amount


# ─────────────────────────────────────────────────────────
# 합계가 바뀌는 연산 (사유 필수)
# ─────────────────────────────────────────────────────────
def adjust(
    db: Session,
    *,
    user_id: int,
    amount: int,
    reason: str,
    actor_id: Optional[int] = None,
) -> RipLimitTransaction:
    """관리자 조정: available += amount (음수 가능). 사유가 비어 있으면 변경 전에 거절."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Reason is required")
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be an integer")
    if amount == 0:
        raise ValidationError("amount must not be 0")

    acct = get_or_create_account(db, user_id)
    before = _snapshot(acct)
    if before["available"] + amount < 0:
        raise InsufficientBalance(
            f"Adjustment would make available balance negative "
            f"(available={before['available']}, amount={amount})"
        )
    acct.available_balance = before["available"] + amount
    return _record(
        db, acct, TxType.ADMIN_ADJUST, amount,
        before=before, actor_id=actor_id, reason=reason,
        description=f"Admin adjustment: {reason}",
    )


def purchase(
    db: Session,
    *,
    user_id: int,
    amount_inr: int,
    order_id: Optional[str] = None,
) -> RipLimitTransaction:
    amount_inr = _positive(amount_inr, "amount")
    if amount_inr < R.MIN_RIPLIMIT_PURCHASE_INR:
        raise ValidationError(f"Minimum purchase is {R.MIN_RIPLIMIT_PURCHASE_INR} INR")

    credit = to_riplimit(amount_inr)
    acct = get_or_create_account(db, user_id)
    before = _snapshot(acct)
    acct.available_balance = before["available"] + credit
    acct.lifetime_purchases = int(acct.lifetime_purchases or 0) + credit
    return _record(
        db, acct, TxType.PURCHASE, credit,
        before=before, order_id=order_id,
        description=f"Purchased {credit} RipLimit for {amount_inr} INR",
    )


def refund(
    db: Session,
    *,
    user_id: int,
    amount: int,
    reason: str = "User refund",
) -> RipLimitTransaction:
    """available 에서 amount 만큼 환불(차감). 홀드 중인 금액은 환불 불가."""
    amount = _positive(amount)
    acct = _require_account(db, user_id)
    if acct.has_unpaid_auctions:
        raise UnpaidAuctions("Cannot refund while you have unpaid won auctions")
    before = _snapshot(acct)
    if before["available"] < amount:
        raise InsufficientBalance(
            f"Insufficient RipLimit. Required: {amount}, Available: {before['available']}"
        )
    acct.available_balance = before["available"] - amount
    return _record(
        db, acct, TxType.REFUND, -amount,
        before=before, reason=reason,
        description=f"Refunded {amount} RipLimit ({to_inr(amount)} INR)",
    )


# ─────────────────────────────────────────────────────────
# 낙찰 정산 / 미결제
# ─────────────────────────────────────────────────────────
def use_for_auction_payment(
    db: Session,
    *,
    user_id: int,
    auction_id: int,
    order_id: str,
) -> RipLimitTransaction:
    """낙찰 홀드를 소진. blocked 감소, available 불변, 미결제 목록에서 제거."""
    acct = _require_account(db, user_id)
    blocked = get_blocked_bid(db, user_id, auction_id)
    if not blocked:
        raise NotFoundError("No blocked RipLimit found for this auction")

    amount = int(blocked.amount)
    bid_id = blocked.bid_id
    before = _snapshot(acct)
    if before["blocked"] < amount:
        logger.critical(
            "[riplimit] payment exceeds blocked user=%s blocked=%s hold=%s auction=%s",
            user_id, before["blocked"], amount, auction_id,
        )
        raise LedgerInvariantError(f"Blocked bucket smaller than auction hold for user {user_id}")

    acct.blocked_balance = before["blocked"] - amount
    acct.lifetime_spent = int(acct.lifetime_spent or 0) + amount

    # JSON 컬럼은 새 리스트를 할당해야 변경 감지
    remaining = [a for a in (acct.unpaid_auction_ids or []) if a != auction_id]
    acct.unpaid_auction_ids = remaining
    acct.has_unpaid_auctions = bool(remaining)

    db.delete(blocked)
    return _record(
        db, acct, TxType.AUCTION_PAYMENT, -amount,
        before=before, auction_id=auction_id, bid_id=bid_id, order_id=order_id,
        description=f"Payment for auction {auction_id}",
    )


def mark_auction_unpaid(db: Session, *, user_id: int, auction_id: int) -> RipLimitAccount:
    acct = get_or_create_account(db, user_id)
    ids = list(acct.unpaid_auction_ids or [])
    if auction_id not in ids:
        ids.append(auction_id)
    acct.unpaid_auction_ids = ids
    acct.has_unpaid_auctions = True
    db.add(acct)
    db.flush()
    logger.info("[riplimit] unpaid auction user=%s auction=%s", user_id, auction_id)
    return acct


def add_strike(db: Session, *, user_id: int, actor_id: Optional[int] = None) -> RipLimitAccount:
    acct = _require_account(db, user_id)
    acct.strikes = int(acct.strikes or 0) + 1
    if acct.strikes >= R.STRIKE_BLOCK_THRESHOLD:
        acct.is_blocked = True
        acct.block_reason = f"Too many unpaid auctions ({acct.strikes} strikes)"
        logger.warning("[riplimit] user=%s blocked after %s strikes", user_id, acct.strikes)
    db.add(acct)
    db.flush()
    logger.info("[riplimit] strike user=%s strikes=%s actor=%s", user_id, acct.strikes, actor_id)
    return acct


# ─────────────────────────────────────────────────────────
# 조회
# ─────────────────────────────────────────────────────────
def get_balance_details(db: Session, user_id: int) -> Dict[str, Any]:
    acct = get_account(db, user_id)
    available = int(acct.available_balance or 0) if acct else 0
    blocked = int(acct.blocked_balance or 0) if acct else 0
    total = available + blocked
    return {
        "user_id": user_id,
        "available_balance": available,
        "blocked_balance": blocked,
        "total_balance": total,
        "available_balance_inr": to_inr(available),
        "blocked_balance_inr": to_inr(blocked),
        "total_balance_inr": to_inr(total),
        "has_unpaid_auctions": bool(acct.has_unpaid_auctions) if acct else False,
        "unpaid_auction_ids": list(acct.unpaid_auction_ids or []) if acct else [],
        "strikes": int(acct.strikes or 0) if acct else 0,
        "is_blocked": bool(acct.is_blocked) if acct else False,
        "block_reason": acct.block_reason if acct else None,
        "blocked_bids": [
            {
                "auction_id": b.auction_id,
                "bid_id": b.bid_id,
                "amount": int(b.amount),
                "bid_amount": R.to_money(b.bid_amount),
            }
            for b in get_blocked_bids(db, user_id)
        ],
    }


def list_transactions(
    db: Session,
    user_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
    tx_type: Optional[str] = None,
) -> List[RipLimitTransaction]:
    q = db.query(RipLimitTransaction).filter(RipLimitTransaction.user_id == user_id)
    if tx_type:
        try:
            q = q.filter(RipLimitTransaction.type == TxType(tx_type.upper()))
        except ValueError:
            raise ValidationError(f"Unknown transaction type: {tx_type}")
    return (
        q.order_by(RipLimitTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_stats(db: Session) -> Dict[str, int]:
    row = db.query(
        func.count(RipLimitAccount.user_id),
        func.coalesce(func.sum(RipLimitAccount.available_balance), 0),
        func.coalesce(func.sum(RipLimitAccount.blocked_balance), 0),
        func.coalesce(func.sum(RipLimitAccount.lifetime_purchases), 0),
        func.coalesce(func.sum(RipLimitAccount.lifetime_spent), 0),
    ).one()
    blocked_accounts = (
        db.query(func.count(RipLimitAccount.user_id))
        .filter(RipLimitAccount.is_blocked.is_(True))
        .scalar()
    )
    unpaid_accounts = (
        db.query(func.count(RipLimitAccount.user_id))
        .filter(RipLimitAccount.has_unpaid_auctions.is_(True))
        .scalar()
    )
    return {
        "total_accounts": int(row[0] or 0),
        "total_available": int(row[1] or 0),
        "total_blocked": int(row[2] or 0),
        "total_outstanding": int(row[1] or 0) + int(row[2] or 0),
        "total_purchased": int(row[3] or 0),
        "total_spent": int(row[4] or 0),
        "blocked_accounts": int(blocked_accounts or 0),
        "accounts_with_unpaid": int(unpaid_accounts or 0),
    }


def list_accounts(
    db: Session,
    *,
    page: int = 1,
    page_size: int = 20,
    has_unpaid: Optional[bool] = None,
    is_blocked: Optional[bool] = None,
) -> Dict[str, Any]:
    q = db.query(RipLimitAccount)
    if has_unpaid is not None:
        q = q.filter(RipLimitAccount.has_unpaid_auctions.is_(has_unpaid))
    if is_blocked is not None:
        q = q.filter(RipLimitAccount.is_blocked.is_(is_blocked))

    total = q.count()
    page = max(1, int(page))
    page_size = max(1, min(int(page_size), R.MAX_PAGE_LIMIT))
    rows = (
        q.order_by(RipLimitAccount.user_id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": rows,
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": (total + page_size - 1) // page_size,
    }


__all__ = [
    "to_riplimit", "to_inr",
    "get_account", "get_or_create_account",
    "hold", "release",
    "get_blocked_bid", "get_blocked_bids",
    "check_bid_hold", "hold_for_bid", "release_bid",
    "adjust", "purchase", "refund",
    "use_for_auction_payment", "mark_auction_unpaid", "add_strike",
    "get_balance_details", "list_transactions", "get_stats", "list_accounts",
]
