# riphouse/routers/riplimit.py
# RipLimit 잔액/원장 (사용자 + 관리자)
from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.orm import Session

from riphouse import models, schemas
from riphouse.config.feature_flags import FEATURE_FLAGS
from riphouse.database import get_db
from riphouse.errors import ConflictError, NotFoundError, PermissionDenied
from riphouse.logic import riplimit
from riphouse.routers.common import translate_error
from riphouse.security import get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["riplimit"])


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


# =========================================================
# 👤 사용자
# =========================================================
@router.get("/riplimit/balance")
def my_balance(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return schemas.envelope(schemas.RipLimitBalanceOut(**riplimit.get_balance_details(db, user.id)))


@router.get("/riplimit/transactions")
def my_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    type_: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        rows = riplimit.list_transactions(db, user.id, limit=limit, offset=offset, tx_type=type_)
    except Exception as e:
        translate_error(e)
    return schemas.envelope([schemas.RipLimitTransactionOut.model_validate(t) for t in rows])


@router.post("/riplimit/purchase", status_code=status.HTTP_201_CREATED)
def purchase(
    body: schemas.PurchaseRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """결제 연동 없이 바로 충전 (ALLOW_DIRECT_PURCHASE 가 꺼져 있으면 403)."""
    if not FEATURE_FLAGS.get("ALLOW_DIRECT_PURCHASE"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Direct purchase is disabled", "code": "FEATURE_DISABLED"},
        )
    try:
        tx = riplimit.purchase(
            db,
            user_id=user.id,
            amount_inr=body.amount,
            order_id=body.order_id or f"RL-{uuid.uuid4().hex[:12]}",
        )
        _commit(db)
    except Exception as e:
        translate_error(e)
    db.refresh(tx)
    return schemas.envelope(schemas.RipLimitTransactionOut.model_validate(tx))


@router.post("/riplimit/refund")
def refund(
    body: schemas.RefundRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        tx = riplimit.refund(db, user_id=user.id, amount=body.amount, reason=body.reason or "User refund")
        _commit(db)
    except Exception as e:
        translate_error(e)
    db.refresh(tx)
    return schemas.envelope(schemas.RipLimitTransactionOut.model_validate(tx))


@router.post("/riplimit/auctions/{auction_id}/pay")
def pay_for_auction(
    body: Optional[schemas.PayRequest] = None,
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """낙찰자만. 홀드된 금액을 결제로 소진하고 미결제 목록에서 제거."""
    try:
        auction = db.get(models.Auction, auction_id)
        if auction is None:
            raise NotFoundError(f"Auction not found: {auction_id}")
        if auction.status != models.AuctionStatus.ENDED or not auction.is_sold:
            raise ConflictError("Auction is not awaiting payment")
        if auction.winner_id != user.id:
            raise PermissionDenied()
        order_id = (body.order_id if body else None) or f"ORD-{uuid.uuid4().hex[:12]}"
        tx = riplimit.use_for_auction_payment(db, user_id=user.id, auction_id=auction_id, order_id=order_id)
        _commit(db)
    except Exception as e:
        translate_error(e)
    db.refresh(tx)
    return schemas.envelope(schemas.RipLimitTransactionOut.model_validate(tx))


# =========================================================
# 🛡️ 관리자
# =========================================================
@router.get("/admin/riplimit/stats")
def admin_stats(
    db: Session = Depends(get_db),
    _admin: models.User = Depends(require_role("admin")),
):
    return schemas.envelope(schemas.RipLimitStatsOut(**riplimit.get_stats(db)))


@router.get("/admin/riplimit/users")
def admin_list_accounts(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, alias="pageSize"),
    has_unpaid: Optional[bool] = Query(None, alias="hasUnpaid"),
    is_blocked: Optional[bool] = Query(None, alias="isBlocked"),
    db: Session = Depends(get_db),
    _admin: models.User = Depends(require_role("admin")),
):
    result = riplimit.list_accounts(
        db, page=page, page_size=page_size, has_unpaid=has_unpaid, is_blocked=is_blocked,
    )
    return schemas.envelope(
        [schemas.RipLimitAccountOut.model_validate(a) for a in result["items"]],
        pagination={
            "page": result["page"],
            "pageSize": result["page_size"],
            "total": result["total"],
            "totalPages": result["total_pages"],
        },
    )


@router.get("/admin/riplimit/users/{user_id}")
def admin_get_account(
    user_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    _admin: models.User = Depends(require_role("admin")),
):
    if db.get(models.User, user_id) is None:
        translate_error(NotFoundError(f"User not found: {user_id}"))
    return schemas.envelope(schemas.RipLimitBalanceOut(**riplimit.get_balance_details(db, user_id)))


@router.post("/admin/riplimit/users/{user_id}/adjust")
def admin_adjust(
    body: schemas.AdjustRequest,
    user_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    """사유 필수. 잔액이 음수가 되는 조정은 409."""
    try:
        if db.get(models.User, user_id) is None:
            raise NotFoundError(f"User not found: {user_id}")
        tx = riplimit.adjust(db, user_id=user_id, amount=body.amount, reason=body.reason, actor_id=admin.id)
        _commit(db)
    except Exception as e:
        translate_error(e)
    logger.info("[riplimit.admin] adjust user=%s amount=%s by admin=%s", user_id, body.amount, admin.id)
    db.refresh(tx)
    return schemas.envelope(schemas.RipLimitTransactionOut.model_validate(tx))


@router.post("/admin/riplimit/users/{user_id}/strike")
def admin_strike(
    user_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    try:
        acct = riplimit.add_strike(db, user_id=user_id, actor_id=admin.id)
        _commit(db)
    except Exception as e:
        translate_error(e)
    db.refresh(acct)
    return schemas.envelope(schemas.RipLimitAccountOut.model_validate(acct))
