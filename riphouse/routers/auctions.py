# riphouse/routers/auctions.py
from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status
from sqlalchemy.orm import Session

from riphouse import crud, models, schemas
from riphouse.database import get_db
from riphouse.logic import bidding
from riphouse.routers.common import translate_error
from riphouse.security import get_current_user, get_optional_user, is_admin, require_role

router = APIRouter(prefix="/auctions", tags=["auctions"])


# ---- 직렬화 -------------------------------------------------------------------
def _out(a: models.Auction, viewer: Optional[models.User]) -> schemas.AuctionOut:
    out = schemas.AuctionOut.model_validate(a)
    if not crud.can_manage(a, viewer):
        out.reserve_price = None
    return out


def _outs(rows: List[models.Auction], viewer: Optional[models.User]) -> List[schemas.AuctionOut]:
    return [_out(a, viewer) for a in rows]


def _bid_out(b: models.Bid, viewer: Optional[models.User]) -> schemas.BidOut:
    out = schemas.BidOut.model_validate(b)
    # 자동입찰 상한은 본인/관리자만
    if viewer is None or (b.user_id != viewer.id and not is_admin(viewer)):
        out.max_auto_bid_amount = None
    return out


def _page(limit: int, has_more: bool, next_cursor: Optional[int]) -> schemas.PageInfo:
    return schemas.PageInfo(limit=limit, has_more=has_more, next_cursor=next_cursor)


# ---- 목록 / 생성 ----------------------------------------------------------------
@router.get("")
def list_auctions(
    status_: Optional[str] = Query(None, alias="status"),
    shop_id: Optional[int] = Query(None, alias="shopId"),
    category_id: Optional[int] = Query(None, alias="categoryId"),
    seller_id: Optional[int] = Query(None, alias="sellerId"),
    featured: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    limit: Optional[int] = Query(None, ge=1),
    start_after: Optional[int] = Query(None, alias="startAfter"),
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    try:
        items, has_more, cursor = crud.list_auctions(
            db,
            viewer=viewer,
            status=status_,
            shop_id=shop_id,
            category_id=category_id,
            seller_id=seller_id,
            featured=featured,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            start_after=start_after,
        )
    except Exception as e:
        translate_error(e)
    return schemas.envelope(
        _outs(items, viewer),
        pagination=_page(crud._clamp_limit(limit), has_more, cursor),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_auction(
    body: schemas.AuctionCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_role("seller")),
):
    try:
        auction = crud.create_auction(db, seller=user, data=body)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_out(auction, user))


@router.get("/validate-slug")
def validate_slug(
    slug: str = Query(...),
    exclude_id: Optional[int] = Query(None, alias="excludeId"),
    db: Session = Depends(get_db),
):
    try:
        crud.validate_slug_format(slug)
        available = crud.slug_available(db, slug, exclude_id=exclude_id)
    except Exception as e:
        translate_error(e)
    return schemas.envelope({"slug": slug, "available": available})


# ---- 파생 뷰 -------------------------------------------------------------------
@router.get("/featured")
def featured(
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    return schemas.envelope(_outs(crud.get_featured(db, viewer=viewer, limit=limit), viewer))


@router.get("/live")
def live(
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    return schemas.envelope(_outs(crud.get_live(db, viewer=viewer, limit=limit), viewer))


@router.get("/homepage")
def homepage(
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    sections = crud.get_homepage(db, viewer=viewer)
    return schemas.envelope({
        "featured": _outs(sections["featured"], viewer),
        "live": _outs(sections["live"], viewer),
        "endingSoon": _outs(sections["ending_soon"], viewer),
        "upcoming": _outs(sections["upcoming"], viewer),
    })


@router.get("/watchlist")
def watchlist(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return schemas.envelope(_outs(crud.get_watchlist(db, user=user), user))


@router.get("/my-bids")
def my_bids(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    rows = crud.get_my_bids(db, user=user)
    return schemas.envelope([
        schemas.MyBidOut(
            auction=_out(r["auction"], user),
            my_highest_bid=r["my_highest_bid"],
            bid_count=r["bid_count"],
            is_winning=r["is_winning"],
        )
        for r in rows
    ])


@router.get("/won")
def won(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return schemas.envelope(_outs(crud.get_won(db, user=user), user))


# ---- bulk / batch ---------------------------------------------------------------
@router.post("/bulk")
def bulk(
    body: schemas.BulkRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_role("seller")),
):
    """항목별 독립 처리. 일부 실패해도 200 + results 로 보고."""
    try:
        result = crud.bulk_action(db, actor=user, action=body.action, ids=body.ids, updates=body.updates)
    except Exception as e:
        translate_error(e)
    return {
        "success": result["success"],
        "message": result["message"],
        "results": schemas.BulkResults(**result["results"]),
    }


@router.post("/batch")
def batch(
    body: schemas.BatchRequest,
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    try:
        rows = crud.get_by_ids(db, body.ids, viewer=viewer)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_outs(rows, viewer))


# ---- 단건 -----------------------------------------------------------------------
@router.get("/{id_or_slug}")
def get_auction(
    id_or_slug: str = Path(...),
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    try:
        auction = crud.get_auction(db, id_or_slug, viewer)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_out(auction, viewer))


@router.patch("/{auction_id}")
def update_auction(
    body: schemas.AuctionUpdate,
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        auction = crud.update_auction(db, auction_id, actor=user, updates=body)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_out(auction, user))


@router.delete("/{auction_id}")
def delete_auction(
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        crud.delete_auction(db, auction_id, actor=user)
    except Exception as e:
        translate_error(e)
    return schemas.envelope({"id": auction_id, "deleted": True})


@router.patch("/{auction_id}/feature")
def set_featured(
    body: schemas.FeatureRequest,
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_role("admin")),
):
    try:
        auction = crud.set_featured(db, auction_id, actor=user, featured=body.featured, priority=body.priority)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_out(auction, user))


def _lifecycle(db: Session, auction_id: int, user: models.User, action: str):
    try:
        auction = crud.run_lifecycle_action(db, auction_id, actor=user, action=action)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_out(auction, user))


@router.post("/{auction_id}/start")
def start_auction(
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _lifecycle(db, auction_id, user, "start")


@router.post("/{auction_id}/end")
def end_auction(
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _lifecycle(db, auction_id, user, "end")


@router.post("/{auction_id}/cancel")
def cancel_auction(
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """입찰이 하나라도 있으면 409."""
    return _lifecycle(db, auction_id, user, "cancel")


# ---- 입찰 -----------------------------------------------------------------------
@router.post("/{id_or_slug}/bid", status_code=status.HTTP_201_CREATED)
def place_bid(
    body: schemas.BidCreate,
    id_or_slug: str = Path(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """
    입찰. 거절 시 error.code 로 사유 전달:
      BidTooLow(400), AuctionNotActive / SelfBid / InsufficientBalance /
      AccountBlocked / UnpaidAuctions (409)
    """
    try:
        auction = crud.get_auction(db, id_or_slug, user)
        bid = bidding.place_bid(
            db,
            auction_id=auction.id,
            user_id=user.id,
            amount=body.amount,
            is_auto_bid=body.is_auto_bid,
            max_auto_bid_amount=body.max_auto_bid_amount,
            idempotency_key=body.idempotency_key or idempotency_key,
        )
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_bid_out(bid, user))


@router.get("/{id_or_slug}/bid")
@router.get("/{id_or_slug}/bids")
def list_bids(
    id_or_slug: str = Path(...),
    limit: Optional[int] = Query(None, ge=1),
    start_after: Optional[int] = Query(None, alias="startAfter"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    try:
        auction = crud.get_auction(db, id_or_slug, viewer)
        lim = crud._clamp_limit(limit)
        items, has_more, cursor = bidding.list_bids(
            db, auction.id, limit=lim, start_after=start_after, sort_order=sort_order,
        )
    except Exception as e:
        translate_error(e)
    return schemas.envelope(
        [_bid_out(b, viewer) for b in items],
        pagination=_page(lim, has_more, cursor),
    )


@router.post("/{id_or_slug}/watch")
def toggle_watch(
    id_or_slug: str = Path(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        auction = crud.get_auction(db, id_or_slug, user)
        result = crud.toggle_watch(db, auction.id, user=user)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(schemas.WatchOut(**result))


@router.get("/{id_or_slug}/similar")
def similar(
    id_or_slug: str = Path(...),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    try:
        auction = crud.get_auction(db, id_or_slug, viewer)
        rows = crud.get_similar(db, auction.id, viewer=viewer, limit=limit)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_outs(rows, viewer))


@router.get("/{id_or_slug}/seller-items")
def seller_items(
    id_or_slug: str = Path(...),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    viewer: Optional[models.User] = Depends(get_optional_user),
):
    try:
        auction = crud.get_auction(db, id_or_slug, viewer)
        rows = crud.get_seller_items(db, auction.id, viewer=viewer, limit=limit)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_outs(rows, viewer))
