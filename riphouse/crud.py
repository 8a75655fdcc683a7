# riphouse/crud.py
from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

# 내부 모듈
from riphouse import models, schemas
from riphouse.config import project_rules as R
from riphouse.errors import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from riphouse.logic import lifecycle
from riphouse.models import (
    Auction,
    AuctionStatus,
    AuctionWatch,
    Bid,
    Shop,
    User,
)
from riphouse.security import get_password_hash, is_admin

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(R.SLUG_PATTERN)

SORT_FIELDS = {
    "created_at": Auction.created_at,
    "end_time": Auction.end_time,
    "current_price": Auction.current_price,
    "total_bids": Auction.total_bids,
}


# ---------------------------------------------------------------------
# 공용 유틸
# ---------------------------------------------------------------------
def _clamp_limit(limit: Optional[int]) -> int:
    if not limit:
        return R.DEFAULT_PAGE_LIMIT
    return max(1, min(int(limit), R.MAX_PAGE_LIMIT))


def validate_slug_format(slug: str) -> None:
    if not slug or not _SLUG_RE.match(slug):
        raise ValidationError(f"Invalid slug: {slug!r} (lowercase letters, digits and hyphens)")


# =========================================================
# 👥 User
# =========================================================
def create_user(db: Session, data: schemas.UserCreate, *, role: Optional[str] = None) -> User:
    if db.query(User.id).filter(User.email == data.email).first():
        raise ConflictError("Email already registered")
    user = User(
        email=data.email,
        hashed_password=get_password_hash(data.password),
        name=data.name,
        role=role or data.role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("[users] created id=%s role=%s", user.id, user.role)
    return user


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


# =========================================================
# 🏪 Shop
# =========================================================
def create_shop(db: Session, *, owner: User, data: schemas.ShopCreate) -> Shop:
    validate_slug_format(data.slug)
    if db.query(Shop.id).filter(Shop.slug == data.slug).first():
        raise ConflictError(f"Shop slug already exists: {data.slug}")
    shop = Shop(slug=data.slug, name=data.name, owner_id=owner.id)
    db.add(shop)
    db.commit()
    db.refresh(shop)
    return shop


def get_shop_by_slug(db: Session, slug: str) -> Shop:
    shop = db.query(Shop).filter(Shop.slug == slug).first()
    if not shop:
        raise NotFoundError(f"Shop not found: {slug}")
    return shop


def admin_update_shop(db: Session, shop_id: int, data: schemas.ShopAdminUpdate) -> Shop:
    shop = db.get(Shop, shop_id)
    if not shop:
        raise NotFoundError(f"Shop not found: {shop_id}")
    if data.is_verified is not None:
        shop.is_verified = data.is_verified
    if data.is_banned is not None:
        shop.is_banned = data.is_banned
    db.add(shop)
    db.commit()
    db.refresh(shop)
    logger.info("[shops] id=%s verified=%s banned=%s", shop.id, shop.is_verified, shop.is_banned)
    return shop


# =========================================================
# 🔨 Auction: 권한/가시성
# =========================================================
def can_manage(auction: Auction, user: Optional[User]) -> bool:
    return user is not None and (is_admin(user) or auction.seller_id == user.id)


def can_view(auction: Auction, user: Optional[User]) -> bool:
    shop = auction.shop
    if shop is not None and shop.is_verified and not shop.is_banned:
        return True
    # 미인증/밴 샵: 소유자와 관리자만
    if user is None:
        return False
    return is_admin(user) or (shop is not None and shop.owner_id == user.id)


def _visible_filter(q, viewer: Optional[User]):
    if is_admin(viewer):
        return q
    public = (Shop.is_verified.is_(True)) & (Shop.is_banned.is_(False))
    if viewer is not None:
        return q.filter(or_(public, Shop.owner_id == viewer.id))
    return q.filter(public)


def _require_auction(db: Session, auction_id: int) -> Auction:
    auction = db.get(Auction, auction_id)
    if not auction:
        raise NotFoundError(f"Auction not found: {auction_id}")
    return auction


def _require_manageable(db: Session, auction_id: int, actor: User) -> Auction:
    auction = _require_auction(db, auction_id)
    if not can_view(auction, actor):
        raise NotFoundError(f"Auction not found: {auction_id}")
    if not can_manage(auction, actor):
        raise PermissionDenied()
    return auction


def _sync(db: Session, auctions: List[Auction]) -> None:
    """읽기 경로에서도 시간 기반 전이 반영."""
    changed = False
    for a in auctions:
        changed = lifecycle.sync_status(db, a) or changed
    if changed:
        db.commit()


def get_auction(db: Session, id_or_slug: str, viewer: Optional[User] = None) -> Auction:
    """숫자면 id, 아니면 slug. 숨김 경매는 존재하지 않는 것과 동일하게 404."""
    key = str(id_or_slug)
    auction = None
    if key.isdigit():
        auction = db.get(Auction, int(key))
    if auction is None:
        auction = db.query(Auction).filter(Auction.slug == key).first()
    if auction is None or not can_view(auction, viewer):
        raise NotFoundError(f"Auction not found: {id_or_slug}")
    _sync(db, [auction])
    return auction


# =========================================================
# 🔨 Auction: CRUD
# =========================================================
def slug_available(db: Session, slug: str, *, exclude_id: Optional[int] = None) -> bool:
    q = db.query(Auction.id).filter(Auction.slug == slug)
    if exclude_id is not None:
        q = q.filter(Auction.id != exclude_id)
    return q.first() is None


def create_auction(db: Session, *, seller: User, data: schemas.AuctionCreate) -> Auction:
    validate_slug_format(data.slug)
    if not slug_available(db, data.slug):
        raise ConflictError(f"Slug already exists: {data.slug}")

    shop = db.get(Shop, data.shop_id)
    if not shop:
        raise NotFoundError(f"Shop not found: {data.shop_id}")
    if shop.owner_id != seller.id and not is_admin(seller):
        raise PermissionDenied()
    if shop.is_banned:
        raise ConflictError("Shop is banned")

    start = R.ensure_aware_utc(data.start_time)
    end = R.ensure_aware_utc(data.end_time)
    if end <= start:
        raise ValidationError("end_time must be after start_time")
    if end <= R.now_utc():
        raise ValidationError("end_time must be in the future")
    if data.reserve_price is not None and data.reserve_price < data.starting_price:
        raise ValidationError("reserve_price must be >= starting_price")
    if data.category_id is not None and not db.get(models.Category, data.category_id):
        raise NotFoundError(f"Category not found: {data.category_id}")

    auction = Auction(
        slug=data.slug,
        name=data.name,
        description=data.description or "",
        starting_price=data.starting_price,
        current_price=data.starting_price,
        reserve_price=data.reserve_price,
        bid_increment=data.bid_increment or R.DEFAULT_BID_INCREMENT,
        start_time=start,
        end_time=end,
        status=lifecycle.initial_status(start),
        seller_id=shop.owner_id,
        shop_id=shop.id,
        category_id=data.category_id,
    )
    db.add(auction)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Slug already exists: {data.slug}") from e
    db.refresh(auction)
    logger.info("[auctions] created id=%s slug=%s status=%s", auction.id, auction.slug, auction.status.value)
    return auction


def _apply_updates(db: Session, auction: Auction, updates: schemas.AuctionUpdate) -> Auction:
    if auction.status in (AuctionStatus.ENDED, AuctionStatus.CANCELLED):
        raise ConflictError(f"Cannot update auction in status {auction.status.value}")

    fields = updates.model_dump(exclude_unset=True)
    has_bids = int(auction.total_bids or 0) > 0

    if "slug" in fields and fields["slug"] != auction.slug:
        validate_slug_format(fields["slug"])
        if not slug_available(db, fields["slug"], exclude_id=auction.id):
            raise ConflictError(f"Slug already exists: {fields['slug']}")
        auction.slug = fields["slug"]

    if "starting_price" in fields:
        if has_bids:
            raise ConflictError("Cannot change starting price after bids")
        auction.starting_price = fields["starting_price"]
        auction.current_price = fields["starting_price"]

    if "bid_increment" in fields:
        if has_bids:
            raise ConflictError("Cannot change bid increment after bids")
        auction.bid_increment = fields["bid_increment"]

    if "reserve_price" in fields:
        if has_bids:
            raise ConflictError("Cannot change reserve price after bids")
        auction.reserve_price = fields["reserve_price"]

    if "start_time" in fields and fields["start_time"] is not None:
        if auction.status != AuctionStatus.SCHEDULED:
            raise ConflictError("Cannot change start time after the auction started")
        auction.start_time = R.ensure_aware_utc(fields["start_time"])

    if "end_time" in fields and fields["end_time"] is not None:
        if has_bids:
            raise ConflictError("Cannot change end time after bids")
        end = R.ensure_aware_utc(fields["end_time"])
        # 조기 종료는 명시적인 end 액션으로만
        if end <= R.now_utc():
            raise ValidationError("end_time must be in the future")
        auction.end_time = end

    if R.ensure_aware_utc(auction.end_time) <= R.ensure_aware_utc(auction.start_time):
        raise ValidationError("end_time must be after start_time")
    if auction.reserve_price is not None and auction.reserve_price < auction.starting_price:
        raise ValidationError("reserve_price must be >= starting_price")

    for key in ("name", "description", "category_id"):
        if key in fields:
            setattr(auction, key, fields[key] if fields[key] is not None else getattr(auction, key))

    db.add(auction)
    return auction


def update_auction(db: Session, auction_id: int, *, actor: User, updates: schemas.AuctionUpdate) -> Auction:
    auction = _require_manageable(db, auction_id, actor)
    try:
        _apply_updates(db, auction, updates)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(auction)
    return auction


def _delete(db: Session, auction: Auction) -> None:
    if int(auction.total_bids or 0) > 0:
        raise ConflictError("Cannot delete an auction that has bids")
    db.query(AuctionWatch).filter(AuctionWatch.auction_id == auction.id).delete(synchronize_session=False)
    db.delete(auction)


def delete_auction(db: Session, auction_id: int, *, actor: User) -> None:
    auction = _require_manageable(db, auction_id, actor)
    _delete(db, auction)
    db.commit()
    logger.info("[auctions] deleted id=%s by user=%s", auction_id, actor.id)


def set_featured(db: Session, auction_id: int, *, actor: User, featured: bool, priority: int = 0) -> Auction:
    auction = _require_auction(db, auction_id)
    if not is_admin(actor):
        raise PermissionDenied()
    auction.featured = featured
    auction.featured_priority = priority if featured else 0
    db.add(auction)
    db.commit()
    db.refresh(auction)
    return auction


def run_lifecycle_action(db: Session, auction_id: int, *, actor: User, action: str) -> Auction:
    auction = _require_manageable(db, auction_id, actor)
    fn = {"start": lifecycle.start, "end": lifecycle.end, "cancel": lifecycle.cancel}[action]
    try:
        fn(db, auction)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(auction)
    return auction


# =========================================================
# 🔎 Auction: 목록 / 파생 뷰
# =========================================================
def list_auctions(
    db: Session,
    *,
    viewer: Optional[User] = None,
    status: Optional[str] = None,
    shop_id: Optional[int] = None,
    category_id: Optional[int] = None,
    seller_id: Optional[int] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: Optional[int] = None,
    start_after: Optional[int] = None,
) -> Tuple[List[Auction], bool, Optional[int]]:
    """커서 페이지네이션. (items, has_more, next_cursor), 커서는 마지막 항목 id."""
    limit = _clamp_limit(limit)
    col = SORT_FIELDS.get(sort_by)
    if col is None:
        raise ValidationError(f"Unsupported sortBy: {sort_by}")
    asc = (sort_order or "desc").lower() == "asc"

    q = _visible_filter(db.query(Auction).join(Shop, Auction.shop_id == Shop.id), viewer)
    if status:
        try:
            q = q.filter(Auction.status == AuctionStatus(status.lower()))
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")
    if shop_id is not None:
        q = q.filter(Auction.shop_id == shop_id)
    if category_id is not None:
        q = q.filter(Auction.category_id == category_id)
    if seller_id is not None:
        q = q.filter(Auction.seller_id == seller_id)
    if featured is not None:
        q = q.filter(Auction.featured.is_(featured))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Auction.name.ilike(like), Auction.description.ilike(like)))

    if start_after is not None:
        cursor = db.get(Auction, start_after)
        if cursor is None:
            raise ValidationError(f"Invalid cursor: {start_after}")
        value = getattr(cursor, col.key)
        if asc:
            q = q.filter(or_(col > value, (col == value) & (Auction.id > cursor.id)))
        else:
            q = q.filter(or_(col < value, (col == value) & (Auction.id < cursor.id)))

    q = q.order_by(col.asc(), Auction.id.asc()) if asc else q.order_by(col.desc(), Auction.id.desc())
    rows = q.limit(limit + 1).all()
    has_more = len(rows) > limit
    items = rows[:limit]
    _sync(db, items)
    return items, has_more, (items[-1].id if has_more and items else None)


def get_featured(db: Session, *, viewer: Optional[User] = None, limit: Optional[int] = None) -> List[Auction]:
    q = _visible_filter(db.query(Auction).join(Shop, Auction.shop_id == Shop.id), viewer)
    rows = (
        q.filter(Auction.featured.is_(True), Auction.status.in_([AuctionStatus.ACTIVE, AuctionStatus.SCHEDULED]))
        .order_by(Auction.featured_priority.desc(), Auction.end_time.asc(), Auction.id.asc())
        .limit(_clamp_limit(limit))
        .all()
    )
    _sync(db, rows)
    return rows


def get_live(db: Session, *, viewer: Optional[User] = None, limit: Optional[int] = None) -> List[Auction]:
    now = R.now_utc()
    q = _visible_filter(db.query(Auction).join(Shop, Auction.shop_id == Shop.id), viewer)
    rows = (
        q.filter(Auction.status == AuctionStatus.ACTIVE, Auction.end_time > now)
        .order_by(Auction.end_time.asc(), Auction.id.asc())
        .limit(_clamp_limit(limit))
        .all()
    )
    _sync(db, rows)
    return rows


def get_homepage(db: Session, *, viewer: Optional[User] = None) -> Dict[str, List[Auction]]:
    """홈 섹션: 추천 / 진행중 / 곧 마감(24h) / 곧 시작."""
    now = R.now_utc()
    limit = R.HOMEPAGE_AUCTION_LIMIT
    base = _visible_filter(db.query(Auction).join(Shop, Auction.shop_id == Shop.id), viewer)
    ending_soon = (
        base.filter(
            Auction.status == AuctionStatus.ACTIVE,
            Auction.end_time > now,
            Auction.end_time <= now + timedelta(hours=24),
        )
        .order_by(Auction.end_time.asc(), Auction.id.asc())
        .limit(limit)
        .all()
    )
    upcoming = (
        base.filter(Auction.status == AuctionStatus.SCHEDULED)
        .order_by(Auction.start_time.asc(), Auction.id.asc())
        .limit(limit)
        .all()
    )
    return {
        "featured": get_featured(db, viewer=viewer, limit=limit),
        "live": get_live(db, viewer=viewer, limit=limit),
        "ending_soon": ending_soon,
        "upcoming": upcoming,
    }


def get_similar(db: Session, auction_id: int, *, viewer: Optional[User] = None, limit: Optional[int] = None) -> List[Auction]:
    auction = get_auction(db, str(auction_id), viewer)
    q = _visible_filter(db.query(Auction).join(Shop, Auction.shop_id == Shop.id), viewer).filter(
        Auction.id != auction.id,
        Auction.status.in_([AuctionStatus.ACTIVE, AuctionStatus.SCHEDULED]),
    )
    if auction.category_id is not None:
        q = q.filter(Auction.category_id == auction.category_id)
    else:
        q = q.filter(Auction.shop_id == auction.shop_id)
    return (
        q.order_by(Auction.end_time.asc(), Auction.id.asc())
        .limit(limit or R.SIMILAR_AUCTION_LIMIT)
        .all()
    )


def get_seller_items(db: Session, auction_id: int, *, viewer: Optional[User] = None, limit: Optional[int] = None) -> List[Auction]:
    auction = get_auction(db, str(auction_id), viewer)
    return (
        db.query(Auction)
        .filter(
            Auction.shop_id == auction.shop_id,
            Auction.id != auction.id,
            Auction.status.in_([AuctionStatus.ACTIVE, AuctionStatus.SCHEDULED]),
        )
        .order_by(Auction.end_time.asc(), Auction.id.asc())
        .limit(limit or R.SIMILAR_AUCTION_LIMIT)
        .all()
    )


def get_by_ids(db: Session, ids: Optional[List[int]], *, viewer: Optional[User] = None) -> List[Auction]:
    """중복 제거, 처음 등장 순서 유지. 없거나 숨김인 id 는 조용히 건너뜀."""
    if not ids:
        return []
    ordered: List[int] = list(dict.fromkeys(int(i) for i in ids))
    if len(ordered) > R.MAX_BULK_OPERATION_ITEMS:
        raise ValidationError(f"Too many items. Maximum {R.MAX_BULK_OPERATION_ITEMS} items allowed")
    rows = {a.id: a for a in db.query(Auction).filter(Auction.id.in_(ordered)).all()}
    out = [rows[i] for i in ordered if i in rows and can_view(rows[i], viewer)]
    _sync(db, out)
    return out


# =========================================================
# 👀 Watch / 내 입찰 / 낙찰
# =========================================================
def toggle_watch(db: Session, auction_id: int, *, user: User) -> Dict[str, Any]:
    auction = get_auction(db, str(auction_id), user)
    existing = (
        db.query(AuctionWatch)
        .filter(AuctionWatch.auction_id == auction.id, AuctionWatch.user_id == user.id)
        .first()
    )
    if existing:
        db.delete(existing)
        auction.watchers = max(0, int(auction.watchers or 0) - 1)
        watching = False
    else:
        db.add(AuctionWatch(auction_id=auction.id, user_id=user.id))
        auction.watchers = int(auction.watchers or 0) + 1
        watching = True
    db.add(auction)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Watch state changed concurrently, retry") from e
    return {"watching": watching, "watchers": int(auction.watchers)}


def get_watchlist(db: Session, *, user: User) -> List[Auction]:
    rows = (
        db.query(Auction)
        .join(AuctionWatch, AuctionWatch.auction_id == Auction.id)
        .filter(AuctionWatch.user_id == user.id)
        .order_by(AuctionWatch.created_at.desc(), AuctionWatch.id.desc())
        .all()
    )
    out = [a for a in rows if can_view(a, user)]
    _sync(db, out)
    return out


def get_my_bids(db: Session, *, user: User) -> List[Dict[str, Any]]:
    stats = (
        db.query(Bid.auction_id, func.max(Bid.amount), func.count(Bid.id))
        .filter(Bid.user_id == user.id)
        .group_by(Bid.auction_id)
        .all()
    )
    if not stats:
        return []
    auctions = {a.id: a for a in db.query(Auction).filter(Auction.id.in_([s[0] for s in stats])).all()}
    _sync(db, list(auctions.values()))
    out = []
    for auction_id, top, count in stats:
        a = auctions.get(auction_id)
        if a is None:
            continue
        out.append({
            "auction": a,
            "my_highest_bid": R.to_money(top),
            "bid_count": int(count),
            "is_winning": a.highest_bidder_id == user.id,
        })
    out.sort(key=lambda r: R.ensure_aware_utc(r["auction"].end_time))
    return out


def get_won(db: Session, *, user: User) -> List[Auction]:
    return (
        db.query(Auction)
        .filter(Auction.winner_id == user.id, Auction.status == AuctionStatus.ENDED)
        .order_by(Auction.ended_at.desc(), Auction.id.desc())
        .all()
    )


# =========================================================
# 📦 Bulk
# =========================================================
_BULK_PAST = {
    "start": "started",
    "end": "ended",
    "cancel": "cancelled",
    "feature": "featured",
    "unfeature": "unfeatured",
    "delete": "deleted",
    "update": "updated",
}


def _bulk_one(db: Session, auction: Auction, actor: User, action: str, updates: Optional[schemas.AuctionUpdate]) -> None:
    if action in ("feature", "unfeature"):
        if not is_admin(actor):
            raise PermissionDenied()
        auction.featured = action == "feature"
        if action == "unfeature":
            auction.featured_priority = 0
        db.add(auction)
    elif action == "start":
        lifecycle.start(db, auction)
    elif action == "end":
        lifecycle.end(db, auction)
    elif action == "cancel":
        lifecycle.cancel(db, auction)
    elif action == "delete":
        _delete(db, auction)
    elif action == "update":
        if updates is None:
            raise ValidationError("updates are required for bulk update")
        _apply_updates(db, auction, updates)
    else:
        raise ValidationError(f"Unknown bulk action: {action}")


def bulk_action(
    db: Session,
    *,
    actor: User,
    action: str,
    ids: List[int],
    updates: Optional[schemas.AuctionUpdate] = None,
) -> Dict[str, Any]:
    """
    항목별로 독립 처리 (부분 성공 허용).
    successful_ids + failed_ids 길이 합 == 요청 id 수.
    """
    if not ids:
        raise ValidationError("No items selected")
    if len(ids) > R.MAX_BULK_OPERATION_ITEMS:
        raise ValidationError(f"Too many items. Maximum {R.MAX_BULK_OPERATION_ITEMS} items allowed")
    if action not in _BULK_PAST:
        raise ValidationError(f"Unknown bulk action: {action}")

    successful: List[int] = []
    failed: List[int] = []
    errors: Dict[str, str] = {}

    for auction_id in ids:
        try:
            auction = db.get(Auction, auction_id)
            if auction is None or not can_view(auction, actor):
                raise NotFoundError("Auction not found")
            if not can_manage(auction, actor):
                raise PermissionDenied()
            _bulk_one(db, auction, actor, action, updates)
            db.commit()
            successful.append(auction_id)
        except (NotFoundError, ConflictError, ValidationError, PermissionDenied) as e:
            db.rollback()
            failed.append(auction_id)
            errors[str(auction_id)] = str(e)

    message = f"{len(successful)} item(s) {_BULK_PAST[action]} successfully"
    if failed:
        message += f", {len(failed)} failed"
    logger.info("[auctions.bulk] action=%s actor=%s ok=%s failed=%s", action, actor.id, len(successful), len(failed))
    return {
        "success": not failed or bool(successful),
        "message": message,
        "results": {"successful_ids": successful, "failed_ids": failed, "errors": errors},
    }


__all__ = [
    "validate_slug_format", "slug_available",
    "create_user", "get_user_by_email",
    "create_shop", "get_shop_by_slug", "admin_update_shop",
    "can_manage", "can_view",
    "get_auction", "create_auction", "update_auction", "delete_auction",
    "set_featured", "run_lifecycle_action",
    "list_auctions", "get_featured", "get_live", "get_homepage",
    "get_similar", "get_seller_items", "get_by_ids",
    "toggle_watch", "get_watchlist", "get_my_bids", "get_won",
    "bulk_action",
]
