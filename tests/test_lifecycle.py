# tests/test_lifecycle.py
from datetime import timedelta

import pytest

from riphouse import models
from riphouse.config import project_rules as R
from riphouse.errors import ConflictError, UnpaidAuctions
from riphouse.logic import bidding, lifecycle, riplimit

Status = models.AuctionStatus


def _advance(delta: timedelta):
    R.set_test_now_utc(R.now_utc() + delta)


def _reload(db, auction):
    db.expire_all()
    return db.get(models.Auction, auction.id)


# ---------------------------------------------------------------------
# 시간 기반 전이
# ---------------------------------------------------------------------
def test_initial_status_follows_start_time():
    now = R.now_utc()
    assert lifecycle.initial_status(now - timedelta(seconds=1), now) == Status.ACTIVE
    assert lifecycle.initial_status(now, now) == Status.ACTIVE
    assert lifecycle.initial_status(now + timedelta(minutes=5), now) == Status.SCHEDULED


def test_scheduled_auction_becomes_active_when_read(client, factory, shop):
    auction = factory.auction(shop, starts_in=timedelta(hours=1), ends_in=timedelta(hours=3))
    assert auction.status == Status.SCHEDULED

    # 1) 시작 전 조회 → scheduled
    r = client.get(f"/auctions/{auction.slug}")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "scheduled"

    # 2) 시작 시각 이후 조회 → active
    _advance(timedelta(minutes=90))
    r = client.get(f"/auctions/{auction.id}")
    assert r.json()["data"]["status"] == "active"


def test_sweep_moves_due_auctions(db, factory, shop):
    upcoming = factory.auction(shop, starts_in=timedelta(minutes=10), ends_in=timedelta(hours=5))
    closing = factory.auction(shop, ends_in=timedelta(minutes=30))
    untouched = factory.auction(shop, ends_in=timedelta(hours=10))

    _advance(timedelta(hours=1))
    assert lifecycle.sweep_due_auctions(db) == 2

    assert _reload(db, upcoming).status == Status.ACTIVE
    assert _reload(db, closing).status == Status.ENDED
    assert _reload(db, untouched).status == Status.ACTIVE

    # 다시 돌려도 추가 전이 없음
    assert lifecycle.sweep_due_auctions(db) == 0


# ---------------------------------------------------------------------
# 마감 정산
# ---------------------------------------------------------------------
def test_settlement_with_reserve_met_keeps_hold_as_unpaid(db, factory, shop):
    auction = factory.auction(shop, reserve_price=1500)
    buyer = factory.user(balance=5000)
    bidding.place_bid(db, auction_id=auction.id, user_id=buyer.id, amount=1600)

    _advance(timedelta(hours=3))
    lifecycle.sweep_due_auctions(db)

    a = _reload(db, auction)
    assert a.status == Status.ENDED
    assert a.ended_at is not None
    assert a.winner_id == buyer.id
    assert a.is_sold is True

    acct = riplimit.get_account(db, buyer.id)
    assert (acct.available_balance, acct.blocked_balance) == (3400, 1600)
    assert acct.has_unpaid_auctions is True
    assert acct.unpaid_auction_ids == [auction.id]

    # 미결제가 있으면 다른 경매 입찰 불가
    other = factory.auction(shop, ends_in=timedelta(hours=2))
    with pytest.raises(UnpaidAuctions):
        riplimit.check_bid_hold(db, user_id=buyer.id, auction_id=other.id, bid_amount=1100)


def test_settlement_below_reserve_releases_leader(db, factory, shop):
    auction = factory.auction(shop, reserve_price=2000)
    buyer = factory.user(balance=5000)
    bid = bidding.place_bid(db, auction_id=auction.id, user_id=buyer.id, amount=1100)

    _advance(timedelta(hours=3))
    lifecycle.sweep_due_auctions(db)

    a = _reload(db, auction)
    assert a.status == Status.ENDED
    assert a.is_sold is False
    assert a.winner_id is None
    assert db.get(models.Bid, bid.id).is_winning is False

    acct = riplimit.get_account(db, buyer.id)
    assert (acct.available_balance, acct.blocked_balance) == (5000, 0)
    assert acct.has_unpaid_auctions is False
    released = (
        db.query(models.RipLimitTransaction)
        .filter_by(user_id=buyer.id, type=models.RipLimitTransactionType.BID_RELEASE)
        .one()
    )
    assert released.description == "RipLimit released: Reserve not met"


def test_settlement_without_bids(db, factory, shop):
    auction = factory.auction(shop)
    _advance(timedelta(hours=3))
    lifecycle.sweep_due_auctions(db)

    a = _reload(db, auction)
    assert a.status == Status.ENDED
    assert a.is_sold is False
    assert a.winner_id is None


# ---------------------------------------------------------------------
# 명시적 액션 (도메인)
# ---------------------------------------------------------------------
def test_explicit_transitions_reject_wrong_state(db, factory, shop):
    active = factory.auction(shop)
    with pytest.raises(ConflictError):
        lifecycle.start(db, active)
    db.rollback()

    scheduled = factory.auction(shop, starts_in=timedelta(hours=1), ends_in=timedelta(hours=3))
    with pytest.raises(ConflictError):
        lifecycle.end(db, scheduled)
    db.rollback()

    lifecycle.cancel(db, scheduled)
    db.commit()
    assert _reload(db, scheduled).status == Status.CANCELLED

    # 취소/종료는 종착 상태
    s = _reload(db, scheduled)
    with pytest.raises(ConflictError):
        lifecycle.cancel(db, s)
    db.rollback()


def test_manual_start_and_end(db, factory, shop):
    auction = factory.auction(shop, starts_in=timedelta(hours=1), ends_in=timedelta(hours=3))

    lifecycle.start(db, auction)
    db.commit()
    a = _reload(db, auction)
    assert a.status == Status.ACTIVE

    lifecycle.end(db, a)
    db.commit()
    a = _reload(db, auction)
    assert a.status == Status.ENDED
    assert a.is_sold is False


# ---------------------------------------------------------------------
# API 경유
# ---------------------------------------------------------------------
def test_cancel_with_bids_conflicts_without_bids_succeeds(client, db, factory, shop, seller, headers):
    with_bids = factory.auction(shop)
    no_bids = factory.auction(shop)
    buyer = factory.user(balance=5000)
    bidding.place_bid(db, auction_id=with_bids.id, user_id=buyer.id, amount=1100)

    # 1) 입찰 있는 경매 취소 → 409
    r = client.post(f"/auctions/{with_bids.id}/cancel", headers=headers(seller))
    assert r.status_code == 409
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "CONFLICT"
    assert _reload(db, with_bids).status == Status.ACTIVE

    # 2) 입찰 없는 경매 취소 → cancelled
    r = client.post(f"/auctions/{no_bids.id}/cancel", headers=headers(seller))
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "cancelled"


def test_lifecycle_actions_need_ownership(client, factory, shop, headers):
    auction = factory.auction(shop)
    stranger = factory.user("seller")

    r = client.post(f"/auctions/{auction.id}/end", headers=headers(stranger))
    assert r.status_code == 403
    assert r.json()["error"] == "Access denied"

    r = client.post(f"/auctions/{auction.id}/end")
    assert r.status_code == 401


def test_start_and_end_via_api(client, factory, shop, seller, headers):
    auction = factory.auction(shop, starts_in=timedelta(hours=1), ends_in=timedelta(hours=3))

    r = client.post(f"/auctions/{auction.id}/end", headers=headers(seller))
    assert r.status_code == 409

    r = client.post(f"/auctions/{auction.id}/start", headers=headers(seller))
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "active"

    r = client.post(f"/auctions/{auction.id}/start", headers=headers(seller))
    assert r.status_code == 409

    r = client.post(f"/auctions/{auction.id}/end", headers=headers(seller))
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "ended"


def test_delete_with_bids_conflicts(client, db, factory, shop, seller, headers):
    auction = factory.auction(shop)
    empty = factory.auction(shop)
    buyer = factory.user(balance=5000)
    bidding.place_bid(db, auction_id=auction.id, user_id=buyer.id, amount=1100)

    r = client.delete(f"/auctions/{auction.id}", headers=headers(seller))
    assert r.status_code == 409

    r = client.delete(f"/auctions/{empty.id}", headers=headers(seller))
    assert r.status_code == 200
    assert r.json()["data"] == {"id": empty.id, "deleted": True}
    assert client.get(f"/auctions/{empty.id}").status_code == 404
