# tests/test_bidding.py
import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from riphouse import models
from riphouse.database import Base
from riphouse.errors import BidRejected, ConflictError, ValidationError
from riphouse.logic import bidding, riplimit
from riphouse.logic.bidding import KeyedLocks

from conftest import Factory


def _balance(db, user):
    db.expire_all()
    acct = riplimit.get_account(db, user.id)
    return int(acct.available_balance), int(acct.blocked_balance)


def _totals(db, *users):
    return sum(sum(_balance(db, u)) for u in users)


# ---------------------------------------------------------------------
# 최소 증분
# ---------------------------------------------------------------------
def test_bid_below_increment_rejected_then_increment_accepted(db, factory, shop):
    auction = factory.auction(shop, starting_price=1000, bid_increment=100)
    bidder = factory.user(balance=5000)

    # 1) 1050 → BidTooLow, 상태 변화 없음
    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=bidder.id, amount=1050)
    assert ei.value.code == "BidTooLow"
    assert "1100" in str(ei.value)

    db.expire_all()
    assert auction.current_price == 1000
    assert auction.total_bids == 0
    assert db.query(models.Bid).count() == 0
    assert _balance(db, bidder) == (5000, 0)

    # 2) 1100 → 수락
    bid = bidding.place_bid(db, auction_id=auction.id, user_id=bidder.id, amount=1100)
    db.expire_all()
    assert bid.amount == 1100
    assert bid.is_winning is True
    assert auction.current_price == 1100
    assert auction.total_bids == 1
    assert auction.highest_bidder_id == bidder.id
    assert _balance(db, bidder) == (3900, 1100)


def test_outbid_releases_previous_leader_in_same_step(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=3000)
    b = factory.user(balance=3000)

    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1500)
    assert _balance(db, a) == (1500, 1500)

    bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=1600)

    assert _balance(db, a) == (3000, 0)
    assert _balance(db, b) == (1400, 1600)
    db.expire_all()
    assert auction.current_price == 1600
    assert riplimit.get_blocked_bid(db, a.id, auction.id) is None

    release = (
        db.query(models.RipLimitTransaction)
        .filter_by(user_id=a.id, type=models.RipLimitTransactionType.BID_RELEASE)
        .one()
    )
    assert release.amount == 1500
    assert release.description == "RipLimit released: Outbid"

    winning = db.query(models.Bid).filter(models.Bid.is_winning.is_(True)).all()
    assert [w.user_id for w in winning] == [b.id]


def test_hold_and_release_conserve_totals(db, factory, shop):
    auction = factory.auction(shop)
    users = [factory.user(balance=10000) for _ in range(3)]
    before = _totals(db, *users)

    amount = 1100
    for i in range(9):
        bidding.place_bid(db, auction_id=auction.id, user_id=users[i % 3].id, amount=amount)
        amount += 100
        assert _totals(db, *users) == before

    # 선두만 홀드 보유
    db.expire_all()
    blocked = {u.id: _balance(db, u)[1] for u in users}
    assert blocked[auction.highest_bidder_id] == auction.current_price
    assert sum(blocked.values()) == auction.current_price


def test_leader_raising_own_bid_holds_only_the_difference(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=5000)

    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100)
    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1300)

    assert _balance(db, a) == (3700, 1300)
    blocks = (
        db.query(models.RipLimitTransaction)
        .filter_by(user_id=a.id, type=models.RipLimitTransactionType.BID_BLOCK)
        .order_by(models.RipLimitTransaction.id)
        .all()
    )
    assert [t.amount for t in blocks] == [-1100, -200]
    assert db.query(models.RipLimitBlockedBid).filter_by(user_id=a.id).count() == 1


# ---------------------------------------------------------------------
# 거절 사유
# ---------------------------------------------------------------------
def test_seller_cannot_bid_on_own_auction(db, factory, shop, seller):
    auction = factory.auction(shop)
    factory.fund(seller, 5000)

    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=seller.id, amount=1100)
    assert ei.value.code == "SelfBid"


def test_bid_on_scheduled_auction_rejected(db, factory, shop):
    auction = factory.auction(shop, starts_in=timedelta(hours=1), ends_in=timedelta(hours=3))
    bidder = factory.user(balance=5000)

    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=bidder.id, amount=1100)
    assert ei.value.code == "AuctionNotActive"


def test_bid_after_end_time_rejected_and_auction_closed(db, factory, shop):
    auction = factory.auction(shop, starts_in=timedelta(hours=-3), ends_in=timedelta(seconds=-1))
    bidder = factory.user(balance=5000)

    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=bidder.id, amount=1100)
    assert ei.value.code == "AuctionNotActive"

    db.expire_all()
    assert auction.status == models.AuctionStatus.ENDED
    assert auction.is_sold is False


def test_insufficient_balance_leaves_no_trace(db, factory, shop):
    auction = factory.auction(shop)
    poor = factory.user(balance=500)

    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=poor.id, amount=1100)
    assert ei.value.code == "InsufficientBalance"
    assert "Required: 1100, Available: 500" in str(ei.value)

    db.expire_all()
    assert db.query(models.Bid).count() == 0
    assert auction.total_bids == 0
    assert _balance(db, poor) == (500, 0)


def test_user_without_account_gets_insufficient_balance(db, factory, shop):
    auction = factory.auction(shop)
    nobody = factory.user()

    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=nobody.id, amount=1100)
    assert ei.value.code == "InsufficientBalance"


def test_blocked_and_unpaid_accounts_cannot_bid(db, factory, shop):
    auction = factory.auction(shop)
    blocked = factory.user(balance=5000)
    unpaid = factory.user(balance=5000)

    acct = riplimit.get_account(db, blocked.id)
    acct.is_blocked = True
    acct.block_reason = "Too many unpaid auctions (3 strikes)"
    riplimit.mark_auction_unpaid(db, user_id=unpaid.id, auction_id=999)
    db.commit()

    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=blocked.id, amount=1100)
    assert ei.value.code == "AccountBlocked"

    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=unpaid.id, amount=1100)
    assert ei.value.code == "UnpaidAuctions"


@pytest.mark.parametrize(
    "amount, is_auto, ceiling",
    [
        (1100.555, False, None),
        (1100, True, 1500.001),
        (float("nan"), False, None),
        (float("inf"), False, None),
        (-100, False, None),
        (0, False, None),
        ("1100", False, None),
        (1100, True, None),
        (1100, True, 1000),
    ],
)
def test_invalid_amounts_rejected_before_any_change(db, factory, shop, amount, is_auto, ceiling):
    auction = factory.auction(shop)
    bidder = factory.user(balance=5000)

    with pytest.raises(ValidationError):
        bidding.place_bid(
            db, auction_id=auction.id, user_id=bidder.id, amount=amount,
            is_auto_bid=is_auto, max_auto_bid_amount=ceiling,
        )
    assert db.query(models.Bid).count() == 0


def test_decimal_bid_accepted_and_hold_rounds_up(db, factory, shop):
    auction = factory.auction(shop, starting_price=1000, bid_increment=100)
    a = factory.user(balance=5000)
    b = factory.user(balance=5000)

    # 1) 소수 둘째 자리까지 허용, 홀드는 RipLimit 정수로 올림
    bid = bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100.5)
    db.expire_all()
    assert bid.amount == Decimal("1100.50")
    assert auction.current_price == Decimal("1100.50")
    assert auction.min_next_bid == Decimal("1200.50")
    assert _balance(db, a) == (3899, 1101)

    # 2) 1200 은 최소 증분 미달
    with pytest.raises(BidRejected) as ei:
        bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=1200)
    assert ei.value.code == "BidTooLow"
    assert "1200.5" in str(ei.value)

    # 3) 1200.5 수락, a 홀드 해제
    bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=Decimal("1200.5"))
    db.expire_all()
    assert auction.highest_bidder_id == b.id
    assert _balance(db, a) == (5000, 0)
    assert _balance(db, b) == (3799, 1201)


# ---------------------------------------------------------------------
# 자동입찰(프록시)
# ---------------------------------------------------------------------
def test_proxy_ceiling_answers_manual_challenger(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=5000)
    b = factory.user(balance=5000)

    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100, is_auto_bid=True, max_auto_bid_amount=2000)
    b_bid = bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=1200)

    db.expire_all()
    assert b_bid.is_winning is False
    assert auction.current_price == 1300
    assert auction.highest_bidder_id == a.id
    assert auction.total_bids == 3
    assert _balance(db, a) == (3700, 1300)
    assert _balance(db, b) == (5000, 0)

    system = db.query(models.Bid).filter_by(is_system=True).one()
    assert (system.user_id, system.amount) == (a.id, 1300)


def test_higher_ceiling_overtakes_lower_ceiling(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=5000)
    b = factory.user(balance=5000)

    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100, is_auto_bid=True, max_auto_bid_amount=2000)
    bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=1200, is_auto_bid=True, max_auto_bid_amount=1500)

    db.expire_all()
    # B 상한 1500 + 증분
    assert auction.current_price == 1600
    assert auction.highest_bidder_id == a.id
    assert _balance(db, a) == (3400, 1600)
    assert _balance(db, b) == (5000, 0)


def test_leader_with_higher_ceiling_defends(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=5000)
    b = factory.user(balance=5000)

    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100, is_auto_bid=True, max_auto_bid_amount=1500)
    bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=1200, is_auto_bid=True, max_auto_bid_amount=2000)

    db.expire_all()
    assert auction.current_price == 1600
    assert auction.highest_bidder_id == b.id
    assert _balance(db, b) == (3400, 1600)
    assert _balance(db, a) == (5000, 0)


def test_proxy_bid_skipped_when_holder_cannot_cover(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=1100)  # 상한은 높지만 잔액 부족
    b = factory.user(balance=5000)

    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100, is_auto_bid=True, max_auto_bid_amount=3000)
    bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=1200)

    db.expire_all()
    assert auction.highest_bidder_id == b.id
    assert auction.current_price == 1200
    assert db.query(models.Bid).filter_by(is_system=True).count() == 0
    assert _balance(db, a) == (1100, 0)


def test_unfunded_leader_defence_lets_funded_ceiling_answer(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=5000)
    b = factory.user(balance=1200)  # 상한 2000 이지만 1200 까지만 홀드 가능

    bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100, is_auto_bid=True, max_auto_bid_amount=1500)
    bidding.place_bid(db, auction_id=auction.id, user_id=b.id, amount=1200, is_auto_bid=True, max_auto_bid_amount=2000)

    # 1) b 의 방어 입찰(1600)은 홀드 실패 → a 의 상한이 1300 으로 응수
    db.expire_all()
    assert auction.highest_bidder_id == a.id
    assert auction.current_price == 1300

    system_bids = db.query(models.Bid).filter_by(is_system=True).all()
    assert [(x.user_id, x.amount) for x in system_bids] == [(a.id, 1300)]

    # 2) 홀드: a 만 1300 묶임, b 는 전액 해제
    assert _balance(db, a) == (3700, 1300)
    assert _balance(db, b) == (1200, 0)


def test_price_never_decreases(db, factory, shop):
    auction = factory.auction(shop)
    users = [factory.user(balance=20000) for _ in range(4)]

    bidding.place_bid(db, auction_id=auction.id, user_id=users[0].id, amount=1100, is_auto_bid=True, max_auto_bid_amount=2500)
    bidding.place_bid(db, auction_id=auction.id, user_id=users[1].id, amount=1400, is_auto_bid=True, max_auto_bid_amount=1900)
    bidding.place_bid(db, auction_id=auction.id, user_id=users[2].id, amount=2700)
    bidding.place_bid(db, auction_id=auction.id, user_id=users[3].id, amount=2800, is_auto_bid=True, max_auto_bid_amount=4000)

    amounts = [b.amount for b in db.query(models.Bid).order_by(models.Bid.id).all()]
    assert amounts == sorted(amounts)
    assert len(set(amounts)) == len(amounts)


# ---------------------------------------------------------------------
# 멱등성 / 동시성
# ---------------------------------------------------------------------
def test_same_idempotency_key_returns_original_bid(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=5000)
    other = factory.user(balance=5000)

    first = bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100, idempotency_key="k-1")
    again = bidding.place_bid(db, auction_id=auction.id, user_id=a.id, amount=1100, idempotency_key="k-1")

    assert again.id == first.id
    db.expire_all()
    assert auction.total_bids == 1
    assert _balance(db, a) == (3900, 1100)

    with pytest.raises(ConflictError):
        bidding.place_bid(db, auction_id=auction.id, user_id=other.id, amount=1200, idempotency_key="k-1")


def test_keyed_locks_share_per_key():
    locks = KeyedLocks()
    assert locks.get(1) is locks.get(1)
    assert locks.get(1) is not locks.get(2)


def test_concurrent_bids_are_serialized(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'bids.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=eng)
    Session = sessionmaker(bind=eng, autoflush=False, autocommit=False)

    setup = Session()
    seller = models.User(email="s@riphouse.in", hashed_password="x", role="seller")
    setup.add(seller)
    setup.commit()
    shop = models.Shop(slug="s", name="S", owner_id=seller.id, is_verified=True)
    setup.add(shop)
    setup.commit()
    f = Factory(setup)
    auction = f.auction(shop)
    bidders = [f.user(balance=10000) for _ in range(5)]
    auction_id = auction.id
    bidder_ids = [u.id for u in bidders]
    setup.close()

    outcomes = {}

    def worker(user_id, amount):
        s = Session()
        try:
            bidding.place_bid(s, auction_id=auction_id, user_id=user_id, amount=amount)
            outcomes[user_id] = "ok"
        except BidRejected as e:
            outcomes[user_id] = e.code
        finally:
            s.close()

    threads = [
        threading.Thread(target=worker, args=(uid, 1100 + i * 100))
        for i, uid in enumerate(bidder_ids)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    check = Session()
    try:
        accepted = [b.amount for b in check.query(models.Bid).order_by(models.Bid.id).all()]
        a = check.get(models.Auction, auction_id)
        assert accepted == sorted(accepted)
        assert a.current_price == 1500
        assert a.total_bids == len(accepted)
        assert set(outcomes.values()) <= {"ok", "BidTooLow"}
        blocked = sum(int(x.blocked_balance) for x in check.query(models.RipLimitAccount).all())
        assert blocked == 1500
    finally:
        check.close()
        eng.dispose()


# ---------------------------------------------------------------------
# 입찰 이력
# ---------------------------------------------------------------------
def test_list_bids_cursor_pagination(db, factory, shop):
    auction = factory.auction(shop)
    a = factory.user(balance=10000)
    b = factory.user(balance=10000)
    for i, u in enumerate([a, b, a]):
        bidding.place_bid(db, auction_id=auction.id, user_id=u.id, amount=1100 + i * 100)

    items, has_more, cursor = bidding.list_bids(db, auction.id, limit=2)
    assert [x.amount for x in items] == [1300, 1200]
    assert has_more is True
    assert cursor == items[-1].id

    items, has_more, cursor = bidding.list_bids(db, auction.id, limit=2, start_after=cursor)
    assert [x.amount for x in items] == [1100]
    assert has_more is False
    assert cursor is None

    items, _, _ = bidding.list_bids(db, auction.id, limit=10, sort_order="asc")
    assert [x.amount for x in items] == [1100, 1200, 1300]
