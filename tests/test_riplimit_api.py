# tests/test_riplimit_api.py
from datetime import timedelta

from riphouse.config import project_rules as R
from riphouse.config.feature_flags import FEATURE_FLAGS
from riphouse.logic import bidding, lifecycle


def _win(db, factory, shop, buyer, amount=1600):
    auction = factory.auction(shop)
    bidding.place_bid(db, auction_id=auction.id, user_id=buyer.id, amount=amount)
    R.set_test_now_utc(R.now_utc() + timedelta(hours=3))
    lifecycle.sweep_due_auctions(db)
    return auction


# ---------------------------------------------------------------------
# 사용자
# ---------------------------------------------------------------------
def test_balance_requires_login(client):
    r = client.get("/riplimit/balance")
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


def test_balance_for_new_user_is_zero(client, factory, headers):
    u = factory.user()
    data = client.get("/riplimit/balance", headers=headers(u)).json()["data"]
    assert data["availableBalance"] == 0
    assert data["blockedBalance"] == 0
    assert data["blockedBids"] == []
    assert data["isBlocked"] is False


def test_purchase_then_balance_and_transactions(client, factory, headers):
    u = factory.user()

    # 1) 충전
    r = client.post("/riplimit/purchase", json={"amount": 2500}, headers=headers(u))
    assert r.status_code == 201
    tx = r.json()["data"]
    assert tx["type"] == "PURCHASE"
    assert tx["amount"] == 2500
    assert tx["balanceAfter"] == 2500
    assert tx["orderId"].startswith("RL-")

    # 2) 잔액
    bal = client.get("/riplimit/balance", headers=headers(u)).json()["data"]
    assert bal["availableBalance"] == 2500
    assert bal["totalBalance"] == 2500
    assert bal["totalBalanceInr"] == 2500.0

    # 3) 최소 금액 미만 → 400
    r = client.post("/riplimit/purchase", json={"amount": 50}, headers=headers(u))
    assert r.status_code == 400

    # 4) 거래 내역 (최신순)
    rows = client.get("/riplimit/transactions", headers=headers(u)).json()["data"]
    assert [t["type"] for t in rows] == ["PURCHASE"]
    assert client.get("/riplimit/transactions", params={"type": "refund"}, headers=headers(u)).json()["data"] == []
    assert client.get("/riplimit/transactions", params={"type": "nope"}, headers=headers(u)).status_code == 400


def test_purchase_disabled_by_flag(client, factory, headers, monkeypatch):
    monkeypatch.setitem(FEATURE_FLAGS, "ALLOW_DIRECT_PURCHASE", False)
    r = client.post("/riplimit/purchase", json={"amount": 1000}, headers=headers(factory.user()))
    assert r.status_code == 403
    assert r.json()["code"] == "FEATURE_DISABLED"


def test_refund(client, factory, headers):
    u = factory.user(balance=1000)

    r = client.post("/riplimit/refund", json={"amount": 300}, headers=headers(u))
    assert r.status_code == 200
    assert r.json()["data"]["type"] == "REFUND"
    assert r.json()["data"]["amount"] == -300

    r = client.post("/riplimit/refund", json={"amount": 5000}, headers=headers(u))
    assert r.status_code == 409
    assert r.json()["code"] == "InsufficientBalance"


def test_blocked_bid_shows_in_balance(client, db, factory, shop, headers):
    auction = factory.auction(shop)
    u = factory.user(balance=3000)
    bidding.place_bid(db, auction_id=auction.id, user_id=u.id, amount=1200)

    data = client.get("/riplimit/balance", headers=headers(u)).json()["data"]
    assert data["availableBalance"] == 1800
    assert data["blockedBalance"] == 1200
    assert data["blockedBids"] == [
        {"auctionId": auction.id, "bidId": data["blockedBids"][0]["bidId"], "amount": 1200, "bidAmount": 1200}
    ]


# ---------------------------------------------------------------------
# 낙찰 결제
# ---------------------------------------------------------------------
def test_winner_pays_for_auction(client, db, factory, shop, headers):
    buyer = factory.user(balance=5000)
    auction = _win(db, factory, shop, buyer)

    # 1) 미결제 상태
    bal = client.get("/riplimit/balance", headers=headers(buyer)).json()["data"]
    assert bal["hasUnpaidAuctions"] is True
    assert bal["unpaidAuctionIds"] == [auction.id]

    # 2) 다른 사람은 결제 불가
    r = client.post(f"/riplimit/auctions/{auction.id}/pay", headers=headers(factory.user()))
    assert r.status_code == 403

    # 3) 낙찰자 결제
    r = client.post(f"/riplimit/auctions/{auction.id}/pay", json={"orderId": "ORD-77"}, headers=headers(buyer))
    assert r.status_code == 200
    tx = r.json()["data"]
    assert tx["type"] == "AUCTION_PAYMENT"
    assert tx["amount"] == -1600
    assert tx["orderId"] == "ORD-77"

    bal = client.get("/riplimit/balance", headers=headers(buyer)).json()["data"]
    assert (bal["availableBalance"], bal["blockedBalance"]) == (3400, 0)
    assert bal["hasUnpaidAuctions"] is False

    # 4) 두 번째 결제 → 홀드 없음
    r = client.post(f"/riplimit/auctions/{auction.id}/pay", headers=headers(buyer))
    assert r.status_code == 404


def test_pay_requires_ended_sold_auction(client, factory, shop, headers):
    auction = factory.auction(shop)
    u = factory.user(balance=5000)

    r = client.post(f"/riplimit/auctions/{auction.id}/pay", headers=headers(u))
    assert r.status_code == 409
    assert r.json()["error"] == "Auction is not awaiting payment"

    assert client.post("/riplimit/auctions/99999/pay", headers=headers(u)).status_code == 404


# ---------------------------------------------------------------------
# 관리자
# ---------------------------------------------------------------------
def test_admin_endpoints_need_admin(client, factory, headers):
    u = factory.user()
    assert client.get("/admin/riplimit/stats", headers=headers(u)).status_code == 403
    assert client.post(
        f"/admin/riplimit/users/{u.id}/adjust", json={"amount": 100, "reason": "x"}, headers=headers(u)
    ).status_code == 403


def test_admin_adjust_chargeback(client, factory, admin, headers):
    u = factory.user(balance=2000)

    r = client.post(
        f"/admin/riplimit/users/{u.id}/adjust",
        json={"amount": -500, "reason": "chargeback"},
        headers=headers(admin),
    )
    assert r.status_code == 200
    tx = r.json()["data"]
    assert tx["type"] == "ADMIN_ADJUST"
    assert tx["amount"] == -500
    assert tx["reason"] == "chargeback"
    assert tx["actorId"] == admin.id

    detail = client.get(f"/admin/riplimit/users/{u.id}", headers=headers(admin)).json()["data"]
    assert detail["availableBalance"] == 1500


def test_admin_adjust_without_reason_is_rejected(client, factory, admin, headers):
    u = factory.user(balance=2000)

    for body in ({"amount": -500}, {"amount": -500, "reason": "  "}):
        r = client.post(f"/admin/riplimit/users/{u.id}/adjust", json=body, headers=headers(admin))
        assert r.status_code == 400
        assert r.json()["error"] == "Reason is required"

    rows = client.get("/riplimit/transactions", headers=headers(u)).json()["data"]
    # 테스트 충전 1건만
    assert len(rows) == 1
    assert client.get("/riplimit/balance", headers=headers(u)).json()["data"]["availableBalance"] == 2000


def test_admin_adjust_unknown_user_and_negative(client, factory, admin, headers):
    r = client.post("/admin/riplimit/users/99999/adjust", json={"amount": 10, "reason": "x"}, headers=headers(admin))
    assert r.status_code == 404

    u = factory.user(balance=100)
    r = client.post(
        f"/admin/riplimit/users/{u.id}/adjust", json={"amount": -101, "reason": "chargeback"}, headers=headers(admin)
    )
    assert r.status_code == 409

    assert client.get("/admin/riplimit/users/99999", headers=headers(admin)).status_code == 404


def test_admin_strikes_block_account(client, db, factory, shop, admin, headers):
    u = factory.user(balance=5000)

    for n in (1, 2, 3):
        r = client.post(f"/admin/riplimit/users/{u.id}/strike", headers=headers(admin))
        assert r.json()["data"]["strikes"] == n

    acct = r.json()["data"]
    assert acct["isBlocked"] is True
    assert acct["blockReason"] == "Too many unpaid auctions (3 strikes)"

    auction = factory.auction(shop)
    r = client.post(f"/auctions/{auction.id}/bid", json={"amount": 1100}, headers=headers(u))
    assert r.status_code == 409
    assert r.json()["code"] == "AccountBlocked"


def test_admin_stats_and_account_list(client, factory, admin, headers):
    a = factory.user(balance=1000)
    b = factory.user(balance=3000)

    stats = client.get("/admin/riplimit/stats", headers=headers(admin)).json()["data"]
    assert stats["totalAccounts"] == 2
    assert stats["totalAvailable"] == 4000
    assert stats["totalOutstanding"] == 4000
    assert stats["blockedAccounts"] == 0

    body = client.get("/admin/riplimit/users", params={"pageSize": 1}, headers=headers(admin)).json()
    assert [x["userId"] for x in body["data"]] == [a.id]
    assert body["pagination"] == {"page": 1, "pageSize": 1, "total": 2, "totalPages": 2}

    body = client.get("/admin/riplimit/users", params={"page": 2, "pageSize": 1}, headers=headers(admin)).json()
    assert [x["userId"] for x in body["data"]] == [b.id]

    body = client.get("/admin/riplimit/users", params={"isBlocked": "true"}, headers=headers(admin)).json()
    assert body["data"] == []
