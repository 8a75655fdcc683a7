# tests/conftest.py
from datetime import timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from riphouse import models
from riphouse.config import project_rules as R
from riphouse.database import Base, get_db
from riphouse.logic import riplimit
from riphouse.main import app
from riphouse.security import create_access_token

# bcrypt 는 느려서 팩토리 유저는 더미 해시 (로그인 테스트만 진짜 해시)
DUMMY_HASH = "not-a-real-hash"


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    # lifespan(워커) 없이
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(autouse=True)
def _reset_clock():
    R.set_test_now_utc(None)
    yield
    R.set_test_now_utc(None)


# ---------------------------------------------------------------------
# 팩토리
# ---------------------------------------------------------------------
class Factory:
    def __init__(self, db):
        self.db = db
        self._n = 0

    def _next(self) -> int:
        self._n += 1
        return self._n

    def user(self, role: str = "user", *, email: Optional[str] = None, balance: int = 0) -> models.User:
        n = self._next()
        u = models.User(
            email=email or f"{role}{n}@riphouse.in",
            hashed_password=DUMMY_HASH,
            name=f"{role} {n}",
            role=role,
            is_active=True,
        )
        self.db.add(u)
        self.db.commit()
        self.db.refresh(u)
        if balance:
            self.fund(u, balance)
        return u

    def fund(self, user: models.User, amount: int) -> None:
        riplimit.adjust(self.db, user_id=user.id, amount=amount, reason="test funding")
        self.db.commit()

    def shop(self, owner: models.User, *, verified: bool = True, banned: bool = False) -> models.Shop:
        n = self._next()
        s = models.Shop(slug=f"shop-{n}", name=f"Shop {n}", owner_id=owner.id, is_verified=verified, is_banned=banned)
        self.db.add(s)
        self.db.commit()
        self.db.refresh(s)
        return s

    def auction(
        self,
        shop: models.Shop,
        *,
        starting_price: int = 1000,
        bid_increment: int = 100,
        reserve_price: Optional[int] = None,
        starts_in: timedelta = timedelta(hours=-1),
        ends_in: timedelta = timedelta(hours=2),
        category_id: Optional[int] = None,
        featured: bool = False,
        slug: Optional[str] = None,
    ) -> models.Auction:
        n = self._next()
        now = R.now_utc()
        start = now + starts_in
        a = models.Auction(
            slug=slug or f"auction-{n}",
            name=f"Auction {n}",
            description="",
            starting_price=starting_price,
            current_price=starting_price,
            reserve_price=reserve_price,
            bid_increment=bid_increment,
            start_time=start,
            end_time=now + ends_in,
            status=models.AuctionStatus.ACTIVE if start <= now else models.AuctionStatus.SCHEDULED,
            seller_id=shop.owner_id,
            shop_id=shop.id,
            category_id=category_id,
            featured=featured,
        )
        self.db.add(a)
        self.db.commit()
        self.db.refresh(a)
        return a


@pytest.fixture()
def factory(db):
    return Factory(db)


def auth(user: models.User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def seller(factory):
    return factory.user("seller")


@pytest.fixture()
def admin(factory):
    return factory.user("admin")


@pytest.fixture()
def shop(factory, seller):
    return factory.shop(seller)


@pytest.fixture()
def headers():
    """headers(user) → Bearer 토큰 헤더."""
    return auth
