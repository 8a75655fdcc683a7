# tests/test_database.py
import pytest
from sqlalchemy import create_engine, insert, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from riphouse.database import Base, configure_sqlite, is_sqlite
from riphouse.models import Category, category_parents


@pytest.fixture()
def fk_engine():
    eng = configure_sqlite(
        create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


def test_is_sqlite():
    assert is_sqlite("sqlite:///./riphouse.db")
    assert is_sqlite("sqlite://")
    assert not is_sqlite("postgresql://u:p@localhost/riphouse")


def test_foreign_keys_enabled_on_connect(fk_engine):
    with fk_engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1


def test_orphan_category_edge_rejected(fk_engine):
    # 존재하지 않는 카테고리를 가리키는 간선 → FK 위반
    with fk_engine.begin() as conn:
        with pytest.raises(IntegrityError):
            conn.execute(insert(category_parents).values(child_id=99, parent_id=98))


def test_category_delete_cascades_edges(fk_engine):
    with fk_engine.begin() as conn:
        conn.execute(insert(Category.__table__), [
            {"id": 1, "slug": "electronics", "name": "Electronics", "is_featured": False, "sort_order": 0},
            {"id": 2, "slug": "audio", "name": "Audio", "is_featured": False, "sort_order": 0},
        ])
        conn.execute(insert(category_parents).values(child_id=2, parent_id=1))

        # 1) 부모 삭제 → 간선도 같이 삭제
        conn.execute(Category.__table__.delete().where(Category.__table__.c.id == 1))
        assert conn.execute(select(category_parents)).all() == []
