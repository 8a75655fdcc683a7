# riphouse/database.py
import logging
import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, declarative_base, Session

logger = logging.getLogger(__name__)

# 환경변수에서 DATABASE_URL 읽기, 없으면 SQLite 기본값 사용
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./riphouse.db")


def is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def configure_sqlite(target: Engine) -> Engine:
    """
    SQLite 연결마다 FK 강제 켜기.
    카테고리 간선(category_parents)과 입찰의 ON DELETE CASCADE,
    RipLimit 홀드의 auction/account 참조가 이것 없이는 검사되지 않는다.
    """

    @event.listens_for(target, "connect")
    def _sqlite_on_connect(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    return target


# SQLite 전용 옵션 (다른 DB에서는 불필요)
connect_args = {"check_same_thread": False} if is_sqlite(DATABASE_URL) else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    # 입찰 락 대기 중 끊긴 연결 재사용 방지
    pool_pre_ping=not is_sqlite(DATABASE_URL),
)
if is_sqlite(DATABASE_URL):
    configure_sqlite(engine)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


logger.info("Using database: %s", make_url(DATABASE_URL).render_as_string(hide_password=True))
