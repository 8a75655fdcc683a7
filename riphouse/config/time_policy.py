# riphouse/config/time_policy.py
# 경매 시계 (테스트 오버라이드 지원)
# - 모든 반환값은 timezone-aware UTC(datetime)입니다. (DB 저장/비교에 안전)

from __future__ import annotations

from datetime import datetime, timezone

UTC = timezone.utc

# 테스트/진단에서 현재시각을 고정하기 위한 오버라이드 저장소
_TEST_NOW_UTC: datetime | None = None


def set_now_utc_for_testing(dt: datetime | None) -> None:
    """
    dt가 None이면 오버라이드 해제. dt가 naive면 UTC로 간주.
    """
    global _TEST_NOW_UTC
    if dt is None:
        _TEST_NOW_UTC = None
    else:
        _TEST_NOW_UTC = dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def is_now_overridden() -> bool:
    return _TEST_NOW_UTC is not None


def now_utc() -> datetime:
    if _TEST_NOW_UTC is not None:
        return _TEST_NOW_UTC
    return datetime.now(UTC)


def ensure_aware_utc(dt: datetime) -> datetime:
    """naive면 UTC로 붙여서 반환, aware면 그대로 UTC로 변환.

    SQLite 는 tz 정보를 버리므로 DB 에서 읽은 값은 항상 이걸 거친다.
    """
    return (dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC))


__all__ = [
    "UTC",
    "now_utc",
    "ensure_aware_utc",
    "set_now_utc_for_testing",
    "is_now_overridden",
]
