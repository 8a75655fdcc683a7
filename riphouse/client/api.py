# riphouse/client/api.py
"""
RipHouse JSON API 클라이언트.

- get / post / patch / delete 는 봉투({success, data, ...})를 그대로 돌려준다.
- 실패 응답은 상태코드별 ApiError 하위 클래스로 바꿔서 던진다. 재시도는 하지 않는다.
- session 은 requests.Session 호환 객체면 무엇이든 (테스트에서는 FastAPI TestClient 주입)
"""
from __future__ import annotations

import functools
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# 에러 분류
# ---------------------------------------------------------------------
class ApiError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        code: Optional[str] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.payload = payload


class ValidationRejected(ApiError):
    """400 / 422: 입력을 고쳐야 함."""


class Unauthorized(ApiError):
    pass


class AccessDenied(ApiError):
    pass


class NotFound(ApiError):
    """없음 또는 보이지 않음 (둘은 구분하지 않는다)."""


class StateConflict(ApiError):
    pass


class TransientError(ApiError):
    """5xx / 네트워크 / 타임아웃 / 깨진 JSON."""


class BidRejected(ApiError):
    """입찰 거절. code: AuctionNotActive / SelfBid / BidTooLow / InsufficientBalance / AccountBlocked / UnpaidAuctions"""


_STATUS_ERRORS = {
    400: ValidationRejected,
    401: Unauthorized,
    403: AccessDenied,
    404: NotFound,
    409: StateConflict,
    422: ValidationRejected,
}


def error_for(status: int, message: str, code: Optional[str] = None, payload: Any = None) -> ApiError:
    if status >= 500:
        cls = TransientError
    else:
        cls = _STATUS_ERRORS.get(status, ApiError)
    return cls(message, status=status, code=code, payload=payload)


def log_errors(tag: str):
    """[component.operation] 태그로 기록하고 그대로 다시 던진다."""

    def deco(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except ApiError as e:
                logger.error("[%s] %s (status=%s code=%s)", tag, e.message, e.status, e.code)
                raise
        return wrapper

    return deco


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


# ---------------------------------------------------------------------
# 클라이언트
# ---------------------------------------------------------------------
class ApiClient:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        *,
        timeout: float = 10.0,
        token: Optional[str] = None,
        session: Any = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.token = token
        self.session = session if session is not None else requests.Session()

    def set_token(self, token: Optional[str]) -> None:
        self.token = token

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            resp = self.session.request(
                method,
                url,
                params=params or None,
                json=_jsonable(json) if json is not None else None,
                data=data,
                headers=self._headers(headers),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientError(f"{method} {path} failed: {e}") from e

        try:
            body = resp.json() if resp.content else {}
        except ValueError as e:
            if resp.status_code >= 400:
                raise error_for(resp.status_code, resp.text or f"HTTP {resp.status_code}") from e
            raise TransientError(f"{method} {path}: invalid JSON response", status=resp.status_code) from e

        if resp.status_code >= 400:
            message = f"HTTP {resp.status_code}"
            code = None
            if isinstance(body, dict):
                message = body.get("error") or message
                code = body.get("code")
            raise error_for(resp.status_code, message, code, body)

        if isinstance(body, dict) and body.get("success") is False:
            raise ApiError(body.get("error") or "Request failed", status=resp.status_code, code=body.get("code"), payload=body)
        return body

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None, *, headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request("POST", path, json=json, headers=headers)

    def patch(self, path: str, json: Any = None) -> Any:
        return self.request("PATCH", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def login(self, email: str, password: str) -> str:
        """토큰을 받아 이후 요청에 붙인다."""
        body = self.request("POST", "/auth/login", data={"username": email, "password": password})
        self.token = body["access_token"]
        return self.token


def unwrap(body: Any) -> Any:
    """봉투의 data (봉투가 아니면 그대로)."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


__all__ = [
    "ApiClient",
    "ApiError",
    "ValidationRejected",
    "Unauthorized",
    "AccessDenied",
    "NotFound",
    "StateConflict",
    "TransientError",
    "BidRejected",
    "error_for",
    "log_errors",
    "unwrap",
]
