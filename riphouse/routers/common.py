# riphouse/routers/common.py
# 도메인 예외 → HTTPException 번역 (detail 은 {"error", "code"})
from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import HTTPException, status

from riphouse.errors import (
    BidRejected,
    ConflictError,
    LedgerInvariantError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _http(status_code: int, message: str, code: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": message, "code": code})


def translate_error(e: Exception) -> NoReturn:
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, ValidationError):
        raise _http(status.HTTP_400_BAD_REQUEST, str(e), e.code)
    if isinstance(e, BidRejected) and e.code == "BidTooLow":
        raise _http(status.HTTP_400_BAD_REQUEST, str(e), e.code)
    if isinstance(e, PermissionDenied):
        raise _http(status.HTTP_403_FORBIDDEN, "Access denied", e.code)
    if isinstance(e, NotFoundError):
        raise _http(status.HTTP_404_NOT_FOUND, str(e), e.code)
    if isinstance(e, ConflictError):
        raise _http(status.HTTP_409_CONFLICT, str(e), e.code)
    if isinstance(e, LedgerInvariantError):
        # 이미 CRITICAL 로 기록됨
        raise _http(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error", e.code)
    logger.exception("unhandled error: %s", e)
    raise _http(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error", "INTERNAL_ERROR")
