# riphouse/errors.py
from __future__ import annotations


# ---------------------------------------------------------------------
# 도메인 예외 (라우터의 _translate_error 가 HTTP 상태로 번역)
# ---------------------------------------------------------------------
class NotFoundError(Exception):
    code = "NOT_FOUND"


class ConflictError(Exception):
    code = "CONFLICT"


class ValidationError(Exception):
    code = "VALIDATION_ERROR"


class PermissionDenied(Exception):
    code = "ACCESS_DENIED"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class BidRejected(ConflictError):
    """입찰 거절. code 는 AuctionNotActive / SelfBid / BidTooLow / InsufficientBalance ..."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


# ---- RipLimit 원장 ------------------------------------------------------------
class LedgerError(ConflictError):
    code = "LEDGER_ERROR"


class InsufficientBalance(LedgerError):
    code = "InsufficientBalance"


class AccountBlocked(LedgerError):
    code = "AccountBlocked"


class UnpaidAuctions(LedgerError):
    code = "UnpaidAuctions"


class LedgerInvariantError(RuntimeError):
    """잔액 버킷이 음수가 되거나 blocked 보다 큰 release. 장부 버그라 사용자에게 노출 안 함."""

    code = "LEDGER_INVARIANT"


__all__ = [
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "PermissionDenied",
    "BidRejected",
    "LedgerError",
    "InsufficientBalance",
    "AccountBlocked",
    "UnpaidAuctions",
    "LedgerInvariantError",
]
