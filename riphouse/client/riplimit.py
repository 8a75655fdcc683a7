# riphouse/client/riplimit.py
from __future__ import annotations

from typing import List, Optional

from riphouse.client.api import ApiClient, ValidationRejected, log_errors, unwrap
from riphouse.client.types import (
    Page,
    RipLimitAccount,
    RipLimitBalance,
    RipLimitStats,
    RipLimitTransaction,
)


class RipLimitService:
    """로그인한 사용자의 RipLimit."""

    def __init__(self, api: ApiClient):
        self.api = api

    @log_errors("riplimit.get_balance")
    def get_balance(self) -> RipLimitBalance:
        return RipLimitBalance.from_api(unwrap(self.api.get("/riplimit/balance")))

    @log_errors("riplimit.get_transactions")
    def get_transactions(
        self,
        limit: int = 50,
        offset: int = 0,
        tx_type: Optional[str] = None,
    ) -> List[RipLimitTransaction]:
        body = self.api.get("/riplimit/transactions", {"limit": limit, "offset": offset, "type": tx_type})
        return [RipLimitTransaction.from_api(t) for t in unwrap(body) or []]

    @log_errors("riplimit.purchase")
    def purchase(self, amount_inr: int, order_id: Optional[str] = None) -> RipLimitTransaction:
        body = self.api.post("/riplimit/purchase", {"amount": amount_inr, "orderId": order_id})
        return RipLimitTransaction.from_api(unwrap(body))

    @log_errors("riplimit.refund")
    def refund(self, amount: int, reason: Optional[str] = None) -> RipLimitTransaction:
        body = self.api.post("/riplimit/refund", {"amount": amount, "reason": reason})
        return RipLimitTransaction.from_api(unwrap(body))

    @log_errors("riplimit.pay_for_auction")
    def pay_for_auction(self, auction_id: int, order_id: Optional[str] = None) -> RipLimitTransaction:
        body = self.api.post(f"/riplimit/auctions/{int(auction_id)}/pay", {"orderId": order_id})
        return RipLimitTransaction.from_api(unwrap(body))


class RipLimitAdminService:
    def __init__(self, api: ApiClient):
        self.api = api

    @log_errors("riplimit_admin.get_stats")
    def get_stats(self) -> RipLimitStats:
        return RipLimitStats.from_api(unwrap(self.api.get("/admin/riplimit/stats")))

    @log_errors("riplimit_admin.list_accounts")
    def list_accounts(
        self,
        page: int = 1,
        page_size: int = 20,
        has_unpaid: Optional[bool] = None,
        is_blocked: Optional[bool] = None,
    ) -> Page[RipLimitAccount]:
        params = {"page": page, "pageSize": page_size}
        if has_unpaid is not None:
            params["hasUnpaid"] = "true" if has_unpaid else "false"
        if is_blocked is not None:
            params["isBlocked"] = "true" if is_blocked else "false"
        return Page.from_api(self.api.get("/admin/riplimit/users", params), RipLimitAccount.from_api)

    @log_errors("riplimit_admin.get_account")
    def get_account(self, user_id: int) -> RipLimitBalance:
        return RipLimitBalance.from_api(unwrap(self.api.get(f"/admin/riplimit/users/{int(user_id)}")))

    @log_errors("riplimit_admin.adjust")
    def adjust(self, user_id: int, amount: int, reason: str) -> RipLimitTransaction:
        """사유가 비어 있으면 요청 없이 ValidationRejected."""
        if not (reason or "").strip():
            raise ValidationRejected("Reason is required", code="VALIDATION_ERROR")
        body = self.api.post(
            f"/admin/riplimit/users/{int(user_id)}/adjust",
            {"amount": int(amount), "reason": reason.strip()},
        )
        return RipLimitTransaction.from_api(unwrap(body))

    @log_errors("riplimit_admin.add_strike")
    def add_strike(self, user_id: int) -> RipLimitAccount:
        return RipLimitAccount.from_api(unwrap(self.api.post(f"/admin/riplimit/users/{int(user_id)}/strike")))


__all__ = ["RipLimitService", "RipLimitAdminService"]
