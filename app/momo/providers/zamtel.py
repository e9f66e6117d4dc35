"""
Zamtel Kwacha gateway.

Zamtel uses a password-grant OAuth token plus a static API key header.
Payments and payouts carry a transaction id we generate; refunds are
answered with a separate ``refund_transaction_id``.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from core.helpers import to_money

from momo.exceptions import ProviderRejectedError
from momo.providers.base import BaseGateway
from momo.providers.types import (
    AccountBalance,
    GatewayResult,
    StatementLine,
    StatusResult,
    WebhookEvent,
    optional_money,
)
from momo.state_machines import ProviderCode, TransactionStatus

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import date
    from typing import Any

    from momo.providers.types import PaymentRequest, RefundRequest

HISTORY_PAGE_SIZE = 100


class ZamtelGateway(BaseGateway):
    code = ProviderCode.ZAMTEL

    STATUS_MAP = {
        "SUCCESS": TransactionStatus.COMPLETED,
        "COMPLETED": TransactionStatus.COMPLETED,
        "FAILED": TransactionStatus.FAILED,
        "DECLINED": TransactionStatus.FAILED,
        "PENDING": TransactionStatus.PENDING,
        "PROCESSING": TransactionStatus.PENDING,
        "CANCELLED": TransactionStatus.CANCELLED,
        "TIMEOUT": TransactionStatus.CANCELLED,
    }

    def default_headers(self) -> dict[str, str]:
        headers = super().default_headers()
        headers["X-API-Key"] = self.provider.api_key
        headers["X-Country-Code"] = "ZM"
        return headers

    def fetch_token(self) -> tuple[str, int]:
        data = self._json(
            self._request(
                "POST",
                "/oauth/token",
                json={
                    "username": self.provider.api_key,
                    "password": self.provider.api_secret,
                    "grant_type": "password",
                },
                authenticated=False,
            )
        )
        if not data.get("access_token"):
            raise ProviderRejectedError(
                "Zamtel token response carried no access_token",
                error_code="PROVIDER_AUTH_FAILED",
                provider_code=self.code,
            )
        return data["access_token"], int(data.get("expires_in", 3600))

    def _submit(self, path: str, request: PaymentRequest, default_message: str) -> GatewayResult:
        transaction_id = f"ZAMTEL-{uuid.uuid4().hex[:16].upper()}"
        data = self._json(
            self._request(
                "POST",
                path,
                json={
                    "amount": str(request.amount),
                    "currency": request.currency,
                    "msisdn": request.phone,
                    "reference": request.external_id,
                    "transaction_id": transaction_id,
                    "description": request.description or default_message,
                    "callback_url": request.callback_url or None,
                },
            )
        )
        return GatewayResult(
            reference=str(data.get("transaction_id") or transaction_id),
            status=TransactionStatus.PENDING,
            message=data.get("message") or default_message,
            raw=data,
        )

    def request_payment(self, request: PaymentRequest) -> GatewayResult:
        return self._submit("/api/v1/payments/request", request, "Payment request")

    def request_payout(self, request: PaymentRequest) -> GatewayResult:
        return self._submit("/api/v1/disbursements/send", request, "Payout request")

    def request_refund(self, request: RefundRequest) -> GatewayResult:
        data = self._json(
            self._request(
                "POST",
                "/api/v1/payments/refund",
                json={
                    "original_transaction_id": request.original_reference,
                    "amount": str(request.amount),
                    "currency": request.currency,
                    "reason": request.description or "Customer refund request",
                    "reference": request.external_id,
                },
            )
        )
        reference = data.get("refund_transaction_id")
        if not reference:
            raise ProviderRejectedError(
                "Zamtel accepted the refund but returned no refund_transaction_id",
                provider_code=self.code,
            )
        return GatewayResult(
            reference=str(reference),
            status=TransactionStatus.PENDING,
            message=data.get("message") or "Refund request initiated",
            raw=data,
        )

    def check_status(self, reference: str) -> StatusResult:
        data = self._json(self._request("GET", f"/api/v1/payments/status/{reference}"))
        return StatusResult(
            reference=reference,
            status=self.map_status(data.get("status")),
            amount=optional_money(data.get("amount")),
            currency=data.get("currency", ""),
            reason=data.get("message") or "",
            raw=data,
        )

    def get_balance(self) -> AccountBalance:
        data = self._json(self._request("GET", "/api/v1/account/balance"))
        return AccountBalance(
            amount=to_money(data.get("balance") or 0),
            currency=data.get("currency", self.provider.currency),
            raw=data,
        )

    def get_transaction_history(self, start: date, end: date) -> list[StatementLine]:
        lines: list[StatementLine] = []
        page = 1
        while True:
            data = self._json(
                self._request(
                    "GET",
                    "/api/v1/transactions",
                    params={
                        "limit": HISTORY_PAGE_SIZE,
                        "page": page,
                        "start_date": start.isoformat(),
                        "end_date": end.isoformat(),
                    },
                )
            )
            items = data.get("data") or []
            for item in items:
                try:
                    lines.append(StatementLine.from_dict(item))
                except ValueError:
                    self.logger.warning(
                        "Skipping unreadable history item",
                        extra={"provider": self.code, "item": item},
                    )
            pagination = data.get("pagination") or {}
            last_page = pagination.get("last_page") or pagination.get("total_pages")
            if len(items) < HISTORY_PAGE_SIZE or (last_page and page >= int(last_page)):
                return lines
            page += 1

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        return WebhookEvent(
            reference=str(payload.get("transaction_id") or ""),
            status=self.map_status(payload.get("status")),
            amount=optional_money(payload.get("amount")),
            currency=payload.get("currency", ""),
            message=payload.get("message") or "",
            event_type=payload.get("event_type") or "payment.status.changed",
            event_id=str(payload.get("event_id") or ""),
        )
