"""
Airtel Money gateway (Merchant and Standard APIs, Zambia).

Airtel addresses every request by a transaction id we generate. That id
is what status polls, refunds and webhooks refer to; Airtel's own
``airtel_money_id`` is kept in the raw response.
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

COUNTRY = "ZM"
HISTORY_PAGE_SIZE = 100


class AirtelGateway(BaseGateway):
    code = ProviderCode.AIRTEL

    STATUS_MAP = {
        "TS": TransactionStatus.COMPLETED,
        "TXN_SUCCESS": TransactionStatus.COMPLETED,
        "TF": TransactionStatus.FAILED,
        "TXN_FAILED": TransactionStatus.FAILED,
        "TP": TransactionStatus.PENDING,
        "TXN_PENDING": TransactionStatus.PENDING,
        "TC": TransactionStatus.CANCELLED,
        "TXN_CANCELLED": TransactionStatus.CANCELLED,
    }

    def default_headers(self) -> dict[str, str]:
        headers = super().default_headers()
        headers["X-Country"] = COUNTRY
        headers["X-Currency"] = self.provider.currency
        return headers

    def fetch_token(self) -> tuple[str, int]:
        data = self._json(
            self._request(
                "POST",
                "/auth/oauth2/token",
                json={
                    "client_id": self.provider.api_key,
                    "client_secret": self.provider.api_secret,
                    "grant_type": "client_credentials",
                },
                authenticated=False,
            )
        )
        if not data.get("access_token"):
            raise ProviderRejectedError(
                "Airtel token response carried no access_token",
                error_code="PROVIDER_AUTH_FAILED",
                provider_code=self.code,
            )
        return data["access_token"], int(data.get("expires_in", 3600))

    @staticmethod
    def _new_transaction_id() -> str:
        return uuid.uuid4().hex[:20].upper()

    @staticmethod
    def _transaction_from(data: Mapping[str, Any]) -> dict[str, Any]:
        body = data.get("data") or {}
        transaction = body.get("transaction") if isinstance(body, dict) else None
        return transaction or {}

    def request_payment(self, request: PaymentRequest) -> GatewayResult:
        transaction_id = self._new_transaction_id()
        data = self._json(
            self._request(
                "POST",
                "/merchant/v1/payments/",
                json={
                    "reference": request.external_id,
                    "subscriber": {
                        "country": COUNTRY,
                        "currency": request.currency,
                        "msisdn": request.phone,
                    },
                    "transaction": {
                        "amount": str(request.amount),
                        "country": COUNTRY,
                        "currency": request.currency,
                        "id": transaction_id,
                    },
                },
            )
        )
        transaction = self._transaction_from(data)
        status_block = data.get("status") if isinstance(data.get("status"), dict) else {}
        return GatewayResult(
            reference=str(transaction.get("id") or transaction_id),
            status=TransactionStatus.PENDING,
            message=status_block.get("message") or "Payment request sent to customer",
            raw=data,
        )

    def request_payout(self, request: PaymentRequest) -> GatewayResult:
        transaction_id = self._new_transaction_id()
        data = self._json(
            self._request(
                "POST",
                "/standard/v1/disbursements/",
                json={
                    "payee": {"msisdn": request.phone},
                    "reference": request.external_id,
                    "transaction": {
                        "amount": str(request.amount),
                        "country": COUNTRY,
                        "currency": request.currency,
                        "id": transaction_id,
                    },
                },
            )
        )
        transaction = self._transaction_from(data)
        return GatewayResult(
            reference=str(transaction.get("id") or transaction_id),
            status=TransactionStatus.PENDING,
            message="Payout submitted",
            raw=data,
        )

    def request_refund(self, request: RefundRequest) -> GatewayResult:
        transaction_id = self._new_transaction_id()
        data = self._json(
            self._request(
                "POST",
                "/standard/v1/payments/refund",
                json={
                    "transaction": {
                        "airtel_money_id": request.original_reference,
                        "amount": str(request.amount),
                        "country": COUNTRY,
                        "currency": request.currency,
                        "id": transaction_id,
                    },
                },
            )
        )
        transaction = self._transaction_from(data)
        return GatewayResult(
            reference=str(transaction.get("id") or transaction_id),
            status=TransactionStatus.PENDING,
            message="Refund submitted",
            raw=data,
        )

    def check_status(self, reference: str) -> StatusResult:
        data = self._json(self._request("GET", f"/standard/v1/payments/{reference}"))
        transaction = self._transaction_from(data)
        return StatusResult(
            reference=reference,
            status=self.map_status(transaction.get("status")),
            amount=optional_money(transaction.get("amount")),
            currency=transaction.get("currency", ""),
            reason=transaction.get("message") or "",
            raw=data,
        )

    def get_balance(self) -> AccountBalance:
        data = self._json(self._request("GET", "/standard/v1/users/balance"))
        balance = (data.get("data") or {}).get("balance") or {}
        return AccountBalance(
            amount=to_money(balance.get("value") or 0),
            currency=balance.get("currency", self.provider.currency),
            raw=data,
        )

    def get_transaction_history(self, start: date, end: date) -> list[StatementLine]:
        lines: list[StatementLine] = []
        offset = 0
        while True:
            data = self._json(
                self._request(
                    "GET",
                    "/standard/v1/payments/",
                    params={
                        "limit": HISTORY_PAGE_SIZE,
                        "offset": offset,
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
            if len(items) < HISTORY_PAGE_SIZE:
                return lines
            offset += HISTORY_PAGE_SIZE

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        transaction = payload.get("transaction") or {}
        raw_status = transaction.get("status") or transaction.get("status_code")
        return WebhookEvent(
            reference=str(transaction.get("id") or ""),
            status=self.map_status(raw_status),
            amount=optional_money(transaction.get("amount")),
            currency=transaction.get("currency", ""),
            message=transaction.get("message") or "",
            event_type="payment.status.changed",
            event_id=str(payload.get("event_id") or ""),
        )
