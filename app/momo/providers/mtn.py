"""
MTN Mobile Money gateway (Collection and Disbursement APIs).

MTN acknowledges a request-to-pay with HTTP 202 and no body; the
X-Reference-Id we generate is the id used for status polls and webhooks.
MTN publishes no transaction-history endpoint, so reconciliation for
MTN needs an uploaded statement.
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
    PaymentRequest,
    StatusResult,
    WebhookEvent,
    optional_money,
)
from momo.state_machines import ProviderCode, TransactionStatus

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import date
    from typing import Any

    from momo.providers.types import RefundRequest, StatementLine


class MtnGateway(BaseGateway):
    code = ProviderCode.MTN

    STATUS_MAP = {
        "SUCCESSFUL": TransactionStatus.COMPLETED,
        "FAILED": TransactionStatus.FAILED,
        "REJECTED": TransactionStatus.FAILED,
        "PENDING": TransactionStatus.PENDING,
        "TIMEOUT": TransactionStatus.CANCELLED,
    }

    def default_headers(self) -> dict[str, str]:
        headers = super().default_headers()
        headers["X-Target-Environment"] = (
            "sandbox" if self.provider.is_sandbox else "mtnzambia"
        )
        headers["Ocp-Apim-Subscription-Key"] = self.provider.setting(
            "subscription_key", self.provider.api_key
        )
        return headers

    def fetch_token(self) -> tuple[str, int]:
        response = self._request(
            "POST",
            "/collection/token/",
            auth=(self.provider.api_key, self.provider.api_secret),
            authenticated=False,
        )
        data = self._json(response)
        if not data.get("access_token"):
            raise ProviderRejectedError(
                "MTN token response carried no access_token",
                error_code="PROVIDER_AUTH_FAILED",
                provider_code=self.code,
            )
        return data["access_token"], int(data.get("expires_in", 3600))

    def request_payment(self, request: PaymentRequest) -> GatewayResult:
        reference_id = str(uuid.uuid4())
        headers = {"X-Reference-Id": reference_id}
        if request.callback_url:
            headers["X-Callback-Url"] = request.callback_url

        self._request(
            "POST",
            "/collection/v1_0/requesttopay",
            json={
                "amount": str(request.amount),
                "currency": request.currency,
                "externalId": request.external_id,
                "payer": {"partyIdType": "MSISDN", "partyId": request.phone},
                "payerMessage": request.description or "Payment request",
                "payeeNote": request.description or "Payment request",
            },
            headers=headers,
        )
        return GatewayResult(
            reference=reference_id,
            status=TransactionStatus.PENDING,
            message="Payment request sent to customer",
        )

    def request_payout(self, request: PaymentRequest) -> GatewayResult:
        reference_id = str(uuid.uuid4())
        headers = {"X-Reference-Id": reference_id}
        if request.callback_url:
            headers["X-Callback-Url"] = request.callback_url

        self._request(
            "POST",
            "/disbursement/v1_0/transfer",
            json={
                "amount": str(request.amount),
                "currency": request.currency,
                "externalId": request.external_id,
                "payee": {"partyIdType": "MSISDN", "partyId": request.phone},
                "payerMessage": request.description or "Payout",
                "payeeNote": request.description or "Payout",
            },
            headers=headers,
        )
        return GatewayResult(
            reference=reference_id,
            status=TransactionStatus.PENDING,
            message="Payout submitted",
        )

    def request_refund(self, request: RefundRequest) -> GatewayResult:
        # MTN has no refund call; the money goes back as a transfer
        return self.request_payout(
            PaymentRequest(
                amount=request.amount,
                currency=request.currency,
                phone=request.phone,
                external_id=request.external_id,
                description=request.description
                or f"Refund for transaction {request.original_reference}",
            )
        )

    def check_status(self, reference: str) -> StatusResult:
        data = self._json(
            self._request("GET", f"/collection/v1_0/requesttopay/{reference}")
        )
        reason = data.get("reason") or ""
        if isinstance(reason, dict):
            reason = reason.get("message") or reason.get("code") or ""
        return StatusResult(
            reference=reference,
            status=self.map_status(data.get("status")),
            amount=optional_money(data.get("amount")),
            currency=data.get("currency", ""),
            reason=str(reason),
            raw=data,
        )

    def get_balance(self) -> AccountBalance:
        data = self._json(self._request("GET", "/collection/v1_0/account/balance"))
        return AccountBalance(
            amount=to_money(data.get("availableBalance") or 0),
            currency=data.get("currency", self.provider.currency),
            raw=data,
        )

    def get_transaction_history(self, start: date, end: date) -> list[StatementLine]:
        raise ProviderRejectedError(
            "MTN does not provide a transaction history API; upload a statement",
            error_code="HISTORY_NOT_SUPPORTED",
            provider_code=self.code,
        )

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        reason = payload.get("reason") or ""
        if isinstance(reason, dict):
            reason = reason.get("message") or reason.get("code") or ""
        return WebhookEvent(
            reference=str(payload.get("referenceId") or ""),
            status=self.map_status(payload.get("status")),
            amount=optional_money(payload.get("amount")),
            currency=payload.get("currency", ""),
            message=str(reason),
            event_type=payload.get("eventType") or "payment.status.changed",
            event_id=str(payload.get("eventId") or ""),
        )
