"""
In-memory provider gateway for service and API tests.

Installed through ``momo.providers.registry.set_gateway_factory`` by the
``fake_gateway`` fixture. Every request is recorded in ``calls``; set
``error`` to make the next provider calls raise.

Example:
    def test_timeout_schedules_retry(fake_gateway, ctx, provider):
        fake_gateway.error = ProviderTimeoutError("slow", provider_code="airtel")
        txn = TransactionService.initiate_payment(ctx, provider, "100", "0951234567")
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING

from momo.providers.base import BaseGateway
from momo.providers.types import (
    UNKNOWN_STATUS,
    AccountBalance,
    GatewayResult,
    StatusResult,
    WebhookEvent,
    optional_money,
)
from momo.state_machines import TransactionStatus

if TYPE_CHECKING:
    from momo.models import MomoProvider
    from momo.providers.types import StatementLine


class FakeGateway(BaseGateway):
    """
    Webhook payloads use a flat shape:
    ``{"event_id", "reference", "status", "amount", "message"}`` where
    ``status`` is already a TransactionStatus value.
    """

    code = "fake"

    def __init__(self) -> None:
        self.provider = None
        self.session = None
        self.timeout = 1
        self.logger = logging.getLogger(__name__)

        self.accept_status = TransactionStatus.PENDING
        self.status = TransactionStatus.PENDING
        self.status_reason = ""
        self.history: list[StatementLine] = []
        self.error: Exception | None = None
        self.calls: list[tuple[str, object]] = []
        self.last_reference = ""
        self._sequence = itertools.count(1)

    def bind(self, provider: MomoProvider) -> FakeGateway:
        self.provider = provider
        return self

    def _call(self, name: str, argument: object) -> None:
        self.calls.append((name, argument))
        if self.error is not None:
            raise self.error

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _accept(self, message: str) -> GatewayResult:
        self.last_reference = f"FAKE{next(self._sequence):06d}"
        return GatewayResult(
            reference=self.last_reference,
            status=self.accept_status,
            message=message,
            raw={"reference": self.last_reference},
        )

    def request_payment(self, request):
        self._call("payment", request)
        return self._accept("Payment request sent")

    def request_payout(self, request):
        self._call("payout", request)
        return self._accept("Payout submitted")

    def request_refund(self, request):
        self._call("refund", request)
        return self._accept("Refund submitted")

    def check_status(self, reference: str) -> StatusResult:
        self._call("status", reference)
        return StatusResult(
            reference=reference,
            status=self.status,
            reason=self.status_reason,
            raw={"status": str(self.status)},
        )

    def get_balance(self) -> AccountBalance:
        self._call("balance", None)
        return AccountBalance(amount=optional_money("0"), currency="ZMW")

    def get_transaction_history(self, start, end) -> list[StatementLine]:
        self._call("history", (start, end))
        return list(self.history)

    def parse_webhook(self, payload) -> WebhookEvent:
        return WebhookEvent(
            reference=str(payload.get("reference") or ""),
            status=payload.get("status") or UNKNOWN_STATUS,
            amount=optional_money(payload.get("amount")),
            message=payload.get("message") or "",
            event_id=str(payload.get("event_id") or ""),
        )
