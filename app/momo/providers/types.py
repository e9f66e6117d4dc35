"""
Data types exchanged with provider gateways.

Gateways receive plain request dataclasses and return normalized results.
Provider-specific payload shapes never leave the gateway module.

Types:
    PaymentRequest: Collect from (or disburse to) a wallet
    RefundRequest: Return money for an earlier collection
    GatewayResult: Provider's answer to a request
    StatusResult: Provider's answer to a status poll
    WebhookEvent: Normalized callback contents
    StatementLine: One line of a provider statement / transaction history
    AccountBalance: Wallet balance
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from core.helpers import to_money

UNKNOWN_STATUS = "unknown"


@dataclass
class PaymentRequest:
    """
    A collection or disbursement request.

    Attributes:
        amount: Positive Decimal amount
        currency: ISO 4217 code
        phone: Normalized 260XXXXXXXXX msisdn
        external_id: Our reference echoed back by the provider
        description: Payer message / narration
        callback_url: Where the provider should post webhooks
    """

    amount: Decimal
    currency: str
    phone: str
    external_id: str
    description: str = ""
    callback_url: str = ""

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.phone:
            raise ValueError("phone is required")
        if not self.external_id:
            raise ValueError("external_id is required")


@dataclass
class RefundRequest:
    amount: Decimal
    currency: str
    phone: str
    external_id: str
    original_reference: str
    description: str = ""

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.original_reference:
            raise ValueError("original_reference is required")


@dataclass
class GatewayResult:
    """
    Normalized response to a payment, payout or refund request.

    ``reference`` is the id to poll status with and to correlate
    webhooks against.
    """

    reference: str
    status: str
    message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResult:
    reference: str
    status: str
    amount: Decimal | None = None
    currency: str = ""
    reason: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    """
    Normalized webhook contents.

    Attributes:
        reference: Provider transaction reference
        status: Normalized status (TransactionStatus value or "unknown")
        event_type: Provider event name
        event_id: Provider's delivery id, if it sends one
    """

    reference: str
    status: str
    amount: Decimal | None = None
    currency: str = ""
    message: str = ""
    event_type: str = "payment.status.changed"
    event_id: str = ""


@dataclass
class StatementLine:
    """One line of a provider statement."""

    reference: str
    amount: Decimal
    occurred_at: datetime | None = None
    currency: str = ""
    description: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatementLine:
        """
        Build a line from a provider history item or an uploaded row.

        Accepts the key spellings providers use for the same thing
        (``id``/``transaction_id``/``reference``, ``date``/``created_at``...).

        Raises:
            ValueError: If the item carries no usable reference or amount
        """
        nested = data.get("transaction") if isinstance(data.get("transaction"), dict) else {}
        reference = (
            data.get("reference")
            or data.get("transaction_id")
            or data.get("id")
            or nested.get("id")
            or ""
        )
        raw_amount = data.get("amount", nested.get("amount"))
        if not reference or raw_amount in (None, ""):
            raise ValueError(f"Statement line needs a reference and an amount: {data!r}")
        try:
            amount = to_money(raw_amount)
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid statement amount {raw_amount!r}") from e

        return cls(
            reference=str(reference),
            amount=amount,
            occurred_at=parse_statement_datetime(
                data.get("date")
                or data.get("transaction_date")
                or data.get("created_at")
                or data.get("timestamp")
            ),
            currency=str(data.get("currency") or nested.get("currency") or ""),
            description=str(data.get("description") or data.get("narration") or ""),
            raw=data,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "amount": str(self.amount),
            "date": self.occurred_at.isoformat() if self.occurred_at else None,
            "currency": self.currency,
            "description": self.description,
        }


@dataclass
class AccountBalance:
    amount: Decimal
    currency: str
    raw: dict[str, Any] = field(default_factory=dict)


def parse_statement_datetime(value: Any) -> datetime | None:
    """Parse an ISO date or datetime; naive values are taken as local time."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value)
        parsed = parse_datetime(text)
        if parsed is None:
            day = parse_date(text)
            if day is None:
                return None
            parsed = datetime(day.year, day.month, day.day)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def optional_money(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return to_money(value)
    except (InvalidOperation, ValueError):
        return None
