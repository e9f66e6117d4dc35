"""
Provider gateways - one adapter per mobile-money operator.

Public API:
    get_gateway(provider) - Gateway for a MomoProvider row
    detect_provider(ctx, phone) - The company's provider for a phone number
    PaymentRequest, RefundRequest, StatementLine - Request/statement types

Usage:
    from momo.providers import PaymentRequest, get_gateway

    result = get_gateway(provider).request_payment(
        PaymentRequest(amount=Decimal("100.00"), currency="ZMW",
                       phone="260971234567", external_id=txn.transaction_number)
    )
"""

from momo.providers.base import BaseGateway
from momo.providers.registry import (
    detect_provider,
    get_gateway,
    get_gateway_class,
    register_gateway,
    set_gateway_factory,
)
from momo.providers.types import (
    UNKNOWN_STATUS,
    AccountBalance,
    GatewayResult,
    PaymentRequest,
    RefundRequest,
    StatementLine,
    StatusResult,
    WebhookEvent,
)

__all__ = [
    "UNKNOWN_STATUS",
    "AccountBalance",
    "BaseGateway",
    "GatewayResult",
    "PaymentRequest",
    "RefundRequest",
    "StatementLine",
    "StatusResult",
    "WebhookEvent",
    "detect_provider",
    "get_gateway",
    "get_gateway_class",
    "register_gateway",
    "set_gateway_factory",
]
