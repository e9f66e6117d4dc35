"""
Gateway registry keyed by provider code.

Services never instantiate gateways directly; they call ``get_gateway``
with a MomoProvider row. Tests swap the factory with
``set_gateway_factory`` instead of patching HTTP.

Usage:
    from momo.providers.registry import get_gateway, detect_provider

    provider = detect_provider(ctx, "0971234567")
    gateway = get_gateway(provider)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from momo.exceptions import ProviderNotConfiguredError
from momo.providers.airtel import AirtelGateway
from momo.providers.mtn import MtnGateway
from momo.providers.phone import detect_provider_code
from momo.providers.zamtel import ZamtelGateway
from momo.state_machines import ProviderCode

if TYPE_CHECKING:
    from collections.abc import Callable

    from core.tenancy import TenantContext

    from momo.models import MomoProvider
    from momo.providers.base import BaseGateway

logger = logging.getLogger(__name__)

_GATEWAYS: dict[str, type[BaseGateway]] = {
    ProviderCode.MTN: MtnGateway,
    ProviderCode.AIRTEL: AirtelGateway,
    ProviderCode.ZAMTEL: ZamtelGateway,
}

_gateway_factory: Callable[[MomoProvider], BaseGateway] | None = None


def register_gateway(code: str, gateway_class: type[BaseGateway]) -> None:
    _GATEWAYS[code] = gateway_class


def get_gateway_class(code: str) -> type[BaseGateway]:
    """
    Raises:
        ProviderNotConfiguredError: If no gateway is registered for ``code``
    """
    try:
        return _GATEWAYS[code]
    except KeyError:
        raise ProviderNotConfiguredError(
            f"No gateway registered for provider '{code}'",
            details={"provider": code},
        )


def set_gateway_factory(factory: Callable[[MomoProvider], BaseGateway] | None) -> None:
    """Replace gateway construction (for testing). Pass None to restore."""
    global _gateway_factory
    _gateway_factory = factory


def get_gateway(provider: MomoProvider) -> BaseGateway:
    """
    Build the gateway for an active provider.

    Raises:
        ProviderNotConfiguredError: If the provider is inactive or unknown
    """
    if not provider.is_active:
        raise ProviderNotConfiguredError(
            f"Provider {provider.code} is not active",
            details={"provider": provider.code, "provider_id": str(provider.pk)},
        )
    if _gateway_factory is not None:
        return _gateway_factory(provider)
    return get_gateway_class(provider.code)(provider)


def detect_provider(ctx: TenantContext, phone: str) -> MomoProvider | None:
    """The company's active provider serving ``phone``, or None."""
    from momo.models import MomoProvider

    code = detect_provider_code(phone)
    if code is None:
        return None
    provider = (
        MomoProvider.objects.for_tenant(ctx).filter(code=code, is_active=True).first()
    )
    if provider is None:
        logger.info(
            "No active provider for detected operator",
            extra={"company_id": str(ctx.company_id), "provider": code},
        )
    return provider
