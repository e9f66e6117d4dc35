"""
Base class for mobile-money provider gateways.

A gateway wraps one MomoProvider row and translates normalized requests
into that provider's HTTP API. All outbound calls go through
``BaseGateway._request``, which:

- Applies the provider timeout to every call
- Logs each call with timing (never credentials or bodies)
- Translates transport and HTTP failures into ProviderError subclasses
  so the retry policy can decide what to do

Error translation:
    requests.Timeout            -> ProviderTimeoutError (retryable)
    requests.ConnectionError    -> ProviderUnavailableError (retryable)
    HTTP 429 / 5xx              -> ProviderUnavailableError (retryable)
    HTTP 4xx                    -> ProviderRejectedError (not retryable)

Usage:
    from momo.providers import get_gateway

    gateway = get_gateway(provider)
    result = gateway.request_payment(PaymentRequest(...))
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import requests
from django.conf import settings
from django.core.cache import cache

from core.helpers import sha256_hex, verify_hmac_sha256

from momo.exceptions import (
    ProviderError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from momo.providers.types import UNKNOWN_STATUS

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import date
    from typing import Any

    from momo.models import MomoProvider
    from momo.providers.types import (
        AccountBalance,
        GatewayResult,
        PaymentRequest,
        RefundRequest,
        StatementLine,
        StatusResult,
        WebhookEvent,
    )

ERROR_MESSAGE_FIELDS = ("message", "error", "description", "detail", "error_description")
SIGNATURE_HEADERS = ("X-Signature", "Signature")
TOKEN_CACHE_MARGIN_SECONDS = 60


class BaseGateway:
    """
    Common plumbing for provider gateways.

    Subclasses set ``code`` and ``STATUS_MAP`` and implement the request
    methods. One ``requests.Session`` is kept per gateway instance.
    """

    code: str = ""
    STATUS_MAP: dict[str, str] = {}

    def __init__(
        self,
        provider: MomoProvider,
        session: requests.Session | None = None,
    ) -> None:
        self.provider = provider
        self.session = session or requests.Session()
        self.timeout = int(
            provider.setting("timeout_seconds", settings.MOMO_HTTP_TIMEOUT_SECONDS)
        )
        self.logger = logging.getLogger(f"{type(self).__module__}.{type(self).__name__}")

    # =========================================================================
    # Provider operations (implemented per provider)
    # =========================================================================

    def request_payment(self, request: PaymentRequest) -> GatewayResult:
        raise NotImplementedError

    def request_payout(self, request: PaymentRequest) -> GatewayResult:
        raise NotImplementedError

    def request_refund(self, request: RefundRequest) -> GatewayResult:
        raise NotImplementedError

    def check_status(self, reference: str) -> StatusResult:
        raise NotImplementedError

    def get_balance(self) -> AccountBalance:
        raise NotImplementedError

    def get_transaction_history(self, start: date, end: date) -> list[StatementLine]:
        raise NotImplementedError

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        raise NotImplementedError

    # =========================================================================
    # Webhooks
    # =========================================================================

    def signature_from_headers(self, headers: Mapping[str, str]) -> str:
        for name in SIGNATURE_HEADERS:
            value = headers.get(name)
            if value:
                return value
        return ""

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """HMAC-SHA256 (hex) of the raw body keyed by the provider's webhook secret."""
        return verify_hmac_sha256(raw_body, signature, self.provider.webhook_secret)

    def webhook_id_from(self, payload: Mapping[str, Any], raw_body: bytes) -> str:
        """Provider delivery id, or a fingerprint of the body when there is none."""
        for key in ("webhook_id", "event_id", "eventId", "id"):
            value = payload.get(key) if isinstance(payload, dict) else None
            if value:
                return str(value)
        return sha256_hex(raw_body)

    # =========================================================================
    # Availability
    # =========================================================================

    def is_available(self) -> bool:
        if not self.provider.is_active:
            return False
        try:
            self._request("GET", "/health", authenticated=False)
        except ProviderError as e:
            self.logger.warning(
                "Provider availability check failed",
                extra={"provider": self.code, "error": e.message},
            )
            return False
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def map_status(self, raw_status: Any) -> str:
        return self.STATUS_MAP.get(str(raw_status or "").upper(), UNKNOWN_STATUS)

    @property
    def base_url(self) -> str:
        url = self.provider.active_base_url
        if not url:
            raise ProviderRejectedError(
                "Provider has no API base URL configured",
                error_code="PROVIDER_NOT_CONFIGURED",
                provider_code=self.code,
            )
        return url.rstrip("/")

    def default_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token()}"}

    def access_token(self) -> str:
        """Cached bearer token; fetched with ``fetch_token`` when missing."""
        cache_key = f"momo:token:{self.provider.pk}"
        token = cache.get(cache_key)
        if token:
            return token

        token, expires_in = self.fetch_token()
        ttl = max(int(expires_in) - TOKEN_CACHE_MARGIN_SECONDS, 0)
        if ttl:
            cache.set(cache_key, token, ttl)
        return token

    def fetch_token(self) -> tuple[str, int]:
        raise NotImplementedError

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        authenticated: bool = True,
    ) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        request_headers = self.default_headers()
        if authenticated:
            request_headers.update(self.auth_headers())
        if headers:
            request_headers.update(headers)

        log_context = {"provider": self.code, "method": method, "path": path}
        start_time = time.time()

        try:
            response = self.session.request(
                method,
                url,
                json=json,
                data=data,
                params=params,
                headers=request_headers,
                auth=auth,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            self.logger.warning("Provider request timed out", extra=log_context)
            raise ProviderTimeoutError(
                f"{self.code} did not respond within {self.timeout}s",
                provider_code=self.code,
            ) from e
        except requests.RequestException as e:
            self.logger.error(
                "Provider connection error", extra=log_context, exc_info=True
            )
            raise ProviderUnavailableError(
                f"Could not reach {self.code}: {e}",
                provider_code=self.code,
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        log_context.update(status_code=response.status_code, duration_ms=duration_ms)

        if response.status_code == 429 or response.status_code >= 500:
            self.logger.error("Provider unavailable", extra=log_context)
            raise ProviderUnavailableError(
                self.extract_error_message(self._json(response))
                or f"{self.code} returned HTTP {response.status_code}",
                provider_code=self.code,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            self.logger.warning("Provider rejected request", extra=log_context)
            raise ProviderRejectedError(
                self.extract_error_message(self._json(response))
                or f"{self.code} returned HTTP {response.status_code}",
                provider_code=self.code,
                status_code=response.status_code,
            )

        self.logger.info("Provider request completed", extra=log_context)
        return response

    @staticmethod
    def _json(response: requests.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {"data": data}

    @staticmethod
    def extract_error_message(data: Mapping[str, Any]) -> str:
        for field_name in ERROR_MESSAGE_FIELDS:
            value = data.get(field_name)
            if value:
                return value if isinstance(value, str) else str(value)
        return ""
