"""
Helper functions for common infrastructure operations.

These utilities are domain-agnostic:
- HMAC-SHA256 signing and constant-time verification
- Body fingerprints for deduplication keys
- Money rounding
- HTTP request helpers (client IP extraction)

Usage:
    from core.helpers import get_client_ip, verify_hmac_sha256

    if not verify_hmac_sha256(request.body, signature, secret):
        ...
"""

from __future__ import annotations

import hashlib
import hmac
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest

TWO_PLACES = Decimal("0.01")


def compute_hmac_sha256(payload: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``payload`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_hmac_sha256(payload: bytes, signature: str, secret: str) -> bool:
    """
    Verify a hex HMAC-SHA256 signature in constant time.

    Returns False when either the secret or the signature is missing.
    """
    if not secret or not signature:
        return False
    expected = compute_hmac_sha256(payload, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def sha256_hex(payload: bytes) -> str:
    """Fingerprint a raw body (used when a provider sends no event id)."""
    return hashlib.sha256(payload).hexdigest()


def to_money(value) -> Decimal:
    """
    Coerce a number or numeric string to a 2dp Decimal.

    Floats go through ``str`` first so 0.1 stays 0.10.
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    Takes the first address of X-Forwarded-For when present.
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        ip = x_forwarded_for.split(",")[0].strip()
    else:
        ip = request.META.get("REMOTE_ADDR", "")
    return ip
