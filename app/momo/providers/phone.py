"""
Zambian mobile number rules.

Accepted forms (after stripping non-digits):
    09XXXXXXXX     local, 10 digits
    2609XXXXXXXX   international, 12 digits

Both normalize to ``260XXXXXXXXX``. The operator is identified by the
local prefix (the ``09X`` part).
"""

from __future__ import annotations

import re

from momo.state_machines import ProviderCode

NON_DIGITS = re.compile(r"\D")

PROVIDER_PREFIXES: dict[str, tuple[str, ...]] = {
    ProviderCode.MTN: ("096", "097"),
    ProviderCode.AIRTEL: ("095", "098"),
    ProviderCode.ZAMTEL: ("094", "099"),
}


def _digits(phone: str) -> str:
    return NON_DIGITS.sub("", phone or "")


def local_prefix(phone: str) -> str | None:
    """The ``09X`` operator prefix, or None for a malformed number."""
    digits = _digits(phone)
    if len(digits) == 10 and digits.startswith("09"):
        return digits[:3]
    if len(digits) == 12 and digits.startswith("2609"):
        return "0" + digits[3:5]
    return None


def is_valid_phone(phone: str) -> bool:
    return local_prefix(phone) is not None


def normalize_phone(phone: str) -> str:
    """
    Return ``260XXXXXXXXX``.

    Raises:
        ValueError: If the number isn't a Zambian mobile number
    """
    digits = _digits(phone)
    if len(digits) == 10 and digits.startswith("09"):
        return "260" + digits[1:]
    if len(digits) == 12 and digits.startswith("2609"):
        return digits
    raise ValueError(f"'{phone}' is not a valid Zambian mobile number")


def detect_provider_code(phone: str) -> str | None:
    prefix = local_prefix(phone)
    if prefix is None:
        return None
    for code, prefixes in PROVIDER_PREFIXES.items():
        if prefix in prefixes:
            return str(code)
    return None


def phone_matches_provider(phone: str, provider_code: str) -> bool:
    return local_prefix(phone) in PROVIDER_PREFIXES.get(provider_code, ())
