"""Tests for Zambian msisdn normalization and operator detection."""

import pytest

from momo.providers.phone import (
    detect_provider_code,
    is_valid_phone,
    normalize_phone,
    phone_matches_provider,
)
from momo.state_machines import ProviderCode


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw",
        ["0971234567", "260971234567", "+260 97 123 4567", "097-123-4567"],
    )
    def test_accepted_forms_normalize_to_international(self, raw):
        assert normalize_phone(raw) == "260971234567"

    @pytest.mark.parametrize(
        "raw",
        ["", "12345", "0871234567", "2609712345", "44971234567", "09712345678"],
    )
    def test_rejects_malformed_numbers(self, raw):
        with pytest.raises(ValueError):
            normalize_phone(raw)

        assert is_valid_phone(raw) is False


class TestDetectProvider:
    @pytest.mark.parametrize(
        "phone, expected",
        [
            ("0961234567", ProviderCode.MTN),
            ("0971234567", ProviderCode.MTN),
            ("0951234567", ProviderCode.AIRTEL),
            ("260981234567", ProviderCode.AIRTEL),
            ("0941234567", ProviderCode.ZAMTEL),
            ("260991234567", ProviderCode.ZAMTEL),
        ],
    )
    def test_prefix_selects_operator(self, phone, expected):
        assert detect_provider_code(phone) == expected

    def test_unknown_prefix_detects_nothing(self):
        assert detect_provider_code("0931234567") is None
        assert detect_provider_code("not a phone") is None

    def test_phone_matches_provider(self):
        assert phone_matches_provider("260951234567", ProviderCode.AIRTEL)
        assert not phone_matches_provider("260951234567", ProviderCode.MTN)
        assert not phone_matches_provider("260951234567", "unknown")
