"""
Tests for provider gateways.

The gateways get a mocked ``requests.Session``; no test reaches a
provider. Covers request shaping, status mapping, token caching and the
translation of transport failures into ProviderError subclasses.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from core.helpers import compute_hmac_sha256, sha256_hex
from momo.exceptions import (
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from momo.providers.airtel import AirtelGateway
from momo.providers.mtn import MtnGateway
from momo.providers.types import PaymentRequest, StatementLine
from momo.providers.zamtel import ZamtelGateway
from momo.state_machines import ProviderCode, TransactionStatus
from momo.tests.factories import WEBHOOK_SECRET, ProviderFactory


def _response(status_code=200, data=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if data is not None else b""
    response.json.return_value = data if data is not None else {}
    return response


TOKEN = _response(data={"access_token": "tok-123", "expires_in": 3600})


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def airtel(provider, session):
    return AirtelGateway(provider, session=session)


@pytest.fixture
def mtn(company, session):
    provider = ProviderFactory(company=company, code=ProviderCode.MTN, name="MTN MoMo")
    return MtnGateway(provider, session=session)


def _payment_request(**overrides):
    values = {
        "amount": Decimal("100.00"),
        "currency": "ZMW",
        "phone": "260951234567",
        "external_id": "MOMO-202601-000001",
        "description": "Invoice 42",
    }
    values.update(overrides)
    return PaymentRequest(**values)


@pytest.mark.django_db
class TestAirtelGateway:
    def test_request_payment_returns_provider_reference(self, airtel, session):
        session.request.side_effect = [
            TOKEN,
            _response(
                data={
                    "data": {"transaction": {"id": "AIRTX1", "status": "TIP"}},
                    "status": {"message": "Success", "success": True},
                }
            ),
        ]

        result = airtel.request_payment(_payment_request())

        assert result.reference == "AIRTX1"
        assert result.status == TransactionStatus.PENDING
        assert result.message == "Success"

        method, url = session.request.call_args_list[1][0]
        kwargs = session.request.call_args_list[1][1]
        assert method == "POST"
        assert url == "https://sandbox.airtel.example.test/merchant/v1/payments/"
        assert kwargs["json"]["reference"] == "MOMO-202601-000001"
        assert kwargs["json"]["subscriber"]["msisdn"] == "260951234567"
        assert kwargs["json"]["transaction"]["amount"] == "100.00"
        assert kwargs["headers"]["Authorization"] == "Bearer tok-123"
        assert kwargs["headers"]["X-Country"] == "ZM"
        assert kwargs["timeout"] == airtel.timeout

    def test_token_is_cached_between_calls(self, airtel, session):
        status_body = _response(data={"data": {"transaction": {"status": "TS"}}})
        session.request.side_effect = [TOKEN, status_body, status_body]

        airtel.check_status("AIRTX1")
        airtel.check_status("AIRTX1")

        paths = [c[0][1] for c in session.request.call_args_list]
        assert sum(1 for p in paths if p.endswith("/auth/oauth2/token")) == 1

    @pytest.mark.parametrize(
        "raw_status, expected",
        [
            ("TS", TransactionStatus.COMPLETED),
            ("TF", TransactionStatus.FAILED),
            ("TP", TransactionStatus.PENDING),
            ("TC", TransactionStatus.CANCELLED),
            ("SOMETHING_NEW", "unknown"),
        ],
    )
    def test_check_status_maps_provider_codes(self, airtel, session, raw_status, expected):
        session.request.side_effect = [
            TOKEN,
            _response(
                data={
                    "data": {
                        "transaction": {
                            "id": "AIRTX1",
                            "status": raw_status,
                            "amount": "100",
                            "message": "Done",
                        }
                    }
                }
            ),
        ]

        result = airtel.check_status("AIRTX1")

        assert result.status == expected
        assert result.amount == Decimal("100.00")

    def test_server_error_is_retryable(self, airtel, session):
        session.request.side_effect = [TOKEN, _response(503, {"message": "Maintenance"})]

        with pytest.raises(ProviderUnavailableError) as exc_info:
            airtel.check_status("AIRTX1")

        assert exc_info.value.is_retryable is True
        assert exc_info.value.message == "Maintenance"
        assert exc_info.value.details["status_code"] == 503

    def test_client_error_is_permanent(self, airtel, session):
        session.request.side_effect = [TOKEN, _response(400, {"error": "Invalid msisdn"})]

        with pytest.raises(ProviderRejectedError) as exc_info:
            airtel.request_payment(_payment_request())

        assert exc_info.value.is_retryable is False
        assert exc_info.value.message == "Invalid msisdn"

    def test_timeout_is_translated(self, airtel, session):
        session.request.side_effect = [TOKEN, requests.Timeout("read timed out")]

        with pytest.raises(ProviderTimeoutError):
            airtel.request_payment(_payment_request())

    def test_connection_error_is_unavailable(self, airtel, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ProviderUnavailableError):
            airtel.access_token()

    def test_missing_access_token_is_rejected(self, airtel, session):
        session.request.return_value = _response(data={"token_type": "bearer"})

        with pytest.raises(ProviderRejectedError) as exc_info:
            airtel.access_token()

        assert exc_info.value.error_code == "PROVIDER_AUTH_FAILED"

    def test_history_skips_unreadable_items(self, airtel, session):
        session.request.side_effect = [
            TOKEN,
            _response(
                data={
                    "data": [
                        {"id": "AIRTX1", "amount": "100.00", "date": "2026-01-05T10:00:00Z"},
                        {"id": "AIRTX2", "amount": "55.50", "date": "2026-01-05"},
                        {"amount": "10.00"},
                    ]
                }
            ),
        ]

        lines = airtel.get_transaction_history(date(2026, 1, 5), date(2026, 1, 5))

        assert [line.reference for line in lines] == ["AIRTX1", "AIRTX2"]
        assert lines[1].amount == Decimal("55.50")

    def test_parse_webhook(self, airtel):
        event = airtel.parse_webhook(
            {
                "event_id": "evt-1",
                "transaction": {
                    "id": "AIRTX1",
                    "status_code": "TS",
                    "amount": "100.00",
                    "message": "Paid",
                },
            }
        )

        assert event.reference == "AIRTX1"
        assert event.status == TransactionStatus.COMPLETED
        assert event.amount == Decimal("100.00")
        assert event.event_id == "evt-1"


@pytest.mark.django_db
class TestMtnGateway:
    def test_request_payment_uses_generated_reference(self, mtn, session):
        session.request.side_effect = [TOKEN, _response(202)]

        result = mtn.request_payment(_payment_request(callback_url="https://cb.example.test/hook/"))

        kwargs = session.request.call_args_list[1][1]
        assert result.reference == kwargs["headers"]["X-Reference-Id"]
        assert kwargs["headers"]["X-Callback-Url"] == "https://cb.example.test/hook/"
        assert kwargs["headers"]["X-Target-Environment"] == "sandbox"
        assert kwargs["json"]["payer"] == {"partyIdType": "MSISDN", "partyId": "260951234567"}

    def test_history_is_not_supported(self, mtn, session):
        with pytest.raises(ProviderRejectedError) as exc_info:
            mtn.get_transaction_history(date(2026, 1, 1), date(2026, 1, 31))

        assert exc_info.value.error_code == "HISTORY_NOT_SUPPORTED"
        session.request.assert_not_called()

    def test_parse_webhook_reads_reason_object(self, mtn):
        event = mtn.parse_webhook(
            {
                "referenceId": "ref-1",
                "status": "FAILED",
                "reason": {"code": "PAYER_NOT_FOUND", "message": "Payer not found"},
            }
        )

        assert event.reference == "ref-1"
        assert event.status == TransactionStatus.FAILED
        assert event.message == "Payer not found"


@pytest.mark.django_db
class TestZamtelGateway:
    def test_sends_api_key_header(self, company, session):
        provider = ProviderFactory(company=company, code=ProviderCode.ZAMTEL, name="Zamtel")
        gateway = ZamtelGateway(provider, session=session)

        assert gateway.default_headers()["X-API-Key"] == "client-id"


@pytest.mark.django_db
class TestWebhookSignatures:
    def test_valid_signature(self, airtel):
        body = b'{"event_id": "evt-1"}'

        assert airtel.verify_webhook_signature(body, compute_hmac_sha256(body, WEBHOOK_SECRET))

    def test_tampered_body_fails(self, airtel):
        signature = compute_hmac_sha256(b'{"amount": "1"}', WEBHOOK_SECRET)

        assert not airtel.verify_webhook_signature(b'{"amount": "1000"}', signature)

    def test_missing_signature_fails(self, airtel):
        assert not airtel.verify_webhook_signature(b"{}", "")

    def test_signature_header_lookup(self, airtel):
        assert airtel.signature_from_headers({"X-Signature": "abc"}) == "abc"
        assert airtel.signature_from_headers({"Signature": "def"}) == "def"
        assert airtel.signature_from_headers({}) == ""

    def test_webhook_id_falls_back_to_body_fingerprint(self, airtel):
        body = b'{"transaction": {}}'

        assert airtel.webhook_id_from({"event_id": "evt-9"}, body) == "evt-9"
        assert airtel.webhook_id_from({"transaction": {}}, body) == sha256_hex(body)


class TestStatementLine:
    def test_from_dict_accepts_alternative_keys(self):
        line = StatementLine.from_dict(
            {"transaction_id": "TX1", "amount": 12.5, "created_at": "2026-01-05T08:30:00+00:00"}
        )

        assert line.reference == "TX1"
        assert line.amount == Decimal("12.50")
        assert line.occurred_at.isoformat() == "2026-01-05T08:30:00+00:00"

    def test_from_dict_reads_nested_transaction(self):
        line = StatementLine.from_dict({"transaction": {"id": "TX2", "amount": "3"}})

        assert line.reference == "TX2"
        assert line.amount == Decimal("3.00")

    @pytest.mark.parametrize("data", [{"amount": "1"}, {"id": "TX"}, {"id": "TX", "amount": "abc"}])
    def test_from_dict_rejects_incomplete_lines(self, data):
        with pytest.raises(ValueError):
            StatementLine.from_dict(data)
