"""
Tests for the MoMo operator API.

Requests go through the router with ``X-Company`` set by the
operator_client / approver_client fixtures. The FakeGateway answers every
provider call.
"""

from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from momo.models import BankReconciliation, MomoTransaction
from momo.providers import StatementLine
from momo.services import ReconciliationService
from momo.state_machines import (
    ReconciliationStatus,
    TransactionStatus,
    TransactionType,
)
from momo.tests.factories import TransactionFactory

TRANSACTIONS_URL = "/api/v1/momo/transactions/"
RECONCILIATIONS_URL = "/api/v1/momo/reconciliations/"
COMPLETED_AT = datetime(2026, 1, 10, 9, 0, tzinfo=dt_timezone.utc)


def _detail(pk, suffix=""):
    return f"{TRANSACTIONS_URL}{pk}/{suffix}"


@pytest.fixture
def viewer_client(viewer, company):
    client = APIClient()
    client.force_authenticate(user=viewer)
    client.credentials(HTTP_X_COMPANY=company.slug)
    return client


# =============================================================================
# Tenant resolution
# =============================================================================


@pytest.mark.django_db
class TestTenantResolution:
    def test_anonymous_requests_are_rejected(self, api_client, company):
        response = api_client.get(TRANSACTIONS_URL, HTTP_X_COMPANY=company.slug)

        assert response.status_code == 401

    def test_missing_company_header(self, api_client, operator):
        api_client.force_authenticate(user=operator)

        response = api_client.get(TRANSACTIONS_URL)

        assert response.status_code == 400
        assert response.data["error_code"] == "COMPANY_REQUIRED"

    def test_unknown_company(self, api_client, operator):
        api_client.force_authenticate(user=operator)

        response = api_client.get(TRANSACTIONS_URL, HTTP_X_COMPANY="no-such-company")

        assert response.status_code == 404
        assert response.data["error_code"] == "COMPANY_NOT_FOUND"

    def test_non_member_is_refused(self, api_client, operator, other_company):
        api_client.force_authenticate(user=operator)

        response = api_client.get(TRANSACTIONS_URL, HTTP_X_COMPANY=other_company.slug)

        assert response.status_code == 403
        assert response.data["error_code"] == "NOT_A_MEMBER"


# =============================================================================
# Transactions
# =============================================================================


@pytest.mark.django_db
class TestTransactionList:
    def test_lists_only_the_companys_transactions(self, operator_client, provider, other_provider):
        own = TransactionFactory(provider=provider)
        TransactionFactory(provider=other_provider)

        response = operator_client.get(TRANSACTIONS_URL)

        assert response.status_code == 200
        assert response.data["count"] == 1
        assert response.data["results"][0]["id"] == str(own.pk)
        assert response.data["results"][0]["provider"] == "airtel"

    def test_filters_by_status_and_type(self, operator_client, provider):
        TransactionFactory(provider=provider)
        completed = TransactionFactory(provider=provider, completed=True)
        TransactionFactory(provider=provider, completed=True, type=TransactionType.PAYOUT)

        response = operator_client.get(
            TRANSACTIONS_URL, {"status": "completed", "type": "payment"}
        )

        assert [row["id"] for row in response.data["results"]] == [str(completed.pk)]

    def test_viewer_can_read(self, viewer_client, provider):
        txn = TransactionFactory(provider=provider)

        response = viewer_client.get(_detail(txn.pk))

        assert response.status_code == 200
        assert response.data["transaction_number"] == txn.transaction_number

    def test_other_companys_transaction_is_not_found(self, operator_client, other_provider):
        foreign = TransactionFactory(provider=other_provider)

        response = operator_client.get(_detail(foreign.pk))

        assert response.status_code == 404


@pytest.mark.django_db
class TestInitiateTransaction:
    def test_initiates_payment(self, operator_client, provider, fake_gateway):
        response = operator_client.post(
            TRANSACTIONS_URL,
            {"provider": "airtel", "amount": "100.00", "phone": "0951234567"},
            format="json",
        )

        assert response.status_code == 201
        assert response.data["status"] == TransactionStatus.PROCESSING
        assert response.data["type"] == TransactionType.PAYMENT
        assert response.data["fee_amount"] == "2.00"
        assert response.data["net_amount"] == "98.00"
        assert response.data["customer_phone"] == "260951234567"
        assert response.data["provider_transaction_id"] == "FAKE000001"
        assert fake_gateway.call_names() == ["payment"]

    def test_initiates_payout(self, operator_client, provider, fake_gateway):
        response = operator_client.post(
            TRANSACTIONS_URL,
            {"type": "payout", "provider": "airtel", "amount": "50.00", "phone": "0951234567"},
            format="json",
        )

        assert response.status_code == 201
        assert response.data["type"] == TransactionType.PAYOUT
        assert fake_gateway.call_names() == ["payout"]

    def test_initiates_refund_of_completed_payment(self, operator_client, provider, fake_gateway):
        original = TransactionFactory(provider=provider, completed=True)

        response = operator_client.post(
            TRANSACTIONS_URL,
            {"type": "refund", "original_transaction_id": str(original.pk), "amount": "40.00"},
            format="json",
        )

        assert response.status_code == 201
        assert response.data["type"] == TransactionType.REFUND
        assert response.data["amount"] == "40.00"
        assert response.data["original_transaction"] == original.pk
        assert fake_gateway.call_names() == ["refund"]

    def test_missing_fields_are_rejected(self, operator_client, provider, fake_gateway):
        response = operator_client.post(TRANSACTIONS_URL, {"provider": "airtel"}, format="json")

        assert response.status_code == 400
        assert set(response.data) >= {"phone", "amount"}
        assert fake_gateway.calls == []

    def test_refund_needs_original(self, operator_client, provider):
        response = operator_client.post(TRANSACTIONS_URL, {"type": "refund"}, format="json")

        assert response.status_code == 400
        assert "original_transaction_id" in response.data

    def test_invalid_phone_returns_error_code(self, operator_client, provider, fake_gateway):
        response = operator_client.post(
            TRANSACTIONS_URL,
            {"provider": "airtel", "amount": "100.00", "phone": "12345"},
            format="json",
        )

        assert response.status_code == 400
        assert response.data["error_code"] == "INVALID_PHONE"
        assert not MomoTransaction.objects.exists()

    def test_provider_is_detected_from_phone(self, operator_client, provider, fake_gateway):
        response = operator_client.post(
            TRANSACTIONS_URL, {"amount": "100.00", "phone": "0981234567"}, format="json"
        )

        assert response.status_code == 201
        assert response.data["provider"] == "airtel"
        assert fake_gateway.call_names() == ["payment"]

    def test_undetected_provider_is_rejected(self, operator_client, provider, fake_gateway):
        response = operator_client.post(
            TRANSACTIONS_URL, {"amount": "100.00", "phone": "0961234567"}, format="json"
        )

        assert response.status_code == 400
        assert response.data["error_code"] == "PROVIDER_NOT_DETECTED"
        assert fake_gateway.calls == []

    def test_unconfigured_provider_is_not_found(self, operator_client, provider):
        response = operator_client.post(
            TRANSACTIONS_URL,
            {"provider": "mtn", "amount": "100.00", "phone": "0961234567"},
            format="json",
        )

        assert response.status_code == 404

    def test_viewer_cannot_initiate(self, viewer_client, provider, fake_gateway):
        response = viewer_client.post(
            TRANSACTIONS_URL,
            {"provider": "airtel", "amount": "100.00", "phone": "0951234567"},
            format="json",
        )

        assert response.status_code == 403
        assert response.data["error_code"] == "ROLE_REQUIRED"
        assert fake_gateway.calls == []


@pytest.mark.django_db
class TestTransactionActions:
    def test_check_status_applies_provider_answer(self, operator_client, provider, fake_gateway):
        txn = TransactionFactory(provider=provider)
        fake_gateway.status = TransactionStatus.COMPLETED

        response = operator_client.post(_detail(txn.pk, "check-status/"))

        assert response.status_code == 200
        assert response.data["status"] == TransactionStatus.COMPLETED

    def test_cancel(self, operator_client, provider):
        txn = TransactionFactory(provider=provider, pending=True)

        response = operator_client.post(
            _detail(txn.pk, "cancel/"), {"reason": "Customer changed mind"}, format="json"
        )

        assert response.status_code == 200
        assert response.data["status"] == TransactionStatus.CANCELLED
        assert response.data["failure_reason"] == "Customer changed mind"

    def test_cancelling_finished_transaction_conflicts(self, operator_client, provider):
        txn = TransactionFactory(provider=provider, completed=True)

        response = operator_client.post(_detail(txn.pk, "cancel/"), {}, format="json")

        assert response.status_code == 409
        assert response.data["error_code"] == "TERMINAL_STATE"

    def test_cancelling_foreign_transaction_is_not_found(self, operator_client, other_provider):
        foreign = TransactionFactory(provider=other_provider)

        response = operator_client.post(_detail(foreign.pk, "cancel/"), {}, format="json")

        assert response.status_code == 404
        assert MomoTransaction.objects.get(pk=foreign.pk).status == TransactionStatus.PROCESSING


# =============================================================================
# Reconciliations
# =============================================================================


def _run_payload(**overrides):
    payload = {
        "provider": "airtel",
        "start_date": "2026-01-01",
        "end_date": "2026-01-31",
        "statement": [
            {"reference": "AIR-A", "amount": "100.00", "date": "2026-01-10T09:00:00Z"},
            {"reference": "BANK-X", "amount": "10.00"},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def booked(provider):
    return TransactionFactory(
        provider=provider,
        completed=True,
        completed_at=COMPLETED_AT,
        provider_transaction_id="AIR-A",
    )


@pytest.mark.django_db
class TestRunReconciliation:
    def test_runs_against_uploaded_statement(self, operator_client, booked, fake_gateway):
        response = operator_client.post(RECONCILIATIONS_URL, _run_payload(), format="json")

        assert response.status_code == 201
        assert response.data["reference"] == "MOMO-AIRTEL-20260101-20260131"
        assert response.data["status"] == ReconciliationStatus.COMPLETED
        assert response.data["matched_count"] == 1
        assert response.data["unmatched_bank_count"] == 1
        assert response.data["difference"] == "10.00"
        assert len(response.data["items"]) == 2
        assert response.data["summary"]["statement_source"] == "uploaded"
        assert "history" not in fake_gateway.call_names()

    def test_reversed_period_is_rejected(self, operator_client, booked):
        response = operator_client.post(
            RECONCILIATIONS_URL,
            _run_payload(start_date="2026-02-01", end_date="2026-01-01"),
            format="json",
        )

        assert response.status_code == 400
        assert "end_date" in response.data

    def test_viewer_cannot_run(self, viewer_client, booked):
        response = viewer_client.post(RECONCILIATIONS_URL, _run_payload(), format="json")

        assert response.status_code == 403
        assert not BankReconciliation.objects.exists()

    def test_list_and_detail(self, operator_client, booked, fake_gateway):
        created = operator_client.post(RECONCILIATIONS_URL, _run_payload(), format="json")

        listing = operator_client.get(RECONCILIATIONS_URL)
        detail = operator_client.get(f"{RECONCILIATIONS_URL}{created.data['id']}/")

        assert listing.data["count"] == 1
        assert "items" not in listing.data["results"][0]
        assert len(detail.data["items"]) == 2


@pytest.mark.django_db
class TestManualAdjustments:
    @pytest.fixture
    def reconciliation(self, operator_client, booked, provider, fake_gateway):
        TransactionFactory(
            provider=provider,
            completed=True,
            completed_at=COMPLETED_AT,
            amount=Decimal("25.00"),
            provider_transaction_id="AIR-C",
        )
        response = operator_client.post(RECONCILIATIONS_URL, _run_payload(), format="json")
        return BankReconciliation.objects.get(pk=response.data["id"])

    def test_force_match(self, operator_client, reconciliation):
        unmatched = reconciliation.items.get(statement_reference="", transaction__isnull=False)

        response = operator_client.post(
            f"{RECONCILIATIONS_URL}{reconciliation.pk}/force-match/",
            {
                "transaction_id": str(unmatched.transaction_id),
                "statement_reference": "BANK-X",
                "reason": "Provider booked net of charges",
            },
            format="json",
        )

        assert response.status_code == 200
        assert response.data["status"] == "matched"
        assert response.data["is_manual"] is True
        assert response.data["difference"] == "-15.00"

    def test_force_unmatch(self, operator_client, reconciliation, booked):
        matched = reconciliation.items.get(transaction=booked)

        response = operator_client.post(
            f"{RECONCILIATIONS_URL}{reconciliation.pk}/force-unmatch/",
            {"item_id": str(matched.pk), "reason": "Wrong counterpart"},
            format="json",
        )

        assert response.status_code == 200
        assert response.data["status"] == "unmatched_book"

    def test_reason_is_required(self, operator_client, reconciliation, booked):
        matched = reconciliation.items.get(transaction=booked)

        response = operator_client.post(
            f"{RECONCILIATIONS_URL}{reconciliation.pk}/force-unmatch/",
            {"item_id": str(matched.pk)},
            format="json",
        )

        assert response.status_code == 400
        assert "reason" in response.data


@pytest.mark.django_db
class TestApproveReconciliation:
    @pytest.fixture
    def reconciliation(self, ctx, provider, booked, fake_gateway):
        return ReconciliationService.run(
            ctx,
            provider,
            COMPLETED_AT.date().replace(day=1),
            COMPLETED_AT.date().replace(day=31),
            statement=[StatementLine(reference="AIR-A", amount=Decimal("100.00"))],
        )

    def test_approver_approves(self, approver_client, reconciliation, approver):
        response = approver_client.post(f"{RECONCILIATIONS_URL}{reconciliation.pk}/approve/")

        assert response.status_code == 200
        assert response.data["status"] == ReconciliationStatus.APPROVED
        assert response.data["approved_by"] == approver.pk

    def test_operator_cannot_approve(self, operator_client, reconciliation):
        response = operator_client.post(f"{RECONCILIATIONS_URL}{reconciliation.pk}/approve/")

        assert response.status_code == 403
        assert response.data["error_code"] == "ROLE_REQUIRED"

    def test_report(self, operator_client, reconciliation):
        response = operator_client.get(
            f"{RECONCILIATIONS_URL}report/", {"provider": "airtel", "days": 3650}
        )

        assert response.status_code == 200
        assert response.data["reconciliations"] == 1
        assert response.data["matched_transactions"] == 1
        assert response.data["average_rate"] == 100.0

    def test_report_rejects_bad_days(self, operator_client, reconciliation):
        response = operator_client.get(
            f"{RECONCILIATIONS_URL}report/", {"provider": "airtel", "days": "many"}
        )

        assert response.status_code == 400
        assert response.data["error_code"] == "INVALID_DAYS"
