"""
Tests for MoMo Celery tasks.

Tests cover:
- process_momo_webhook task
- retry_due_transactions task
- check_transaction_status / check_pending_transaction_statuses tasks
- expire_stale_transactions task
- post_unposted_transactions task
- run_scheduled_reconciliation task

Tasks are called directly; the services they wrap have their own tests.
"""

from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from django.utils import timezone

from momo.exceptions import (
    MomoError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from momo.ledger.models import LedgerEntry
from momo.models import MomoTransaction, MomoWebhook
from momo.state_machines import ProviderCode, TransactionStatus, WebhookStatus
from momo.tasks import (
    check_pending_transaction_statuses,
    check_transaction_status,
    expire_stale_transactions,
    post_unposted_transactions,
    process_momo_webhook,
    retry_due_transactions,
    run_scheduled_reconciliation,
)
from momo.tests.factories import ProviderFactory, TransactionFactory, WebhookFactory


# =============================================================================
# process_momo_webhook Tests
# =============================================================================


@pytest.mark.django_db
class TestProcessMomoWebhook:
    def test_applies_stored_webhook(self, provider, fake_gateway):
        txn = TransactionFactory(provider=provider)
        webhook = WebhookFactory(
            provider=provider,
            payload={
                "event_id": "evt-1",
                "reference": txn.provider_transaction_id,
                "status": TransactionStatus.COMPLETED,
            },
        )

        result = process_momo_webhook(str(webhook.pk))

        assert result == {"status": WebhookStatus.PROCESSED, "webhook_id": str(webhook.pk)}
        assert MomoTransaction.objects.get(pk=txn.pk).status == TransactionStatus.COMPLETED

    def test_unknown_webhook(self, db):
        result = process_momo_webhook(str(uuid4()))

        assert result["status"] == "failed"
        assert result["error"] == "Webhook not found"

    def test_domain_error_marks_webhook_failed(self, provider):
        webhook = WebhookFactory(provider=provider)

        with patch("momo.tasks.WebhookService.process", side_effect=MomoError("Provider gone")):
            result = process_momo_webhook(str(webhook.pk))

        webhook = MomoWebhook.objects.get(pk=webhook.pk)
        assert result["status"] == "failed"
        assert webhook.status == WebhookStatus.FAILED
        assert webhook.error_message == "Provider gone"


# =============================================================================
# Transaction Tasks
# =============================================================================


@pytest.mark.django_db
class TestRetryDueTransactions:
    def test_returns_sweep_stats(self, db):
        assert retry_due_transactions() == {
            "retried": 0,
            "rescheduled": 0,
            "exhausted": 0,
            "errors": 0,
        }

    def test_skips_when_sweep_already_running(self, db, mock_redis):
        mock_redis.set.return_value = False

        assert retry_due_transactions() == {"status": "skipped"}


@pytest.mark.django_db
class TestCheckTransactionStatus:
    def test_polls_provider(self, provider, fake_gateway):
        txn = TransactionFactory(provider=provider)
        fake_gateway.status = TransactionStatus.FAILED
        fake_gateway.status_reason = "Insufficient funds"

        result = check_transaction_status(str(provider.company_id), str(txn.pk))

        assert result == {"status": TransactionStatus.FAILED, "transaction_id": str(txn.pk)}
        assert MomoTransaction.objects.get(pk=txn.pk).failure_reason == "Insufficient funds"

    def test_rejection_is_reported(self, provider, fake_gateway):
        txn = TransactionFactory(provider=provider)
        fake_gateway.error = ProviderRejectedError("Unknown reference", provider_code="airtel")

        result = check_transaction_status(str(provider.company_id), str(txn.pk))

        assert result["status"] == "error"
        assert result["error"] == "Unknown reference"

    def test_timeout_is_raised_for_celery_retry(self, provider, fake_gateway):
        txn = TransactionFactory(provider=provider)
        fake_gateway.error = ProviderTimeoutError("slow", provider_code="airtel")

        with pytest.raises(ProviderTimeoutError):
            check_transaction_status(str(provider.company_id), str(txn.pk))

    def test_missing_transaction_is_skipped(self, provider, fake_gateway):
        result = check_transaction_status(str(provider.company_id), str(uuid4()))

        assert result["status"] == "skipped"
        assert fake_gateway.calls == []


@pytest.mark.django_db
class TestCheckPendingTransactionStatuses:
    def test_queues_in_flight_transactions_with_reference(self, provider):
        in_flight = TransactionFactory(provider=provider)
        TransactionFactory(provider=provider, pending=True)
        TransactionFactory(provider=provider, completed=True)
        TransactionFactory(provider=provider, requires_review=True)
        old = TransactionFactory(provider=provider)
        MomoTransaction.objects.filter(pk=old.pk).update(
            created_at=timezone.now() - timedelta(hours=48)
        )

        with patch("momo.tasks.check_transaction_status.delay") as delay:
            result = check_pending_transaction_statuses(hours=24)

        assert result == {"queued_count": 1}
        delay.assert_called_once_with(str(provider.company_id), str(in_flight.pk))


@pytest.mark.django_db
class TestExpireStaleTransactions:
    def test_expires_across_companies(self, provider, other_provider):
        stale = timezone.now() - timedelta(hours=2)
        TransactionFactory(provider=provider, pending=True, initiated_at=stale)
        TransactionFactory(provider=other_provider, pending=True, initiated_at=stale)
        fresh = TransactionFactory(provider=provider, pending=True)

        result = expire_stale_transactions()

        assert result == {"expired_count": 2}
        assert MomoTransaction.objects.filter(status=TransactionStatus.EXPIRED).count() == 2
        assert MomoTransaction.objects.get(pk=fresh.pk).status == TransactionStatus.PENDING


@pytest.mark.django_db
class TestPostUnpostedTransactions:
    def test_posts_completed_transactions(self, provider):
        txn = TransactionFactory(provider=provider, completed=True)
        TransactionFactory(provider=provider)

        result = post_unposted_transactions()

        assert result == {"posted_count": 1, "failed_count": 0}
        assert LedgerEntry.objects.filter(reference_id=txn.pk).exists()
        assert post_unposted_transactions() == {"posted_count": 0, "failed_count": 0}


# =============================================================================
# Reconciliation Tasks
# =============================================================================


@pytest.mark.django_db
class TestRunScheduledReconciliation:
    def test_reconciles_every_active_provider(self, provider, other_provider, fake_gateway):
        ProviderFactory(company=provider.company, code=ProviderCode.MTN, is_active=False)

        result = run_scheduled_reconciliation()

        assert result == {"completed": 2, "skipped": 0, "failed": 0}
        assert fake_gateway.call_names() == ["history", "history"]
        yesterday = timezone.localdate() - timedelta(days=1)
        assert fake_gateway.calls[0][1] == (yesterday, yesterday)

    def test_rejected_history_is_skipped(self, provider, fake_gateway):
        fake_gateway.error = ProviderRejectedError(
            "No history API", error_code="HISTORY_NOT_SUPPORTED"
        )

        assert run_scheduled_reconciliation() == {"completed": 0, "skipped": 1, "failed": 0}

    def test_provider_outage_is_a_failure(self, provider, fake_gateway):
        fake_gateway.error = ProviderUnavailableError("Maintenance")

        assert run_scheduled_reconciliation() == {"completed": 0, "skipped": 0, "failed": 1}
