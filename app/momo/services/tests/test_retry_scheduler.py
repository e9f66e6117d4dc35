"""
Tests for RetryPolicy and RetryScheduler.

Time is frozen with freezegun so backoff delays can be asserted exactly.
The provider fixture allows 3 attempts, 5 minutes apart, with a
30 minute status timeout.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from momo.exceptions import (
    LockAcquisitionError,
    ProviderRejectedError,
    ProviderUnavailableError,
    StaleRecordError,
)
from momo.models import MomoTransaction, TransactionAuditLog
from momo.services import RetryPolicy, RetryScheduler, TransactionService
from momo.signals import transaction_requires_review
from momo.state_machines import AuditAction, TransactionStatus
from momo.tests.factories import TransactionFactory

NOW = "2026-01-05 10:00:00"


def _due_transaction(provider, **kwargs):
    kwargs.setdefault("next_retry_at", timezone.now() - timedelta(minutes=1))
    return TransactionFactory(provider=provider, **kwargs)


@pytest.mark.django_db
class TestRetryPolicy:
    def test_provider_values(self, provider):
        txn = TransactionFactory(provider=provider)

        policy = RetryPolicy.for_transaction(txn)

        assert policy == RetryPolicy(max_attempts=3, delay_minutes=5, status_timeout_minutes=30)

    def test_company_overrides_provider(self, company, provider):
        company.momo_settings = {"max_retry_attempts": 5, "retry_delay_minutes": "2"}
        company.save()
        txn = TransactionFactory(provider=provider)

        policy = RetryPolicy.for_transaction(txn)

        assert policy.max_attempts == 5
        assert policy.delay_minutes == 2
        assert policy.status_timeout_minutes == 30

    @pytest.mark.parametrize("attempt, minutes", [(1, 5), (2, 10), (3, 20), (4, 20), (9, 20)])
    def test_backoff_doubles_up_to_cap(self, attempt, minutes):
        policy = RetryPolicy(max_attempts=10, delay_minutes=5, status_timeout_minutes=30)

        assert policy.delay_for(attempt) == timedelta(minutes=minutes)

    def test_exhaustion(self):
        policy = RetryPolicy(max_attempts=3, delay_minutes=5, status_timeout_minutes=30)

        assert not policy.is_exhausted(2)
        assert policy.is_exhausted(3)


@pytest.mark.django_db
class TestSchedule:
    @freeze_time(NOW)
    def test_sets_next_retry_from_attempt_number(self, ctx, provider):
        txn = TransactionFactory(provider=provider, retry_count=1)

        RetryScheduler.schedule(ctx, txn, reason="Provider unavailable")

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stored.next_retry_at == timezone.now() + timedelta(minutes=10)
        assert stored.failure_reason == "Provider unavailable"
        entry = TransactionAuditLog.objects.get(transaction=txn, action=AuditAction.RETRY_SCHEDULED)
        assert entry.context["retry_count"] == 1

    def test_terminal_transaction_is_left_alone(self, ctx, provider):
        txn = TransactionFactory(provider=provider, completed=True)

        RetryScheduler.schedule(ctx, txn)

        assert MomoTransaction.objects.get(pk=txn.pk).next_retry_at is None

    def test_exhausted_policy_fails_for_review(
        self, ctx, provider, mailoutbox, django_capture_on_commit_callbacks
    ):
        txn = TransactionFactory(provider=provider, retry_count=3, failure_reason="Timed out")
        flagged = []

        def on_review(sender, **kwargs):
            flagged.append(kwargs)

        transaction_requires_review.connect(on_review)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                RetryScheduler.schedule(ctx, txn)
        finally:
            transaction_requires_review.disconnect(on_review)

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stored.status == TransactionStatus.FAILED
        assert stored.requires_review is True
        assert stored.failure_reason == "Timed out"
        actions = set(
            TransactionAuditLog.objects.filter(transaction=txn).values_list("action", flat=True)
        )
        assert {AuditAction.RETRY_EXHAUSTED, AuditAction.MANUAL_REVIEW} <= actions
        assert flagged[0]["transaction_id"] == txn.pk
        assert any("needs review" in message.subject for message in mailoutbox)


@pytest.mark.django_db
class TestDue:
    def test_scheduled_and_timed_out_transactions_are_due(self, provider):
        with freeze_time(NOW) as frozen:
            scheduled = _due_transaction(provider)
            silent = TransactionFactory(provider=provider)
            TransactionFactory(provider=provider, next_retry_at=timezone.now() + timedelta(hours=1))
            _due_transaction(provider, completed=True)
            _due_transaction(provider, requires_review=True)

            frozen.tick(timedelta(minutes=31))
            due = RetryScheduler.due()

        assert {txn.pk for txn in due} == {scheduled.pk, silent.pk}

    def test_scoped_to_tenant(self, ctx, provider, other_provider):
        mine = _due_transaction(provider)
        _due_transaction(other_provider)

        assert [txn.pk for txn in RetryScheduler.due(ctx)] == [mine.pk]


@pytest.mark.django_db
class TestRunDue:
    @freeze_time(NOW)
    def test_poll_with_final_answer_is_retried(self, provider, fake_gateway):
        txn = _due_transaction(provider)
        fake_gateway.status = TransactionStatus.COMPLETED

        stats = RetryScheduler.run_due()

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stats == {"retried": 1, "rescheduled": 0, "exhausted": 0, "errors": 0}
        assert stored.status == TransactionStatus.COMPLETED
        assert stored.retry_count == 1
        assert stored.last_retry_at == timezone.now()

    @freeze_time(NOW)
    def test_unaccepted_transaction_is_resubmitted(self, provider, fake_gateway):
        txn = _due_transaction(provider, pending=True)

        stats = RetryScheduler.run_due()

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert fake_gateway.call_names() == ["payment"]
        assert stored.status == TransactionStatus.PROCESSING
        assert stored.provider_transaction_id == fake_gateway.last_reference
        assert stats["rescheduled"] == 1
        assert stored.next_retry_at == timezone.now() + timedelta(minutes=10)

    @freeze_time(NOW)
    def test_retryable_error_reschedules(self, provider, fake_gateway):
        txn = _due_transaction(provider)
        fake_gateway.error = ProviderUnavailableError("Maintenance", provider_code="airtel")

        stats = RetryScheduler.run_due()

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stats["rescheduled"] == 1
        assert stored.status == TransactionStatus.PROCESSING
        assert stored.failure_reason == "Maintenance"

    def test_permanent_error_fails(self, provider, fake_gateway):
        txn = _due_transaction(provider)
        fake_gateway.error = ProviderRejectedError("Unknown reference", provider_code="airtel")

        RetryScheduler.run_due()

        assert MomoTransaction.objects.get(pk=txn.pk).status == TransactionStatus.FAILED

    def test_max_attempts_fail_with_review(self, provider, fake_gateway):
        txn = _due_transaction(provider, retry_count=3)

        stats = RetryScheduler.run_due()

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stats["exhausted"] == 1
        assert stored.status == TransactionStatus.FAILED
        assert stored.requires_review is True
        assert fake_gateway.calls == [("status", txn.provider_transaction_id)]

    @freeze_time(NOW)
    def test_accepted_last_attempt_stays_live(self, provider, fake_gateway):
        txn = _due_transaction(provider, pending=True, retry_count=2)

        stats = RetryScheduler.run_due()

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stats["rescheduled"] == 1
        assert stored.status == TransactionStatus.PROCESSING
        assert stored.requires_review is False
        assert stored.retry_count == 3
        assert stored.provider_transaction_id == fake_gateway.last_reference
        assert stored.next_retry_at == timezone.now() + timedelta(minutes=20)

    def test_final_poll_can_still_complete(self, provider, fake_gateway):
        txn = _due_transaction(provider, retry_count=3)
        fake_gateway.status = TransactionStatus.COMPLETED

        stats = RetryScheduler.run_due()

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stats["retried"] == 1
        assert stored.status == TransactionStatus.COMPLETED
        assert stored.requires_review is False

    def test_row_finished_during_failed_poll_is_not_rescheduled(self, provider):
        txn = _due_transaction(provider, failure_reason="")

        def webhook_wins(ctx, polled):
            MomoTransaction.objects.filter(pk=polled.pk).update(
                status=TransactionStatus.COMPLETED, completed_at=timezone.now()
            )
            raise ProviderUnavailableError("Maintenance", provider_code="airtel")

        with patch(
            "momo.services.transaction_service.TransactionService.poll",
            side_effect=webhook_wins,
        ):
            stats = RetryScheduler.run_due()

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stats["retried"] == 1
        assert stored.status == TransactionStatus.COMPLETED
        assert stored.next_retry_at is None
        assert stored.failure_reason == ""

    def test_repeated_failures_end_in_review(self, provider, fake_gateway):
        txn = _due_transaction(provider)
        fake_gateway.error = ProviderUnavailableError("Maintenance", provider_code="airtel")

        with freeze_time(NOW) as frozen:
            for _ in range(4):
                MomoTransaction.objects.filter(pk=txn.pk).update(
                    next_retry_at=timezone.now() - timedelta(seconds=1)
                )
                RetryScheduler.run_due()
                frozen.tick(timedelta(hours=1))

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stored.retry_count == 3
        assert stored.status == TransactionStatus.FAILED
        assert stored.requires_review is True

    def test_concurrent_sweep_is_refused(self, provider, mock_redis):
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError):
            RetryScheduler.run_due()

    def test_sweep_releases_lock(self, provider, fake_gateway, mock_redis):
        RetryScheduler.run_due()

        key = mock_redis.set.call_args[0][0]
        assert key == "lock:momo:retry-sweep:all"
        mock_redis.eval.assert_called_once()

    def test_stale_row_is_counted_as_error(self, provider, fake_gateway):
        _due_transaction(provider)

        with patch(
            "momo.services.retry_scheduler.compare_and_swap",
            side_effect=StaleRecordError("moved"),
        ):
            stats = RetryScheduler.run_due()

        assert stats["errors"] == 1


@pytest.mark.django_db
class TestRetryAndExpiryTogether:
    def test_provider_outage_ends_in_review_not_expiry(self, ctx, provider, fake_gateway):
        fake_gateway.error = ProviderUnavailableError("Maintenance", provider_code="airtel")

        with freeze_time(NOW) as frozen:
            txn = TransactionService.initiate_payment(ctx, provider, "100", "0951234567")
            for _ in range(60):
                frozen.tick(timedelta(minutes=1))
                RetryScheduler.run_due()
                TransactionService.expire_stale(ctx)

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert stored.status == TransactionStatus.FAILED
        assert stored.retry_count == 3
        assert stored.requires_review is True
        actions = set(
            TransactionAuditLog.objects.filter(transaction=txn).values_list("action", flat=True)
        )
        assert {AuditAction.RETRY_EXHAUSTED, AuditAction.MANUAL_REVIEW} <= actions
