"""
Tests for WebhookService: ingestion (signature, deduplication, storage)
and processing (correlation and applying reported statuses).

Webhooks are signed with the ``sign`` fixture and parsed by the
FakeGateway, whose payload is ``{"event_id", "reference", "status", ...}``.
"""

from decimal import Decimal

import pytest
from django.test import override_settings

from core.exceptions import NotFoundError
from core.helpers import compute_hmac_sha256, sha256_hex
from momo.ledger.models import LedgerEntry
from momo.models import MomoTransaction, MomoWebhook, TransactionAuditLog
from momo.services import TransactionService, WebhookService
from momo.state_machines import AuditAction, TransactionStatus, WebhookStatus
from momo.tests.factories import (
    WEBHOOK_SECRET,
    ProviderFactory,
    TransactionFactory,
    WebhookFactory,
)


def _payload(reference, status=TransactionStatus.COMPLETED, event_id="evt-1", **extra):
    return {"event_id": event_id, "reference": reference, "status": status, **extra}


@pytest.fixture
def deliver(provider, sign):
    """Ingest a signed payload and process it, like the view plus the task."""

    def _deliver(payload, headers=None):
        body, signature = sign(payload)
        webhook = WebhookService.ingest(
            provider, body, {"X-Signature": signature, **(headers or {})}, "10.0.0.1"
        )
        result = WebhookService.process(webhook.pk)
        return MomoWebhook.objects.get(pk=webhook.pk), result

    return _deliver


@pytest.mark.django_db
class TestIngest:
    def test_verified_webhook_is_stored_pending(self, provider, fake_gateway, sign):
        body, signature = sign(_payload("AIRTX1"))

        webhook = WebhookService.ingest(
            provider,
            body,
            {"X-Signature": signature, "Authorization": "Bearer secret"},
            "10.0.0.1",
        )

        assert webhook.status == WebhookStatus.PENDING
        assert webhook.signature_verified is True
        assert webhook.webhook_id == "evt-1"
        assert webhook.reference == "AIRTX1"
        assert webhook.ip_address == "10.0.0.1"
        assert "Authorization" not in webhook.headers

    def test_bad_signature_is_stored_failed(self, provider, fake_gateway, sign):
        body, _ = sign(_payload("AIRTX1"))
        _, forged = sign(_payload("AIRTX1"), secret="not-the-secret")

        webhook = WebhookService.ingest(provider, body, {"X-Signature": forged})

        assert webhook.status == WebhookStatus.FAILED
        assert webhook.signature_verified is False
        assert webhook.error_message == "Webhook signature verification failed"

    def test_forgery_cannot_claim_the_delivery_id(self, provider, fake_gateway, sign):
        body, signature = sign(_payload("AIRTX1"))
        WebhookService.ingest(provider, body, {"X-Signature": "forged"})

        genuine = WebhookService.ingest(provider, body, {"X-Signature": signature})

        assert genuine.status == WebhookStatus.PENDING
        assert genuine.is_duplicate is False

    def test_repeat_delivery_is_ignored_duplicate(self, provider, fake_gateway, sign):
        body, signature = sign(_payload("AIRTX1"))
        original = WebhookService.ingest(provider, body, {"X-Signature": signature})

        repeat = WebhookService.ingest(provider, body, {"X-Signature": signature})

        assert repeat.status == WebhookStatus.IGNORED
        assert repeat.is_duplicate is True
        assert repeat.duplicate_of_id == original.pk
        assert MomoWebhook.objects.filter(webhook_id="evt-1").count() == 2

    def test_same_event_id_from_another_provider_is_not_duplicate(
        self, company, provider, fake_gateway, sign
    ):
        mtn = ProviderFactory(company=company, code="mtn", name="MTN MoMo")
        body, signature = sign(_payload("AIRTX1"))

        WebhookService.ingest(provider, body, {"X-Signature": signature})
        other = WebhookService.ingest(mtn, body, {"X-Signature": signature})

        assert other.is_duplicate is False

    def test_unparseable_body_is_stored_with_fingerprint_id(self, provider, fake_gateway):
        body = b"not json"
        webhook = WebhookService.ingest(
            provider, body, {"X-Signature": compute_hmac_sha256(body, WEBHOOK_SECRET)}
        )

        assert webhook.webhook_id == sha256_hex(body)
        assert webhook.payload == {}


@pytest.mark.django_db
class TestProcess:
    def test_completed_webhook_completes_transaction(self, provider, fake_gateway, deliver):
        txn = TransactionFactory(provider=provider, fee_amount=Decimal("2.00"))

        webhook, result = deliver(_payload(txn.provider_transaction_id))

        stored = MomoTransaction.objects.get(pk=txn.pk)
        assert result.success
        assert result.data == WebhookStatus.PROCESSED
        assert webhook.transaction_id == txn.pk
        assert stored.status == TransactionStatus.COMPLETED
        assert LedgerEntry.objects.filter(reference_id=txn.pk).count() == 2

    def test_transaction_number_is_accepted_as_reference(self, provider, fake_gateway, deliver):
        txn = TransactionFactory(provider=provider)

        deliver(_payload(txn.transaction_number, status=TransactionStatus.FAILED))

        assert MomoTransaction.objects.get(pk=txn.pk).status == TransactionStatus.FAILED

    def test_duplicate_delivery_changes_nothing_and_is_audited(
        self, provider, fake_gateway, deliver
    ):
        txn = TransactionFactory(provider=provider)
        payload = _payload(txn.provider_transaction_id)
        deliver(payload)
        version = MomoTransaction.objects.get(pk=txn.pk).version

        repeat, result = deliver(payload)

        assert repeat.status == WebhookStatus.IGNORED
        assert result.data == WebhookStatus.IGNORED
        assert MomoTransaction.objects.get(pk=txn.pk).version == version
        assert TransactionAuditLog.objects.filter(
            transaction=txn, action=AuditAction.DUPLICATE_WEBHOOK
        ).count() == 1
        assert LedgerEntry.objects.filter(reference_id=txn.pk).count() == 1

    def test_terminal_transaction_ignores_later_status(self, provider, fake_gateway, deliver):
        txn = TransactionFactory(provider=provider, completed=True)

        webhook, _ = deliver(_payload(txn.provider_transaction_id, status=TransactionStatus.FAILED))

        assert webhook.status == WebhookStatus.IGNORED
        assert MomoTransaction.objects.get(pk=txn.pk).status == TransactionStatus.COMPLETED
        assert TransactionAuditLog.objects.filter(
            transaction=txn, action=AuditAction.TERMINAL_IGNORED
        ).exists()

    @pytest.mark.parametrize(
        "status", [TransactionStatus.PENDING, TransactionStatus.COMPLETED, "unknown"]
    )
    def test_terminal_transaction_ignores_non_moving_status(
        self, provider, fake_gateway, deliver, status
    ):
        txn = TransactionFactory(provider=provider, completed=True)

        webhook, result = deliver(_payload(txn.provider_transaction_id, status=status))

        assert webhook.status == WebhookStatus.IGNORED
        assert result.data == WebhookStatus.IGNORED
        assert "already completed" in webhook.processing_notes
        assert MomoTransaction.objects.get(pk=txn.pk).version == txn.version
        assert TransactionAuditLog.objects.filter(
            transaction=txn, action=AuditAction.TERMINAL_IGNORED
        ).count() == 1

    def test_pending_status_is_processed_without_change(self, provider, fake_gateway, deliver):
        txn = TransactionFactory(provider=provider)

        webhook, _ = deliver(_payload(txn.provider_transaction_id, status=TransactionStatus.PENDING))

        assert webhook.status == WebhookStatus.PROCESSED
        assert MomoTransaction.objects.get(pk=txn.pk).version == txn.version

    def test_reference_from_another_company_is_never_matched(
        self, other_provider, provider, fake_gateway, deliver
    ):
        foreign = TransactionFactory(provider=other_provider)

        webhook, result = deliver(_payload(foreign.provider_transaction_id))

        assert result.data == "awaiting"
        assert webhook.status == WebhookStatus.PENDING
        assert MomoTransaction.objects.get(pk=foreign.pk).status == TransactionStatus.PROCESSING

    def test_payload_without_reference_fails(self, provider, fake_gateway, deliver):
        webhook, result = deliver({"event_id": "evt-empty", "status": "completed"})

        assert result.success is False
        assert webhook.status == WebhookStatus.FAILED

    def test_amount_mismatch_is_recorded_in_audit(self, provider, fake_gateway, deliver):
        txn = TransactionFactory(provider=provider)

        deliver(_payload(txn.provider_transaction_id, amount="90.00"))

        entry = TransactionAuditLog.objects.get(
            transaction=txn, action=AuditAction.STATUS_CHANGED
        )
        assert entry.context["reported_amount"] == "90.00"

    def test_already_processed_webhook_is_not_reapplied(self, provider, fake_gateway, deliver):
        txn = TransactionFactory(provider=provider)
        webhook, _ = deliver(_payload(txn.provider_transaction_id))

        result = WebhookService.process(webhook.pk)

        assert result.data == WebhookStatus.PROCESSED
        assert TransactionAuditLog.objects.filter(
            transaction=txn, action=AuditAction.STATUS_CHANGED
        ).count() == 1


@pytest.mark.django_db
class TestCorrelation:
    def test_webhook_before_transaction_is_applied_on_acceptance(
        self, ctx, provider, fake_gateway, deliver
    ):
        webhook, result = deliver(_payload("FAKE000001"))
        assert result.data == "awaiting"

        txn = TransactionService.initiate_payment(ctx, provider, "100", "0951234567")

        assert txn.status == TransactionStatus.COMPLETED
        assert MomoWebhook.objects.get(pk=webhook.pk).status == WebhookStatus.PROCESSED

    def test_correlate_pending_applies_every_waiting_webhook(
        self, ctx, provider, fake_gateway, deliver
    ):
        txn = TransactionFactory(provider=provider, pending=True)
        deliver(_payload("LATE1", status=TransactionStatus.PROCESSING, event_id="evt-a"))
        deliver(_payload("LATE1", status=TransactionStatus.FAILED, event_id="evt-b"))
        MomoTransaction.objects.filter(pk=txn.pk).update(provider_transaction_id="LATE1")

        processed = WebhookService.correlate_pending(ctx, MomoTransaction.objects.get(pk=txn.pk))

        assert processed == 2
        assert MomoTransaction.objects.get(pk=txn.pk).status == TransactionStatus.FAILED

    def test_nothing_to_correlate_without_reference(self, ctx, provider):
        txn = TransactionFactory(provider=provider, pending=True)

        assert WebhookService.correlate_pending(ctx, txn) == 0


@pytest.mark.django_db
class TestRetryFailed:
    def test_failed_processing_is_retried(self, provider, fake_gateway):
        txn = TransactionFactory(provider=provider)
        webhook = WebhookFactory(
            provider=provider,
            status=WebhookStatus.FAILED,
            payload=_payload(txn.provider_transaction_id, event_id="evt-retry"),
        )

        stats = WebhookService.retry_failed()

        stored = MomoWebhook.objects.get(pk=webhook.pk)
        assert stats == {"retried": 1, "processed": 1, "failed": 0}
        assert stored.status == WebhookStatus.PROCESSED
        assert stored.retry_count == 1
        assert MomoTransaction.objects.get(pk=txn.pk).status == TransactionStatus.COMPLETED

    def test_bad_signatures_and_duplicates_are_never_retried(self, provider, fake_gateway):
        WebhookFactory(provider=provider, status=WebhookStatus.FAILED, signature_verified=False)
        WebhookFactory(provider=provider, status=WebhookStatus.FAILED, is_duplicate=True)

        assert WebhookService.retry_failed()["retried"] == 0

    @override_settings(MOMO_WEBHOOK_MAX_RETRIES=2)
    def test_retry_limit(self, provider, fake_gateway):
        WebhookFactory(provider=provider, status=WebhookStatus.FAILED, retry_count=2)

        assert WebhookService.retry_failed()["retried"] == 0


@pytest.mark.django_db
class TestResolveProvider:
    def test_resolves_by_company_slug_and_code(self, company, provider):
        assert WebhookService.resolve_provider(company.slug, "airtel") == provider

    @pytest.mark.parametrize("slug, code", [("nope", "airtel"), (None, "mtn")])
    def test_unknown_endpoint(self, company, provider, slug, code):
        with pytest.raises(NotFoundError) as exc_info:
            WebhookService.resolve_provider(slug or company.slug, code)

        assert exc_info.value.error_code == "MOMO_PROVIDER_NOT_FOUND"

    def test_inactive_provider_has_no_endpoint(self, company, provider):
        provider.is_active = False
        provider.save()

        with pytest.raises(NotFoundError):
            WebhookService.resolve_provider(company.slug, "airtel")
