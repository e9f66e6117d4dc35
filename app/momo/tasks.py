"""
Celery tasks for mobile-money processing.

This module provides async tasks for:
- Processing stored provider webhooks
- Retrying failed webhooks and due transactions
- Polling providers for transactions still in flight
- Expiring transactions the provider never acknowledged
- Scheduled reconciliation
- Re-posting completed transactions whose ledger posting failed

Periodic schedules live in the django-celery-beat tables (see the
``0002_periodic_tasks`` migration).

Usage:
    from momo.tasks import process_momo_webhook

    transaction.on_commit(lambda: process_momo_webhook.delay(str(webhook.pk)))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.tenancy import TenantContext

from momo.exceptions import (
    LockAcquisitionError,
    MomoError,
    ProviderError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from momo.ledger.exceptions import LedgerError
from momo.ledger.posting import post_transaction
from momo.models import MomoProvider, MomoTransaction, MomoWebhook
from momo.services import (
    ReconciliationService,
    RetryScheduler,
    TransactionService,
    WebhookService,
)
from momo.state_machines import EventSource, TransactionStatus, WebhookStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STATUS_CHECK_MAX_RETRIES = 3
POSTING_BATCH_SIZE = 100


# =============================================================================
# Webhook Tasks
# =============================================================================


@shared_task(bind=True, acks_late=True)
def process_momo_webhook(self, webhook_id: str) -> dict:
    """
    Apply one stored webhook.

    Args:
        webhook_id: UUID of the MomoWebhook

    Returns:
        Dict with the webhook's resulting status
    """
    if isinstance(webhook_id, str):
        webhook_id = UUID(webhook_id)

    try:
        result = WebhookService.process(webhook_id)
    except MomoError as e:
        MomoWebhook.objects.filter(pk=webhook_id, status=WebhookStatus.PENDING).update(
            status=WebhookStatus.FAILED, error_message=e.message
        )
        logger.warning(
            "Webhook processing raised",
            extra={"webhook_pk": str(webhook_id), "error_code": e.error_code},
        )
        return {"status": "failed", "webhook_id": str(webhook_id), "error": e.message}

    if not result.success:
        return {"status": "failed", "webhook_id": str(webhook_id), "error": result.error}
    return {"status": result.data, "webhook_id": str(webhook_id)}


@shared_task
def retry_failed_webhooks() -> dict:
    """Periodic: re-process verified webhooks whose processing failed."""
    return WebhookService.retry_failed()


# =============================================================================
# Transaction Tasks
# =============================================================================


@shared_task
def retry_due_transactions() -> dict:
    """Periodic: run every retry that is due."""
    try:
        return RetryScheduler.run_due()
    except LockAcquisitionError:
        logger.info("Retry sweep already running, skipping")
        return {"status": "skipped"}


@shared_task(
    bind=True,
    autoretry_for=(ProviderTimeoutError, ProviderUnavailableError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": STATUS_CHECK_MAX_RETRIES},
)
def check_transaction_status(self, company_id: str, transaction_id: str) -> dict:
    """
    Poll the provider for one transaction.

    Timeouts and provider outages are retried by Celery; every other
    error is recorded and returned.
    """
    ctx = TenantContext(company_id=company_id, source=EventSource.POLL)
    try:
        txn = TransactionService.check_status(ctx, UUID(str(transaction_id)))
    except ProviderError as e:
        if e.is_retryable:
            raise
        logger.warning(
            "Status check rejected by provider",
            extra={"transaction_id": str(transaction_id), "error_code": e.error_code},
        )
        return {"status": "error", "transaction_id": str(transaction_id), "error": e.message}
    except BaseApplicationError as e:
        logger.info(
            "Status check skipped",
            extra={"transaction_id": str(transaction_id), "error_code": e.error_code},
        )
        return {"status": "skipped", "transaction_id": str(transaction_id), "error": e.message}

    return {"status": txn.status, "transaction_id": str(txn.pk)}


@shared_task
def check_pending_transaction_statuses(hours: int = 24, limit: int = 100) -> dict:
    """
    Periodic: queue a status poll for every in-flight transaction with a
    provider reference created in the last ``hours`` hours.
    """
    since = timezone.now() - timedelta(hours=hours)
    candidates = (
        MomoTransaction.objects.filter(
            status__in=[TransactionStatus.PENDING, TransactionStatus.PROCESSING],
            requires_review=False,
            created_at__gte=since,
        )
        .exclude(provider_transaction_id="", provider_reference="")
        .order_by("created_at")
        .values_list("company_id", "pk")[:limit]
    )

    queued = 0
    for company_id, transaction_id in candidates:
        check_transaction_status.delay(str(company_id), str(transaction_id))
        queued += 1

    logger.info("Queued transaction status checks", extra={"queued_count": queued})
    return {"queued_count": queued}


@shared_task
def expire_stale_transactions() -> dict:
    """Periodic: expire pending transactions the provider never acknowledged."""
    company_ids = (
        MomoTransaction.objects.filter(status=TransactionStatus.PENDING)
        .order_by("company_id")
        .values_list("company_id", flat=True)
        .distinct()
    )
    expired = 0
    for company_id in company_ids:
        ctx = TenantContext(company_id=company_id, source=EventSource.RETRY)
        expired += TransactionService.expire_stale(ctx)
    return {"expired_count": expired}


@shared_task
def post_unposted_transactions(limit: int = POSTING_BATCH_SIZE) -> dict:
    """Periodic: post completed transactions whose ledger posting failed."""
    pending = (
        MomoTransaction.objects.filter(
            status=TransactionStatus.COMPLETED, is_posted_to_ledger=False
        )
        .select_related("provider")
        .order_by("completed_at")[:limit]
    )

    posted = failed = 0
    for txn in pending:
        ctx = TenantContext(company_id=txn.company_id, source=EventSource.RETRY)
        try:
            post_transaction(ctx, txn)
        except LedgerError as e:
            failed += 1
            logger.error(
                "Ledger posting failed again",
                extra={"transaction_id": str(txn.pk), "error_code": e.error_code},
            )
            continue
        posted += 1

    if posted or failed:
        logger.info(
            "Ledger re-posting finished",
            extra={"posted_count": posted, "failed_count": failed},
        )
    return {"posted_count": posted, "failed_count": failed}


# =============================================================================
# Reconciliation Tasks
# =============================================================================


@shared_task
def run_scheduled_reconciliation(days: int = 1) -> dict:
    """
    Periodic: reconcile every active provider over the last ``days`` full days.

    Providers without a history endpoint are reported and skipped; they
    need an uploaded statement.
    """
    end_date = timezone.localdate() - timedelta(days=1)
    start_date = end_date - timedelta(days=max(days, 1) - 1)
    results = {"completed": 0, "skipped": 0, "failed": 0}

    providers = MomoProvider.objects.filter(
        is_active=True, company__is_active=True
    ).select_related("company")
    for provider in providers:
        ctx = TenantContext(company_id=provider.company_id, source=EventSource.RECONCILIATION)
        try:
            ReconciliationService.run(ctx, provider, start_date, end_date)
        except (LockAcquisitionError, MomoError, ProviderRejectedError) as e:
            results["skipped"] += 1
            logger.info(
                "Scheduled reconciliation skipped",
                extra={"provider": provider.code, "company_id": str(provider.company_id), "error_code": e.error_code},
            )
        except ProviderError as e:
            results["failed"] += 1
            logger.warning(
                "Scheduled reconciliation failed",
                extra={"provider": provider.code, "company_id": str(provider.company_id), "error_code": e.error_code},
            )
        else:
            results["completed"] += 1

    logger.info(
        "Scheduled reconciliation finished",
        extra={**results, "start_date": str(start_date), "end_date": str(end_date)},
    )
    return results


__all__ = [
    "check_pending_transaction_statuses",
    "check_transaction_status",
    "expire_stale_transactions",
    "post_unposted_transactions",
    "process_momo_webhook",
    "retry_due_transactions",
    "retry_failed_webhooks",
    "run_scheduled_reconciliation",
]
