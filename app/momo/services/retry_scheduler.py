"""
Retry scheduler for failed and ambiguous transactions.

A transaction is retried when it is non-terminal and either hit a
retryable ProviderError or has had no final provider answer within the
status timeout. Each attempt either re-submits the request (no provider
reference yet) or polls the provider for the status.

Policy (per transaction):
    max_attempts:            company override -> provider -> settings
    delay_minutes:           company override -> provider -> settings
    status_timeout_minutes:  company override -> provider -> settings

The delay doubles per attempt and is capped at ``MAX_BACKOFF_FACTOR``
times the configured delay. Once ``retry_count`` passes ``max_attempts``
the transaction is failed, flagged for review and never retried again.

Usage:
    from momo.services import RetryScheduler

    RetryScheduler.schedule(ctx, txn, reason="Provider timed out")
    RetryScheduler.run_due()  # Celery beat, every minute
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from core.tenancy import TenantContext

from momo.exceptions import (
    LockAcquisitionError,
    MomoError,
    ProviderError,
    StaleRecordError,
    TerminalStateViolation,
)
from momo.locks import DistributedLock, compare_and_swap
from momo.models import MomoTransaction, TransactionAuditLog
from momo.services.state_machine import TransactionStateMachine
from momo.signals import transaction_requires_review
from momo.state_machines import (
    TERMINAL_STATUSES,
    AuditAction,
    EventSource,
    TransactionStatus,
)

if TYPE_CHECKING:
    from datetime import datetime

MAX_BACKOFF_FACTOR = 4
SWEEP_LOCK_TTL = 300
SWEEP_BATCH_SIZE = 100


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits in force for one transaction."""

    max_attempts: int
    delay_minutes: int
    status_timeout_minutes: int

    @classmethod
    def for_transaction(cls, txn: MomoTransaction) -> RetryPolicy:
        provider = txn.provider
        company = txn.company

        def resolve(key: str, provider_value, default):
            value = provider_value if provider_value is not None else default
            return int(company.momo_setting(key, value))

        return cls(
            max_attempts=resolve(
                "max_retry_attempts",
                provider.max_retry_attempts,
                settings.MOMO_MAX_RETRY_ATTEMPTS,
            ),
            delay_minutes=resolve(
                "retry_delay_minutes",
                provider.retry_delay_minutes,
                settings.MOMO_RETRY_DELAY_MINUTES,
            ),
            status_timeout_minutes=resolve(
                "status_timeout_minutes",
                provider.status_timeout_minutes,
                settings.MOMO_STATUS_TIMEOUT_MINUTES,
            ),
        )

    def delay_for(self, attempt: int) -> timedelta:
        """Delay before attempt number ``attempt`` (1-based)."""
        factor = min(2 ** max(attempt - 1, 0), MAX_BACKOFF_FACTOR)
        return timedelta(minutes=self.delay_minutes * factor)

    def is_exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_attempts


class RetryScheduler(BaseService):
    """Schedules and runs retries."""

    @classmethod
    def schedule(
        cls,
        ctx: TenantContext,
        txn: MomoTransaction,
        reason: str = "",
        check_exhausted: bool = True,
    ) -> MomoTransaction:
        """
        Set ``next_retry_at`` for the transaction's next attempt.

        Terminal transactions are left alone. When the policy is already
        exhausted the transaction is failed for review instead, unless
        ``check_exhausted`` is False: an attempt the provider just accepted
        gets a follow-up poll, and exhaustion waits until that poll is due.
        """
        if txn.is_terminal:
            return txn

        policy = RetryPolicy.for_transaction(txn)
        if check_exhausted and policy.is_exhausted(txn.retry_count):
            cls.exhaust(ctx, txn, reason)
            return txn

        txn.next_retry_at = timezone.now() + policy.delay_for(txn.retry_count + 1)
        if reason:
            txn.failure_reason = reason
        txn.save(update_fields=["next_retry_at", "failure_reason"])

        TransactionAuditLog.record(
            ctx,
            txn,
            AuditAction.RETRY_SCHEDULED,
            message=reason,
            context={
                "retry_count": txn.retry_count,
                "next_retry_at": txn.next_retry_at.isoformat(),
            },
        )
        cls.get_logger().info(
            "Scheduled transaction retry",
            extra={
                "transaction_id": str(txn.pk),
                "retry_count": txn.retry_count,
                "next_retry_at": txn.next_retry_at.isoformat(),
            },
        )
        return txn

    @classmethod
    def exhaust(cls, ctx: TenantContext, txn: MomoTransaction, reason: str = "") -> None:
        """Fail a transaction that has used up its retries and flag it for review."""
        ctx = ctx.with_source(EventSource.RETRY)
        reason = reason or txn.failure_reason or "Retry attempts exhausted"
        moved = TransactionStateMachine.apply(
            ctx,
            txn.pk,
            TransactionStatus.FAILED,
            reason=reason,
            changes={"requires_review": True},
            context={"retry_count": txn.retry_count},
        )
        if moved is None:
            return

        TransactionAuditLog.record(
            ctx, moved, AuditAction.RETRY_EXHAUSTED,
            message=reason, context={"retry_count": moved.retry_count},
        )
        TransactionAuditLog.record(
            ctx, moved, AuditAction.MANUAL_REVIEW,
            message="Retries exhausted; flagged for manual review",
        )
        transaction.on_commit(
            lambda: transaction_requires_review.send(
                sender=MomoTransaction,
                company_id=ctx.company_id,
                transaction_id=moved.pk,
                reason=reason,
            )
        )
        cls.get_logger().warning(
            "Transaction retries exhausted",
            extra={"transaction_id": str(moved.pk), "retry_count": moved.retry_count},
        )

    @classmethod
    def due(
        cls,
        ctx: TenantContext | None = None,
        now: datetime | None = None,
        limit: int = SWEEP_BATCH_SIZE,
    ) -> list[MomoTransaction]:
        """
        Non-terminal transactions whose retry is due, plus unscheduled ones
        whose status has gone unanswered past their status timeout.
        """
        now = now or timezone.now()
        queryset = MomoTransaction.objects.all()
        if ctx is not None:
            queryset = queryset.for_tenant(ctx)
        queryset = (
            queryset.exclude(status__in=TERMINAL_STATUSES)
            .filter(requires_review=False)
            .select_related("provider", "company")
        )

        due = list(queryset.filter(next_retry_at__lte=now).order_by("next_retry_at")[:limit])
        for txn in queryset.filter(next_retry_at__isnull=True).order_by("updated_at"):
            if len(due) >= limit:
                break
            timeout = timedelta(
                minutes=RetryPolicy.for_transaction(txn).status_timeout_minutes
            )
            if txn.updated_at <= now - timeout:
                due.append(txn)
        return due

    @classmethod
    def run_due(cls, ctx: TenantContext | None = None, limit: int = SWEEP_BATCH_SIZE) -> dict:
        """
        Retry everything that is due.

        One sweep runs at a time; a second caller gets LockAcquisitionError.

        Returns:
            Counts of retried, completed, rescheduled, exhausted and errored
        """
        lock_key = f"momo:retry-sweep:{ctx.company_id if ctx else 'all'}"
        stats = {"retried": 0, "rescheduled": 0, "exhausted": 0, "errors": 0}

        with DistributedLock(lock_key, ttl=SWEEP_LOCK_TTL, blocking=False):
            for txn in cls.due(ctx, limit=limit):
                txn_ctx = TenantContext(company_id=txn.company_id, source=EventSource.RETRY)
                result = cls.retry_transaction(txn_ctx, txn)
                if result.success:
                    stats[result.data] = stats.get(result.data, 0) + 1
                else:
                    stats["errors"] += 1

        cls.get_logger().info("Retry sweep finished", extra=stats)
        return stats

    @classmethod
    def retry_transaction(cls, ctx: TenantContext, txn: MomoTransaction) -> ServiceResult[str]:
        """
        Make one attempt for one transaction.

        Returns:
            ServiceResult with the outcome name (retried, rescheduled, exhausted)
        """
        from momo.services.transaction_service import TransactionService

        if txn.is_terminal:
            return ServiceResult.success("retried")

        policy = RetryPolicy.for_transaction(txn)
        if policy.is_exhausted(txn.retry_count):
            if txn.provider_key and cls._final_poll(ctx, txn):
                return ServiceResult.success("retried")
            cls.exhaust(ctx, txn)
            return ServiceResult.success("exhausted")

        now = timezone.now()
        try:
            txn.version = compare_and_swap(
                MomoTransaction,
                txn.pk,
                expected={"status": txn.status, "version": txn.version},
                changes={
                    "retry_count": txn.retry_count + 1,
                    "last_retry_at": now,
                    "next_retry_at": None,
                },
            )
        except StaleRecordError as e:
            return cls.handle_exception(e, f"Retry of {txn.pk} skipped", logging.INFO)
        txn.retry_count += 1
        txn.last_retry_at = now
        txn.next_retry_at = None

        try:
            if txn.provider_key:
                updated = TransactionService.poll(ctx, txn)
            else:
                updated = TransactionService.submit(ctx, txn)
        except ProviderError as e:
            if e.is_retryable:
                # A webhook may have finished the row while we were waiting
                current = MomoTransaction.objects.for_tenant(ctx).select_related(
                    "provider", "company"
                ).get(pk=txn.pk)
                if current.is_terminal:
                    return ServiceResult.success("retried")
                cls.schedule(ctx, current, reason=e.message)
                return ServiceResult.success("rescheduled")
            TransactionStateMachine.apply(
                ctx, txn.pk, TransactionStatus.FAILED, reason=e.message
            )
            return ServiceResult.success("retried")
        except (TerminalStateViolation, StaleRecordError, LockAcquisitionError) as e:
            return cls.handle_exception(e, f"Retry of {txn.pk} skipped", logging.INFO)
        except MomoError as e:
            return cls.handle_exception(e, f"Retry of {txn.pk} failed")

        if not updated.is_terminal:
            cls.schedule(
                ctx, updated, reason=updated.failure_reason, check_exhausted=False
            )
            return ServiceResult.success("rescheduled")
        return ServiceResult.success("retried")

    @classmethod
    def _final_poll(cls, ctx: TenantContext, txn: MomoTransaction) -> bool:
        """Ask the provider once more before giving up; True if that settled it."""
        from momo.services.transaction_service import TransactionService

        try:
            return TransactionService.poll(ctx, txn).is_terminal
        except MomoError as e:
            cls.get_logger().info(
                "Final status poll failed",
                extra={"transaction_id": str(txn.pk), "error_code": e.error_code},
            )
            return False
