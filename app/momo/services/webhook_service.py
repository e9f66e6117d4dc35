"""
Webhook ingestion and processing.

Ingestion (HTTP view, synchronous):
    1. Verify the signature; failures are stored as FAILED and go no further
    2. Deduplicate on (provider, webhook_id) before anything else happens
    3. Store the verified original as PENDING

Processing (Celery task ``process_momo_webhook``):
    4. Parse the payload into a WebhookEvent
    5. Find the transaction by provider reference within the company
    6. Apply the reported status through TransactionStateMachine

A webhook whose transaction doesn't exist yet stays PENDING with its
reference stored. ``correlate_pending`` applies it once the transaction
learns its provider reference.

Usage:
    from momo.services import WebhookService

    webhook = WebhookService.ingest(provider, request.body, request.headers, ip)
    result = WebhookService.process(webhook.pk)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from core.exceptions import NotFoundError
from core.services import BaseService, ServiceResult
from core.tenancy import TenantContext

from momo.exceptions import (
    DuplicateError,
    InvalidStateTransitionError,
    MomoError,
    SignatureError,
    StaleRecordError,
    TerminalStateViolation,
)
from momo.models import MomoProvider, MomoTransaction, MomoWebhook, TransactionAuditLog
from momo.providers import UNKNOWN_STATUS, get_gateway
from momo.services.state_machine import TransactionStateMachine
from momo.state_machines import (
    AuditAction,
    EventSource,
    TransactionStatus,
    WebhookStatus,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Mapping
    from typing import Any

    from momo.providers import WebhookEvent

# Never persisted with the delivery
SKIPPED_HEADERS = frozenset({"authorization", "cookie", "proxy-authorization"})


class WebhookService(BaseService):
    """Verifies, deduplicates, stores and applies provider callbacks."""

    @classmethod
    def resolve_provider(cls, company_slug: str, provider_code: str) -> MomoProvider:
        """
        Raises:
            NotFoundError: Unknown company, provider or inactive provider
        """
        provider = (
            MomoProvider.objects.select_related("company")
            .filter(
                company__slug=company_slug,
                company__is_active=True,
                code=provider_code,
                is_active=True,
            )
            .first()
        )
        if provider is None:
            raise NotFoundError(
                "Webhook endpoint not found",
                error_code="MOMO_PROVIDER_NOT_FOUND",
                details={"company": company_slug, "provider": provider_code},
            )
        return provider

    # =========================================================================
    # Ingestion
    # =========================================================================

    @classmethod
    def ingest(
        cls,
        provider: MomoProvider,
        raw_body: bytes,
        headers: Mapping[str, str],
        ip_address: str | None = None,
    ) -> MomoWebhook:
        """
        Store one delivery, verified or not.

        Returns:
            The stored webhook. ``status`` tells the caller what happened:
            FAILED (bad signature), IGNORED (duplicate) or PENDING (queued)
        """
        logger = cls.get_logger()
        gateway = get_gateway(provider)
        payload = cls._load_payload(raw_body)
        signature = gateway.signature_from_headers(headers)

        row = {
            "company_id": provider.company_id,
            "provider": provider,
            "webhook_id": gateway.webhook_id_from(payload, raw_body)[:255],
            "headers": {
                name: value
                for name, value in headers.items()
                if name.lower() not in SKIPPED_HEADERS
            },
            "payload": payload,
            "raw_body": raw_body.decode("utf-8", errors="replace"),
            "signature": signature[:512],
            "ip_address": ip_address,
        }

        if not gateway.verify_webhook_signature(raw_body, signature):
            error = SignatureError(
                "Webhook signature verification failed",
                details={"provider": provider.code, "webhook_id": row["webhook_id"]},
            )
            webhook = MomoWebhook.objects.create(
                **row,
                status=WebhookStatus.FAILED,
                signature_verified=False,
                error_message=error.message,
            )
            logger.warning(
                "Rejected webhook with invalid signature",
                extra={
                    "error_code": error.error_code,
                    "webhook_pk": str(webhook.pk),
                    "provider": provider.code,
                    "ip_address": ip_address,
                },
            )
            return webhook

        event = cls._parse_or_none(provider, payload)
        if event is not None:
            row["reference"] = event.reference[:255]
            row["event_type"] = event.event_type[:100]

        try:
            with transaction.atomic():
                webhook = MomoWebhook.objects.create(
                    **row,
                    status=WebhookStatus.PENDING,
                    signature_verified=True,
                )
        except IntegrityError:
            return cls._store_duplicate(provider, row)

        logger.info(
            "Stored webhook",
            extra={
                "webhook_pk": str(webhook.pk),
                "webhook_id": webhook.webhook_id,
                "provider": provider.code,
                "reference": webhook.reference,
            },
        )
        return webhook

    @classmethod
    def _store_duplicate(cls, provider: MomoProvider, row: dict[str, Any]) -> MomoWebhook:
        original = (
            MomoWebhook.objects.filter(
                provider=provider,
                webhook_id=row["webhook_id"],
                is_duplicate=False,
                signature_verified=True,
            )
            .select_related("transaction")
            .first()
        )
        error = DuplicateError(
            "Webhook already received",
            details={
                "webhook_id": row["webhook_id"],
                "original_id": str(original.pk) if original else None,
            },
        )
        webhook = MomoWebhook.objects.create(
            **row,
            status=WebhookStatus.IGNORED,
            signature_verified=True,
            is_duplicate=True,
            duplicate_of=original,
            processed_at=timezone.now(),
            processing_notes=error.message,
        )

        if original is not None and original.transaction is not None:
            ctx = TenantContext(company_id=provider.company_id, source=EventSource.WEBHOOK)
            TransactionAuditLog.record(
                ctx,
                original.transaction,
                AuditAction.DUPLICATE_WEBHOOK,
                message=error.message,
                context={
                    "webhook_id": webhook.webhook_id,
                    "original_webhook": str(original.pk),
                    "duplicate_webhook": str(webhook.pk),
                },
            )

        cls.get_logger().info(
            "Ignored duplicate webhook",
            extra={"error_code": error.error_code, **error.details},
        )
        return webhook

    @staticmethod
    def _load_payload(raw_body: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    @classmethod
    def _parse_or_none(cls, provider: MomoProvider, payload: dict[str, Any]) -> WebhookEvent | None:
        if not payload:
            return None
        try:
            return get_gateway(provider).parse_webhook(payload)
        except (KeyError, TypeError, ValueError, AttributeError):
            return None

    # =========================================================================
    # Processing
    # =========================================================================

    @classmethod
    def process(cls, webhook_id: uuid.UUID) -> ServiceResult[str]:
        """
        Apply one stored webhook.

        Returns:
            ServiceResult with the webhook's resulting status, or ``awaiting``
            when its transaction hasn't appeared yet
        """
        webhook = (
            MomoWebhook.objects.select_related("provider")
            .filter(pk=webhook_id)
            .first()
        )
        if webhook is None:
            return ServiceResult.failure(
                "Webhook not found",
                error_code="MOMO_WEBHOOK_NOT_FOUND",
                details={"webhook_id": str(webhook_id)},
            )
        if (
            webhook.status != WebhookStatus.PENDING
            or webhook.is_duplicate
            or not webhook.signature_verified
        ):
            return ServiceResult.success(webhook.status)

        ctx = TenantContext(company_id=webhook.company_id, source=EventSource.WEBHOOK)
        event = cls._parse_or_none(webhook.provider, webhook.payload)
        if event is None or not event.reference:
            return cls._fail(webhook, "Payload carries no transaction reference")

        webhook.reference = event.reference[:255]
        webhook.event_type = event.event_type[:100]
        txn = cls.find_transaction(ctx, webhook.provider, event.reference)
        if txn is None:
            webhook.processing_notes = "Waiting for a transaction with this reference"
            webhook.save(update_fields=["reference", "event_type", "processing_notes", "updated_at"])
            cls.get_logger().info(
                "Webhook awaiting correlation",
                extra={"webhook_pk": str(webhook.pk), "reference": event.reference},
            )
            return ServiceResult.success("awaiting")

        return cls._apply_event(ctx, webhook, txn, event)

    @classmethod
    def _apply_event(
        cls,
        ctx: TenantContext,
        webhook: MomoWebhook,
        txn: MomoTransaction,
        event: WebhookEvent,
    ) -> ServiceResult[str]:
        webhook.transaction = txn
        context = {
            "webhook_id": webhook.webhook_id,
            "webhook_pk": str(webhook.pk),
            "event_type": event.event_type,
        }
        if event.amount is not None and event.amount != txn.amount:
            context["reported_amount"] = str(event.amount)
            cls.get_logger().warning(
                "Webhook amount differs from transaction amount",
                extra={
                    "transaction_id": str(txn.pk),
                    "amount": str(txn.amount),
                    "reported_amount": str(event.amount),
                },
            )

        if txn.is_terminal:
            violation = TerminalStateViolation(
                f"Transaction {txn.transaction_number} is already {txn.status}",
                details={"current_state": txn.status, "target_state": event.status},
            )
            TransactionStateMachine.record_terminal_ignored(
                ctx, txn.pk, event.status, violation, context
            )
            webhook.mark_ignored(violation.message)
            return cls._save_outcome(webhook)

        if event.status in (TransactionStatus.PENDING, UNKNOWN_STATUS) or (
            event.status == txn.status
        ):
            webhook.mark_processed(notes=f"No status change ({event.status})")
            return cls._save_outcome(webhook)

        try:
            moved = TransactionStateMachine.apply(
                ctx,
                txn.pk,
                event.status,
                reason=event.message,
                context=context,
            )
        except (InvalidStateTransitionError, StaleRecordError) as e:
            cls._fail(webhook, e.message)
            return cls.handle_exception(e, f"Webhook {webhook.pk} not applied", logging.WARNING)

        if moved is None:
            txn.refresh_from_db(fields=["status"])
            webhook.mark_ignored(f"Transaction already {txn.status}")
        else:
            webhook.mark_processed(notes=f"{txn.status} -> {moved.status}")
        return cls._save_outcome(webhook)

    @staticmethod
    def _save_outcome(webhook: MomoWebhook) -> ServiceResult[str]:
        webhook.save(
            update_fields=[
                "transaction",
                "reference",
                "event_type",
                "status",
                "processed_at",
                "processing_notes",
                "error_message",
                "updated_at",
            ]
        )
        return ServiceResult.success(webhook.status)

    @classmethod
    def _fail(cls, webhook: MomoWebhook, message: str) -> ServiceResult[str]:
        webhook.mark_failed(message)
        webhook.save(
            update_fields=["transaction", "reference", "event_type", "status", "error_message", "updated_at"]
        )
        cls.get_logger().warning(
            "Webhook processing failed",
            extra={"webhook_pk": str(webhook.pk), "reason": message},
        )
        return ServiceResult.failure(message, error_code="WEBHOOK_PROCESSING_FAILED")

    @staticmethod
    def find_transaction(
        ctx: TenantContext,
        provider: MomoProvider,
        reference: str,
    ) -> MomoTransaction | None:
        """The company's transaction the provider knows as ``reference``."""
        return (
            MomoTransaction.objects.for_tenant(ctx)
            .filter(provider=provider)
            .filter(
                Q(provider_transaction_id=reference)
                | Q(provider_reference=reference)
                | Q(transaction_number=reference)
            )
            .first()
        )

    @classmethod
    def correlate_pending(cls, ctx: TenantContext, txn: MomoTransaction) -> int:
        """
        Apply webhooks that arrived before ``txn`` had its provider reference,
        oldest first.

        Returns:
            Number of webhooks processed
        """
        references = {txn.provider_transaction_id, txn.provider_reference} - {""}
        if not references:
            return 0

        waiting = (
            MomoWebhook.objects.for_tenant(ctx)
            .awaiting_correlation()
            .filter(provider_id=txn.provider_id, reference__in=references)
            .order_by("created_at")
            .values_list("pk", flat=True)
        )
        processed = 0
        for webhook_pk in waiting:
            cls.process(webhook_pk)
            processed += 1

        if processed:
            cls.get_logger().info(
                "Correlated waiting webhooks",
                extra={"transaction_id": str(txn.pk), "count": processed},
            )
        return processed

    @classmethod
    def retry_failed(cls, limit: int | None = None) -> dict[str, int]:
        """
        Re-process verified originals whose processing failed.

        Bad signatures and duplicates are never retried.
        """
        limit = limit or settings.MOMO_WEBHOOK_BATCH_SIZE
        candidates = list(
            MomoWebhook.objects.filter(
                status=WebhookStatus.FAILED,
                signature_verified=True,
                is_duplicate=False,
                retry_count__lt=settings.MOMO_WEBHOOK_MAX_RETRIES,
            )
            .order_by("created_at")
            .values_list("pk", "retry_count")[:limit]
        )

        stats = {"retried": 0, "processed": 0, "failed": 0}
        for webhook_pk, retry_count in candidates:
            reset = MomoWebhook.objects.filter(
                pk=webhook_pk, status=WebhookStatus.FAILED
            ).update(
                status=WebhookStatus.PENDING,
                retry_count=retry_count + 1,
                last_retry_at=timezone.now(),
                error_message="",
            )
            if not reset:
                continue
            stats["retried"] += 1
            try:
                result = cls.process(webhook_pk)
            except MomoError as e:
                cls.handle_exception(e, f"Retry of webhook {webhook_pk} failed")
                MomoWebhook.objects.filter(pk=webhook_pk).update(
                    status=WebhookStatus.FAILED, error_message=e.message
                )
                stats["failed"] += 1
                continue
            stats["processed" if result.success else "failed"] += 1

        cls.get_logger().info("Webhook retry finished", extra=stats)
        return stats
