"""
MomoWebhook model for provider callback tracking.

Every inbound callback is stored, including ones with bad signatures
and duplicates, so the true outcome of each delivery is recorded even
though the provider always gets a 200.

Deduplication:
    The first verified delivery of (provider, webhook_id) holds a partial
    unique constraint (``is_duplicate=False``, ``signature_verified=True``);
    unsigned forgeries can never claim it. Repeats are stored with
    ``is_duplicate=True`` and ``status=ignored`` and never touch a
    transaction.

Usage:
    from momo.models import MomoWebhook

    waiting = MomoWebhook.objects.for_tenant(ctx).awaiting_correlation()
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.managers import TenantScopedManager, TenantScopedQuerySet
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from momo.state_machines import WebhookStatus


class MomoWebhookQuerySet(TenantScopedQuerySet):
    def originals(self):
        return self.filter(is_duplicate=False)

    def awaiting_correlation(self):
        """Verified originals still waiting for their transaction to appear."""
        return self.filter(
            status=WebhookStatus.PENDING,
            signature_verified=True,
            is_duplicate=False,
            transaction__isnull=True,
        ).exclude(reference="")


class MomoWebhook(UUIDPrimaryKeyMixin, BaseModel):
    """
    One inbound provider callback.

    Processing Flow:
        1. View resolves provider from URL, stores row (verified or not)
        2. Bad signature -> FAILED, signature_verified=False
        3. Repeat of (provider, webhook_id) -> IGNORED, is_duplicate=True
        4. Task parses payload, looks up transaction by provider reference
        5. No transaction yet -> stays PENDING with ``reference`` stored
        6. Transition applied -> PROCESSED (or IGNORED for terminal transactions)
    """

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="momo_webhooks",
    )
    provider = models.ForeignKey(
        "momo.MomoProvider",
        on_delete=models.PROTECT,
        related_name="webhooks",
    )
    transaction = models.ForeignKey(
        "momo.MomoTransaction",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhooks",
    )

    # ==========================================================================
    # Delivery
    # ==========================================================================

    webhook_id = models.CharField(
        max_length=255,
        help_text="Provider event id, or SHA-256 of the raw body when absent",
    )
    event_type = models.CharField(max_length=100, blank=True, default="")
    headers = models.JSONField(default=dict, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    raw_body = models.TextField(blank=True, default="")
    signature = models.CharField(max_length=512, blank=True, default="")
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Provider transaction reference extracted from the payload",
    )

    # ==========================================================================
    # Processing
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookStatus.choices,
        default=WebhookStatus.PENDING,
        db_index=True,
    )
    signature_verified = models.BooleanField(default=False)
    is_duplicate = models.BooleanField(default=False)
    duplicate_of = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="duplicates",
    )
    processing_notes = models.TextField(blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    retry_count = models.PositiveIntegerField(default=0)
    processed_at = models.DateTimeField(null=True, blank=True)
    last_retry_at = models.DateTimeField(null=True, blank=True)

    objects = TenantScopedManager.from_queryset(MomoWebhookQuerySet)()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "MoMo Webhook"
        verbose_name_plural = "MoMo Webhooks"
        indexes = [
            models.Index(fields=["status", "created_at"], name="momo_momowe_status_7b21e5_idx"),
            models.Index(fields=["provider", "reference"], name="momo_momowe_provide_0c9a3f_idx"),
            models.Index(fields=["status", "retry_count"], name="momo_momowe_status_5e8d12_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "webhook_id"],
                condition=Q(is_duplicate=False, signature_verified=True),
                name="unique_momo_webhook_delivery",
            )
        ]

    def __str__(self) -> str:
        return f"MomoWebhook({self.webhook_id}, {self.event_type}, {self.status})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookStatus.PROCESSED

    def mark_processed(self, notes: str = "") -> None:
        """Does not save; caller saves with update_fields."""
        self.status = WebhookStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""
        if notes:
            self.processing_notes = notes

    def mark_ignored(self, notes: str) -> None:
        self.status = WebhookStatus.IGNORED
        self.processed_at = timezone.now()
        self.processing_notes = notes

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookStatus.FAILED
        self.error_message = error_message
