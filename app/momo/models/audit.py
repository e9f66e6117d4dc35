"""
TransactionAuditLog: append-only history of everything that happens to a
MomoTransaction.

Rows are written by services only (``TransactionAuditLog.record``).
Updates and deletes raise.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models

from core.managers import TenantScopedManager
from core.model_mixins import AppendOnlyMixin

from momo.state_machines import AuditAction, EventSource

if TYPE_CHECKING:
    from typing import Any

    from core.tenancy import TenantContext

    from momo.models.transaction import MomoTransaction


class TransactionAuditLog(AppendOnlyMixin, models.Model):
    """
    One audit event.

    Fields:
        action: What happened (created, status_changed, duplicate_webhook, ...)
        from_status / to_status: Set for status changes
        actor: User behind the change, if any
        source: api, webhook, poll, retry, reconciliation or command
        context: Extra JSON (webhook id, provider error, retry count)
    """

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="+",
    )
    transaction = models.ForeignKey(
        "momo.MomoTransaction",
        on_delete=models.CASCADE,
        related_name="audit_logs",
    )
    action = models.CharField(max_length=30, choices=AuditAction.choices, db_index=True)
    from_status = models.CharField(max_length=20, blank=True, default="")
    to_status = models.CharField(max_length=20, blank=True, default="")
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    source = models.CharField(
        max_length=20, choices=EventSource.choices, default=EventSource.API
    )
    message = models.TextField(blank=True, default="")
    context = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = TenantScopedManager()

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["transaction", "created_at"], name="momo_transa_transac_91ce2f_idx"),
        ]

    def __str__(self) -> str:
        if self.action == AuditAction.STATUS_CHANGED:
            return f"{self.from_status} -> {self.to_status} ({self.source})"
        return f"{self.action} ({self.source})"

    @classmethod
    def record(
        cls,
        ctx: TenantContext,
        txn: MomoTransaction,
        action: str,
        *,
        message: str = "",
        from_status: str = "",
        to_status: str = "",
        context: dict[str, Any] | None = None,
    ) -> TransactionAuditLog:
        return cls.objects.create(
            company_id=ctx.company_id,
            transaction=txn,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor_id=ctx.user_id,
            source=ctx.source if ctx.source in EventSource.values else EventSource.API,
            message=message,
            context=context or {},
        )
