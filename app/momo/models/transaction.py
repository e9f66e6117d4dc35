"""
MomoTransaction model.

One payment, payout, refund or transfer attempt through a provider.

The status field is a protected django-fsm field whose transitions are
generated from ``ALLOWED_TRANSITIONS``. Services never call the
transition methods and ``save()`` directly; they go through
``TransactionStateMachine``, which locks the row and writes the status
with a compare-and-swap on (status, version).

Usage:
    from momo.models import MomoTransaction

    txn = MomoTransaction.objects.for_tenant(ctx).get(pk=txn_id)
    txn.net_amount  # always amount - fee_amount
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.helpers import to_money
from core.managers import TenantScopedManager
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from momo.state_machines import (
    TERMINAL_STATUSES,
    TransactionStatus,
    TransactionType,
    sources_for,
)

TRANSACTION_NUMBER_PREFIX = "MOMO"


class MomoTransaction(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A single mobile-money transaction.

    State Flow:
        PENDING -> PROCESSING -> COMPLETED | FAILED | CANCELLED | EXPIRED
        PENDING -> COMPLETED | FAILED | CANCELLED | EXPIRED

    Invariants:
        - net_amount == amount - fee_amount (recomputed on save, checked in DB)
        - amount > 0, fee_amount >= 0
        - terminal statuses never change

    Fields:
        transaction_number: MOMO-YYYYMM-000001, unique per company
        provider_transaction_id: Provider's id for the attempt
        provider_reference: Reference the provider returned or echoed back
        invoice_id / payment_id: Opaque links to invoicing records
        original_transaction: For refunds, the payment being refunded
        retry_count / next_retry_at / requires_review: Retry scheduler state
        version: Optimistic locking counter
    """

    # ==========================================================================
    # Ownership & Identity
    # ==========================================================================

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="momo_transactions",
    )
    provider = models.ForeignKey(
        "momo.MomoProvider",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    transaction_number = models.CharField(max_length=30, editable=False)
    type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        default=TransactionType.PAYMENT,
    )
    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
    )

    # ==========================================================================
    # Money
    # ==========================================================================

    amount = models.DecimalField(max_digits=15, decimal_places=2)
    currency = models.CharField(max_length=3, default="ZMW")
    fee_amount = models.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("0.00")
    )
    net_amount = models.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("0.00")
    )

    # ==========================================================================
    # Customer
    # ==========================================================================

    customer_phone = models.CharField(max_length=20, db_index=True)
    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")

    # ==========================================================================
    # Provider Side
    # ==========================================================================

    provider_transaction_id = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    provider_reference = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    provider_response = models.JSONField(default=dict, blank=True)
    provider_timestamp = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Own Side & Links
    # ==========================================================================

    internal_reference = models.CharField(max_length=255, blank=True, default="")
    description = models.TextField(blank=True, default="")
    notes = models.TextField(blank=True, default="")
    invoice_id = models.UUIDField(null=True, blank=True, db_index=True)
    payment_id = models.UUIDField(null=True, blank=True, db_index=True)
    original_transaction = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refunds",
    )
    metadata = models.JSONField(default=dict, blank=True)

    # ==========================================================================
    # Ledger & Reconciliation
    # ==========================================================================

    is_posted_to_ledger = models.BooleanField(default=False)
    posted_at = models.DateTimeField(null=True, blank=True)
    is_reconciled = models.BooleanField(default=False, db_index=True)
    reconciled_at = models.DateTimeField(null=True, blank=True)
    reconciled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    # ==========================================================================
    # Audit Timestamps
    # ==========================================================================

    initiated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    initiated_at = models.DateTimeField(default=timezone.now)
    approved_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True, db_index=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Retry
    # ==========================================================================

    retry_count = models.PositiveIntegerField(default=0)
    last_retry_at = models.DateTimeField(null=True, blank=True)
    next_retry_at = models.DateTimeField(null=True, blank=True, db_index=True)
    failure_reason = models.TextField(blank=True, default="")
    requires_review = models.BooleanField(default=False, db_index=True)

    objects = TenantScopedManager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "MoMo Transaction"
        verbose_name_plural = "MoMo Transactions"
        indexes = [
            models.Index(fields=["company", "status"], name="momo_momotr_company_8a41d0_idx"),
            models.Index(
                fields=["company", "provider", "completed_at"],
                name="momo_momotr_company_c52e7b_idx",
            ),
            models.Index(
                fields=["provider", "provider_transaction_id"],
                name="momo_momotr_provide_4d7f19_idx",
            ),
            models.Index(fields=["status", "next_retry_at"], name="momo_momotr_status_e03b6a_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "transaction_number"],
                name="unique_momo_transaction_number_per_company",
            ),
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="momo_transaction_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(fee_amount__gte=0),
                name="momo_transaction_fee_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(net_amount=F("amount") - F("fee_amount")),
                name="momo_transaction_net_amount_consistent",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.transaction_number} ({self.status}, {self.amount} {self.currency})"

    def save(self, *args, **kwargs):
        self.amount = to_money(self.amount)
        self.fee_amount = to_money(self.fee_amount or 0)
        self.net_amount = self.amount - self.fee_amount

        update_fields = kwargs.get("update_fields")
        if update_fields is not None and {"amount", "fee_amount"} & set(update_fields):
            kwargs["update_fields"] = set(update_fields) | {"net_amount"}

        if self._state.adding and not self.transaction_number:
            self.transaction_number = self.next_transaction_number(self.company_id)
        super().save(*args, **kwargs)

    @classmethod
    def next_transaction_number(cls, company_id) -> str:
        """Next ``MOMO-YYYYMM-NNNNNN`` for the company's current month."""
        prefix = f"{TRANSACTION_NUMBER_PREFIX}-{timezone.now():%Y%m}-"
        last = (
            cls._base_manager.filter(
                company_id=company_id, transaction_number__startswith=prefix
            )
            .order_by("-transaction_number")
            .values_list("transaction_number", flat=True)
            .first()
        )
        sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
        return f"{prefix}{sequence:06d}"

    # ==========================================================================
    # Queries
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_collection(self) -> bool:
        return self.type == TransactionType.PAYMENT

    @property
    def provider_key(self) -> str:
        """The id the provider knows this transaction by."""
        return self.provider_transaction_id or self.provider_reference

    def refunded_total(self) -> Decimal:
        total = (
            self.refunds.exclude(
                status__in=[
                    TransactionStatus.FAILED,
                    TransactionStatus.CANCELLED,
                    TransactionStatus.EXPIRED,
                ]
            ).aggregate(total=models.Sum("amount"))["total"]
        )
        return to_money(total or 0)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=sources_for(TransactionStatus.PROCESSING),
        target=TransactionStatus.PROCESSING,
    )
    def start_processing(self):
        """The provider accepted the request and is working on it."""

    @transition(
        field=status,
        source=sources_for(TransactionStatus.COMPLETED),
        target=TransactionStatus.COMPLETED,
    )
    def complete(self):
        self.completed_at = timezone.now()
        self.next_retry_at = None

    @transition(
        field=status,
        source=sources_for(TransactionStatus.FAILED),
        target=TransactionStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.next_retry_at = None
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=sources_for(TransactionStatus.CANCELLED),
        target=TransactionStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        self.next_retry_at = None
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=sources_for(TransactionStatus.EXPIRED),
        target=TransactionStatus.EXPIRED,
    )
    def expire(self):
        self.next_retry_at = None
        if not self.failure_reason:
            self.failure_reason = "No final provider response before timeout"
