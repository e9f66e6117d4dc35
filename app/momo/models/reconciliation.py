"""
Reconciliation models.

BankReconciliation is one run over a date range for one provider's cash
account. ReconciliationItem is one matched or unmatched line of that run.
ManualReconciliationAction journals every operator override.

State Flow (BankReconciliation):
    IN_PROGRESS -> COMPLETED -> APPROVED
    COMPLETED -> IN_PROGRESS (re-run)
    APPROVED -> IN_PROGRESS (forced re-run only)

Usage:
    from momo.models import BankReconciliation

    recon = BankReconciliation.objects.get_for_tenant(ctx, pk=recon_id)
    recon.difference  # statement_closing_balance - book_closing_balance
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.managers import TenantScopedManager
from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from momo.state_machines import (
    ManualActionType,
    ReconciliationItemStatus,
    ReconciliationStatus,
)

ZERO = Decimal("0.00")


def _money_field(**kwargs):
    return models.DecimalField(max_digits=15, decimal_places=2, default=ZERO, **kwargs)


class BankReconciliation(UUIDPrimaryKeyMixin, BaseModel):
    """
    A reconciliation run.

    One row per (company, provider, period_start, period_end). Re-running
    the same period reuses the row: automatic items are rebuilt, manual
    items survive.

    Invariants:
        - difference == statement_closing_balance - book_closing_balance
        - APPROVED is only reachable from COMPLETED
    """

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="momo_reconciliations",
    )
    provider = models.ForeignKey(
        "momo.MomoProvider",
        on_delete=models.PROTECT,
        related_name="reconciliations",
    )
    account = models.ForeignKey(
        "momo.LedgerAccount",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="reconciliations",
    )
    reference = models.CharField(max_length=100)
    period_start = models.DateField()
    period_end = models.DateField()
    status = FSMField(
        default=ReconciliationStatus.IN_PROGRESS,
        choices=ReconciliationStatus.choices,
        db_index=True,
        protected=True,
    )

    # ==========================================================================
    # Balances
    # ==========================================================================

    statement_opening_balance = _money_field()
    statement_closing_balance = _money_field()
    book_opening_balance = _money_field()
    book_closing_balance = _money_field()
    difference = _money_field()

    # ==========================================================================
    # Counts & Totals
    # ==========================================================================

    matched_count = models.PositiveIntegerField(default=0)
    unmatched_book_count = models.PositiveIntegerField(default=0)
    unmatched_bank_count = models.PositiveIntegerField(default=0)
    matched_amount = _money_field()
    book_total = _money_field()
    statement_total = _money_field()

    # ==========================================================================
    # Settings Used & Audit
    # ==========================================================================

    amount_tolerance = _money_field()
    date_window_days = models.PositiveIntegerField(default=0)
    run_count = models.PositiveIntegerField(default=0)
    last_run_at = models.DateTimeField(null=True, blank=True)
    summary = models.JSONField(default=dict, blank=True)
    notes = models.TextField(blank=True, default="")
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    approved_at = models.DateTimeField(null=True, blank=True)

    objects = TenantScopedManager()

    class Meta:
        ordering = ["-period_end", "-created_at"]
        verbose_name = "Bank Reconciliation"
        constraints = [
            models.UniqueConstraint(
                fields=["company", "provider", "period_start", "period_end"],
                name="unique_momo_reconciliation_period",
            ),
            models.CheckConstraint(
                condition=Q(
                    difference=F("statement_closing_balance") - F("book_closing_balance")
                ),
                name="momo_reconciliation_difference_consistent",
            ),
            models.CheckConstraint(
                condition=Q(period_start__lte=F("period_end")),
                name="momo_reconciliation_period_ordered",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.reference} ({self.status})"

    def save(self, *args, **kwargs):
        self.difference = self.statement_closing_balance - self.book_closing_balance
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | {"difference"}
        super().save(*args, **kwargs)

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.summary.get("has_discrepancies"))

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=ReconciliationStatus.IN_PROGRESS,
        target=ReconciliationStatus.COMPLETED,
    )
    def complete(self):
        self.last_run_at = timezone.now()

    @transition(
        field=status,
        source=ReconciliationStatus.COMPLETED,
        target=ReconciliationStatus.IN_PROGRESS,
    )
    def restart(self):
        """A completed run is being recomputed."""

    @transition(
        field=status,
        source=ReconciliationStatus.APPROVED,
        target=ReconciliationStatus.IN_PROGRESS,
    )
    def reopen(self):
        self.approved_by = None
        self.approved_at = None

    @transition(
        field=status,
        source=ReconciliationStatus.COMPLETED,
        target=ReconciliationStatus.APPROVED,
    )
    def approve(self, user):
        self.approved_by = user
        self.approved_at = timezone.now()


class ReconciliationItem(UUIDPrimaryKeyMixin, BaseModel):
    """
    One line of a reconciliation run.

    ``match_key`` identifies the line across re-runs: ``txn:<uuid>`` when
    the line starts from a ledger transaction, ``stmt:<reference>`` when
    it starts from a statement line.
    """

    reconciliation = models.ForeignKey(
        BankReconciliation,
        on_delete=models.CASCADE,
        related_name="items",
    )
    transaction = models.ForeignKey(
        "momo.MomoTransaction",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reconciliation_items",
    )
    statement_reference = models.CharField(max_length=255, blank=True, default="")
    match_key = models.CharField(max_length=300)
    status = models.CharField(
        max_length=20,
        choices=ReconciliationItemStatus.choices,
        db_index=True,
    )
    book_amount = models.DecimalField(
        max_digits=15, decimal_places=2, null=True, blank=True
    )
    statement_amount = models.DecimalField(
        max_digits=15, decimal_places=2, null=True, blank=True
    )
    difference = _money_field()
    transaction_date = models.DateTimeField(null=True, blank=True)
    statement_date = models.DateTimeField(null=True, blank=True)
    description = models.CharField(max_length=255, blank=True, default="")
    statement_line = models.JSONField(default=dict, blank=True)
    is_manual = models.BooleanField(default=False)

    class Meta:
        ordering = ["transaction_date", "statement_date", "created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["reconciliation", "match_key"],
                name="unique_reconciliation_item_key",
            )
        ]

    def __str__(self) -> str:
        return f"{self.match_key} ({self.status})"

    def save(self, *args, **kwargs):
        self.difference = (self.statement_amount or ZERO) - (self.book_amount or ZERO)
        super().save(*args, **kwargs)


class ManualReconciliationAction(AppendOnlyMixin, models.Model):
    """Journal of operator overrides: who did what, when, and why."""

    reconciliation = models.ForeignKey(
        BankReconciliation,
        on_delete=models.CASCADE,
        related_name="manual_actions",
    )
    item = models.ForeignKey(
        ReconciliationItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="manual_actions",
    )
    transaction = models.ForeignKey(
        "momo.MomoTransaction",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    action = models.CharField(max_length=20, choices=ManualActionType.choices)
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
    )
    reason = models.TextField()
    statement_reference = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=~Q(reason=""),
                name="manual_reconciliation_reason_required",
            )
        ]

    def __str__(self) -> str:
        return f"{self.action} by {self.performed_by_id}"
