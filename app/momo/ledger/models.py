"""
Ledger models for posting mobile-money fees and net amounts.

- LedgerAccount: a company's account of one kind in one currency
- LedgerEntry: one immutable debit/credit pair between two accounts

Accounts are debit-normal: an account's balance is the sum of debits to
it minus the sum of credits from it. Cash rises when a collection lands
and falls when a payout leaves.

Usage:
    from momo.ledger.models import AccountKind, LedgerAccount

    cash = LedgerAccount.objects.for_tenant(ctx).get(
        kind=AccountKind.MOMO_CASH, currency="ZMW"
    )
    cash.get_balance()  # Decimal("1250.00")
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import Case, Q, Sum, Value, When
from django.db.models.functions import Coalesce

from core.managers import TenantScopedManager
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

ZERO = Decimal("0.00")


class AccountKind(models.TextChoices):
    """
    Kinds of ledger accounts a company keeps for mobile money.

    Values:
        MOMO_CASH: Money held in the provider wallet
        MOMO_FEES: Provider fees expensed
        ACCOUNTS_RECEIVABLE: Customer balances settled by invoice-linked collections
        MOMO_CLEARING: Counterpart for collections and disbursements not tied
            to an invoice
    """

    MOMO_CASH = "momo_cash", "MoMo Cash"
    MOMO_FEES = "momo_fees", "MoMo Fees"
    ACCOUNTS_RECEIVABLE = "accounts_receivable", "Accounts Receivable"
    MOMO_CLEARING = "momo_clearing", "MoMo Clearing"


class EntryType(models.TextChoices):
    """Category of a ledger movement."""

    COLLECTION = "collection", "Collection"
    COLLECTION_FEE = "collection_fee", "Collection Fee"
    DISBURSEMENT = "disbursement", "Disbursement"
    DISBURSEMENT_FEE = "disbursement_fee", "Disbursement Fee"
    ADJUSTMENT = "adjustment", "Adjustment"


class LedgerAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    A company ledger account.

    Fields:
        company: Owning tenant
        kind: Account category (cash, fees, receivable, clearing)
        name: Display name, e.g. "MTN MoMo Cash"
        currency: ISO 4217 code
        allow_negative: When False, a credit may not push the balance below zero
        is_active: Inactive accounts refuse new entries

    Constraints:
        - One account per (company, kind, currency)
    """

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="ledger_accounts",
    )
    kind = models.CharField(max_length=30, choices=AccountKind.choices)
    name = models.CharField(max_length=255, blank=True, default="")
    currency = models.CharField(max_length=3, default="ZMW")
    allow_negative = models.BooleanField(
        default=True,
        help_text="Whether credits may take the balance below zero",
    )
    is_active = models.BooleanField(default=True, db_index=True)

    objects = TenantScopedManager()

    class Meta:
        ordering = ["company", "kind"]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "kind", "currency"],
                name="unique_ledger_account_per_company_kind",
            )
        ]

    def __str__(self) -> str:
        return self.name or f"{self.get_kind_display()} ({self.currency})"

    def get_balance(self) -> Decimal:
        """Debits minus credits over every entry touching this account."""
        result = LedgerEntry.objects.filter(
            Q(debit_account=self) | Q(credit_account=self)
        ).aggregate(
            debits=Coalesce(
                Sum(
                    Case(
                        When(debit_account=self, then="amount"),
                        default=Value(ZERO),
                        output_field=models.DecimalField(max_digits=15, decimal_places=2),
                    )
                ),
                Value(ZERO),
                output_field=models.DecimalField(max_digits=15, decimal_places=2),
            ),
            credits=Coalesce(
                Sum(
                    Case(
                        When(credit_account=self, then="amount"),
                        default=Value(ZERO),
                        output_field=models.DecimalField(max_digits=15, decimal_places=2),
                    )
                ),
                Value(ZERO),
                output_field=models.DecimalField(max_digits=15, decimal_places=2),
            ),
        )
        return Decimal(result["debits"]) - Decimal(result["credits"])


class LedgerEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    One movement between two accounts of the same company.

    Entries are immutable. Corrections are new ADJUSTMENT entries.

    Constraints:
        - amount must be positive
        - idempotency_key is unique, so re-posting a transaction is a no-op
    """

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="ledger_entries",
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    debit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="debit_entries",
    )
    credit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="credit_entries",
    )
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    currency = models.CharField(max_length=3, default="ZMW")

    entry_type = models.CharField(max_length=30, choices=EntryType.choices)
    reference_type = models.CharField(max_length=50, blank=True, default="")
    reference_id = models.UUIDField(null=True, blank=True)

    description = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)
    created_by = models.CharField(max_length=255, blank=True, default="")
    idempotency_key = models.CharField(max_length=255, unique=True)

    objects = TenantScopedManager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["reference_type", "reference_id"], name="momo_ledger_referen_6f1c2a_idx"),
            models.Index(fields=["entry_type"], name="momo_ledger_entry_t_3b9e4d_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="ledger_entry_amount_positive",
            )
        ]
        verbose_name_plural = "Ledger entries"

    def __str__(self) -> str:
        return f"{self.get_entry_type_display()}: {self.amount} {self.currency}"
