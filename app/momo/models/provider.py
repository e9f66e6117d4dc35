"""
MomoProvider model.

A MomoProvider is one company's configuration for one mobile-money
operator: endpoints, encrypted credentials, limits, fees, retry policy
and the ledger accounts that completed transactions post to.

Usage:
    from momo.models import MomoProvider

    provider = MomoProvider.objects.for_tenant(ctx).get(code="mtn")
    fee = provider.calculate_fee(Decimal("100.00"))
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import Sum

from core.fields import EncryptedTextField
from core.helpers import to_money
from core.managers import TenantScopedManager
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from momo.state_machines import ProviderCode, TransactionStatus

if TYPE_CHECKING:
    from typing import Any


class MomoProvider(UUIDPrimaryKeyMixin, BaseModel):
    """
    Provider configuration owned by a company.

    Providers are never hard-deleted: transactions reference them with
    PROTECT, and ``is_active=False`` takes one out of service.

    Fields:
        code: Gateway key (mtn, airtel, zamtel), unique per company
        api_base_url / sandbox_api_base_url: Live and sandbox endpoints
        api_key / api_secret / merchant_id / webhook_secret: Encrypted at rest
        provider_settings: Gateway extras (timeout_seconds, subscription_key)
        min/max_transaction_amount, daily_transaction_limit: Limits
        transaction_fee_percentage, fixed_transaction_fee: Fee schedule
        max_retry_attempts, retry_delay_minutes, status_timeout_minutes: Retry policy
        cash_account / fee_account / receivable_account: Ledger accounts
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="momo_providers",
    )
    code = models.CharField(max_length=20, choices=ProviderCode.choices)
    name = models.CharField(max_length=100)
    display_name = models.CharField(max_length=100, blank=True, default="")
    currency = models.CharField(max_length=3, default="ZMW")
    is_active = models.BooleanField(default=True, db_index=True)
    is_sandbox = models.BooleanField(default=True)

    # ==========================================================================
    # Endpoints & Credentials
    # ==========================================================================

    api_base_url = models.URLField(blank=True, default="")
    sandbox_api_base_url = models.URLField(blank=True, default="")
    api_key = EncryptedTextField(blank=True, default="")
    api_secret = EncryptedTextField(blank=True, default="")
    merchant_id = EncryptedTextField(blank=True, default="")
    webhook_secret = EncryptedTextField(blank=True, default="")
    provider_settings = models.JSONField(default=dict, blank=True)

    # ==========================================================================
    # Limits & Fees
    # ==========================================================================

    min_transaction_amount = models.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("1.00")
    )
    max_transaction_amount = models.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("50000.00")
    )
    daily_transaction_limit = models.DecimalField(
        max_digits=15, decimal_places=2, null=True, blank=True
    )
    transaction_fee_percentage = models.DecimalField(
        max_digits=5, decimal_places=4, default=Decimal("0")
    )
    fixed_transaction_fee = models.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("0.00")
    )

    # ==========================================================================
    # Retry Policy
    # ==========================================================================

    max_retry_attempts = models.PositiveIntegerField(default=3)
    retry_delay_minutes = models.PositiveIntegerField(default=5)
    status_timeout_minutes = models.PositiveIntegerField(default=30)

    # ==========================================================================
    # Ledger Accounts
    # ==========================================================================

    cash_account = models.ForeignKey(
        "momo.LedgerAccount",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    fee_account = models.ForeignKey(
        "momo.LedgerAccount",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    receivable_account = models.ForeignKey(
        "momo.LedgerAccount",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )

    objects = TenantScopedManager()

    class Meta:
        ordering = ["company", "code"]
        verbose_name = "MoMo Provider"
        verbose_name_plural = "MoMo Providers"
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"],
                name="unique_momo_provider_per_company",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    min_transaction_amount__lte=models.F("max_transaction_amount")
                ),
                name="momo_provider_min_le_max",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.display_name or self.name} ({self.company_id})"

    def save(self, *args, **kwargs):
        if not self.currency:
            self.currency = settings.MOMO_DEFAULT_CURRENCY
        self.currency = self.currency.upper()
        super().save(*args, **kwargs)

    @property
    def active_base_url(self) -> str:
        if self.is_sandbox and self.sandbox_api_base_url:
            return self.sandbox_api_base_url
        return self.api_base_url

    def setting(self, key: str, default: Any = None) -> Any:
        value = (self.provider_settings or {}).get(key)
        return default if value is None else value

    def calculate_fee(self, amount: Decimal) -> Decimal:
        """``amount * pct / 100 + fixed``, rounded half-up to 2 places."""
        amount = to_money(amount)
        percentage_fee = amount * Decimal(self.transaction_fee_percentage) / Decimal(100)
        return to_money(percentage_fee + Decimal(self.fixed_transaction_fee))

    def is_amount_valid(self, amount: Decimal) -> bool:
        amount = to_money(amount)
        return self.min_transaction_amount <= amount <= self.max_transaction_amount

    def daily_volume(self, on_date: date) -> Decimal:
        """Sum of today's amounts that haven't failed, cancelled or expired."""
        total = (
            self.transactions.filter(created_at__date=on_date)
            .exclude(
                status__in=[
                    TransactionStatus.FAILED,
                    TransactionStatus.CANCELLED,
                    TransactionStatus.EXPIRED,
                ]
            )
            .aggregate(total=Sum("amount"))["total"]
        )
        return to_money(total or 0)
