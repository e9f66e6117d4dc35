import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models

import core.fields


def _money(**kwargs):
    return models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=15, **kwargs)


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


TRANSACTION_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("completed", "Completed"),
    ("failed", "Failed"),
    ("cancelled", "Cancelled"),
    ("expired", "Expired"),
]

EVENT_SOURCE_CHOICES = [
    ("api", "API"),
    ("webhook", "Webhook"),
    ("poll", "Status poll"),
    ("retry", "Retry scheduler"),
    ("reconciliation", "Reconciliation"),
    ("command", "Management command"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("companies", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        # =====================================================================
        # Ledger
        # =====================================================================
        migrations.CreateModel(
            name="LedgerAccount",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("momo_cash", "MoMo Cash"),
                            ("momo_fees", "MoMo Fees"),
                            ("accounts_receivable", "Accounts Receivable"),
                            ("momo_clearing", "MoMo Clearing"),
                        ],
                        max_length=30,
                    ),
                ),
                ("name", models.CharField(blank=True, default="", max_length=255)),
                ("currency", models.CharField(default="ZMW", max_length=3)),
                (
                    "allow_negative",
                    models.BooleanField(
                        default=True,
                        help_text="Whether credits may take the balance below zero",
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ledger_accounts",
                        to="companies.company",
                    ),
                ),
            ],
            options={
                "ordering": ["company", "kind"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "kind", "currency"),
                        name="unique_ledger_account_per_company_kind",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                _uuid_pk(),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=15)),
                ("currency", models.CharField(default="ZMW", max_length=3)),
                (
                    "entry_type",
                    models.CharField(
                        choices=[
                            ("collection", "Collection"),
                            ("collection_fee", "Collection Fee"),
                            ("disbursement", "Disbursement"),
                            ("disbursement_fee", "Disbursement Fee"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=30,
                    ),
                ),
                ("reference_type", models.CharField(blank=True, default="", max_length=50)),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("description", models.TextField(blank=True, default="")),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_by", models.CharField(blank=True, default="", max_length=255)),
                ("idempotency_key", models.CharField(max_length=255, unique=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ledger_entries",
                        to="companies.company",
                    ),
                ),
                (
                    "credit_account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_entries",
                        to="momo.ledgeraccount",
                    ),
                ),
                (
                    "debit_account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="debit_entries",
                        to="momo.ledgeraccount",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Ledger entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["reference_type", "reference_id"],
                        name="momo_ledger_referen_6f1c2a_idx",
                    ),
                    models.Index(fields=["entry_type"], name="momo_ledger_entry_t_3b9e4d_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="ledger_entry_amount_positive",
                    )
                ],
            },
        ),
        # =====================================================================
        # Providers
        # =====================================================================
        migrations.CreateModel(
            name="MomoProvider",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "code",
                    models.CharField(
                        choices=[
                            ("mtn", "MTN Mobile Money"),
                            ("airtel", "Airtel Money"),
                            ("zamtel", "Zamtel Kwacha"),
                        ],
                        max_length=20,
                    ),
                ),
                ("name", models.CharField(max_length=100)),
                ("display_name", models.CharField(blank=True, default="", max_length=100)),
                ("currency", models.CharField(default="ZMW", max_length=3)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("is_sandbox", models.BooleanField(default=True)),
                ("api_base_url", models.URLField(blank=True, default="")),
                ("sandbox_api_base_url", models.URLField(blank=True, default="")),
                ("api_key", core.fields.EncryptedTextField(blank=True, default="")),
                ("api_secret", core.fields.EncryptedTextField(blank=True, default="")),
                ("merchant_id", core.fields.EncryptedTextField(blank=True, default="")),
                ("webhook_secret", core.fields.EncryptedTextField(blank=True, default="")),
                ("provider_settings", models.JSONField(blank=True, default=dict)),
                (
                    "min_transaction_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("1.00"), max_digits=15),
                ),
                (
                    "max_transaction_amount",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("50000.00"), max_digits=15
                    ),
                ),
                (
                    "daily_transaction_limit",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True),
                ),
                (
                    "transaction_fee_percentage",
                    models.DecimalField(decimal_places=4, default=Decimal("0"), max_digits=5),
                ),
                ("fixed_transaction_fee", _money()),
                ("max_retry_attempts", models.PositiveIntegerField(default=3)),
                ("retry_delay_minutes", models.PositiveIntegerField(default=5)),
                ("status_timeout_minutes", models.PositiveIntegerField(default=30)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="momo_providers",
                        to="companies.company",
                    ),
                ),
                (
                    "cash_account",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="momo.ledgeraccount",
                    ),
                ),
                (
                    "fee_account",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="momo.ledgeraccount",
                    ),
                ),
                (
                    "receivable_account",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="momo.ledgeraccount",
                    ),
                ),
            ],
            options={
                "verbose_name": "MoMo Provider",
                "verbose_name_plural": "MoMo Providers",
                "ordering": ["company", "code"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "code"),
                        name="unique_momo_provider_per_company",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("min_transaction_amount__lte", models.F("max_transaction_amount"))
                        ),
                        name="momo_provider_min_le_max",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Transactions
        # =====================================================================
        migrations.CreateModel(
            name="MomoTransaction",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Optimistic locking version, incremented on each update",
                    ),
                ),
                ("transaction_number", models.CharField(editable=False, max_length=30)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("payment", "Payment"),
                            ("payout", "Payout"),
                            ("refund", "Refund"),
                            ("transfer", "Transfer"),
                        ],
                        default="payment",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=TRANSACTION_STATUS_CHOICES,
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=15)),
                ("currency", models.CharField(default="ZMW", max_length=3)),
                ("fee_amount", _money()),
                ("net_amount", _money()),
                ("customer_phone", models.CharField(db_index=True, max_length=20)),
                ("customer_name", models.CharField(blank=True, default="", max_length=255)),
                ("customer_email", models.EmailField(blank=True, default="", max_length=254)),
                (
                    "provider_transaction_id",
                    models.CharField(blank=True, db_index=True, default="", max_length=255),
                ),
                (
                    "provider_reference",
                    models.CharField(blank=True, db_index=True, default="", max_length=255),
                ),
                ("provider_response", models.JSONField(blank=True, default=dict)),
                ("provider_timestamp", models.DateTimeField(blank=True, null=True)),
                ("internal_reference", models.CharField(blank=True, default="", max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("notes", models.TextField(blank=True, default="")),
                ("invoice_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("payment_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("is_posted_to_ledger", models.BooleanField(default=False)),
                ("posted_at", models.DateTimeField(blank=True, null=True)),
                ("is_reconciled", models.BooleanField(db_index=True, default=False)),
                ("reconciled_at", models.DateTimeField(blank=True, null=True)),
                ("initiated_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("last_retry_at", models.DateTimeField(blank=True, null=True)),
                ("next_retry_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("requires_review", models.BooleanField(db_index=True, default=False)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="momo_transactions",
                        to="companies.company",
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="momo.momoprovider",
                    ),
                ),
                (
                    "original_transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="momo.momotransaction",
                    ),
                ),
                (
                    "reconciled_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "initiated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "MoMo Transaction",
                "verbose_name_plural": "MoMo Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["company", "status"], name="momo_momotr_company_8a41d0_idx"),
                    models.Index(
                        fields=["company", "provider", "completed_at"],
                        name="momo_momotr_company_c52e7b_idx",
                    ),
                    models.Index(
                        fields=["provider", "provider_transaction_id"],
                        name="momo_momotr_provide_4d7f19_idx",
                    ),
                    models.Index(
                        fields=["status", "next_retry_at"],
                        name="momo_momotr_status_e03b6a_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "transaction_number"),
                        name="unique_momo_transaction_number_per_company",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="momo_transaction_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("fee_amount__gte", 0)),
                        name="momo_transaction_fee_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("net_amount", models.F("amount") - models.F("fee_amount"))
                        ),
                        name="momo_transaction_net_amount_consistent",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransactionAuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("status_changed", "Status changed"),
                            ("duplicate_webhook", "Duplicate webhook"),
                            ("terminal_ignored", "Ignored (terminal state)"),
                            ("retry_scheduled", "Retry scheduled"),
                            ("retry_exhausted", "Retries exhausted"),
                            ("ledger_posted", "Posted to ledger"),
                            ("reconciled", "Reconciled"),
                            ("unreconciled", "Unreconciled"),
                            ("manual_review", "Flagged for manual review"),
                        ],
                        db_index=True,
                        max_length=30,
                    ),
                ),
                ("from_status", models.CharField(blank=True, default="", max_length=20)),
                ("to_status", models.CharField(blank=True, default="", max_length=20)),
                (
                    "source",
                    models.CharField(choices=EVENT_SOURCE_CHOICES, default="api", max_length=20),
                ),
                ("message", models.TextField(blank=True, default="")),
                ("context", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to="companies.company",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="audit_logs",
                        to="momo.momotransaction",
                    ),
                ),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["transaction", "created_at"],
                        name="momo_transa_transac_91ce2f_idx",
                    )
                ],
            },
        ),
        # =====================================================================
        # Webhooks
        # =====================================================================
        migrations.CreateModel(
            name="MomoWebhook",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "webhook_id",
                    models.CharField(
                        help_text="Provider event id, or SHA-256 of the raw body when absent",
                        max_length=255,
                    ),
                ),
                ("event_type", models.CharField(blank=True, default="", max_length=100)),
                ("headers", models.JSONField(blank=True, default=dict)),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("raw_body", models.TextField(blank=True, default="")),
                ("signature", models.CharField(blank=True, default="", max_length=512)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                (
                    "reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Provider transaction reference extracted from the payload",
                        max_length=255,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                            ("ignored", "Ignored"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("signature_verified", models.BooleanField(default=False)),
                ("is_duplicate", models.BooleanField(default=False)),
                ("processing_notes", models.TextField(blank=True, default="")),
                ("error_message", models.TextField(blank=True, default="")),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("last_retry_at", models.DateTimeField(blank=True, null=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="momo_webhooks",
                        to="companies.company",
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="webhooks",
                        to="momo.momoprovider",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhooks",
                        to="momo.momotransaction",
                    ),
                ),
                (
                    "duplicate_of",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="duplicates",
                        to="momo.momowebhook",
                    ),
                ),
            ],
            options={
                "verbose_name": "MoMo Webhook",
                "verbose_name_plural": "MoMo Webhooks",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="momo_momowe_status_7b21e5_idx"),
                    models.Index(fields=["provider", "reference"], name="momo_momowe_provide_0c9a3f_idx"),
                    models.Index(fields=["status", "retry_count"], name="momo_momowe_status_5e8d12_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_duplicate", False), ("signature_verified", True)),
                        fields=("provider", "webhook_id"),
                        name="unique_momo_webhook_delivery",
                    )
                ],
            },
        ),
        # =====================================================================
        # Reconciliation
        # =====================================================================
        migrations.CreateModel(
            name="BankReconciliation",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("reference", models.CharField(max_length=100)),
                ("period_start", models.DateField()),
                ("period_end", models.DateField()),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("in_progress", "In Progress"),
                            ("completed", "Completed"),
                            ("approved", "Approved"),
                        ],
                        db_index=True,
                        default="in_progress",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("statement_opening_balance", _money()),
                ("statement_closing_balance", _money()),
                ("book_opening_balance", _money()),
                ("book_closing_balance", _money()),
                ("difference", _money()),
                ("matched_count", models.PositiveIntegerField(default=0)),
                ("unmatched_book_count", models.PositiveIntegerField(default=0)),
                ("unmatched_bank_count", models.PositiveIntegerField(default=0)),
                ("matched_amount", _money()),
                ("book_total", _money()),
                ("statement_total", _money()),
                ("amount_tolerance", _money()),
                ("date_window_days", models.PositiveIntegerField(default=0)),
                ("run_count", models.PositiveIntegerField(default=0)),
                ("last_run_at", models.DateTimeField(blank=True, null=True)),
                ("summary", models.JSONField(blank=True, default=dict)),
                ("notes", models.TextField(blank=True, default="")),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="momo_reconciliations",
                        to="companies.company",
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reconciliations",
                        to="momo.momoprovider",
                    ),
                ),
                (
                    "account",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reconciliations",
                        to="momo.ledgeraccount",
                    ),
                ),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Bank Reconciliation",
                "ordering": ["-period_end", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "provider", "period_start", "period_end"),
                        name="unique_momo_reconciliation_period",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "difference",
                                models.F("statement_closing_balance")
                                - models.F("book_closing_balance"),
                            )
                        ),
                        name="momo_reconciliation_difference_consistent",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("period_start__lte", models.F("period_end"))),
                        name="momo_reconciliation_period_ordered",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationItem",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("statement_reference", models.CharField(blank=True, default="", max_length=255)),
                ("match_key", models.CharField(max_length=300)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("matched", "Matched"),
                            ("unmatched_book", "Unmatched (book)"),
                            ("unmatched_bank", "Unmatched (bank)"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                (
                    "book_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True),
                ),
                (
                    "statement_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True),
                ),
                ("difference", _money()),
                ("transaction_date", models.DateTimeField(blank=True, null=True)),
                ("statement_date", models.DateTimeField(blank=True, null=True)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("statement_line", models.JSONField(blank=True, default=dict)),
                ("is_manual", models.BooleanField(default=False)),
                (
                    "reconciliation",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="momo.bankreconciliation",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reconciliation_items",
                        to="momo.momotransaction",
                    ),
                ),
            ],
            options={
                "ordering": ["transaction_date", "statement_date", "created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("reconciliation", "match_key"),
                        name="unique_reconciliation_item_key",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ManualReconciliationAction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("force_match", "Force match"),
                            ("force_unmatch", "Force unmatch"),
                        ],
                        max_length=20,
                    ),
                ),
                ("reason", models.TextField()),
                ("statement_reference", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "reconciliation",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="manual_actions",
                        to="momo.bankreconciliation",
                    ),
                ),
                (
                    "item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="manual_actions",
                        to="momo.reconciliationitem",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="momo.momotransaction",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("reason", ""), _negated=True),
                        name="manual_reconciliation_reason_required",
                    )
                ],
            },
        ),
    ]
