"""
MoMo admin configuration.

Imports the ledger admin so its registrations load with the app, and
registers the MoMo domain models. Status fields are django-fsm protected
and read-only here: status changes go through TransactionStateMachine.
Audit logs and manual reconciliation actions are append-only.
"""

from django.contrib import admin

from momo.ledger.admin import LedgerAccountAdmin, LedgerEntryAdmin
from momo.models import (
    BankReconciliation,
    ManualReconciliationAction,
    MomoProvider,
    MomoTransaction,
    MomoWebhook,
    ReconciliationItem,
    TransactionAuditLog,
)

__all__ = [
    "BankReconciliationAdmin",
    "LedgerAccountAdmin",
    "LedgerEntryAdmin",
    "MomoProviderAdmin",
    "MomoTransactionAdmin",
    "MomoWebhookAdmin",
]


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(MomoProvider)
class MomoProviderAdmin(admin.ModelAdmin):
    """
    Provider configuration.

    Credentials are stored encrypted; the admin form shows the decrypted
    value to staff with change permission.
    """

    list_display = ["code", "name", "company", "currency", "is_active", "is_sandbox"]
    list_filter = ["code", "is_active", "is_sandbox", "currency"]
    search_fields = ["name", "display_name", "company__name", "company__slug"]
    readonly_fields = ["id", "created_at", "updated_at"]
    autocomplete_fields = ["company"]

    fieldsets = (
        (None, {"fields": ("id", "company", "code", "name", "display_name", "currency")}),
        ("Environment", {"fields": ("is_active", "is_sandbox", "api_base_url", "sandbox_api_base_url")}),
        (
            "Credentials",
            {
                "fields": ("api_key", "api_secret", "merchant_id", "webhook_secret", "provider_settings"),
                "classes": ("collapse",),
            },
        ),
        (
            "Limits & Fees",
            {
                "fields": (
                    "min_transaction_amount",
                    "max_transaction_amount",
                    "daily_transaction_limit",
                    "transaction_fee_percentage",
                    "fixed_transaction_fee",
                ),
            },
        ),
        ("Retry Policy", {"fields": ("max_retry_attempts", "retry_delay_minutes", "status_timeout_minutes")}),
        ("Ledger", {"fields": ("cash_account", "fee_account", "receivable_account")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )


class TransactionAuditLogInline(ReadOnlyInline):
    model = TransactionAuditLog
    fields = ["created_at", "action", "from_status", "to_status", "source", "actor", "message"]
    ordering = ["created_at"]


@admin.register(MomoTransaction)
class MomoTransactionAdmin(admin.ModelAdmin):
    list_display = [
        "transaction_number",
        "company",
        "provider",
        "type",
        "status",
        "amount",
        "fee_amount",
        "net_amount",
        "customer_phone",
        "requires_review",
        "created_at",
    ]
    list_filter = ["status", "type", "provider__code", "requires_review", "is_reconciled", "is_posted_to_ledger"]
    search_fields = [
        "transaction_number",
        "provider_transaction_id",
        "provider_reference",
        "internal_reference",
        "customer_phone",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [TransactionAuditLogInline]
    readonly_fields = [
        "id",
        "company",
        "provider",
        "transaction_number",
        "type",
        "status",
        "amount",
        "currency",
        "fee_amount",
        "net_amount",
        "provider_transaction_id",
        "provider_reference",
        "provider_response",
        "provider_timestamp",
        "original_transaction",
        "is_posted_to_ledger",
        "posted_at",
        "is_reconciled",
        "reconciled_at",
        "reconciled_by",
        "initiated_by",
        "initiated_at",
        "completed_at",
        "failed_at",
        "retry_count",
        "last_retry_at",
        "next_retry_at",
        "failure_reason",
        "version",
        "created_at",
        "updated_at",
    ]

    fieldsets = (
        (None, {"fields": ("id", "company", "provider", "transaction_number", "type", "status")}),
        ("Money", {"fields": ("amount", "currency", "fee_amount", "net_amount")}),
        ("Customer", {"fields": ("customer_phone", "customer_name", "customer_email")}),
        (
            "Provider",
            {
                "fields": (
                    "provider_transaction_id",
                    "provider_reference",
                    "provider_response",
                    "provider_timestamp",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "References",
            {
                "fields": (
                    "internal_reference",
                    "description",
                    "notes",
                    "invoice_id",
                    "payment_id",
                    "original_transaction",
                    "metadata",
                ),
            },
        ),
        (
            "Ledger & Reconciliation",
            {
                "fields": (
                    "is_posted_to_ledger",
                    "posted_at",
                    "is_reconciled",
                    "reconciled_at",
                    "reconciled_by",
                ),
            },
        ),
        (
            "Retry",
            {
                "fields": (
                    "retry_count",
                    "last_retry_at",
                    "next_retry_at",
                    "failure_reason",
                    "requires_review",
                ),
            },
        ),
        (
            "Audit",
            {
                "fields": (
                    "initiated_by",
                    "initiated_at",
                    "completed_at",
                    "failed_at",
                    "version",
                    "created_at",
                    "updated_at",
                ),
            },
        ),
    )

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(MomoWebhook)
class MomoWebhookAdmin(admin.ModelAdmin):
    """Inbound callbacks, read-only. Retries happen through the Celery task."""

    list_display = [
        "webhook_id",
        "provider",
        "event_type",
        "status",
        "signature_verified",
        "is_duplicate",
        "transaction",
        "retry_count",
        "created_at",
    ]
    list_filter = ["status", "signature_verified", "is_duplicate", "provider__code"]
    search_fields = ["webhook_id", "reference", "transaction__transaction_number"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False


class ReconciliationItemInline(ReadOnlyInline):
    model = ReconciliationItem
    fields = [
        "match_key",
        "status",
        "transaction",
        "statement_reference",
        "book_amount",
        "statement_amount",
        "difference",
        "is_manual",
    ]


class ManualReconciliationActionInline(ReadOnlyInline):
    model = ManualReconciliationAction
    fields = ["created_at", "action", "performed_by", "transaction", "statement_reference", "reason"]


@admin.register(BankReconciliation)
class BankReconciliationAdmin(admin.ModelAdmin):
    list_display = [
        "reference",
        "company",
        "provider",
        "period_start",
        "period_end",
        "status",
        "matched_count",
        "unmatched_book_count",
        "unmatched_bank_count",
        "difference",
        "run_count",
    ]
    list_filter = ["status", "provider__code"]
    search_fields = ["reference", "company__name"]
    ordering = ["-period_end"]
    inlines = [ReconciliationItemInline, ManualReconciliationActionInline]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields if field.name != "notes"]

    def has_add_permission(self, request) -> bool:
        return False
