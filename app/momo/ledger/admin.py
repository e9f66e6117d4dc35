"""
Django admin configuration for ledger models.

Ledger entries are immutable: no add, change or delete through the
admin. Corrections are new ADJUSTMENT entries posted by LedgerService.
"""

from django.contrib import admin

from momo.ledger.models import LedgerAccount, LedgerEntry


@admin.register(LedgerAccount)
class LedgerAccountAdmin(admin.ModelAdmin):
    """Accounts with their balance computed from entries."""

    list_display = [
        "name",
        "company",
        "kind",
        "currency",
        "balance_display",
        "allow_negative",
        "is_active",
    ]
    list_filter = ["kind", "currency", "is_active", "allow_negative"]
    search_fields = ["name", "company__name", "company__slug"]
    readonly_fields = ["id", "created_at", "updated_at", "balance_display"]
    ordering = ["company", "kind"]

    fieldsets = (
        (None, {"fields": ("id", "company", "kind", "name", "currency")}),
        ("Configuration", {"fields": ("allow_negative", "is_active")}),
        ("Balance", {"fields": ("balance_display",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.display(description="Balance")
    def balance_display(self, obj: LedgerAccount) -> str:
        return f"{obj.get_balance():,.2f} {obj.currency}"


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = [
        "created_at",
        "company",
        "entry_type",
        "amount",
        "currency",
        "debit_account",
        "credit_account",
        "reference_type",
    ]
    list_filter = ["entry_type", "reference_type", "currency"]
    search_fields = ["idempotency_key", "reference_id", "description", "created_by"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        ("Entry Details", {"fields": ("id", "company", "entry_type", "amount", "currency", "created_at")}),
        ("Accounts", {"fields": ("debit_account", "credit_account")}),
        ("Reference", {"fields": ("reference_type", "reference_id", "idempotency_key")}),
        ("Additional Info", {"fields": ("description", "metadata", "created_by")}),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
