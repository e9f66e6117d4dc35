"""
Serializers for the MoMo operator API.

Serializers:
    MomoTransactionSerializer: Read-only transaction representation
    InitiateTransactionSerializer: Payment, payout, transfer or refund request
    CancelTransactionSerializer: Cancellation reason
    BankReconciliationSerializer: Reconciliation summary with its items
    RunReconciliationSerializer: Reconciliation run request
    ForceMatchSerializer / ForceUnmatchSerializer: Manual overrides

Usage:
    serializer = InitiateTransactionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from momo.models import (
    BankReconciliation,
    ManualReconciliationAction,
    MomoTransaction,
    ReconciliationItem,
)
from momo.providers import StatementLine
from momo.state_machines import ProviderCode, TransactionType


class MomoTransactionSerializer(serializers.ModelSerializer):
    provider = serializers.CharField(source="provider.code", read_only=True)

    class Meta:
        model = MomoTransaction
        fields = [
            "id",
            "transaction_number",
            "type",
            "status",
            "provider",
            "amount",
            "fee_amount",
            "net_amount",
            "currency",
            "customer_phone",
            "customer_name",
            "customer_email",
            "description",
            "internal_reference",
            "provider_transaction_id",
            "provider_reference",
            "invoice_id",
            "payment_id",
            "original_transaction",
            "is_posted_to_ledger",
            "is_reconciled",
            "retry_count",
            "next_retry_at",
            "failure_reason",
            "requires_review",
            "initiated_at",
            "completed_at",
            "failed_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class InitiateTransactionSerializer(serializers.Serializer):
    """
    Request body for POST /transactions/.

    Payments, payouts and transfers need ``phone`` and ``amount``; without
    ``provider`` the company's provider for the phone prefix is used.
    refunds need ``original_transaction_id`` and take everything else
    from the original payment.
    """

    type = serializers.ChoiceField(choices=TransactionType.choices, default=TransactionType.PAYMENT)
    provider = serializers.ChoiceField(choices=ProviderCode.choices, required=False)
    amount = serializers.DecimalField(
        max_digits=15, decimal_places=2, min_value=Decimal("0.01"), required=False
    )
    phone = serializers.CharField(max_length=20, required=False)
    currency = serializers.CharField(max_length=3, required=False)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    customer_email = serializers.EmailField(required=False, allow_blank=True, default="")
    internal_reference = serializers.CharField(
        max_length=255, required=False, allow_blank=True, default=""
    )
    invoice_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    payment_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    metadata = serializers.DictField(required=False, default=dict)
    original_transaction_id = serializers.UUIDField(required=False)

    def validate(self, attrs):
        if attrs["type"] == TransactionType.REFUND:
            if not attrs.get("original_transaction_id"):
                raise serializers.ValidationError(
                    {"original_transaction_id": "Required for refunds."}
                )
            return attrs

        errors = {}
        for field_name in ("phone", "amount"):
            if not attrs.get(field_name):
                errors[field_name] = "This field is required."
        if errors:
            raise serializers.ValidationError(errors)
        return attrs


class CancelTransactionSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ReconciliationItemSerializer(serializers.ModelSerializer):
    transaction_number = serializers.CharField(
        source="transaction.transaction_number", read_only=True, default=None
    )

    class Meta:
        model = ReconciliationItem
        fields = [
            "id",
            "match_key",
            "status",
            "transaction",
            "transaction_number",
            "statement_reference",
            "book_amount",
            "statement_amount",
            "difference",
            "transaction_date",
            "statement_date",
            "description",
            "is_manual",
        ]
        read_only_fields = fields


class ManualReconciliationActionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ManualReconciliationAction
        fields = [
            "id",
            "action",
            "item",
            "transaction",
            "statement_reference",
            "performed_by",
            "reason",
            "created_at",
        ]
        read_only_fields = fields


class BankReconciliationSerializer(serializers.ModelSerializer):
    provider = serializers.CharField(source="provider.code", read_only=True)
    items = ReconciliationItemSerializer(many=True, read_only=True)
    manual_actions = ManualReconciliationActionSerializer(many=True, read_only=True)

    class Meta:
        model = BankReconciliation
        fields = [
            "id",
            "reference",
            "provider",
            "period_start",
            "period_end",
            "status",
            "statement_opening_balance",
            "statement_closing_balance",
            "book_opening_balance",
            "book_closing_balance",
            "difference",
            "matched_count",
            "unmatched_book_count",
            "unmatched_bank_count",
            "matched_amount",
            "book_total",
            "statement_total",
            "amount_tolerance",
            "date_window_days",
            "run_count",
            "last_run_at",
            "summary",
            "approved_by",
            "approved_at",
            "items",
            "manual_actions",
        ]
        read_only_fields = fields


class BankReconciliationListSerializer(BankReconciliationSerializer):
    class Meta(BankReconciliationSerializer.Meta):
        fields = [
            name
            for name in BankReconciliationSerializer.Meta.fields
            if name not in ("items", "manual_actions")
        ]
        read_only_fields = fields


class StatementLineSerializer(serializers.Serializer):
    reference = serializers.CharField(max_length=255)
    amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    date = serializers.DateTimeField(required=False, allow_null=True)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)


class RunReconciliationSerializer(serializers.Serializer):
    """
    Request body for POST /reconciliations/.

    ``statement`` is optional; without it the provider's transaction
    history is fetched (MTN has none, so MTN needs a statement).
    """

    provider = serializers.ChoiceField(choices=ProviderCode.choices)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    force = serializers.BooleanField(default=False)
    statement = StatementLineSerializer(many=True, required=False)
    statement_opening_balance = serializers.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("0.00")
    )
    book_opening_balance = serializers.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("0.00")
    )

    def validate(self, attrs):
        if attrs["start_date"] > attrs["end_date"]:
            raise serializers.ValidationError(
                {"end_date": "end_date must not be before start_date."}
            )
        return attrs

    def statement_lines(self) -> list[StatementLine] | None:
        rows = self.validated_data.get("statement")
        if rows is None:
            return None
        return [StatementLine.from_dict(dict(row)) for row in rows]


class ForceMatchSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    statement_reference = serializers.CharField(max_length=255)
    reason = serializers.CharField()


class ForceUnmatchSerializer(serializers.Serializer):
    item_id = serializers.UUIDField()
    reason = serializers.CharField()


class ReconciliationReportSerializer(serializers.Serializer):
    provider = serializers.CharField()
    since = serializers.DateField()
    reconciliations = serializers.IntegerField()
    approved = serializers.IntegerField()
    with_discrepancies = serializers.IntegerField()
    matched_transactions = serializers.IntegerField()
    matched_amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    total_difference = serializers.DecimalField(max_digits=15, decimal_places=2)
    average_rate = serializers.FloatField(allow_null=True)
