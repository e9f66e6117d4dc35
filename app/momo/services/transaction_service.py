"""
Transaction service: initiating, polling, cancelling and expiring
mobile-money transactions.

Initiation is a two-step operation:
1. Validate and persist the transaction as PENDING (one DB transaction)
2. Call the provider OUTSIDE any DB transaction, then record the outcome

If the provider accepted, the transaction moves to PROCESSING with the
provider reference stored, and any webhooks that arrived first are
applied. A retryable provider error leaves it PENDING with a retry
scheduled; a rejection fails it.

Usage:
    from momo.services import TransactionService

    txn = TransactionService.initiate_payment(
        ctx, provider, Decimal("100.00"), "0971234567", description="Invoice 42"
    )
    TransactionService.check_status(ctx, txn.pk)
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.urls import reverse
from django.utils import timezone

from core.exceptions import ValidationError
from core.helpers import to_money
from core.services import BaseService

from momo.exceptions import (
    MomoError,
    ProviderError,
    ProviderNotConfiguredError,
    StaleRecordError,
    TerminalStateViolation,
)
from momo.models import MomoProvider, MomoTransaction, TransactionAuditLog
from momo.providers import (
    UNKNOWN_STATUS,
    PaymentRequest,
    RefundRequest,
    get_gateway,
)
from momo.providers.phone import normalize_phone, phone_matches_provider
from momo.services.retry_scheduler import RetryPolicy, RetryScheduler
from momo.services.state_machine import TransactionStateMachine
from momo.services.webhook_service import WebhookService
from momo.state_machines import (
    AuditAction,
    EventSource,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    import uuid
    from typing import Any

    from core.tenancy import TenantContext

    from momo.providers import GatewayResult

OUTGOING_TYPES = (TransactionType.PAYOUT, TransactionType.TRANSFER)


class TransactionService(BaseService):
    """Lifecycle operations for MomoTransaction."""

    # =========================================================================
    # Initiation
    # =========================================================================

    @classmethod
    def initiate_payment(
        cls,
        ctx: TenantContext,
        provider: MomoProvider,
        amount: Decimal | str,
        phone: str,
        **options: Any,
    ) -> MomoTransaction:
        """
        Collect ``amount`` from the wallet behind ``phone``.

        Options:
            currency, description, customer_name, customer_email,
            invoice_id, payment_id, internal_reference, metadata

        Raises:
            ValidationError: Amount, phone or limits rejected (nothing persisted)
            ProviderNotConfiguredError: Provider inactive
        """
        return cls._initiate(
            ctx, provider, TransactionType.PAYMENT, amount, phone, **options
        )

    @classmethod
    def initiate_payout(
        cls,
        ctx: TenantContext,
        provider: MomoProvider,
        amount: Decimal | str,
        phone: str,
        *,
        transaction_type: str = TransactionType.PAYOUT,
        **options: Any,
    ) -> MomoTransaction:
        """Send ``amount`` to the wallet behind ``phone`` (payout or transfer)."""
        if transaction_type not in OUTGOING_TYPES:
            raise ValidationError(
                f"'{transaction_type}' is not a payout type",
                error_code="INVALID_TRANSACTION_TYPE",
            )
        return cls._initiate(ctx, provider, transaction_type, amount, phone, **options)

    @classmethod
    def initiate_refund(
        cls,
        ctx: TenantContext,
        original_transaction_id: uuid.UUID,
        amount: Decimal | str | None = None,
        **options: Any,
    ) -> MomoTransaction:
        """
        Refund all or part of a completed payment.

        Raises:
            NotFoundError: Original transaction not visible to the tenant
            ValidationError: Original isn't a completed payment, or the amount
                exceeds what is left to refund
        """
        original = MomoTransaction.objects.select_related("provider").get_for_tenant(
            ctx, pk=original_transaction_id
        )

        if original.type != TransactionType.PAYMENT or original.status != TransactionStatus.COMPLETED:
            raise ValidationError(
                "Only completed payments can be refunded",
                error_code="REFUND_NOT_ALLOWED",
                details={"status": original.status, "type": original.type},
            )

        refundable = original.amount - original.refunded_total()
        refund_amount = refundable if amount is None else cls._parse_amount(amount)
        if refund_amount > refundable:
            raise ValidationError(
                "Refund exceeds the refundable amount",
                error_code="REFUND_EXCEEDS_AMOUNT",
                details={"amount": str(refund_amount), "refundable": str(refundable)},
            )

        options.setdefault("description", f"Refund of {original.transaction_number}")
        options.setdefault("customer_name", original.customer_name)
        options.setdefault("customer_email", original.customer_email)
        options.setdefault("invoice_id", original.invoice_id)
        options.setdefault("payment_id", original.payment_id)
        return cls._initiate(
            ctx,
            original.provider,
            TransactionType.REFUND,
            refund_amount,
            original.customer_phone,
            original_transaction=original,
            **options,
        )

    @classmethod
    def _initiate(
        cls,
        ctx: TenantContext,
        provider: MomoProvider,
        transaction_type: str,
        amount: Decimal | str,
        phone: str,
        *,
        currency: str | None = None,
        description: str = "",
        customer_name: str = "",
        customer_email: str = "",
        invoice_id: uuid.UUID | None = None,
        payment_id: uuid.UUID | None = None,
        internal_reference: str = "",
        metadata: dict[str, Any] | None = None,
        original_transaction: MomoTransaction | None = None,
    ) -> MomoTransaction:
        amount = cls._parse_amount(amount)
        currency = (currency or provider.currency).upper()
        phone = cls.validate_request(ctx, provider, amount, phone, currency)

        with transaction.atomic():
            txn = MomoTransaction.objects.create(
                company_id=ctx.company_id,
                provider=provider,
                type=transaction_type,
                amount=amount,
                currency=currency,
                fee_amount=provider.calculate_fee(amount),
                customer_phone=phone,
                customer_name=customer_name,
                customer_email=customer_email,
                description=description,
                internal_reference=internal_reference,
                invoice_id=invoice_id,
                payment_id=payment_id,
                original_transaction=original_transaction,
                metadata=metadata or {},
                initiated_by_id=ctx.user_id,
            )
            TransactionAuditLog.record(
                ctx,
                txn,
                AuditAction.CREATED,
                to_status=txn.status,
                message=f"{txn.get_type_display()} of {txn.amount} {txn.currency}",
                context={"fee_amount": str(txn.fee_amount)},
            )

        cls.get_logger().info(
            "Initiated MoMo transaction",
            extra={
                "transaction_id": str(txn.pk),
                "transaction_number": txn.transaction_number,
                "company_id": str(ctx.company_id),
                "provider": provider.code,
                "type": transaction_type,
                "amount": str(amount),
            },
        )

        try:
            return cls.submit(ctx, txn)
        except ProviderError as e:
            return cls._handle_submit_error(ctx, txn, e)

    @classmethod
    def validate_request(
        cls,
        ctx: TenantContext,
        provider: MomoProvider,
        amount: Decimal,
        phone: str,
        currency: str,
    ) -> str:
        """
        Check a request against the provider before anything is persisted.

        Returns:
            The normalized phone number

        Raises:
            ValidationError: With a specific error_code per rule
            ProviderNotConfiguredError: Provider inactive or foreign
        """
        if provider.company_id != ctx.company_id or not provider.is_active:
            raise ProviderNotConfiguredError(
                f"Provider {provider.code} is not available",
                details={"provider": provider.code},
            )

        try:
            phone = normalize_phone(phone)
        except ValueError as e:
            raise ValidationError(
                str(e), error_code="INVALID_PHONE", details={"phone": phone}
            )
        if not phone_matches_provider(phone, provider.code):
            raise ValidationError(
                f"{phone} is not a {provider.get_code_display()} number",
                error_code="PHONE_PROVIDER_MISMATCH",
                details={"phone": phone, "provider": provider.code},
            )

        if currency != provider.currency:
            raise ValidationError(
                f"{provider.code} transacts in {provider.currency}, not {currency}",
                error_code="CURRENCY_MISMATCH",
            )

        if not provider.is_amount_valid(amount):
            raise ValidationError(
                f"Amount must be between {provider.min_transaction_amount} "
                f"and {provider.max_transaction_amount}",
                error_code="AMOUNT_OUT_OF_RANGE",
                details={
                    "amount": str(amount),
                    "minimum": str(provider.min_transaction_amount),
                    "maximum": str(provider.max_transaction_amount),
                },
            )

        if provider.daily_transaction_limit is not None:
            used = provider.daily_volume(timezone.localdate())
            if used + amount > provider.daily_transaction_limit:
                raise ValidationError(
                    "Daily transaction limit exceeded",
                    error_code="DAILY_LIMIT_EXCEEDED",
                    details={
                        "limit": str(provider.daily_transaction_limit),
                        "used": str(used),
                        "amount": str(amount),
                    },
                )
        return phone

    @staticmethod
    def _parse_amount(amount: Decimal | str) -> Decimal:
        try:
            value = to_money(amount)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(
                f"'{amount}' is not a valid amount", error_code="INVALID_AMOUNT"
            )
        if value <= 0:
            raise ValidationError("Amount must be positive", error_code="INVALID_AMOUNT")
        return value

    # =========================================================================
    # Provider calls
    # =========================================================================

    @classmethod
    def submit(cls, ctx: TenantContext, txn: MomoTransaction) -> MomoTransaction:
        """
        Send the transaction's request to its provider.

        Must not run inside a database transaction.

        Raises:
            ProviderError: If the provider call failed
        """
        gateway = get_gateway(txn.provider)
        if txn.type == TransactionType.REFUND:
            original = txn.original_transaction
            result = gateway.request_refund(
                RefundRequest(
                    amount=txn.amount,
                    currency=txn.currency,
                    phone=txn.customer_phone,
                    external_id=txn.transaction_number,
                    original_reference=original.provider_key if original else "",
                    description=txn.description,
                )
            )
        else:
            request = PaymentRequest(
                amount=txn.amount,
                currency=txn.currency,
                phone=txn.customer_phone,
                external_id=txn.transaction_number,
                description=txn.description,
                callback_url=cls.callback_url(txn),
            )
            if txn.is_collection:
                result = gateway.request_payment(request)
            else:
                result = gateway.request_payout(request)
        return cls._record_acceptance(ctx, txn, result)

    @classmethod
    def _record_acceptance(
        cls,
        ctx: TenantContext,
        txn: MomoTransaction,
        result: GatewayResult,
    ) -> MomoTransaction:
        changes = {
            "provider_transaction_id": result.reference,
            "provider_reference": result.reference,
            "provider_response": result.raw,
            "provider_timestamp": timezone.now(),
        }
        target = result.status
        if target in (TransactionStatus.PENDING, UNKNOWN_STATUS):
            target = TransactionStatus.PROCESSING
            changes.update(failure_reason="", next_retry_at=None)

        moved = TransactionStateMachine.apply(
            ctx,
            txn.pk,
            target,
            reason=result.message if target != TransactionStatus.PROCESSING else "",
            changes=changes,
            context={"provider_reference": result.reference},
        )
        if moved is None:
            return MomoTransaction.objects.for_tenant(ctx).get(pk=txn.pk)

        WebhookService.correlate_pending(ctx, moved)
        return MomoTransaction.objects.for_tenant(ctx).get(pk=txn.pk)

    @classmethod
    def _handle_submit_error(
        cls,
        ctx: TenantContext,
        txn: MomoTransaction,
        error: ProviderError,
    ) -> MomoTransaction:
        cls.get_logger().warning(
            "Provider refused or failed transaction submission",
            extra={
                "transaction_id": str(txn.pk),
                "error_code": error.error_code,
                "retryable": error.is_retryable,
            },
        )
        if error.is_retryable:
            return RetryScheduler.schedule(ctx, txn, reason=error.message)
        moved = TransactionStateMachine.apply(
            ctx,
            txn.pk,
            TransactionStatus.FAILED,
            reason=error.message,
            context=error.details,
        )
        return moved or txn

    @staticmethod
    def callback_url(txn: MomoTransaction) -> str:
        base_url = settings.MOMO_WEBHOOK_BASE_URL
        if not base_url:
            return ""
        path = reverse(
            "momo:webhook",
            kwargs={"company_slug": txn.company.slug, "provider_code": txn.provider.code},
        )
        return f"{base_url.rstrip('/')}{path}"

    # =========================================================================
    # Status
    # =========================================================================

    @classmethod
    def check_status(cls, ctx: TenantContext, transaction_id: uuid.UUID) -> MomoTransaction:
        """
        Poll the provider and apply the answer.

        Terminal transactions are returned untouched.

        Raises:
            NotFoundError: Transaction not visible to the tenant
            MomoError: The transaction has no provider reference yet
            ProviderError: The poll itself failed
        """
        txn = MomoTransaction.objects.select_related("provider").get_for_tenant(
            ctx, pk=transaction_id
        )
        if txn.is_terminal:
            return txn
        if not txn.provider_key:
            raise MomoError(
                "Transaction has not been accepted by the provider yet",
                error_code="NO_PROVIDER_REFERENCE",
                details={"transaction_id": str(txn.pk)},
            )
        return cls.poll(ctx.with_source(EventSource.POLL) if ctx.source == EventSource.API else ctx, txn)

    @classmethod
    def poll(cls, ctx: TenantContext, txn: MomoTransaction) -> MomoTransaction:
        """
        Raises:
            ProviderError: If the provider call failed
        """
        result = get_gateway(txn.provider).check_status(txn.provider_key)
        cls.get_logger().info(
            "Polled transaction status",
            extra={
                "transaction_id": str(txn.pk),
                "provider_status": result.status,
                "source": ctx.source,
            },
        )
        if result.status in (TransactionStatus.PENDING, UNKNOWN_STATUS):
            return txn

        TransactionStateMachine.apply(
            ctx,
            txn.pk,
            result.status,
            reason=result.reason,
            changes={"provider_response": result.raw},
            context={"provider_status": result.status},
        )
        return MomoTransaction.objects.for_tenant(ctx).get(pk=txn.pk)

    @classmethod
    def cancel(
        cls,
        ctx: TenantContext,
        transaction_id: uuid.UUID,
        reason: str = "",
    ) -> MomoTransaction:
        """
        Cancel a non-terminal transaction; its scheduled retries stop with it.

        Raises:
            NotFoundError: Transaction not visible to the tenant
            TerminalStateViolation: Transaction already finished
        """
        return TransactionStateMachine.transition(
            ctx,
            transaction_id,
            TransactionStatus.CANCELLED,
            reason=reason or "Cancelled by operator",
        )

    @classmethod
    def expire_stale(cls, ctx: TenantContext, now=None) -> int:
        """
        Expire pending transactions the provider never acknowledged.

        A transaction qualifies when it is PENDING, has no provider
        reference, is older than its status timeout and has never been
        handed to the retry scheduler. Retried rows end through
        RetryScheduler (failed and flagged for review), not here.

        Returns:
            Number of transactions expired
        """
        now = now or timezone.now()
        expire_ctx = ctx.with_source(EventSource.RETRY) if ctx.source == EventSource.API else ctx
        candidates = (
            MomoTransaction.objects.for_tenant(ctx)
            .filter(
                status=TransactionStatus.PENDING,
                provider_transaction_id="",
                provider_reference="",
                retry_count=0,
                next_retry_at__isnull=True,
            )
            .select_related("provider", "company")
        )

        expired = 0
        for txn in candidates:
            timeout = RetryPolicy.for_transaction(txn).status_timeout_minutes
            if txn.initiated_at > now - timedelta(minutes=timeout):
                continue
            try:
                TransactionStateMachine.transition(
                    expire_ctx, txn.pk, TransactionStatus.EXPIRED
                )
            except (TerminalStateViolation, StaleRecordError) as e:
                cls.get_logger().info(
                    "Skipped expiry",
                    extra={"transaction_id": str(txn.pk), "error_code": e.error_code},
                )
                continue
            expired += 1

        if expired:
            cls.get_logger().info(
                "Expired stale transactions",
                extra={"company_id": str(ctx.company_id), "count": expired},
            )
        return expired
