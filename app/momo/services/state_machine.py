"""
Central transition guard for MomoTransaction.

Every status change goes through ``TransactionStateMachine.transition``:

1. Lock the row (``select_for_update``) inside ``transaction.atomic()``
2. Refuse terminal rows (TerminalStateViolation) and moves that aren't in
   ALLOWED_TRANSITIONS (InvalidStateTransitionError)
3. Run the django-fsm transition method in memory
4. Write with a compare-and-swap on (status, version); zero rows means
   another process won (StaleRecordError)
5. Audit the change, then post to the ledger and send signals once the
   surrounding transaction commits

``apply`` wraps ``transition`` for event-driven callers (webhooks, polls,
retries): a terminal row is ignored with a ``terminal_ignored`` audit
entry, and a stale write is re-evaluated against the fresh row once.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction

from core.exceptions import NotFoundError

from momo.exceptions import (
    InvalidStateTransitionError,
    StaleRecordError,
    TerminalStateViolation,
)
from momo.ledger.exceptions import LedgerError
from momo.locks import compare_and_swap
from momo.models import MomoTransaction, TransactionAuditLog
from momo.signals import transaction_completed, transaction_status_changed
from momo.state_machines import (
    AuditAction,
    TransactionStatus,
    can_transition,
    is_terminal,
)

if TYPE_CHECKING:
    import uuid
    from typing import Any

    from core.tenancy import TenantContext

logger = logging.getLogger(__name__)

TRANSITION_METHODS = {
    TransactionStatus.PROCESSING: "start_processing",
    TransactionStatus.COMPLETED: "complete",
    TransactionStatus.FAILED: "fail",
    TransactionStatus.CANCELLED: "cancel",
    TransactionStatus.EXPIRED: "expire",
}

# Fields the fsm transition methods may touch besides status
TRANSITION_FIELDS = (
    "completed_at",
    "failed_at",
    "next_retry_at",
    "failure_reason",
)

STALE_RETRIES = 1


class TransactionStateMachine:
    """Validates and applies MomoTransaction status changes."""

    @classmethod
    def transition(
        cls,
        ctx: TenantContext,
        transaction_id: uuid.UUID,
        target: str,
        *,
        reason: str = "",
        changes: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> MomoTransaction:
        """
        Move a transaction to ``target``.

        Args:
            ctx: Tenant (and source) of the change
            transaction_id: Transaction to move
            target: TransactionStatus value
            reason: Failure or cancellation reason
            changes: Extra fields written in the same UPDATE
                (provider reference, provider response...)
            context: Extra JSON for the audit entry

        Returns:
            The transaction as written

        Raises:
            NotFoundError: If the transaction isn't visible to the tenant
            TerminalStateViolation: If the transaction is already terminal
            InvalidStateTransitionError: If the move isn't allowed
            StaleRecordError: If another process changed the row first
        """
        target = TransactionStatus(target)
        changes = dict(changes or {})
        changes.pop("status", None)
        changes.pop("version", None)

        with transaction.atomic():
            try:
                txn = (
                    MomoTransaction.objects.for_tenant(ctx)
                    .select_for_update(of=("self",))
                    .select_related("provider")
                    .get(pk=transaction_id)
                )
            except MomoTransaction.DoesNotExist:
                raise NotFoundError(
                    "MomoTransaction not found",
                    error_code="MOMO_TRANSACTION_NOT_FOUND",
                    details={"transaction_id": str(transaction_id)},
                )

            current = txn.status
            if is_terminal(current):
                raise TerminalStateViolation(
                    f"Transaction {txn.transaction_number} is already {current}",
                    details={
                        "transaction_id": str(txn.pk),
                        "current_state": current,
                        "target_state": target,
                    },
                )
            if not can_transition(current, target):
                raise InvalidStateTransitionError(
                    f"Cannot move transaction from '{current}' to '{target}'",
                    details={"current_state": current, "target_state": target},
                )

            expected = {"status": current, "version": txn.version}
            method = getattr(txn, TRANSITION_METHODS[target])
            if target in (TransactionStatus.FAILED, TransactionStatus.CANCELLED):
                method(reason=reason)
            else:
                method()
            for field_name, value in changes.items():
                setattr(txn, field_name, value)

            written = {name: getattr(txn, name) for name in TRANSITION_FIELDS}
            written.update(changes)
            txn.version = compare_and_swap(
                MomoTransaction,
                txn.pk,
                expected=expected,
                changes={"status": target, **written},
            )

            TransactionAuditLog.record(
                ctx,
                txn,
                AuditAction.STATUS_CHANGED,
                from_status=current,
                to_status=target,
                message=reason,
                context=context,
            )
            transaction.on_commit(
                lambda: cls._send_status_signals(ctx, txn, current, target, reason)
            )

        logger.info(
            "Transaction status changed",
            extra={
                "transaction_id": str(txn.pk),
                "company_id": str(ctx.company_id),
                "from_status": current,
                "to_status": target,
                "source": ctx.source,
            },
        )

        if target == TransactionStatus.COMPLETED:
            cls._post_to_ledger(ctx, txn)
        return txn

    @classmethod
    def apply(
        cls,
        ctx: TenantContext,
        transaction_id: uuid.UUID,
        target: str,
        *,
        reason: str = "",
        changes: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> MomoTransaction | None:
        """
        Apply an externally reported status.

        Returns:
            The moved transaction, or None when the event was ignored because
            the transaction is already terminal
        """
        for attempt in range(STALE_RETRIES + 1):
            try:
                return cls.transition(
                    ctx,
                    transaction_id,
                    target,
                    reason=reason,
                    changes=changes,
                    context=context,
                )
            except TerminalStateViolation as e:
                cls.record_terminal_ignored(ctx, transaction_id, target, e, context)
                return None
            except StaleRecordError:
                if attempt == STALE_RETRIES:
                    raise
                logger.info(
                    "Stale transaction write, re-evaluating",
                    extra={"transaction_id": str(transaction_id), "target": str(target)},
                )
        return None

    @classmethod
    def record_terminal_ignored(
        cls,
        ctx: TenantContext,
        transaction_id: uuid.UUID,
        target: str,
        error: TerminalStateViolation,
        context: dict[str, Any] | None = None,
    ) -> None:
        txn = MomoTransaction.objects.for_tenant(ctx).get(pk=transaction_id)
        TransactionAuditLog.record(
            ctx,
            txn,
            AuditAction.TERMINAL_IGNORED,
            from_status=txn.status,
            to_status=str(target),
            message=error.message,
            context=context,
        )
        logger.info(
            "Ignored status update for terminal transaction",
            extra={
                "transaction_id": str(transaction_id),
                "status": txn.status,
                "reported_status": str(target),
                "source": ctx.source,
            },
        )

    @staticmethod
    def _post_to_ledger(ctx: TenantContext, txn: MomoTransaction) -> None:
        from momo.ledger.posting import post_transaction

        try:
            post_transaction(ctx, txn)
        except LedgerError:
            # post_unposted_transactions picks it up again
            logger.exception(
                "Ledger posting failed",
                extra={"transaction_id": str(txn.pk), "company_id": str(ctx.company_id)},
            )

    @staticmethod
    def _send_status_signals(
        ctx: TenantContext,
        txn: MomoTransaction,
        from_status: str,
        to_status: str,
        reason: str,
    ) -> None:
        transaction_status_changed.send(
            sender=MomoTransaction,
            company_id=ctx.company_id,
            transaction_id=txn.pk,
            transaction_number=txn.transaction_number,
            from_status=str(from_status),
            to_status=str(to_status),
            source=ctx.source,
            reason=reason,
        )
        if to_status == TransactionStatus.COMPLETED:
            transaction_completed.send(
                sender=MomoTransaction,
                company_id=ctx.company_id,
                transaction_id=txn.pk,
                invoice_id=txn.invoice_id,
                payment_id=txn.payment_id,
                amount=txn.amount,
                fee_amount=txn.fee_amount,
                net_amount=txn.net_amount,
                currency=txn.currency,
            )
