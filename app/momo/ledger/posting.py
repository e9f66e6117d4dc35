"""
Posting completed MoMo transactions to the ledger.

Amount A, fee F:

    Collection (payment):
        Dr cash                  Cr receivable | clearing   A - F
        Dr fees                  Cr receivable | clearing   F

    Disbursement (payout, refund, transfer):
        Dr clearing              Cr cash                    A
        Dr fees                  Cr cash                    F

Receivable is used for collections linked to an invoice, clearing for
everything else. Zero-amount legs are skipped. Each leg has a fixed
idempotency key (``momo:<txn id>:<leg>``), so posting twice is a no-op.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from momo.models import MomoTransaction, TransactionAuditLog
from momo.state_machines import AuditAction, TransactionStatus

from .exceptions import LedgerError
from .models import AccountKind, EntryType
from .services import LedgerService
from .types import RecordEntryParams

if TYPE_CHECKING:
    from core.tenancy import TenantContext

    from .models import LedgerAccount, LedgerEntry

logger = logging.getLogger(__name__)

REFERENCE_TYPE = "momo_transaction"


def _account(
    ctx: TenantContext,
    linked: LedgerAccount | None,
    kind: AccountKind,
    currency: str,
) -> LedgerAccount:
    if linked is not None:
        return linked
    return LedgerService.get_or_create_account(ctx, kind, currency)


def build_entries(ctx: TenantContext, txn: MomoTransaction) -> list[RecordEntryParams]:
    """The entry set for one completed transaction (not yet recorded)."""
    provider = txn.provider
    cash = _account(ctx, provider.cash_account, AccountKind.MOMO_CASH, txn.currency)
    fees = _account(ctx, provider.fee_account, AccountKind.MOMO_FEES, txn.currency)
    clearing = _account(ctx, None, AccountKind.MOMO_CLEARING, txn.currency)

    def entry(debit, credit, amount: Decimal, entry_type: str, leg: str) -> RecordEntryParams:
        return RecordEntryParams(
            debit_account_id=debit.id,
            credit_account_id=credit.id,
            amount=amount,
            entry_type=entry_type,
            idempotency_key=f"momo:{txn.pk}:{leg}",
            reference_type=REFERENCE_TYPE,
            reference_id=txn.pk,
            description=f"{txn.transaction_number} {txn.get_type_display()}",
            metadata={
                "transaction_number": txn.transaction_number,
                "provider": provider.code,
            },
            created_by="momo.ledger.posting",
        )

    entries: list[RecordEntryParams] = []
    if txn.is_collection:
        if txn.invoice_id:
            counterpart = _account(
                ctx,
                provider.receivable_account,
                AccountKind.ACCOUNTS_RECEIVABLE,
                txn.currency,
            )
        else:
            counterpart = clearing
        if txn.net_amount > 0:
            entries.append(
                entry(cash, counterpart, txn.net_amount, EntryType.COLLECTION, "collection")
            )
        if txn.fee_amount > 0:
            entries.append(
                entry(fees, counterpart, txn.fee_amount, EntryType.COLLECTION_FEE, "collection_fee")
            )
    else:
        entries.append(
            entry(clearing, cash, txn.amount, EntryType.DISBURSEMENT, "disbursement")
        )
        if txn.fee_amount > 0:
            entries.append(
                entry(fees, cash, txn.fee_amount, EntryType.DISBURSEMENT_FEE, "disbursement_fee")
            )
    return entries


def post_transaction(ctx: TenantContext, txn: MomoTransaction) -> list[LedgerEntry]:
    """
    Post a completed transaction to the ledger.

    Safe to call repeatedly: entries already recorded are returned and
    the posted flag and audit entry are only written once.

    Raises:
        LedgerError: If the transaction isn't completed
    """
    if txn.status != TransactionStatus.COMPLETED:
        raise LedgerError(
            f"Only completed transactions can be posted (status={txn.status})",
            error_code="TRANSACTION_NOT_COMPLETED",
            details={"transaction_id": str(txn.pk), "status": txn.status},
        )

    with transaction.atomic():
        recorded = LedgerService.record_entries(ctx, build_entries(ctx, txn))

        posted_at = timezone.now()
        marked = MomoTransaction.objects.for_tenant(ctx).filter(
            pk=txn.pk, is_posted_to_ledger=False
        ).update(is_posted_to_ledger=True, posted_at=posted_at)
        if marked:
            txn.is_posted_to_ledger = True
            txn.posted_at = posted_at
            TransactionAuditLog.record(
                ctx,
                txn,
                AuditAction.LEDGER_POSTED,
                message=f"Posted {len(recorded)} ledger entries",
                context={"entry_ids": [str(e.id) for e in recorded]},
            )
            logger.info(
                "Posted transaction to ledger",
                extra={
                    "transaction_id": str(txn.pk),
                    "company_id": str(ctx.company_id),
                    "entries": len(recorded),
                },
            )

    return recorded
