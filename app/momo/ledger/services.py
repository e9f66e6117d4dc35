"""
Ledger service layer.

All ledger writes go through LedgerService so accounts are locked,
validated and recorded idempotently inside one database transaction.

Usage:
    from momo.ledger.services import LedgerService
    from momo.ledger.types import RecordEntryParams

    cash = LedgerService.get_or_create_account(ctx, AccountKind.MOMO_CASH, "ZMW")
    LedgerService.record_entries(ctx, [RecordEntryParams(...), ...])
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from .exceptions import AccountNotFound, InactiveAccount, InsufficientBalance
from .models import AccountKind, LedgerAccount, LedgerEntry

if TYPE_CHECKING:
    from core.tenancy import TenantContext

    from .types import RecordEntryParams

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Ledger operations for one tenant at a time.

    Key features:
    - Atomic multi-entry recording
    - Idempotency via unique keys (safe to retry)
    - Accounts locked in id order to avoid deadlocks

    All methods are static and take the TenantContext first.
    """

    @staticmethod
    def get_or_create_account(
        ctx: TenantContext,
        kind: AccountKind | str,
        currency: str,
        name: str = "",
        allow_negative: bool = True,
    ) -> LedgerAccount:
        """
        Return the company's account of ``kind`` in ``currency``, creating it
        on first use.
        """
        account, created = LedgerAccount.objects.get_or_create(
            company_id=ctx.company_id,
            kind=kind,
            currency=currency,
            defaults={
                "name": name or f"{AccountKind(kind).label} ({currency})",
                "allow_negative": allow_negative,
            },
        )
        if created:
            logger.info(
                "Created ledger account",
                extra={
                    "company_id": str(ctx.company_id),
                    "account_id": str(account.id),
                    "kind": str(kind),
                    "currency": currency,
                },
            )
        return account

    @staticmethod
    def get_account(ctx: TenantContext, account_id: uuid.UUID) -> LedgerAccount:
        """
        Raises:
            AccountNotFound: If the account doesn't exist for this company
        """
        try:
            return LedgerAccount.objects.for_tenant(ctx).get(id=account_id)
        except LedgerAccount.DoesNotExist:
            raise AccountNotFound(
                f"Account {account_id} not found",
                details={"account_id": str(account_id)},
            )

    @staticmethod
    def record_entries(
        ctx: TenantContext,
        entries: list[RecordEntryParams],
    ) -> list[LedgerEntry]:
        """
        Record several entries atomically.

        Entries whose idempotency_key already exists are returned as-is,
        so re-posting the same transaction changes nothing.

        Raises:
            AccountNotFound: If an account is missing or owned by another company
            InactiveAccount: If an account has been deactivated
            InsufficientBalance: If a credit overdraws a non-negative account
        """
        if not entries:
            return []

        results: list[LedgerEntry] = []

        with transaction.atomic():
            account_ids: set[uuid.UUID] = set()
            for params in entries:
                account_ids.add(params.debit_account_id)
                account_ids.add(params.credit_account_id)

            # Lock in a fixed order so concurrent postings can't deadlock
            accounts = {
                acc.id: acc
                for acc in LedgerAccount.objects.for_tenant(ctx)
                .filter(id__in=account_ids)
                .select_for_update()
                .order_by("id")
            }

            for account_id in account_ids:
                if account_id not in accounts:
                    raise AccountNotFound(
                        f"Account {account_id} not found",
                        details={"account_id": str(account_id)},
                    )

            for params in entries:
                existing = LedgerEntry.objects.filter(
                    idempotency_key=params.idempotency_key
                ).first()
                if existing is not None:
                    results.append(existing)
                    continue

                debit_account = accounts[params.debit_account_id]
                credit_account = accounts[params.credit_account_id]
                for account in (debit_account, credit_account):
                    if not account.is_active:
                        raise InactiveAccount(
                            f"Account {account.id} is inactive",
                            details={"account_id": str(account.id)},
                        )
                if not credit_account.allow_negative:
                    available = credit_account.get_balance()
                    if available < params.amount:
                        raise InsufficientBalance(
                            credit_account.id,
                            required=params.amount,
                            available=available,
                        )

                try:
                    with transaction.atomic():
                        entry = LedgerEntry.objects.create(
                            company_id=ctx.company_id,
                            idempotency_key=params.idempotency_key,
                            debit_account=debit_account,
                            credit_account=credit_account,
                            amount=params.amount,
                            currency=debit_account.currency,
                            entry_type=params.entry_type,
                            reference_type=params.reference_type,
                            reference_id=params.reference_id,
                            description=params.description,
                            metadata=params.metadata or {},
                            created_by=params.created_by,
                        )
                except IntegrityError:
                    # Another worker recorded the same key first
                    entry = LedgerEntry.objects.get(
                        idempotency_key=params.idempotency_key
                    )

                results.append(entry)

        return results

    @staticmethod
    def get_balance(ctx: TenantContext, account_id: uuid.UUID) -> Decimal:
        return LedgerService.get_account(ctx, account_id).get_balance()

    @staticmethod
    def get_entries_by_reference(
        ctx: TenantContext,
        reference_type: str,
        reference_id: uuid.UUID,
    ) -> list[LedgerEntry]:
        """All entries for one business record, oldest first."""
        return list(
            LedgerEntry.objects.for_tenant(ctx)
            .filter(reference_type=reference_type, reference_id=reference_id)
            .order_by("created_at")
        )
