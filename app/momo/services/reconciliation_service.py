"""
Reconciliation of completed transactions against a provider statement.

One run covers one provider and one period. The book side is every
completed transaction with ``completed_at`` in the period; the statement
side is an uploaded statement or the provider's transaction history.

Matching:
    1. Exact: statement reference equals the transaction's provider id
       (or provider reference), amount within tolerance, dates within the
       window
    2. Fallback: for transactions without an exact partner, amount within
       tolerance and date within the window against statement lines whose
       reference matches no transaction; accepted only when there is
       exactly one candidate

Re-running a period reuses its BankReconciliation, rebuilds the automatic
items and keeps every manual one. Approved runs are frozen unless forced.

Usage:
    from momo.services import ReconciliationService

    recon = ReconciliationService.run(ctx, provider, date(2025, 7, 1), date(2025, 7, 31))
    ReconciliationService.approve(ctx, recon.pk, request.user)
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from core.exceptions import ValidationError
from core.helpers import to_money
from core.services import BaseService

from companies.models import MembershipRole
from companies.services import TenancyService

from momo.exceptions import ProviderNotConfiguredError, ReconciliationError
from momo.ledger.models import AccountKind
from momo.ledger.services import LedgerService
from momo.locks import DistributedLock
from momo.models import (
    BankReconciliation,
    ManualReconciliationAction,
    MomoTransaction,
    ReconciliationItem,
    TransactionAuditLog,
)
from momo.providers import get_gateway
from momo.signals import reconciliation_completed
from momo.state_machines import (
    AuditAction,
    EventSource,
    ManualActionType,
    ReconciliationItemStatus,
    ReconciliationStatus,
    TransactionStatus,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from datetime import date
    from typing import Any

    from django.contrib.auth.models import AbstractBaseUser

    from core.tenancy import TenantContext

    from momo.models import MomoProvider
    from momo.providers import StatementLine

ZERO = Decimal("0.00")
RUN_LOCK_TTL = 600


@dataclass(frozen=True)
class MatchSettings:
    amount_tolerance: Decimal
    date_window_days: int

    @classmethod
    def for_company(cls, company) -> MatchSettings:
        return cls(
            amount_tolerance=to_money(
                company.momo_setting(
                    "amount_tolerance", settings.MOMO_RECONCILIATION_AMOUNT_TOLERANCE
                )
            ),
            date_window_days=int(
                company.momo_setting(
                    "date_window_days", settings.MOMO_RECONCILIATION_DATE_WINDOW_DAYS
                )
            ),
        )

    def accepts(self, txn: MomoTransaction, line: StatementLine) -> bool:
        if abs(txn.amount - line.amount) > self.amount_tolerance:
            return False
        if line.occurred_at is None or txn.completed_at is None:
            return True
        days = abs((timezone.localdate(line.occurred_at) - timezone.localdate(txn.completed_at)).days)
        return days <= self.date_window_days


@dataclass
class MatchOutcome:
    matched: list[tuple[MomoTransaction, StatementLine]]
    unmatched_book: list[MomoTransaction]
    unmatched_bank: list[StatementLine]


def match_lines(
    book: list[MomoTransaction],
    lines: list[StatementLine],
    match_settings: MatchSettings,
) -> MatchOutcome:
    """
    Pair transactions with statement lines.

    Deterministic for a given input order, so the same data always gives
    the same partition.
    """
    by_reference: dict[str, list[int]] = {}
    for index, line in enumerate(lines):
        by_reference.setdefault(line.reference, []).append(index)

    used: set[int] = set()
    matched: list[tuple[MomoTransaction, StatementLine]] = []
    leftover: list[MomoTransaction] = []

    for txn in book:
        partner = None
        for key in (txn.provider_transaction_id, txn.provider_reference):
            if not key:
                continue
            for index in by_reference.get(key, []):
                if index not in used and match_settings.accepts(txn, lines[index]):
                    partner = index
                    break
            if partner is not None:
                break
        if partner is None:
            leftover.append(txn)
        else:
            used.add(partner)
            matched.append((txn, lines[partner]))

    book_keys = {
        key
        for txn in book
        for key in (txn.provider_transaction_id, txn.provider_reference)
        if key
    }
    unmatched_book = []
    for txn in leftover:
        candidates = [
            index
            for index, line in enumerate(lines)
            if index not in used
            and line.reference not in book_keys
            and match_settings.accepts(txn, line)
        ]
        if len(candidates) == 1:
            used.add(candidates[0])
            matched.append((txn, lines[candidates[0]]))
        else:
            unmatched_book.append(txn)

    unmatched_bank = [line for index, line in enumerate(lines) if index not in used]
    return MatchOutcome(matched=matched, unmatched_book=unmatched_book, unmatched_bank=unmatched_bank)


class ReconciliationService(BaseService):
    """Runs, adjusts, approves and reports on reconciliations."""

    @classmethod
    def run(
        cls,
        ctx: TenantContext,
        provider: MomoProvider,
        start_date: date,
        end_date: date,
        *,
        actor: AbstractBaseUser | None = None,
        statement: Iterable[StatementLine] | None = None,
        force: bool = False,
        statement_opening_balance: Decimal = ZERO,
        book_opening_balance: Decimal = ZERO,
    ) -> BankReconciliation:
        """
        Reconcile ``provider`` for ``start_date``..``end_date`` (inclusive).

        Args:
            statement: Uploaded statement lines; fetched from the provider
                when omitted
            force: Re-run an approved reconciliation

        Raises:
            ValidationError: Period is reversed
            ProviderNotConfiguredError: Provider belongs to another company
            ReconciliationError: Period already approved and not forced
            LockAcquisitionError: Same period already running
            ProviderError: Provider history could not be fetched
        """
        if start_date > end_date:
            raise ValidationError(
                "start_date must not be after end_date",
                error_code="INVALID_PERIOD",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )
        if provider.company_id != ctx.company_id:
            raise ProviderNotConfiguredError(
                f"Provider {provider.code} is not available",
                details={"provider": provider.code},
            )

        ctx = ctx.with_source(EventSource.RECONCILIATION)
        if actor is not None:
            ctx = ctx.with_user(actor.pk)
        logger = cls.get_logger()
        lock_key = f"momo:reconcile:{provider.pk}:{start_date}:{end_date}"

        with DistributedLock(lock_key, ttl=RUN_LOCK_TTL, blocking=False):
            if statement is None:
                lines = get_gateway(provider).get_transaction_history(start_date, end_date)
                statement_source = "provider"
            else:
                lines = list(statement)
                statement_source = "uploaded"

            with transaction.atomic():
                recon = cls._start(ctx, provider, start_date, end_date, force)
                recon.statement_opening_balance = to_money(statement_opening_balance)
                recon.book_opening_balance = to_money(book_opening_balance)
                match_settings = MatchSettings.for_company(provider.company)
                recon.amount_tolerance = match_settings.amount_tolerance
                recon.date_window_days = match_settings.date_window_days

                outcome = cls._rebuild_items(ctx, recon, lines, match_settings)
                cls._sync_flags(ctx, recon)
                cls._recompute(recon, statement_source=statement_source)
                recon.run_count += 1
                recon.complete()
                recon.save()

                transaction.on_commit(lambda: cls._send_completed(recon))

        logger.info(
            "Reconciliation finished",
            extra={
                "reconciliation_id": str(recon.pk),
                "provider": provider.code,
                "period_start": str(start_date),
                "period_end": str(end_date),
                "matched": len(outcome.matched),
                "unmatched_book": len(outcome.unmatched_book),
                "unmatched_bank": len(outcome.unmatched_bank),
                "difference": str(recon.difference),
            },
        )
        return recon

    @classmethod
    def _start(
        cls,
        ctx: TenantContext,
        provider: MomoProvider,
        start_date: date,
        end_date: date,
        force: bool,
    ) -> BankReconciliation:
        account = provider.cash_account or LedgerService.get_or_create_account(
            ctx, AccountKind.MOMO_CASH, provider.currency
        )
        recon, created = BankReconciliation.objects.select_for_update().get_or_create(
            company_id=ctx.company_id,
            provider=provider,
            period_start=start_date,
            period_end=end_date,
            defaults={
                "account": account,
                "reference": (
                    f"MOMO-{provider.code.upper()}-{start_date:%Y%m%d}-{end_date:%Y%m%d}"
                ),
            },
        )
        if created:
            return recon

        if recon.status == ReconciliationStatus.APPROVED:
            if not force:
                raise ReconciliationError(
                    "Reconciliation is approved; re-running it requires force",
                    error_code="RECONCILIATION_APPROVED",
                    details={"reconciliation_id": str(recon.pk)},
                )
            recon.reopen()
        elif recon.status == ReconciliationStatus.COMPLETED:
            recon.restart()
        return recon

    @classmethod
    def _rebuild_items(
        cls,
        ctx: TenantContext,
        recon: BankReconciliation,
        lines: list[StatementLine],
        match_settings: MatchSettings,
    ) -> MatchOutcome:
        recon.items.filter(is_manual=False).delete()
        manual = list(recon.items.filter(is_manual=True))
        pinned_transactions = {item.transaction_id for item in manual if item.transaction_id}
        pinned_references = Counter(
            item.statement_reference for item in manual if item.statement_reference
        )
        taken = {item.match_key for item in manual}

        book = [
            txn
            for txn in MomoTransaction.objects.for_tenant(ctx)
            .filter(
                provider=recon.provider,
                status=TransactionStatus.COMPLETED,
                completed_at__date__gte=recon.period_start,
                completed_at__date__lte=recon.period_end,
            )
            .order_by("completed_at", "transaction_number")
            if txn.pk not in pinned_transactions
        ]
        remaining = []
        for line in lines:
            # Each manual item accounts for one line with its reference
            if pinned_references[line.reference] > 0:
                pinned_references[line.reference] -= 1
                continue
            remaining.append(line)
        lines = remaining
        outcome = match_lines(book, lines, match_settings)

        items = []
        for txn, line in outcome.matched:
            items.append(
                ReconciliationItem(
                    reconciliation=recon,
                    match_key=f"txn:{txn.pk}",
                    status=ReconciliationItemStatus.MATCHED,
                    **cls._book_fields(txn),
                    **cls._statement_fields(line),
                )
            )
        for txn in outcome.unmatched_book:
            items.append(
                ReconciliationItem(
                    reconciliation=recon,
                    match_key=f"txn:{txn.pk}",
                    status=ReconciliationItemStatus.UNMATCHED_BOOK,
                    **cls._book_fields(txn),
                )
            )
        for line in outcome.unmatched_bank:
            items.append(
                ReconciliationItem(
                    reconciliation=recon,
                    match_key=cls._statement_key(line.reference, taken),
                    status=ReconciliationItemStatus.UNMATCHED_BANK,
                    description=line.description[:255],
                    **cls._statement_fields(line),
                )
            )
        for item in items:
            item.difference = (item.statement_amount or ZERO) - (item.book_amount or ZERO)
        ReconciliationItem.objects.bulk_create(items)
        return outcome

    @staticmethod
    def _statement_key(reference: str, taken: set[str]) -> str:
        """Unique ``stmt:`` key for a bank line; repeats get ``#2``, ``#3``, ..."""
        base = f"stmt:{reference}"[:290]
        key = base
        n = 1
        while key in taken:
            n += 1
            key = f"{base}#{n}"
        taken.add(key)
        return key

    @staticmethod
    def _book_fields(txn: MomoTransaction) -> dict[str, Any]:
        return {
            "transaction": txn,
            "book_amount": txn.amount,
            "transaction_date": txn.completed_at,
            "description": (txn.description or txn.transaction_number)[:255],
        }

    @staticmethod
    def _statement_fields(line: StatementLine) -> dict[str, Any]:
        return {
            "statement_reference": line.reference[:255],
            "statement_amount": line.amount,
            "statement_date": line.occurred_at,
            "statement_line": line.to_dict(),
        }

    @classmethod
    def _sync_flags(cls, ctx: TenantContext, recon: BankReconciliation) -> None:
        """Mark matched transactions reconciled and unmark the rest of the period."""
        now = timezone.now()
        matched_ids = set(
            recon.items.filter(
                status=ReconciliationItemStatus.MATCHED, transaction__isnull=False
            ).values_list("transaction_id", flat=True)
        )
        unmatched_ids = set(
            recon.items.filter(
                status=ReconciliationItemStatus.UNMATCHED_BOOK, transaction__isnull=False
            ).values_list("transaction_id", flat=True)
        )

        newly_reconciled = MomoTransaction.objects.for_tenant(ctx).filter(
            pk__in=matched_ids, is_reconciled=False
        )
        for txn in newly_reconciled:
            cls._set_reconciled(ctx, txn, True, now, message=f"Matched in {recon.reference}")

        newly_unreconciled = MomoTransaction.objects.for_tenant(ctx).filter(
            pk__in=unmatched_ids, is_reconciled=True
        )
        for txn in newly_unreconciled:
            cls._set_reconciled(ctx, txn, False, now, message=f"Unmatched in {recon.reference}")

    @staticmethod
    def _set_reconciled(
        ctx: TenantContext,
        txn: MomoTransaction,
        reconciled: bool,
        now,
        message: str,
    ) -> None:
        MomoTransaction.objects.filter(pk=txn.pk).update(
            is_reconciled=reconciled,
            reconciled_at=now if reconciled else None,
            reconciled_by_id=ctx.user_id if reconciled else None,
        )
        TransactionAuditLog.record(
            ctx,
            txn,
            AuditAction.RECONCILED if reconciled else AuditAction.UNRECONCILED,
            message=message,
        )

    @classmethod
    def _recompute(cls, recon: BankReconciliation, statement_source: str | None = None) -> None:
        items = list(recon.items.all())
        matched = [i for i in items if i.status == ReconciliationItemStatus.MATCHED]
        unmatched_book = [i for i in items if i.status == ReconciliationItemStatus.UNMATCHED_BOOK]
        unmatched_bank = [i for i in items if i.status == ReconciliationItemStatus.UNMATCHED_BANK]

        book_count = len(matched) + len(unmatched_book)
        statement_count = len(matched) + len(unmatched_bank)
        recon.matched_count = len(matched)
        recon.unmatched_book_count = len(unmatched_book)
        recon.unmatched_bank_count = len(unmatched_bank)
        recon.matched_amount = sum((i.book_amount or ZERO for i in matched), ZERO)
        recon.book_total = sum((i.book_amount or ZERO for i in items), ZERO)
        recon.statement_total = sum((i.statement_amount or ZERO for i in items), ZERO)
        recon.book_closing_balance = recon.book_opening_balance + recon.book_total
        recon.statement_closing_balance = recon.statement_opening_balance + recon.statement_total
        recon.difference = recon.statement_closing_balance - recon.book_closing_balance

        denominator = max(book_count, statement_count)
        rate = (Decimal(len(matched)) / denominator * 100) if denominator else Decimal(100)
        has_discrepancies = bool(unmatched_book or unmatched_bank or recon.difference)

        summary = dict(recon.summary or {})
        summary.update(
            {
                "book_count": book_count,
                "statement_count": statement_count,
                "matched_count": recon.matched_count,
                "unmatched_book_count": recon.unmatched_book_count,
                "unmatched_bank_count": recon.unmatched_bank_count,
                "manual_count": sum(1 for i in items if i.is_manual),
                "matched_amount": str(recon.matched_amount),
                "book_total": str(recon.book_total),
                "statement_total": str(recon.statement_total),
                "difference": str(recon.difference),
                "has_discrepancies": has_discrepancies,
                "reconciliation_rate": float(round(rate, 2)),
                "amount_tolerance": str(recon.amount_tolerance),
                "date_window_days": recon.date_window_days,
            }
        )
        if statement_source:
            summary["statement_source"] = statement_source
        recon.summary = summary

    @staticmethod
    def _send_completed(recon: BankReconciliation) -> None:
        reconciliation_completed.send(
            sender=BankReconciliation,
            company_id=recon.company_id,
            reconciliation_id=recon.pk,
            reference=recon.reference,
            matched_count=recon.matched_count,
            unmatched_book_count=recon.unmatched_book_count,
            unmatched_bank_count=recon.unmatched_bank_count,
            difference=str(recon.difference),
        )

    # =========================================================================
    # Manual overrides
    # =========================================================================

    @classmethod
    def _lock_for_adjustment(
        cls, ctx: TenantContext, reconciliation_id: uuid.UUID
    ) -> BankReconciliation:
        recon = BankReconciliation.objects.select_for_update().get_for_tenant(
            ctx, pk=reconciliation_id
        )
        if recon.status != ReconciliationStatus.COMPLETED:
            raise ReconciliationError(
                f"Only completed reconciliations can be adjusted (status: {recon.status})",
                error_code="RECONCILIATION_NOT_ADJUSTABLE",
                details={"reconciliation_id": str(recon.pk), "status": recon.status},
            )
        return recon

    @staticmethod
    def _require_reason(reason: str) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required", error_code="REASON_REQUIRED")
        return reason

    @classmethod
    def force_match(
        cls,
        ctx: TenantContext,
        reconciliation_id: uuid.UUID,
        transaction_id: uuid.UUID,
        statement_reference: str,
        actor: AbstractBaseUser,
        reason: str,
    ) -> ReconciliationItem:
        """
        Pair a transaction with an unmatched statement line by hand.

        The pair is kept across re-runs. The reconciliation is not approved.

        Raises:
            ValidationError: No reason, or no unmatched statement line with
                that reference
            ReconciliationError: Reconciliation not completed, or the
                transaction is already matched
        """
        reason = cls._require_reason(reason)
        ctx = ctx.with_source(EventSource.RECONCILIATION).with_user(actor.pk)

        with transaction.atomic():
            recon = cls._lock_for_adjustment(ctx, reconciliation_id)
            txn = MomoTransaction.objects.get_for_tenant(
                ctx, pk=transaction_id, status=TransactionStatus.COMPLETED
            )
            bank_item = recon.items.filter(
                status=ReconciliationItemStatus.UNMATCHED_BANK,
                statement_reference=statement_reference,
            ).first()
            if bank_item is None:
                raise ValidationError(
                    "No unmatched statement line with that reference",
                    error_code="STATEMENT_LINE_NOT_FOUND",
                    details={"statement_reference": statement_reference},
                )

            book_item = recon.items.filter(transaction=txn).first()
            if book_item is not None and book_item.status == ReconciliationItemStatus.MATCHED:
                raise ReconciliationError(
                    "Transaction is already matched; unmatch it first",
                    error_code="ALREADY_MATCHED",
                    details={"item_id": str(book_item.pk)},
                )

            statement_fields = {
                "statement_reference": bank_item.statement_reference,
                "statement_amount": bank_item.statement_amount,
                "statement_date": bank_item.statement_date,
                "statement_line": bank_item.statement_line,
            }
            bank_item.delete()
            if book_item is None:
                book_item = ReconciliationItem(
                    reconciliation=recon,
                    match_key=f"txn:{txn.pk}",
                    **cls._book_fields(txn),
                )
            for name, value in statement_fields.items():
                setattr(book_item, name, value)
            book_item.status = ReconciliationItemStatus.MATCHED
            book_item.is_manual = True
            book_item.save()

            ManualReconciliationAction.objects.create(
                reconciliation=recon,
                item=book_item,
                transaction=txn,
                action=ManualActionType.FORCE_MATCH,
                performed_by=actor,
                reason=reason,
                statement_reference=statement_reference,
            )
            if not txn.is_reconciled:
                cls._set_reconciled(
                    ctx, txn, True, timezone.now(), message=f"Force-matched: {reason}"
                )
            cls._recompute(recon)
            recon.save()

        cls.get_logger().info(
            "Force-matched reconciliation item",
            extra={
                "reconciliation_id": str(recon.pk),
                "transaction_id": str(txn.pk),
                "statement_reference": statement_reference,
                "user_id": actor.pk,
            },
        )
        return book_item

    @classmethod
    def force_unmatch(
        cls,
        ctx: TenantContext,
        reconciliation_id: uuid.UUID,
        item_id: uuid.UUID,
        actor: AbstractBaseUser,
        reason: str,
    ) -> ReconciliationItem:
        """
        Split a matched item back into its book and statement sides.

        Both sides are kept as manual items so a re-run doesn't pair them
        again.

        Raises:
            ValidationError: No reason given
            NotFoundError: Item isn't part of the reconciliation
            ReconciliationError: Reconciliation not completed, or item not matched
        """
        reason = cls._require_reason(reason)
        ctx = ctx.with_source(EventSource.RECONCILIATION).with_user(actor.pk)

        with transaction.atomic():
            recon = cls._lock_for_adjustment(ctx, reconciliation_id)
            item = recon.items.select_related("transaction").filter(pk=item_id).first()
            if item is None:
                raise ValidationError(
                    "Item not found in this reconciliation",
                    error_code="RECONCILIATION_ITEM_NOT_FOUND",
                    details={"item_id": str(item_id)},
                )
            if item.status != ReconciliationItemStatus.MATCHED:
                raise ReconciliationError(
                    "Only matched items can be unmatched",
                    error_code="NOT_MATCHED",
                    details={"item_id": str(item.pk), "status": item.status},
                )

            reference = item.statement_reference
            taken = set(recon.items.values_list("match_key", flat=True))
            ReconciliationItem.objects.create(
                reconciliation=recon,
                match_key=cls._statement_key(reference, taken),
                status=ReconciliationItemStatus.UNMATCHED_BANK,
                statement_reference=reference,
                statement_amount=item.statement_amount,
                statement_date=item.statement_date,
                statement_line=item.statement_line,
                description=item.description,
                difference=item.statement_amount or ZERO,
                is_manual=True,
            )
            item.status = ReconciliationItemStatus.UNMATCHED_BOOK
            item.statement_reference = ""
            item.statement_amount = None
            item.statement_date = None
            item.statement_line = {}
            item.difference = -(item.book_amount or ZERO)
            item.is_manual = True
            item.save()

            ManualReconciliationAction.objects.create(
                reconciliation=recon,
                item=item,
                transaction=item.transaction,
                action=ManualActionType.FORCE_UNMATCH,
                performed_by=actor,
                reason=reason,
                statement_reference=reference,
            )
            if item.transaction is not None and item.transaction.is_reconciled:
                cls._set_reconciled(
                    ctx, item.transaction, False, timezone.now(),
                    message=f"Force-unmatched: {reason}",
                )
            cls._recompute(recon)
            recon.save()

        cls.get_logger().info(
            "Force-unmatched reconciliation item",
            extra={
                "reconciliation_id": str(recon.pk),
                "item_id": str(item.pk),
                "statement_reference": reference,
                "user_id": actor.pk,
            },
        )
        return item

    @classmethod
    def approve(
        cls,
        ctx: TenantContext,
        reconciliation_id: uuid.UUID,
        actor: AbstractBaseUser,
    ) -> BankReconciliation:
        """
        Raises:
            PermissionDeniedError: Actor lacks the approver role
            ReconciliationError: Reconciliation isn't completed
        """
        ctx = ctx.with_user(actor.pk)
        TenancyService.require_role(ctx, MembershipRole.APPROVER)

        with transaction.atomic():
            recon = BankReconciliation.objects.select_for_update().get_for_tenant(
                ctx, pk=reconciliation_id
            )
            if recon.status != ReconciliationStatus.COMPLETED:
                raise ReconciliationError(
                    "Reconciliation must be completed before approval",
                    error_code="RECONCILIATION_NOT_COMPLETED",
                    details={"reconciliation_id": str(recon.pk), "status": recon.status},
                )
            recon.approve(actor)
            recon.save()

        cls.get_logger().info(
            "Approved reconciliation",
            extra={"reconciliation_id": str(recon.pk), "user_id": actor.pk},
        )
        return recon

    # =========================================================================
    # Reporting
    # =========================================================================

    @classmethod
    def report(cls, ctx: TenantContext, provider: MomoProvider, days: int = 30) -> dict[str, Any]:
        """Aggregate the provider's runs whose period ended in the last ``days`` days."""
        since = timezone.localdate() - timedelta(days=days)
        runs = BankReconciliation.objects.for_tenant(ctx).filter(
            provider=provider, period_end__gte=since
        )
        totals = runs.aggregate(
            count=Count("id"),
            approved=Count("id", filter=Q(status=ReconciliationStatus.APPROVED)),
            matched=Sum("matched_count"),
            matched_amount=Sum("matched_amount"),
            total_difference=Sum("difference"),
        )
        rates = [run.summary.get("reconciliation_rate", 0) for run in runs]
        with_discrepancies = sum(1 for run in runs if run.has_discrepancies)

        return {
            "provider": provider.code,
            "since": since.isoformat(),
            "reconciliations": totals["count"],
            "approved": totals["approved"],
            "with_discrepancies": with_discrepancies,
            "matched_transactions": totals["matched"] or 0,
            "matched_amount": str(to_money(totals["matched_amount"] or 0)),
            "total_difference": str(to_money(totals["total_difference"] or 0)),
            "average_rate": round(sum(rates) / len(rates), 2) if rates else None,
        }
