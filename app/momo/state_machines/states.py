"""
State enums and transition tables for MoMo models.

These are Django TextChoices for database storage and admin integration.
The transaction lifecycle is closed: every status is listed here and
every legal move appears in ALLOWED_TRANSITIONS. Model transitions
(django-fsm) and TransactionStateMachine both read from this table, so
there is exactly one definition of what may follow what.

State Machines Overview:

MomoTransaction:
    pending → processing → completed | failed | cancelled | expired
    pending → completed | failed | cancelled | expired (provider answered
              before the processing hop was recorded)
    completed, failed, cancelled, expired are terminal

MomoWebhook:
    pending → processed | failed | ignored

BankReconciliation:
    in_progress → completed → approved
    completed → in_progress (re-run)
    approved → in_progress (forced re-run only)
"""

from __future__ import annotations

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    Lifecycle of a MomoTransaction.

    Terminal states: COMPLETED, FAILED, CANCELLED, EXPIRED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"


class TransactionType(models.TextChoices):
    """
    Direction of money movement.

    PAYMENT is a collection from a customer wallet; PAYOUT, REFUND and
    TRANSFER move money out to a wallet.
    """

    PAYMENT = "payment", "Payment"
    PAYOUT = "payout", "Payout"
    REFUND = "refund", "Refund"
    TRANSFER = "transfer", "Transfer"


class ProviderCode(models.TextChoices):
    """Supported mobile-money operators."""

    MTN = "mtn", "MTN Mobile Money"
    AIRTEL = "airtel", "Airtel Money"
    ZAMTEL = "zamtel", "Zamtel Kwacha"


class WebhookStatus(models.TextChoices):
    """
    Processing status for MomoWebhook.

    PENDING webhooks are either queued for processing or waiting for a
    transaction with a matching provider reference to appear.
    """

    PENDING = "pending", "Pending"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    IGNORED = "ignored", "Ignored"


class ReconciliationStatus(models.TextChoices):
    """Lifecycle of a BankReconciliation run."""

    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"
    APPROVED = "approved", "Approved"


class ReconciliationItemStatus(models.TextChoices):
    """
    Outcome for one reconciliation line.

    UNMATCHED_BOOK: ledger transaction with no statement counterpart
    UNMATCHED_BANK: statement line with no ledger counterpart
    """

    MATCHED = "matched", "Matched"
    UNMATCHED_BOOK = "unmatched_book", "Unmatched (book)"
    UNMATCHED_BANK = "unmatched_bank", "Unmatched (bank)"


class ManualActionType(models.TextChoices):
    FORCE_MATCH = "force_match", "Force match"
    FORCE_UNMATCH = "force_unmatch", "Force unmatch"


class AuditAction(models.TextChoices):
    """Events recorded in the transaction audit trail."""

    CREATED = "created", "Created"
    STATUS_CHANGED = "status_changed", "Status changed"
    DUPLICATE_WEBHOOK = "duplicate_webhook", "Duplicate webhook"
    TERMINAL_IGNORED = "terminal_ignored", "Ignored (terminal state)"
    RETRY_SCHEDULED = "retry_scheduled", "Retry scheduled"
    RETRY_EXHAUSTED = "retry_exhausted", "Retries exhausted"
    LEDGER_POSTED = "ledger_posted", "Posted to ledger"
    RECONCILED = "reconciled", "Reconciled"
    UNRECONCILED = "unreconciled", "Unreconciled"
    MANUAL_REVIEW = "manual_review", "Flagged for manual review"


class EventSource(models.TextChoices):
    """Where a state change originated."""

    API = "api", "API"
    WEBHOOK = "webhook", "Webhook"
    POLL = "poll", "Status poll"
    RETRY = "retry", "Retry scheduler"
    RECONCILIATION = "reconciliation", "Reconciliation"
    COMMAND = "command", "Management command"


# =============================================================================
# Transition table
# =============================================================================

TERMINAL_STATUSES: frozenset[str] = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
        TransactionStatus.EXPIRED,
    }
)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    TransactionStatus.PENDING: frozenset(
        {
            TransactionStatus.PROCESSING,
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
            TransactionStatus.EXPIRED,
        }
    ),
    TransactionStatus.PROCESSING: frozenset(
        {
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
            TransactionStatus.EXPIRED,
        }
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
    TransactionStatus.EXPIRED: frozenset(),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    """True when ``current → target`` is in the transition table."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def sources_for(target: str) -> list[str]:
    """All statuses from which ``target`` may be reached."""
    return [
        str(source)
        for source, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    ]


__all__ = [
    "ALLOWED_TRANSITIONS",
    "AuditAction",
    "EventSource",
    "ManualActionType",
    "ProviderCode",
    "ReconciliationItemStatus",
    "ReconciliationStatus",
    "TERMINAL_STATUSES",
    "TransactionStatus",
    "TransactionType",
    "WebhookStatus",
    "can_transition",
    "is_terminal",
    "sources_for",
]
