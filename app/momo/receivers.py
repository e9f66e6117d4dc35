"""
Built-in notification receivers.

Mail goes to the company's ``notification_email`` for failed
transactions, transactions that need review and finished
reconciliations. Companies without an address get nothing.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.dispatch import receiver

from companies.models import Company

from momo.signals import (
    reconciliation_completed,
    transaction_requires_review,
    transaction_status_changed,
)
from momo.state_machines import TransactionStatus

logger = logging.getLogger(__name__)


def _notify(company_id, subject: str, body: str) -> bool:
    email = (
        Company.objects.filter(pk=company_id)
        .values_list("notification_email", flat=True)
        .first()
    )
    if not email:
        return False
    send_mail(
        subject=f"[MoMo] {subject}",
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[email],
        fail_silently=True,
    )
    logger.info(
        "Sent MoMo notification",
        extra={"company_id": str(company_id), "subject": subject},
    )
    return True


@receiver(transaction_status_changed)
def notify_transaction_failed(sender, company_id, transaction_id, to_status, **kwargs):
    if to_status != TransactionStatus.FAILED:
        return
    _notify(
        company_id,
        "Transaction failed",
        f"Mobile money transaction {kwargs.get('transaction_number', transaction_id)} "
        f"failed.\n\nReason: {kwargs.get('reason') or 'not given'}",
    )


@receiver(transaction_requires_review)
def notify_requires_review(sender, company_id, transaction_id, reason="", **kwargs):
    _notify(
        company_id,
        "Transaction needs review",
        f"Mobile money transaction {transaction_id} exhausted its retries and "
        f"needs manual review.\n\nLast error: {reason or 'not recorded'}",
    )


@receiver(reconciliation_completed)
def notify_reconciliation_completed(sender, company_id, reconciliation_id, **kwargs):
    _notify(
        company_id,
        "Reconciliation completed",
        (
            f"Reconciliation {kwargs.get('reference', reconciliation_id)} finished.\n\n"
            f"Matched: {kwargs.get('matched_count', 0)}\n"
            f"Unmatched (book): {kwargs.get('unmatched_book_count', 0)}\n"
            f"Unmatched (statement): {kwargs.get('unmatched_bank_count', 0)}\n"
            f"Difference: {kwargs.get('difference', '0.00')}"
        ),
    )
