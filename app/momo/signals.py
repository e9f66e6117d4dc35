"""
Signals the MoMo core sends to its collaborators.

Every signal is sent after the database transaction that caused it has
committed, so receivers never see state that could still roll back.
Payloads carry ids and amounts, not model instances.

Signals:
    transaction_completed(company_id, transaction_id, invoice_id, payment_id,
                          amount, fee_amount, net_amount, currency)
        Invoice/payment linking.
    transaction_status_changed(company_id, transaction_id, from_status,
                               to_status, source)
        Notifications.
    transaction_requires_review(company_id, transaction_id, reason)
        Retries exhausted; a person has to look at it.
    reconciliation_completed(company_id, reconciliation_id, matched_count,
                             unmatched_book_count, unmatched_bank_count,
                             difference)

Usage:
    from django.dispatch import receiver
    from momo.signals import transaction_completed

    @receiver(transaction_completed)
    def mark_invoice_paid(sender, invoice_id, amount, **kwargs):
        ...
"""

from django.dispatch import Signal

transaction_completed = Signal()
transaction_status_changed = Signal()
transaction_requires_review = Signal()
reconciliation_completed = Signal()
