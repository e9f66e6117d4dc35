"""
MoMo service layer.

- TransactionStateMachine: The only place transaction status changes
- TransactionService: Initiate, poll, cancel and expire transactions
- WebhookService: Verify, deduplicate, store and apply callbacks
- RetryScheduler: Schedule and run retries with backoff
- ReconciliationService: Match transactions against provider statements
"""

from momo.services.reconciliation_service import ReconciliationService
from momo.services.retry_scheduler import RetryPolicy, RetryScheduler
from momo.services.state_machine import TransactionStateMachine
from momo.services.transaction_service import TransactionService
from momo.services.webhook_service import WebhookService

__all__ = [
    "ReconciliationService",
    "RetryPolicy",
    "RetryScheduler",
    "TransactionService",
    "TransactionStateMachine",
    "WebhookService",
]
