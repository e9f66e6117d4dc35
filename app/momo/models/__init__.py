"""
MoMo domain models.

- MomoProvider: Company-owned provider configuration
- MomoTransaction: One payment/payout/refund/transfer attempt
- MomoWebhook: One inbound provider callback
- TransactionAuditLog: Append-only transaction history
- BankReconciliation: A reconciliation run over a date range
- ReconciliationItem: One matched or unmatched line of a run
- ManualReconciliationAction: Journal of operator overrides
- LedgerAccount / LedgerEntry: Double-entry posting (see momo.ledger)
"""

from momo.ledger.models import LedgerAccount, LedgerEntry
from momo.models.audit import TransactionAuditLog
from momo.models.provider import MomoProvider
from momo.models.reconciliation import (
    BankReconciliation,
    ManualReconciliationAction,
    ReconciliationItem,
)
from momo.models.transaction import MomoTransaction
from momo.models.webhook import MomoWebhook

__all__ = [
    "BankReconciliation",
    "LedgerAccount",
    "LedgerEntry",
    "ManualReconciliationAction",
    "MomoProvider",
    "MomoTransaction",
    "MomoWebhook",
    "ReconciliationItem",
    "TransactionAuditLog",
]
