"""
Data types for ledger operations.

Types:
    RecordEntryParams: Parameters for recording one ledger entry

Usage:
    from momo.ledger.types import RecordEntryParams

    params = RecordEntryParams(
        debit_account_id=cash.id,
        credit_account_id=clearing.id,
        amount=Decimal("98.00"),
        entry_type=EntryType.COLLECTION,
        idempotency_key=f"momo:{txn.pk}:collection",
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass
class RecordEntryParams:
    """
    Parameters for recording a ledger entry.

    Every entry debits one account and credits another. Amounts are
    Decimals with two places; anything else is rejected up front.

    Required Attributes:
        debit_account_id: Account being debited
        credit_account_id: Account being credited
        amount: Positive Decimal amount
        entry_type: EntryType value
        idempotency_key: Unique key; re-recording the same key is a no-op

    Optional Attributes:
        reference_type / reference_id: Business record the entry belongs to
        description: Human-readable description
        metadata: JSON-serializable extras
        created_by: Service or user that recorded the entry
    """

    debit_account_id: uuid.UUID
    credit_account_id: uuid.UUID
    amount: Decimal
    entry_type: str
    idempotency_key: str

    reference_type: str = ""
    reference_id: uuid.UUID | None = None
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            raise ValueError("amount must be a Decimal")
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if self.debit_account_id == self.credit_account_id:
            raise ValueError("debit_account_id and credit_account_id must be different")
