"""
Ledger - double-entry posting for mobile-money transactions.

Public API:
    Models:
        LedgerAccount - A company's account of one kind and currency
        LedgerEntry - An immutable debit/credit movement
        AccountKind - Enum of account kinds
        EntryType - Enum of movement types

    Service:
        LedgerService - Account lookup, entry recording, balances

    Types:
        RecordEntryParams - Parameters for recording entries

    Exceptions:
        LedgerError, AccountNotFound, InactiveAccount, InsufficientBalance

Posting a MomoTransaction lives in momo.ledger.posting, which depends on
the transaction models and is imported directly where it is needed.

Usage:
    from momo.ledger import AccountKind, LedgerService

    cash = LedgerService.get_or_create_account(ctx, AccountKind.MOMO_CASH, "ZMW")
    LedgerService.get_balance(ctx, cash.id)
"""

from .exceptions import (
    AccountNotFound,
    InactiveAccount,
    InsufficientBalance,
    LedgerError,
)
from .models import AccountKind, EntryType, LedgerAccount, LedgerEntry
from .services import LedgerService
from .types import RecordEntryParams

__all__ = [
    # Models
    "LedgerAccount",
    "LedgerEntry",
    "AccountKind",
    "EntryType",
    # Service
    "LedgerService",
    # Types
    "RecordEntryParams",
    # Exceptions
    "LedgerError",
    "AccountNotFound",
    "InactiveAccount",
    "InsufficientBalance",
]
