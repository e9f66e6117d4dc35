"""
Ledger exceptions.

Exception Hierarchy:
    LedgerError (base)
    ├── AccountNotFound - Account lookup failures (or account of another company)
    ├── InactiveAccount - Entries against a deactivated account
    └── InsufficientBalance - Credit below zero on a non-negative account
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from core.exceptions import BaseApplicationError


class LedgerError(BaseApplicationError):
    """Base exception for ledger operations."""

    default_error_code: str = "LEDGER_ERROR"


class AccountNotFound(LedgerError):
    """
    Raised when a ledger account cannot be found for the tenant.

    Example:
        raise AccountNotFound(
            f"Account {account_id} not found",
            details={"account_id": str(account_id)},
        )
    """

    default_error_code: str = "ACCOUNT_NOT_FOUND"
    http_status: int = 404


class InactiveAccount(LedgerError):
    """Raised when posting to an account that has been deactivated."""

    default_error_code: str = "INACTIVE_ACCOUNT"


class InsufficientBalance(LedgerError):
    """
    Raised when a credit would take a non-negative account below zero.

    Example:
        raise InsufficientBalance(
            account.id, required=Decimal("50.00"), available=Decimal("20.00")
        )
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, account_id: uuid.UUID, required: Decimal, available: Decimal):
        self.account_id = account_id
        self.required = required
        self.available = available
        super().__init__(
            f"Account {account_id} has {available}, needs {required}",
            details={
                "account_id": str(account_id),
                "required": str(required),
                "available": str(available),
            },
        )
