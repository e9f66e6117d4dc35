"""
Mobile-money exceptions.

Exception Hierarchy:
    MomoError (base for the MoMo domain)
    ├── SignatureError - Webhook failed signature verification (logged, not applied)
    ├── DuplicateError - Webhook already received (logged, ignored)
    ├── TerminalStateViolation - Transition on a finished transaction (logged, ignored)
    ├── ProviderNotConfiguredError - Provider inactive or missing credentials
    └── ReconciliationError - Reconciliation run or manual action refused

    ProviderError - Upstream provider API failure (inherits ExternalServiceError)
    ├── ProviderTimeoutError - Request timed out (transient, retry)
    ├── ProviderUnavailableError - 5xx or connection failure (transient, retry)
    └── ProviderRejectedError - 4xx or explicit rejection (permanent)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - Transition not in the table (inherits ConflictError)

Only ProviderError with ``is_retryable`` is retried automatically. Every
other error is terminal for the event that raised it.

Usage:
    from momo.exceptions import ProviderError, TerminalStateViolation

    try:
        gateway.request_payment(request)
    except ProviderError as e:
        if e.is_retryable:
            RetryScheduler.schedule(txn, reason=e.message)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# MoMo Domain Exceptions
# =============================================================================


class MomoError(BaseApplicationError):
    """Base exception for mobile-money domain errors."""

    default_error_code: str = "MOMO_ERROR"


class SignatureError(MomoError):
    """
    Raised when a webhook signature does not verify.

    The webhook row is kept with ``signature_verified=False`` and
    ``status=failed``; no transaction is touched.
    """

    default_error_code: str = "INVALID_SIGNATURE"


class DuplicateError(MomoError):
    """
    Raised when a webhook with the same provider + webhook id was already stored.

    Example:
        raise DuplicateError(
            "Webhook already received",
            details={"webhook_id": "abc", "original_id": str(original.pk)},
        )
    """

    default_error_code: str = "DUPLICATE_WEBHOOK"


class TerminalStateViolation(MomoError):
    """
    Raised when a transition is attempted on a transaction in a terminal state.

    Webhooks and retries treat this as "ignore with an audit entry",
    never as a failure.
    """

    default_error_code: str = "TERMINAL_STATE"
    http_status: int = 409


class ProviderNotConfiguredError(MomoError):
    """Raised when a provider is inactive or has no gateway for its code."""

    default_error_code: str = "PROVIDER_NOT_CONFIGURED"


class ReconciliationError(MomoError):
    """Raised when a reconciliation run or manual action is refused."""

    default_error_code: str = "RECONCILIATION_ERROR"
    http_status: int = 409


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(ExternalServiceError):
    """
    Raised when a provider API call fails.

    Attributes:
        provider_code: Which gateway raised it (mtn, airtel, zamtel)
        status_code: HTTP status returned by the provider, if any
        is_retryable: Whether the retry policy should try again

    Example:
        try:
            gateway.check_status(reference)
        except ProviderError as e:
            if e.is_retryable:
                raise self.retry(exc=e)
            raise
    """

    default_error_code: str = "PROVIDER_ERROR"
    is_retryable: bool = True

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if provider_code:
            details["provider"] = provider_code
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.provider_code = provider_code
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """The provider did not answer in time. The outcome is unknown."""

    default_error_code: str = "PROVIDER_TIMEOUT"
    is_retryable: bool = True


class ProviderUnavailableError(ProviderError):
    """The provider returned 5xx or could not be reached."""

    default_error_code: str = "PROVIDER_UNAVAILABLE"
    is_retryable: bool = True


class ProviderRejectedError(ProviderError):
    """
    The provider refused the request (bad msisdn, insufficient funds,
    invalid credentials). Retrying would get the same answer.
    """

    default_error_code: str = "PROVIDER_REJECTED"
    is_retryable: bool = False


# =============================================================================
# Concurrency Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when a compare-and-swap update affects no rows.

    Another process changed the transaction's status or version between
    our read and our write. Re-read and re-evaluate.

    Example:
        if rows_updated == 0:
            raise StaleRecordError(
                f"MomoTransaction {pk} was modified by another process",
                details={"pk": str(pk), "expected_version": 3},
            )
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock can't be acquired within the timeout."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a transition is not in the allowed-transition table.

    Example:
        raise InvalidStateTransitionError(
            "Cannot move transaction from 'processing' to 'pending'",
            details={"current_state": "processing", "target_state": "pending"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
