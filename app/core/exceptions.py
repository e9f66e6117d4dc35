"""
Error types shared by every app.

A BaseApplicationError knows how it should look on the wire: a message for
humans, an UPPER_SNAKE ``error_code`` for clients, optional ``details`` and
the HTTP status a view answers with. Views render it through
``core.views.application_error_response``; Celery tasks log ``error_code``
and store ``message`` on the row they were working on.

    BaseApplicationError            400
    ├── ValidationError             400  rejected before anything is written
    ├── NotFoundError               404  missing, or owned by another company
    ├── PermissionDeniedError       403  role or membership missing
    ├── ConflictError               409  stale version, illegal transition, lock held
    └── ExternalServiceError        502  provider or other upstream failure

momo.exceptions subclasses these per provider failure mode.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Response body for this error.

        ``details`` is left out when empty:

            {"error": "Transaction not found", "error_code": "MOMO_TRANSACTION_NOT_FOUND"}
        """
        body: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, "
            f"error_code={self.error_code!r}, details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Bad amount, phone number, currency or date range."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    # Also raised for another tenant's rows, so ids can't be guessed at.
    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """The row moved on under us, or the requested transition isn't allowed."""

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    An upstream call failed.

    ``message`` reaches API clients; keep raw provider bodies in the logs
    and on the transaction's ``provider_response``, not here.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
