"""
Base service layer patterns for business logic encapsulation.

This module provides:
- ServiceResult: Standard result wrapper for expected success/failure outcomes
- BaseService: Base class with logging and exception conversion

Views handle HTTP concerns, models handle data, services handle logic.
Batch operations that must keep going after one item fails (webhook
processing, retry sweeps) report per-item outcomes as a ServiceResult;
everything else raises a BaseApplicationError.

Usage:
    from core.services import BaseService, ServiceResult

    class WebhookService(BaseService):
        @classmethod
        def process(cls, webhook_id) -> ServiceResult[str]:
            try:
                ...
            except MomoError as e:
                return cls.handle_exception(e, f"Webhook {webhook_id} not applied")
            return ServiceResult.success(webhook.status)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code
        details: Extra context copied from a domain exception
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Example:
            return ServiceResult.failure(
                "Webhook not found",
                error_code="MOMO_WEBHOOK_NOT_FOUND",
            )
        """
        return cls(success=False, error=error, error_code=error_code, details=details)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Domain errors keep their own error_code and details.
        """
        if isinstance(exc, BaseApplicationError):
            return cls(
                success=False,
                error=exc.message,
                error_code=error_code or exc.error_code,
                details=exc.details or None,
            )
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Services are stateless: use @classmethod or @staticmethod only.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the service class for easy filtering."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log an exception and convert it to a failed ServiceResult.

        Domain errors are logged without a traceback; anything else is
        logged with ``exc_info`` so the stack survives.
        """
        logger = cls.get_logger()
        message = f"{context}: {exc}" if context else str(exc)
        is_domain_error = isinstance(exc, BaseApplicationError)
        logger.log(
            log_level,
            message,
            exc_info=not is_domain_error,
            extra={"error_code": getattr(exc, "error_code", None)},
        )
        return ServiceResult.from_exception(exc)
