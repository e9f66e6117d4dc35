"""
Tenant context threaded through every service and repository call.

A TenantContext names the company whose rows an operation may see or
touch. Services take it as their first argument and hand it to
``TenantScopedQuerySet.for_tenant``; there is no implicit "current
company" global.

Usage:
    from core.tenancy import TenantContext

    ctx = TenantContext(company_id=company.id, user_id=request.user.id)
    MomoTransaction.objects.for_tenant(ctx).filter(status="pending")
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class TenantContext:
    """
    Immutable tenant scope for one unit of work.

    Attributes:
        company_id: Company that owns every row read or written
        user_id: Acting user, if the work was started by a person
        source: Where the work came from (api, webhook, poll, retry, ...)
    """

    company_id: uuid.UUID
    user_id: int | None = None
    source: str = "api"

    def __post_init__(self) -> None:
        if self.company_id is None:
            raise ValueError("TenantContext requires a company_id")
        if not isinstance(self.company_id, uuid.UUID):
            object.__setattr__(self, "company_id", uuid.UUID(str(self.company_id)))

    def with_source(self, source: str) -> TenantContext:
        return replace(self, source=source)

    def with_user(self, user_id: int | None) -> TenantContext:
        return replace(self, user_id=user_id)

    @classmethod
    def for_company(cls, company, *, user=None, source: str = "api") -> TenantContext:
        """Build a context from a Company instance (and optional user)."""
        return cls(
            company_id=company.pk,
            user_id=getattr(user, "pk", None),
            source=source,
        )
