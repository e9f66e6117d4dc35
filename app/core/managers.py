"""
Custom QuerySet and Manager classes for tenant-owned models.

Every model that belongs to a company uses TenantScopedManager. Services
never filter on ``company_id`` by hand; they call ``for_tenant(ctx)``,
which makes the tenant a required argument of every query.

Manager vs QuerySet:
    - QuerySet: Defines chainable methods (for_tenant, get_for_tenant)
    - Manager: Attaches QuerySet to model

Usage:
    from core.managers import TenantScopedManager

    class MomoTransaction(UUIDPrimaryKeyMixin, BaseModel):
        company = models.ForeignKey("companies.Company", ...)

        objects = TenantScopedManager()

    MomoTransaction.objects.for_tenant(ctx).filter(status="pending")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models

from core.exceptions import NotFoundError

if TYPE_CHECKING:
    from typing import Any

    from core.tenancy import TenantContext


class TenantScopedQuerySet(models.QuerySet):
    """
    QuerySet that knows how to restrict itself to one company.

    The owning foreign key is named by ``tenant_field`` on the model
    (default ``company``).
    """

    def _tenant_lookup(self) -> str:
        field_name = getattr(self.model, "tenant_field", "company")
        return f"{field_name}_id"

    def for_tenant(self, ctx: TenantContext) -> TenantScopedQuerySet:
        """
        Restrict the queryset to rows owned by ``ctx.company_id``.

        Raises:
            ValueError: If no context is given
        """
        if ctx is None:
            raise ValueError(
                f"{self.model.__name__} queries require a TenantContext"
            )
        return self.filter(**{self._tenant_lookup(): ctx.company_id})

    def get_for_tenant(self, ctx: TenantContext, **lookup: Any):
        """
        Fetch exactly one row owned by the tenant.

        Raises:
            NotFoundError: If the row doesn't exist or belongs to another company
        """
        try:
            return self.for_tenant(ctx).get(**lookup)
        except self.model.DoesNotExist:
            model_name = self.model.__name__
            raise NotFoundError(
                f"{model_name} not found",
                error_code=f"{_upper_snake(model_name)}_NOT_FOUND",
                details={k: str(v) for k, v in lookup.items()},
            )


class TenantScopedManager(models.Manager.from_queryset(TenantScopedQuerySet)):
    """Default manager for tenant-owned models."""


def _upper_snake(name: str) -> str:
    out = []
    for index, char in enumerate(name):
        if char.isupper() and index:
            out.append("_")
        out.append(char.upper())
    return "".join(out)
