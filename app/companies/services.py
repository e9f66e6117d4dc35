"""
Tenant resolution for API requests.

TenancyService turns an authenticated user plus a company slug into a
TenantContext and enforces membership roles.

Usage:
    from companies.services import TenancyService

    ctx = TenancyService.resolve(request.user, request.headers.get("X-Company"))
    TenancyService.require_role(ctx, MembershipRole.APPROVER)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from core.services import BaseService
from core.tenancy import TenantContext

from companies.models import Company, CompanyMembership, MembershipRole

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


class TenancyService(BaseService):
    """Resolve and authorize tenant contexts."""

    @classmethod
    def resolve(
        cls,
        user: AbstractBaseUser,
        company_slug: str | None,
        *,
        source: str = "api",
    ) -> TenantContext:
        """
        Build the TenantContext for ``user`` acting within ``company_slug``.

        Raises:
            ValidationError: If no company was named
            NotFoundError: If the company doesn't exist or is inactive
            PermissionDeniedError: If the user isn't a member
        """
        if not company_slug:
            raise ValidationError(
                "X-Company header is required",
                error_code="COMPANY_REQUIRED",
            )

        try:
            company = Company.objects.get(slug=company_slug, is_active=True)
        except Company.DoesNotExist:
            raise NotFoundError(
                f"Company '{company_slug}' not found",
                error_code="COMPANY_NOT_FOUND",
                details={"company": company_slug},
            )

        if not CompanyMembership.objects.filter(company=company, user=user).exists():
            cls.get_logger().warning(
                "User is not a member of company",
                extra={"user_id": user.pk, "company_id": str(company.pk)},
            )
            raise PermissionDeniedError(
                "You are not a member of this company",
                error_code="NOT_A_MEMBER",
            )

        return TenantContext.for_company(company, user=user, source=source)

    @classmethod
    def require_role(cls, ctx: TenantContext, role: str) -> CompanyMembership:
        """
        Ensure the acting user holds at least ``role`` in the context's company.

        Raises:
            PermissionDeniedError: If there is no acting user or the role is too low
        """
        if ctx.user_id is None:
            raise PermissionDeniedError(
                "An authenticated user is required",
                error_code="USER_REQUIRED",
            )

        membership = CompanyMembership.objects.filter(
            company_id=ctx.company_id, user_id=ctx.user_id
        ).first()
        if membership is None or not membership.has_role(role):
            raise PermissionDeniedError(
                f"The {MembershipRole(role).label} role is required",
                error_code="ROLE_REQUIRED",
                details={"required_role": role},
            )
        return membership
