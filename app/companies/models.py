"""
Tenant models.

Company is the unit of multi-tenancy. CompanyMembership links Django
users to the companies they operate, with a role that gates sensitive
actions such as approving a reconciliation.

Usage:
    from companies.models import Company, CompanyMembership, MembershipRole

    company = Company.objects.create(name="Acme Ltd", slug="acme")
    CompanyMembership.objects.create(
        company=company, user=user, role=MembershipRole.APPROVER
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from typing import Any


class MembershipRole(models.TextChoices):
    """
    Operator roles within a company.

    Roles are ordered: an approver may do everything an operator may.
    """

    VIEWER = "viewer", "Viewer"
    OPERATOR = "operator", "Operator"
    APPROVER = "approver", "Approver"


ROLE_RANK = {
    MembershipRole.VIEWER: 0,
    MembershipRole.OPERATOR: 1,
    MembershipRole.APPROVER: 2,
}


class Company(UUIDPrimaryKeyMixin, BaseModel):
    """
    A tenant.

    Fields:
        name: Display name
        slug: URL-safe unique identifier (used in webhook URLs and X-Company)
        is_active: Inactive companies reject new transactions
        notification_email: Where MoMo alerts are sent
        momo_settings: Per-company overrides for retry and reconciliation
            settings (max_retry_attempts, retry_delay_minutes,
            status_timeout_minutes, amount_tolerance, date_window_days)
    """

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=100, unique=True)
    is_active = models.BooleanField(default=True, db_index=True)
    notification_email = models.EmailField(blank=True, default="")
    momo_settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Overrides for MoMo retry and reconciliation settings",
    )

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "Companies"

    def __str__(self) -> str:
        return self.name

    def momo_setting(self, key: str, default: Any = None) -> Any:
        """Return a MoMo override, or ``default`` when the company has none."""
        value = (self.momo_settings or {}).get(key)
        return default if value is None else value


class CompanyMembership(BaseModel):
    """A user's role within one company."""

    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="company_memberships",
    )
    role = models.CharField(
        max_length=20,
        choices=MembershipRole.choices,
        default=MembershipRole.VIEWER,
    )

    class Meta:
        ordering = ["company", "user"]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "user"],
                name="unique_company_membership",
            )
        ]

    def __str__(self) -> str:
        return f"{self.user} @ {self.company} ({self.role})"

    def has_role(self, required: str) -> bool:
        return ROLE_RANK[MembershipRole(self.role)] >= ROLE_RANK[MembershipRole(required)]
