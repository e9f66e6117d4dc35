"""
Tests for TenantScopedQuerySet and the model mixins.

These tests verify that:
- for_tenant only returns the tenant's rows and refuses a missing context
- get_for_tenant hides other tenants' rows behind NotFoundError
- VersionedMixin bumps version on every update, including partial saves
- AppendOnlyMixin rows can't be changed or deleted
"""

from __future__ import annotations

import uuid

import pytest

from core.exceptions import NotFoundError
from core.tenancy import TenantContext
from momo.models import MomoProvider, MomoTransaction, TransactionAuditLog
from momo.state_machines import AuditAction
from momo.tests.factories import ProviderFactory, TransactionFactory


@pytest.mark.django_db
class TestTenantScopedQuerySet:
    def test_for_tenant_filters_by_company(self, ctx, company, other_company):
        own = ProviderFactory(company=company)
        ProviderFactory(company=other_company)

        assert list(MomoProvider.objects.for_tenant(ctx)) == [own]

    def test_for_tenant_requires_context(self):
        with pytest.raises(ValueError, match="require a TenantContext"):
            MomoProvider.objects.for_tenant(None)

    def test_get_for_tenant_returns_own_row(self, ctx, company):
        provider = ProviderFactory(company=company)

        assert MomoProvider.objects.get_for_tenant(ctx, pk=provider.pk) == provider

    def test_get_for_tenant_hides_other_companies(self, ctx, other_company):
        foreign = ProviderFactory(company=other_company)

        with pytest.raises(NotFoundError) as exc_info:
            MomoProvider.objects.get_for_tenant(ctx, pk=foreign.pk)

        assert exc_info.value.error_code == "MOMO_PROVIDER_NOT_FOUND"
        assert exc_info.value.details == {"pk": str(foreign.pk)}

    def test_chains_after_other_queryset_methods(self, company):
        provider = ProviderFactory(company=company)
        ctx = TenantContext(company_id=uuid.uuid4())

        assert not MomoProvider.objects.filter(pk=provider.pk).for_tenant(ctx).exists()


@pytest.mark.django_db
class TestVersionedMixin:
    def test_new_rows_start_at_one(self, provider):
        assert TransactionFactory(provider=provider).version == 1

    def test_save_bumps_version(self, provider):
        txn = TransactionFactory(provider=provider)

        txn.description = "Invoice 42"
        txn.save()

        assert txn.version == 2
        assert MomoTransaction.objects.get(pk=txn.pk).version == 2

    def test_partial_save_bumps_version(self, provider):
        txn = TransactionFactory(provider=provider)

        txn.description = "Invoice 42"
        txn.save(update_fields=["description"])

        assert txn.version == 2


@pytest.mark.django_db
class TestAppendOnlyMixin:
    @pytest.fixture
    def entry(self, ctx, provider):
        txn = TransactionFactory(provider=provider)
        return TransactionAuditLog.record(ctx, txn, AuditAction.CREATED)

    def test_update_is_refused(self, entry):
        entry.message = "rewritten"

        with pytest.raises(ValueError, match="append-only"):
            entry.save()

    def test_delete_is_refused(self, entry):
        with pytest.raises(ValueError, match="append-only"):
            entry.delete()

        assert TransactionAuditLog.objects.filter(pk=entry.pk).exists()
