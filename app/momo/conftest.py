"""
Pytest fixtures shared by every MoMo test package.

Redis is always mocked for the distributed lock. Provider HTTP is never
reached: service tests install a FakeGateway, gateway tests hand the
gateway a mocked ``requests.Session``.
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from companies.models import MembershipRole
from companies.tests.factories import MembershipFactory, UserFactory
from core.helpers import compute_hmac_sha256
from momo.providers.registry import set_gateway_factory
from momo.tests.factories import WEBHOOK_SECRET, ProviderFactory
from momo.tests.fakes import FakeGateway


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis():
    """Redis client behind DistributedLock; every lock is granted."""
    client = MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1

    with patch("momo.locks.get_redis_connection", return_value=client):
        yield client


@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    set_gateway_factory(gateway.bind)
    yield gateway
    set_gateway_factory(None)


@pytest.fixture
def sign():
    """Sign a JSON payload the way providers do; returns (body, signature)."""

    def _sign(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
        body = json.dumps(payload).encode("utf-8")
        return body, compute_hmac_sha256(body, secret)

    return _sign


# =============================================================================
# Providers
# =============================================================================


@pytest.fixture
def provider(company):
    """Airtel provider charging a 2% fee."""
    return ProviderFactory(company=company, transaction_fee_percentage=Decimal("2"))


@pytest.fixture
def other_provider(other_company):
    return ProviderFactory(company=other_company)


# =============================================================================
# Users and API clients
# =============================================================================


@pytest.fixture
def operator(company, user):
    MembershipFactory(company=company, user=user, role=MembershipRole.OPERATOR)
    return user


@pytest.fixture
def approver(company):
    membership = MembershipFactory(company=company, role=MembershipRole.APPROVER)
    return membership.user


@pytest.fixture
def viewer(company):
    membership = MembershipFactory(company=company, user=UserFactory(), role=MembershipRole.VIEWER)
    return membership.user


@pytest.fixture
def operator_client(api_client, operator, company):
    api_client.force_authenticate(user=operator)
    api_client.credentials(HTTP_X_COMPANY=company.slug)
    return api_client


@pytest.fixture
def approver_client(api_client, approver, company):
    api_client.force_authenticate(user=approver)
    api_client.credentials(HTTP_X_COMPANY=company.slug)
    return api_client
