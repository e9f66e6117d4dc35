"""
Project-wide pytest configuration and fixtures.

This module adjusts settings for the test run, auto-marks tests by file
name, and provides user/company fixtures shared by every app. App-specific
fixtures are defined in each app's tests/conftest.py.
"""

import pytest


def pytest_configure():
    """Adjust Django settings before tests run."""
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # The test client speaks plain HTTP
    settings.SECURE_SSL_REDIRECT = False

    # Never touch a real Redis from the cache layer
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}
    }

    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.CELERY_TASK_ALWAYS_EAGER = False
    settings.MOMO_CREDENTIALS_KEY = "test-credentials-key"
    settings.MOMO_WEBHOOK_BASE_URL = "https://api.example.test"


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full request-to-ledger workflows)
    - test_models.py, test_phone.py, test_matching.py, ... → unit
    - Everything else → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_phone.py",
        "test_matching.py",
        "test_fields.py",
        "test_states.py",
        "test_gateways.py",
        "test_helpers.py",
        "test_tenancy.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Shared fixtures
# =============================================================================


@pytest.fixture
def user(db):
    from companies.tests.factories import UserFactory

    return UserFactory()


@pytest.fixture
def company(db):
    from companies.tests.factories import CompanyFactory

    return CompanyFactory()


@pytest.fixture
def other_company(db):
    from companies.tests.factories import CompanyFactory

    return CompanyFactory()


@pytest.fixture
def ctx(company):
    from core.tenancy import TenantContext

    return TenantContext.for_company(company)


@pytest.fixture
def api_client():
    from rest_framework.test import APIClient

    return APIClient()
