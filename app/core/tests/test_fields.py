"""
Tests for EncryptedTextField.

Provider credentials must never reach the database in clear text, and
must read back unchanged through the ORM.
"""

import pytest
from cryptography.fernet import InvalidToken
from django.core.exceptions import ImproperlyConfigured
from django.db import connection

from core.fields import ENCRYPTED_PREFIX, EncryptedTextField, decrypt_value, encrypt_value
from momo.models import MomoProvider
from momo.tests.factories import ProviderFactory


def _stored_value(instance, column):
    pk = instance._meta.pk.get_db_prep_value(instance.pk, connection)
    with connection.cursor() as cursor:
        cursor.execute(
            f"SELECT {column} FROM {instance._meta.db_table} WHERE id = %s",
            [pk],
        )
        return cursor.fetchone()[0]


class TestEncryption:
    def test_round_trip(self):
        token = encrypt_value("client-secret")

        assert token.startswith(ENCRYPTED_PREFIX)
        assert "client-secret" not in token
        assert decrypt_value(token) == "client-secret"

    def test_plain_values_pass_through_decrypt(self):
        assert decrypt_value("legacy-plain") == "legacy-plain"

    def test_wrong_key_fails_loudly(self, settings):
        token = encrypt_value("client-secret")
        settings.MOMO_CREDENTIALS_KEY = "another-key"

        with pytest.raises(InvalidToken):
            decrypt_value(token)

    def test_missing_key_is_a_configuration_error(self, settings):
        settings.MOMO_CREDENTIALS_KEY = ""

        with pytest.raises(ImproperlyConfigured):
            encrypt_value("client-secret")


class TestEncryptedTextField:
    def test_prep_value_encrypts_once(self):
        field = EncryptedTextField()

        prepared = field.get_prep_value("client-secret")

        assert prepared.startswith(ENCRYPTED_PREFIX)
        assert field.get_prep_value(prepared) == prepared

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values_are_not_encrypted(self, value):
        assert EncryptedTextField().get_prep_value(value) == value

    @pytest.mark.django_db
    def test_database_holds_ciphertext(self, company):
        provider = ProviderFactory(company=company, api_secret="client-secret")

        raw = _stored_value(provider, "api_secret")

        assert raw.startswith(ENCRYPTED_PREFIX)
        assert "client-secret" not in raw
        assert MomoProvider.objects.get(pk=provider.pk).api_secret == "client-secret"
