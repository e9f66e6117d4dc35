"""
Custom model fields.

EncryptedTextField stores provider credentials encrypted at rest with
Fernet (AES-128-CBC + HMAC). The key is derived from
``settings.MOMO_CREDENTIALS_KEY``. Values read from the database are
decrypted transparently; values already carrying the ``enc::`` prefix
are written unchanged.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import models

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc::"


@lru_cache(maxsize=4)
def _fernet_for(raw_key: str) -> Fernet:
    digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def get_fernet() -> Fernet:
    raw_key = getattr(settings, "MOMO_CREDENTIALS_KEY", "")
    if not raw_key:
        raise ImproperlyConfigured("MOMO_CREDENTIALS_KEY must be set")
    return _fernet_for(raw_key)


def encrypt_value(value: str) -> str:
    token = get_fernet().encrypt(value.encode("utf-8")).decode("ascii")
    return f"{ENCRYPTED_PREFIX}{token}"


def decrypt_value(value: str) -> str:
    if not value.startswith(ENCRYPTED_PREFIX):
        return value
    token = value[len(ENCRYPTED_PREFIX) :]
    try:
        return get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        logger.error("Could not decrypt stored credential; key rotated?")
        raise


class EncryptedTextField(models.TextField):
    """TextField whose contents are Fernet-encrypted in the database."""

    def from_db_value(self, value, expression, connection):
        if value is None or value == "":
            return value
        return decrypt_value(value)

    def to_python(self, value):
        if isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX):
            return decrypt_value(value)
        return super().to_python(value)

    def get_prep_value(self, value):
        if isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX):
            return value
        value = super().get_prep_value(value)
        if value is None or value == "":
            return value
        return encrypt_value(value)
