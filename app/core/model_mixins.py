"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Optimistic locking counter bumped on every update
    AppendOnlyMixin: Refuse updates and deletes (audit/journal rows)

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

    class MomoTransaction(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        ...

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Identifiers are safe to hand to providers as external references
    and do not reveal record counts.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Optimistic locking via an integer version column.

    On every update the version is incremented atomically in SQL
    (``F("version") + 1``) and re-read afterwards. Writers that need to
    detect concurrent modification compare the version they loaded with
    the one in the database (see ``momo.locks.compare_and_swap``).

    When ``update_fields`` is passed, ``version`` and ``updated_at`` are
    added to it so partial saves still bump the counter.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Optimistic locking version, incremented on each update",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            fields = set(update_fields)
            if is_update:
                fields.add("version")
            if any(f.name == "updated_at" for f in self._meta.concrete_fields):
                fields.add("updated_at")
            kwargs["update_fields"] = fields
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


class AppendOnlyMixin(models.Model):
    """
    Rows that may be inserted but never changed or removed.

    Used for audit logs and operator journals. Bulk queryset operations
    bypass this guard, so services only ever call ``objects.create``.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(f"{self.__class__.__name__} rows are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError(f"{self.__class__.__name__} rows are append-only")
