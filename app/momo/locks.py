"""
Concurrency control for mobile-money operations.

Two mechanisms, used together:

1. **DistributedLock**: a Redis lock with a TTL. Guards coarse work that
   spans many rows, such as a reconciliation run for one provider and
   period, or one retry sweep.

2. **compare_and_swap**: row-level optimistic locking.
   Every status write on a MomoTransaction is an UPDATE that matches the
   expected status *and* version, so a concurrent webhook and a concurrent
   status poll can never both move the same transaction.

Usage:

    from momo.locks import DistributedLock, compare_and_swap

    with DistributedLock(f"momo:reconcile:{provider.pk}:{start}:{end}", ttl=300):
        ReconciliationService.run(ctx, provider, start, end)

    with transaction.atomic():
        compare_and_swap(
            MomoTransaction, txn.pk,
            expected={"status": "processing", "version": 4},
            changes={"status": "completed", "completed_at": now},
        )
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_redis import get_redis_connection

from momo.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis mutex for work that spans many rows.

    ``SET key token NX EX ttl`` takes the lock; the Lua scripts below only
    touch the key while it still holds our token, so a worker whose lock
    expired can't release or extend a successor's lock.

        with DistributedLock("momo:retry-sweep:all", ttl=120, blocking=False):
            RetryScheduler.run_due()

    ``blocking=False`` raises LockAcquisitionError (409) at once when the key
    is taken; ``blocking=True`` polls for up to ``timeout`` seconds first.
    """

    KEY_PREFIX = "lock:"
    POLL_INTERVAL = 0.05

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    end
    return 0
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"{self.KEY_PREFIX}{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._client: Redis | None = None

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def acquire(self) -> bool:
        token = uuid_module.uuid4().hex
        give_up_at = time.monotonic() + (self.timeout if self.blocking else 0)

        while True:
            if self.client.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if time.monotonic() >= give_up_at:
                break
            time.sleep(self.POLL_INTERVAL)

        if self.blocking:
            message = f"Failed to acquire lock '{self.key}' within {self.timeout}s"
            details = {"key": self.key, "timeout": self.timeout}
        else:
            message = f"Lock '{self.key}' is already held"
            details = {"key": self.key}
        raise LockAcquisitionError(message, details=details)

    def release(self) -> bool:
        """Drop the lock if this instance still owns it; False otherwise."""
        token, self._token = self._token, None
        if token is None:
            return False
        return bool(self.client.eval(self.RELEASE_SCRIPT, 1, self.key, token))

    def extend(self, ttl: int | None = None) -> bool:
        """Restart the expiry clock at ``ttl`` (default: the original ttl)."""
        if self._token is None:
            return False
        return bool(
            self.client.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl)
        )

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


# =============================================================================
# Optimistic Locking
# =============================================================================


def compare_and_swap(
    model_class: type[T],
    pk: Any,
    *,
    expected: dict[str, Any],
    changes: dict[str, Any],
) -> int:
    """
    Apply ``changes`` only if the row still holds ``expected`` values.

    Bumps ``version`` and ``updated_at`` in the same UPDATE. Goes through
    ``_base_manager`` so no manager filtering can hide the row.

    Returns:
        The new version number

    Raises:
        StaleRecordError: If no row matched (someone else got there first)
    """
    updated = model_class._base_manager.filter(pk=pk, **expected).update(
        version=F("version") + 1,
        updated_at=timezone.now(),
        **changes,
    )
    if updated == 0:
        model_name = model_class.__name__
        raise StaleRecordError(
            f"{model_name} {pk} was modified by another process",
            details={
                "pk": str(pk),
                "expected": {key: str(value) for key, value in expected.items()},
            },
        )
    return model_class._base_manager.filter(pk=pk).values_list("version", flat=True)[0]


__all__ = [
    "DistributedLock",
    "compare_and_swap",
]
