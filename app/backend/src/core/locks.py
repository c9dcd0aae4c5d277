"""Per-invoice single-flight locks for package generation."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from redis import Redis
from redis.exceptions import RedisError
from redis.lock import Lock as RedisLock

from .config import get_settings
from .errors import GenerationInProgressError

LOGGER = structlog.get_logger(__name__)

LOCK_KEY_PREFIX = "billing-package-lock"

# invoice id -> [lock, number of callers holding or waiting on it]
_local_locks: dict[int, list] = {}
_local_locks_guard = threading.Lock()


def lock_key(invoice_id: int) -> str:
    return f"{LOCK_KEY_PREFIX}:{invoice_id}"


def _checkout_local_lock(invoice_id: int) -> threading.Lock:
    with _local_locks_guard:
        entry = _local_locks.get(invoice_id)
        if entry is None:
            entry = [threading.Lock(), 0]
            _local_locks[invoice_id] = entry
        entry[1] += 1
        return entry[0]


def _return_local_lock(invoice_id: int) -> None:
    with _local_locks_guard:
        entry = _local_locks.get(invoice_id)
        if entry is None:
            return
        entry[1] -= 1
        if entry[1] <= 0:
            del _local_locks[invoice_id]


@contextmanager
def _process_lock(invoice_id: int, wait_seconds: float) -> Iterator[None]:
    lock = _checkout_local_lock(invoice_id)
    try:
        acquired = lock.acquire(timeout=wait_seconds) if wait_seconds > 0 else lock.acquire(False)
        if not acquired:
            raise GenerationInProgressError(invoice_id)
        try:
            yield
        finally:
            lock.release()
    finally:
        _return_local_lock(invoice_id)


def _acquire_redis_lock(
    invoice_id: int, *, wait_seconds: float, timeout_seconds: int
) -> RedisLock:
    """Return the held Redis lock. Connection problems raise ``RedisError``."""

    client = Redis.from_url(get_settings().redis_url)
    lock = client.lock(
        lock_key(invoice_id),
        timeout=timeout_seconds,
        blocking_timeout=wait_seconds if wait_seconds > 0 else None,
    )
    if not lock.acquire(blocking=wait_seconds > 0):
        raise GenerationInProgressError(invoice_id)
    return lock


def _release_redis_lock(invoice_id: int, lock: RedisLock) -> None:
    try:
        lock.release()
    except RedisError as exc:
        # LockError here means the lock expired while we held it
        LOGGER.warning("invoice_lock_release_failed", invoice_id=invoice_id, error=str(exc))


@contextmanager
def invoice_lock(invoice_id: int) -> Iterator[None]:
    """Hold the generation lock for ``invoice_id`` or raise immediately.

    Uses a Redis lock shared by every API process and worker when Redis is
    enabled, and a lock table local to this process otherwise. When Redis
    cannot be reached the local table is used and a warning is logged.
    """

    settings = get_settings()
    wait_seconds = max(0.0, settings.package_lock_wait_seconds)

    redis_lock: RedisLock | None = None
    if settings.redis_enabled:
        try:
            redis_lock = _acquire_redis_lock(
                invoice_id,
                wait_seconds=wait_seconds,
                timeout_seconds=settings.package_lock_timeout_seconds,
            )
        except RedisError as exc:
            LOGGER.warning("invoice_lock_redis_unavailable", invoice_id=invoice_id, error=str(exc))

    if redis_lock is None:
        with _process_lock(invoice_id, wait_seconds):
            LOGGER.info("invoice_lock_acquired", invoice_id=invoice_id, backend="process")
            yield
        return

    try:
        LOGGER.info("invoice_lock_acquired", invoice_id=invoice_id, backend="redis")
        yield
    finally:
        _release_redis_lock(invoice_id, redis_lock)


__all__ = ["LOCK_KEY_PREFIX", "invoice_lock", "lock_key"]
