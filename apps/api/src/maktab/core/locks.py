"""
Record Locking Module

Serializes concurrent decisions on the same record (application or student).
Uses Redis locks when Redis is connected so every API worker sees the same
lock, and falls back to in-process asyncio locks otherwise.

Multiple records are always locked in sorted key order so two operations
over overlapping id sets cannot deadlock.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any

from redis.exceptions import LockError, RedisError

from maktab.core import redis as redis_core
from maktab.core.config import settings

logger = logging.getLogger(__name__)

# In-memory lock registry (fallback when Redis unavailable)
_memory_locks: dict[str, asyncio.Lock] = {}
_memory_lock_users: dict[str, int] = {}


class LockUnavailableError(Exception):
    """Raised when a record lock cannot be acquired within the wait window."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Record is busy: {key}")


def lock_key(kind: str, record_id: Any) -> str:
    """Build the lock key for a record, e.g. ``lock:application:<uuid>``."""
    return f"lock:{kind}:{record_id}"


async def _acquire_redis(client, key: str) -> Any | None:
    """
    Acquire a Redis lock.

    Returns the held lock, or None if Redis failed and the caller
    should fall back to memory.
    """
    lock = client.lock(
        key,
        timeout=settings.record_lock_timeout_seconds,
        blocking_timeout=settings.record_lock_wait_seconds,
    )
    try:
        acquired = await lock.acquire()
    except RedisError as e:
        logger.warning(f"Redis lock failed for {key}, using memory: {e}")
        return None

    if not acquired:
        raise LockUnavailableError(key)
    return lock


async def _acquire_memory(key: str) -> asyncio.Lock:
    lock = _memory_locks.setdefault(key, asyncio.Lock())
    _memory_lock_users[key] = _memory_lock_users.get(key, 0) + 1
    try:
        await asyncio.wait_for(lock.acquire(), timeout=settings.record_lock_wait_seconds)
    except TimeoutError as e:
        _forget_memory(key)
        raise LockUnavailableError(key) from e
    except asyncio.CancelledError:
        _forget_memory(key)
        raise
    return lock


def _forget_memory(key: str) -> None:
    """Drop one holder or waiter; the lock goes once nobody uses it."""
    users = _memory_lock_users.get(key, 0) - 1
    if users > 0:
        _memory_lock_users[key] = users
    else:
        _memory_lock_users.pop(key, None)
        _memory_locks.pop(key, None)


async def _release(lock: Any, key: str) -> None:
    if isinstance(lock, asyncio.Lock):
        lock.release()
        _forget_memory(key)
        return
    try:
        await lock.release()
    except (LockError, RedisError) as e:
        # Lock expired while held or Redis went away; the TTL frees it either way
        logger.warning(f"Could not release Redis lock {key}: {e}")


@asynccontextmanager
async def record_lock(kind: str, ids: Iterable[Any]) -> AsyncIterator[None]:
    """
    Hold exclusive locks on one or more records for the duration of the block.

    Usage:
        async with record_lock("application", [application_id]):
            ...

    Args:
        kind: Record kind, used as the key namespace
        ids: Record ids to lock

    Raises:
        LockUnavailableError: If any lock is not acquired within
            ``record_lock_wait_seconds``
    """
    keys = sorted({lock_key(kind, record_id) for record_id in ids})
    held: list[tuple[str, Any]] = []
    client = redis_core.redis_client

    try:
        for key in keys:
            lock = None
            if client is not None:
                lock = await _acquire_redis(client, key)
            if lock is None:
                lock = await _acquire_memory(key)
            held.append((key, lock))
        yield
    finally:
        for key, lock in reversed(held):
            await _release(lock, key)


__all__ = [
    "LockUnavailableError",
    "lock_key",
    "record_lock",
]
