"""
Per-key single-flight locks.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production, so at most one render runs per story id.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


class KeyBusy(Exception):
    """Raised when the key is already held by another caller."""


class KeyLock(Protocol):
    """Minimal non-blocking lock interface keyed by string."""

    def try_acquire(self, key: str) -> Optional[Any]:
        ...

    def release(self, handle: Any) -> None:
        ...


@contextmanager
def hold(lock: KeyLock, key: str) -> Iterator[None]:
    """Hold `key` for the duration of the block or raise KeyBusy."""
    handle = lock.try_acquire(key)
    if handle is None:
        raise KeyBusy(key)
    try:
        yield
    finally:
        lock.release(handle)


@dataclass
class InMemoryKeyLock:
    """Process-local lock set for testing/dev."""

    held: set[str] = field(default_factory=set)

    def __post_init__(self):
        self._mutex = threading.Lock()

    def try_acquire(self, key: str) -> Optional[str]:
        with self._mutex:
            if key in self.held:
                return None
            self.held.add(key)
            return key

    def release(self, handle: str) -> None:
        with self._mutex:
            self.held.discard(handle)


@dataclass
class RedisKeyLock:
    """Redis-backed lock using SET NX with an expiry, via redis-py's Lock."""

    url: str
    key_prefix: str = "vignette:splice:"
    ttl_seconds: int = 600

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def try_acquire(self, key: str) -> Optional[Any]:
        lock = self.client.lock(
            f"{self.key_prefix}{key}",
            timeout=self.ttl_seconds,
            blocking=False,
        )
        if lock.acquire():
            return lock
        return None

    def release(self, handle: Any) -> None:
        try:
            handle.release()
        except redis_exceptions.LockError:
            # Expired under us; the TTL already freed the key.
            pass
