"""
Advisory per-mandate locks
==========================

Short-lived mutexes held across a mandate's read-modify-write sequence so
that the scheduler, webhook deliveries and user/admin actions never
interleave on the same mandate.

Backends:
- Redis (``Redis.lock``), shared by every API and worker process
- In-process (``threading.Lock``), used when ``REDIS_URL`` is empty
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from functools import lru_cache
from typing import Dict, Iterator, Optional

import redis
from redis.exceptions import LockError, RedisError

from autopay.app.config import settings
from autopay.app.exceptions import TransientError

logger = logging.getLogger(__name__)


def build_lock_key(key: str) -> str:
    return f"autopay:lock:{key}"


class LockManager(ABC):
    """Abstract advisory lock backend."""

    def __init__(self, ttl: int, wait: float):
        self.ttl = ttl
        self.wait = wait

    @abstractmethod
    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key``; raise TransientError if it cannot be acquired in time."""


# ============================================================================
# Redis Lock Backend
# ============================================================================

class RedisLockManager(LockManager):
    """Locks backed by redis-py's ``Redis.lock`` (SET NX PX + token release)."""

    def __init__(self, redis_url: str, ttl: int, wait: float, client: Optional[redis.Redis] = None):
        super().__init__(ttl, wait)
        self.redis_url = redis_url
        self.client = client or redis.Redis.from_url(redis_url)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.client.lock(build_lock_key(key), timeout=self.ttl, blocking_timeout=self.wait)
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            logger.error("Lock backend unavailable for %s: %s", key, exc)
            raise TransientError("Lock backend unavailable") from exc
        if not acquired:
            logger.warning("Lock contention on %s", key)
            raise TransientError("Resource is busy, please retry")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # TTL elapsed while held; another holder may already own it
                logger.warning("Lock %s expired before release", key)


# ============================================================================
# In-Memory Lock Backend
# ============================================================================

class InMemoryLockManager(LockManager):
    """Process-local locks for single-process deployments and tests."""

    def __init__(self, ttl: int, wait: float):
        super().__init__(ttl, wait)
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        if not lock.acquire(timeout=self.wait):
            logger.warning("Lock contention on %s", key)
            raise TransientError("Resource is busy, please retry")
        try:
            yield
        finally:
            lock.release()


@lru_cache
def get_lock_manager() -> LockManager:
    """Process-wide lock manager chosen from configuration."""
    if settings.REDIS_URL:
        logger.info("Using redis advisory locks")
        return RedisLockManager(
            settings.REDIS_URL,
            ttl=settings.MANDATE_LOCK_TTL_SECONDS,
            wait=settings.MANDATE_LOCK_WAIT_SECONDS,
        )
    logger.info("REDIS_URL not set; using in-process advisory locks")
    return InMemoryLockManager(
        ttl=settings.MANDATE_LOCK_TTL_SECONDS,
        wait=settings.MANDATE_LOCK_WAIT_SECONDS,
    )
