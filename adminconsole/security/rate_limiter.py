"""Fixed-window rate limiter with pluggable storage.

A window opens on the first request for an identifier and is replaced (not
extended) once it has elapsed. A request is rejected once the count in the
current window exceeds the configured maximum.

Two stores share the same interface:
- InMemoryRateLimitStore: process-local dict behind a lock, injectable clock.
- RedisRateLimitStore: INCR + PEXPIRE, for multi-instance deployments.

Usage:
    limiter = RateLimiter(InMemoryRateLimitStore())
    result = await limiter.check("1.2.3.4:/admin/stats", API_RATE_LIMIT)
    if result.limited:
        ...  # respond 429 with Retry-After: result.retry_after
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from adminconsole.config import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: int
    max_requests: int


API_RATE_LIMIT = RateLimitConfig(
    window_seconds=settings.rate_limit.api_window_seconds,
    max_requests=settings.rate_limit.api_max_requests,
)
AUTH_RATE_LIMIT = RateLimitConfig(
    window_seconds=settings.rate_limit.auth_window_seconds,
    max_requests=settings.rate_limit.auth_max_requests,
)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    remaining: int
    reset_at: float
    retry_after: int  # seconds; 0 when allowed


class RateLimitStore(Protocol):
    """Storage for per-identifier windows."""

    async def hit(self, key: str, window_seconds: int) -> RateLimitEntry:
        """Count one request against `key` and return the updated window."""
        ...

    async def sweep(self, batch_size: int) -> int:
        """Evict elapsed windows. Returns the number of entries removed."""
        ...


class InMemoryRateLimitStore:
    """Process-local store. One coarse lock guards the table."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def hit(self, key: str, window_seconds: int) -> RateLimitEntry:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now + window_seconds)
                self._entries[key] = entry
            else:
                entry.count += 1
            return RateLimitEntry(count=entry.count, reset_at=entry.reset_at)

    async def sweep(self, batch_size: int) -> int:
        # Single C-level copy under the GIL; the lock is only held per batch
        keys = list(self._entries)

        removed = 0
        for start in range(0, len(keys), batch_size):
            now = self._clock()
            with self._lock:
                for key in keys[start:start + batch_size]:
                    entry = self._entries.get(key)
                    if entry is not None and now > entry.reset_at:
                        del self._entries[key]
                        removed += 1
            # Let request handlers in between batches
            await asyncio.sleep(0)
        return removed


class RedisRateLimitStore:
    """Shared store backed by Redis INCR + PEXPIRE. Keys expire on their own."""

    def __init__(self, redis: object, prefix: str = "rate:", clock: Clock = time.time) -> None:
        self._redis = redis
        self._prefix = prefix
        self._clock = clock

    async def hit(self, key: str, window_seconds: int) -> RateLimitEntry:
        redis_key = f"{self._prefix}{key}"
        count = await self._redis.incr(redis_key)  # type: ignore[attr-defined]
        if count == 1:
            await self._redis.pexpire(redis_key, window_seconds * 1000)  # type: ignore[attr-defined]
        ttl_ms = await self._redis.pttl(redis_key)  # type: ignore[attr-defined]
        if ttl_ms is None or ttl_ms < 0:
            # Key lost its expiry (e.g. crash between INCR and PEXPIRE): restart the window
            await self._redis.pexpire(redis_key, window_seconds * 1000)  # type: ignore[attr-defined]
            ttl_ms = window_seconds * 1000
        return RateLimitEntry(count=int(count), reset_at=self._clock() + ttl_ms / 1000)

    async def sweep(self, batch_size: int) -> int:
        return 0


class RateLimiter:
    """Fixed-window limiter over a RateLimitStore."""

    def __init__(self, store: RateLimitStore, clock: Clock = time.time) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> RateLimitStore:
        return self._store

    async def check(self, identifier: str, config: RateLimitConfig = API_RATE_LIMIT) -> RateLimitResult:
        """Count a request and report whether it is over the limit.

        Store failures fail open: the request is allowed and the error logged.
        """
        try:
            entry = await self._store.hit(identifier, config.window_seconds)
        except Exception:
            logger.exception("Rate limiter store error for key %s", identifier)
            return RateLimitResult(limited=False, remaining=config.max_requests, reset_at=0.0, retry_after=0)

        limited = entry.count > config.max_requests
        remaining = max(0, config.max_requests - entry.count)
        retry_after = 0
        if limited:
            retry_after = max(1, math.ceil(entry.reset_at - self._clock()))
        return RateLimitResult(
            limited=limited,
            remaining=remaining,
            reset_at=entry.reset_at,
            retry_after=retry_after,
        )
