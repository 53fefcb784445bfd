"""Abuse guard: IP block list, failed-login tracking and request checks.

Failed logins are keyed by ip:email. Failures within the inactivity horizon
accumulate; reaching the threshold blocks the IP until it is explicitly
unblocked. A successful login clears the ip:email entry.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

from starlette.requests import Request

from adminconsole.config import settings
from adminconsole.security.rate_limiter import (
    Clock,
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitStore,
    RedisRateLimitStore,
)

logger = logging.getLogger(__name__)

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

_ATTACK_PATTERNS = [
    re.compile(r"\.\./"),
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"\x00"),
    re.compile(r"exec\s*\(", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"union\s+select", re.IGNORECASE),
]


# ── IP blocking ──────────────────────────────────────────────────────


class IpBlockList:
    def __init__(self) -> None:
        self._blocked: set[str] = set()
        self._lock = threading.Lock()

    def block(self, ip: str) -> None:
        with self._lock:
            self._blocked.add(ip)

    def unblock(self, ip: str) -> None:
        with self._lock:
            self._blocked.discard(ip)

    def is_blocked(self, ip: str) -> bool:
        with self._lock:
            return ip in self._blocked

    def snapshot(self) -> set[str]:
        with self._lock:
            return set(self._blocked)


# ── Failed logins ────────────────────────────────────────────────────


@dataclass
class FailedLoginEntry:
    count: int
    last_attempt: float


class FailedLoginTracker:
    """Counts failed logins per ip:email and auto-blocks noisy IPs."""

    def __init__(
        self,
        blocklist: IpBlockList,
        threshold: int = settings.rate_limit.failed_login_threshold,
        horizon_seconds: int = settings.rate_limit.failed_login_horizon_seconds,
        clock: Clock = time.time,
    ) -> None:
        self._blocklist = blocklist
        self._threshold = threshold
        self._horizon = horizon_seconds
        self._clock = clock
        self._entries: dict[str, FailedLoginEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(ip: str, email: str) -> str:
        return f"{ip}:{email.strip().lower()}"

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, ip: str, email: str) -> FailedLoginEntry | None:
        with self._lock:
            entry = self._entries.get(self._key(ip, email))
            return None if entry is None else FailedLoginEntry(entry.count, entry.last_attempt)

    def record_failure(self, ip: str, email: str) -> FailedLoginEntry:
        """Count one failure. Returns the updated entry."""
        key = self._key(ip, email)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now - entry.last_attempt > self._horizon:
                entry = FailedLoginEntry(count=1, last_attempt=now)
                self._entries[key] = entry
            else:
                entry.count += 1
                entry.last_attempt = now
            reached = entry.count >= self._threshold
            result = FailedLoginEntry(entry.count, entry.last_attempt)

        if reached:
            self._blocklist.block(ip)
            logger.warning(
                "Auto-blocked IP %s after %d failed login attempts", ip, result.count
            )
        return result

    def clear(self, ip: str, email: str) -> None:
        with self._lock:
            self._entries.pop(self._key(ip, email), None)

    async def sweep(self, batch_size: int) -> int:
        # Single C-level copy under the GIL; the lock is only held per batch
        keys = list(self._entries)

        removed = 0
        for start in range(0, len(keys), batch_size):
            now = self._clock()
            with self._lock:
                for key in keys[start:start + batch_size]:
                    entry = self._entries.get(key)
                    if entry is not None and now - entry.last_attempt > self._horizon:
                        del self._entries[key]
                        removed += 1
            await asyncio.sleep(0)
        return removed


# ── Guard container ──────────────────────────────────────────────────


@dataclass
class AbuseGuard:
    """Owns all in-process abuse state. One per app; tests build their own."""

    rate_limiter: RateLimiter
    blocklist: IpBlockList
    failed_logins: FailedLoginTracker

    @classmethod
    def in_memory(cls, clock: Clock = time.time) -> AbuseGuard:
        blocklist = IpBlockList()
        return cls(
            rate_limiter=RateLimiter(InMemoryRateLimitStore(clock=clock), clock=clock),
            blocklist=blocklist,
            failed_logins=FailedLoginTracker(blocklist, clock=clock),
        )

    @classmethod
    def from_settings(cls, redis: object | None = None) -> AbuseGuard:
        store: RateLimitStore
        if settings.rate_limit.rate_limit_backend == "redis" and redis is not None:
            store = RedisRateLimitStore(redis)
        else:
            store = InMemoryRateLimitStore()
        blocklist = IpBlockList()
        return cls(
            rate_limiter=RateLimiter(store),
            blocklist=blocklist,
            failed_logins=FailedLoginTracker(blocklist),
        )

    async def sweep(self, batch_size: int = settings.rate_limit.sweep_batch_size) -> tuple[int, int]:
        windows = await self.rate_limiter.store.sweep(batch_size)
        failures = await self.failed_logins.sweep(batch_size)
        return windows, failures


async def run_sweeper(guard: AbuseGuard, interval_seconds: float) -> None:
    """Background task: evict expired windows and stale failure counters."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            windows, failures = await guard.sweep()
            if windows or failures:
                logger.debug("Swept %d rate-limit windows, %d failed-login entries", windows, failures)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Abuse guard sweep failed")


# ── Request checks ───────────────────────────────────────────────────


def get_client_ip(request: Request, trust_proxy: bool | None = None) -> str:
    """Best-effort client IP, considering common proxy headers."""
    if trust_proxy is None:
        trust_proxy = settings.security.trust_proxy_headers
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip
        cf_ip = request.headers.get("cf-connecting-ip")
        if cf_ip:
            return cf_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def validate_origin(origin: str | None, host: str | None, allowed: list[str] | None = None) -> bool:
    """CSRF check: the Origin header must match the Host or an allowed origin.

    Requests without an Origin header are treated as same-origin.
    """
    if not origin:
        return True
    if allowed and origin.rstrip("/") in allowed:
        return True
    try:
        parts = urlsplit(origin)
    except ValueError:
        return False
    if not parts.scheme or not parts.netloc:
        return False
    return parts.netloc == host


def has_attack_patterns(url: str) -> bool:
    return any(p.search(url) for p in _ATTACK_PATTERNS)
