"""
rate_limit.py — Request rate limiting for security-sensitive endpoints
======================================================================
Two layers:

* ``limiter`` — slowapi per-IP limits declared on routes (signup).
* ``login_limiter`` — a token bucket per client IP guarding the login
  endpoint. Buckets live in a size- and time-bounded cachetools TTLCache,
  so an IP that stops trying is forgotten one window after its bucket was
  created.

Buckets refill intervallically: each full window adds ``capacity`` tokens at
once. Across a window boundary a client can therefore spend up to twice the
capacity in quick succession.
"""
from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable, Optional

from cachetools import TTLCache
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

logger = logging.getLogger("starter.rate_limit")

limiter = Limiter(key_func=get_remote_address)

MAX_LOGIN_ATTEMPTS = 5
LOGIN_WINDOW_SECONDS = 60
# Extra lifetime of an idle bucket beyond one window
BUCKET_EXPIRY_GRACE_SECONDS = 60
MAX_TRACKED_CLIENTS = 10_000

Clock = Callable[[], float]


class TokenBucket:
    """Fixed-capacity bucket refilled in whole windows."""

    def __init__(
        self,
        capacity: int,
        refill_period: float,
        refill_tokens: Optional[int] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_period <= 0:
            raise ValueError("refill_period must be positive")
        self.capacity = capacity
        self.refill_period = refill_period
        self.refill_tokens = refill_tokens if refill_tokens is not None else capacity
        self._clock = clock
        self._tokens = capacity
        self._last_refill = clock()
        self._lock = Lock()

    def _refill(self) -> None:
        elapsed = self._clock() - self._last_refill
        periods = int(elapsed // self.refill_period)
        if periods <= 0:
            return
        self._tokens = min(self.capacity, self._tokens + periods * self.refill_tokens)
        self._last_refill += periods * self.refill_period

    def try_consume(self, tokens: int = 1) -> bool:
        """Take ``tokens`` if that many are available. Returns whether it did."""
        with self._lock:
            self._refill()
            if self._tokens < tokens:
                return False
            self._tokens -= tokens
            return True

    @property
    def available_tokens(self) -> int:
        with self._lock:
            self._refill()
            return self._tokens


class BucketStore:
    """Thread-safe expiring map of client key -> TokenBucket."""

    def __init__(
        self,
        factory: Callable[[], TokenBucket],
        maxsize: int = MAX_TRACKED_CLIENTS,
        ttl: float = LOGIN_WINDOW_SECONDS + BUCKET_EXPIRY_GRACE_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self._factory = factory
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=clock)
        self._lock = Lock()

    def get_or_create(self, key: str) -> TokenBucket:
        with self._lock:
            bucket = self._cache.get(key)
            if bucket is None:
                bucket = self._factory()
                self._cache[key] = bucket
            return bucket

    def get(self, key: str) -> Optional[TokenBucket]:
        with self._lock:
            return self._cache.get(key)

    def discard(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)


class LoginRateLimiter:
    """Per-IP brute-force protection for the login endpoint."""

    def __init__(
        self,
        max_attempts: int = MAX_LOGIN_ATTEMPTS,
        window_seconds: float = LOGIN_WINDOW_SECONDS,
        max_clients: int = MAX_TRACKED_CLIENTS,
        clock: Clock = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._store = BucketStore(
            factory=self._new_bucket,
            maxsize=max_clients,
            ttl=window_seconds + BUCKET_EXPIRY_GRACE_SECONDS,
            clock=clock,
        )
        logger.info(
            "Configuring login rate limiting: %d attempts per %s seconds",
            max_attempts,
            window_seconds,
        )

    def _new_bucket(self) -> TokenBucket:
        return TokenBucket(
            capacity=self.max_attempts,
            refill_period=self.window_seconds,
            refill_tokens=self.max_attempts,
            clock=self._clock,
        )

    @staticmethod
    def _check_key(ip_address: str) -> None:
        if not ip_address:
            raise ValueError("ip_address must be a non-empty string")

    def is_login_allowed(self, ip_address: str) -> bool:
        """Consume one attempt for ``ip_address``; False once the window's budget is spent."""
        self._check_key(ip_address)
        allowed = self._store.get_or_create(ip_address).try_consume(1)
        if not allowed:
            logger.warning("Login rate limit exceeded for IP: %s", ip_address, extra={"ip": ip_address})
        return allowed

    def get_remaining_login_attempts(self, ip_address: str) -> int:
        """Remaining attempts in the current window, without consuming one."""
        self._check_key(ip_address)
        bucket = self._store.get(ip_address)
        if bucket is None:
            return self.max_attempts
        return bucket.available_tokens

    def reset(self, ip_address: str) -> None:
        self._store.discard(ip_address)

    def reset_all(self) -> None:
        self._store.clear()

    @property
    def tracked_clients(self) -> int:
        return len(self._store)


login_limiter = LoginRateLimiter(
    max_attempts=settings.login_max_attempts,
    window_seconds=settings.login_window_seconds,
    max_clients=settings.login_cache_max_size,
)
