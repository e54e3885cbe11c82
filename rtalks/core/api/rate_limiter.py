"""
Fixed-window rate limiting per client and route class.

Each (client key, route class) pair owns a bucket holding the window start
and a request counter. The counter resets when the window elapses; a
request is denied once the counter exceeds the configured ceiling.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from rtalks.config.settings import RateLimitsConfig, RateLimitSettings
from rtalks.core.errors import RateLimitError
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

ROUTE_CLASSES = ("login", "upload", "general")


@dataclass
class RateLimitBucket:
    """Request counter for one client within one window."""
    window_start: float
    count: int = 0

    def expired(self, now: float, window_seconds: int) -> bool:
        return now - self.window_start >= window_seconds


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class RateLimiter:
    """
    Fixed-window rate limiter keyed by client and route class.

    All bucket reads and writes happen under one lock, so concurrent
    requests from the same client are never undercounted.
    """

    def __init__(
        self,
        limits: RateLimitsConfig,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: float = 3600.0,
    ):
        self._limits = limits
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[Tuple[str, str], RateLimitBucket] = {}
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    def _settings_for(self, route_class: str) -> RateLimitSettings:
        if route_class not in ROUTE_CLASSES:
            raise ValueError(f"Unknown route class: {route_class}")
        return self._limits.for_route_class(route_class)

    def check(self, client_key: str, route_class: str) -> RateLimitDecision:
        """
        Count a request and decide whether it may proceed.

        Args:
            client_key: Client identifier (usually the peer IP)
            route_class: One of "login", "upload", "general"

        Returns:
            RateLimitDecision for this request
        """
        settings = self._settings_for(route_class)
        key = (client_key, route_class)

        with self._lock:
            now = self._clock()
            if now - self._last_cleanup > self._cleanup_interval:
                self._cleanup_expired(now)
                self._last_cleanup = now

            bucket = self._buckets.get(key)
            if bucket is None or bucket.expired(now, settings.window_seconds):
                bucket = RateLimitBucket(window_start=now)
                self._buckets[key] = bucket

            bucket.count += 1
            count = bucket.count
            window_start = bucket.window_start

        allowed = count <= settings.max_requests
        remaining = max(0, settings.max_requests - count)
        retry_after = max(
            1, int(window_start + settings.window_seconds - now + 0.999))

        return RateLimitDecision(
            allowed=allowed,
            limit=settings.max_requests,
            remaining=remaining,
            retry_after=retry_after,
        )

    def enforce(self, client_key: str, route_class: str) -> RateLimitDecision:
        """
        Same as check(), but raises when the request is denied.

        Raises:
            RateLimitError: If the client exceeded the route class ceiling
        """
        decision = self.check(client_key, route_class)
        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded: client={client_key}, "
                f"route_class={route_class}, retry_after={decision.retry_after}s")
            raise RateLimitError(route_class, decision.retry_after)
        return decision

    def _cleanup_expired(self, now: float) -> None:
        """Drop buckets whose window has elapsed. Caller holds the lock."""
        stale = [
            key for key, bucket in self._buckets.items()
            if bucket.expired(now, self._settings_for(key[1]).window_seconds)
        ]
        for key in stale:
            del self._buckets[key]

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
