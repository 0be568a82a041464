"""
In-process sliding-window rate limiter.

Counts are kept per client identity (IP address, username). Only valid within
a single process; a multi-instance deployment needs a shared store.
"""
import logging
import threading
import time
from collections import OrderedDict, deque
from functools import lru_cache
from typing import Callable, Deque, Optional

from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most `limit` hits per `window_seconds` for each key."""

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        max_keys: int = 500,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._clock = clock or time.monotonic
        self._hits: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """
        Record a hit for `key` if it is within the limit.

        The check and the record happen under one lock, so concurrent callers
        cannot both take the last slot.

        Returns:
            True if allowed, False if the limit is already reached
        """
        now = self._clock()
        window_start = now - self.window_seconds
        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                hits = deque()
                self._hits[key] = hits
                if len(self._hits) > self.max_keys:
                    self._hits.popitem(last=False)
            else:
                self._hits.move_to_end(key)

            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def check(self, key: str) -> None:
        """Like hit(), but raises RateLimitExceeded when over the limit."""
        if not self.hit(key):
            raise RateLimitExceeded()

    def remaining(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return self.limit
            live = sum(1 for t in hits if t > now - self.window_seconds)
            return max(self.limit - live, 0)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self) -> int:
        return len(self._hits)


@lru_cache
def get_global_limiter() -> SlidingWindowRateLimiter:
    """Limiter applied by the middleware to /api requests and all POSTs."""
    return SlidingWindowRateLimiter(
        settings.RATE_LIMIT_REQUESTS,
        settings.RATE_LIMIT_WINDOW_SECONDS,
        max_keys=settings.RATE_LIMIT_MAX_CLIENTS,
    )


@lru_cache
def get_contact_limiter() -> SlidingWindowRateLimiter:
    """Per-IP limiter for contact form submissions."""
    return SlidingWindowRateLimiter(
        settings.CONTACT_RATE_LIMIT_REQUESTS,
        settings.CONTACT_RATE_LIMIT_WINDOW_SECONDS,
        max_keys=settings.RATE_LIMIT_MAX_CLIENTS,
    )


@lru_cache
def get_sensitive_read_limiter() -> SlidingWindowRateLimiter:
    """Per-user limiter for decrypting stored secrets."""
    return SlidingWindowRateLimiter(
        settings.SENSITIVE_READ_LIMIT,
        settings.SENSITIVE_READ_WINDOW_SECONDS,
        max_keys=settings.RATE_LIMIT_MAX_CLIENTS,
    )


def enforce_rate_limit(limiter: SlidingWindowRateLimiter, key: str) -> None:
    """
    Count a hit against `key` unless rate limiting is disabled.

    Raises:
        RateLimitExceeded: If the key is over its limit
    """
    if not settings.RATE_LIMIT_ENABLED:
        return
    if not limiter.hit(key):
        logger.warning(f"Rate limit exceeded for {key}")
        raise RateLimitExceeded()
