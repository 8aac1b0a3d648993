"""Per-identity rate limiting for relay messages and money-moving requests."""

from __future__ import annotations

import logging
import math
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from threading import Lock
from typing import Final, Protocol

import redis

from showpls.core.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_IDENTITIES: Final[int] = 10_000


class RateLimiter(Protocol):
    def allow(self, identity: str) -> bool: ...

    def retry_after(self, identity: str) -> float: ...


class SlidingWindowRateLimiter:
    """Allow at most ``max_events`` per ``window_seconds`` for each identity.

    At most ``max_identities`` identities are tracked; the least recently
    seen one is dropped first.
    """

    def __init__(
        self,
        max_events: int,
        window_seconds: float,
        *,
        max_identities: int = DEFAULT_MAX_IDENTITIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_events = max_events
        self.window_seconds = window_seconds
        self.max_identities = max_identities
        self._clock = clock
        self._events: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = Lock()

    def _recent(self, identity: str, now: float) -> deque[float] | None:
        events = self._events.get(identity)
        if events is None:
            return None
        window_start = now - self.window_seconds
        while events and events[0] <= window_start:
            events.popleft()
        if not events:
            del self._events[identity]
            return None
        return events

    def allow(self, identity: str) -> bool:
        now = self._clock()
        with self._lock:
            events = self._recent(identity, now)
            if events is None:
                events = self._events[identity] = deque()
                while len(self._events) > self.max_identities:
                    self._events.popitem(last=False)
            else:
                self._events.move_to_end(identity)
            if len(events) >= self.max_events:
                return False
            events.append(now)
            return True

    def retry_after(self, identity: str) -> float:
        """Seconds until ``identity`` may send again; 0 when it already may."""
        now = self._clock()
        with self._lock:
            events = self._recent(identity, now)
            if events is None or len(events) < self.max_events:
                return 0.0
            return events[0] + self.window_seconds - now

    def reset(self, identity: str | None = None) -> None:
        with self._lock:
            if identity is None:
                self._events.clear()
            else:
                self._events.pop(identity, None)

    def __len__(self) -> int:
        return len(self._events)


class RedisRateLimiter:
    """Fixed-window counter shared by every process pointing at one Redis."""

    def __init__(
        self,
        client: redis.Redis,
        max_events: int,
        window_seconds: float,
        *,
        prefix: str = "wsrate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = client
        self.max_events = max_events
        self.window_ms = max(1, int(window_seconds * 1000))
        self._prefix = prefix
        self._clock = clock

    def allow(self, identity: str) -> bool:
        bucket = int(self._clock() * 1000) // self.window_ms
        key = f"{self._prefix}:{identity}:{bucket}"
        pipe = self._redis.pipeline()
        pipe.incr(key)
        pipe.pexpire(key, self.window_ms)
        count, _ = pipe.execute()
        return int(count) <= self.max_events

    def retry_after(self, identity: str) -> float:
        """Seconds until the current window closes."""
        now_ms = int(self._clock() * 1000)
        return (self.window_ms - now_ms % self.window_ms) / 1000


_limiters: dict[str, RateLimiter] = {}


def _build_limiter(name: str, max_events: int, window_seconds: float) -> RateLimiter:
    limiter = _limiters.get(name)
    if limiter is not None:
        return limiter
    if settings.redis_url:
        logger.info("Using Redis-backed %s rate limiting", name)
        limiter = RedisRateLimiter(
            redis.from_url(settings.redis_url),
            max_events,
            window_seconds,
            prefix=f"{name}rate",
        )
    else:
        limiter = SlidingWindowRateLimiter(max_events, window_seconds)
    _limiters[name] = limiter
    return limiter


def get_rate_limiter() -> RateLimiter:
    """Return the relay message limiter (Redis when ``REDIS_URL`` is set)."""
    return _build_limiter(
        "ws",
        settings.ws_rate_limit_messages,
        settings.ws_rate_limit_window_seconds,
    )


def get_http_rate_limiter() -> RateLimiter:
    """Return the per-user limiter for money-moving HTTP requests."""
    return _build_limiter(
        "http",
        settings.http_rate_limit_requests,
        settings.http_rate_limit_window_seconds,
    )


def retry_after_seconds(limiter: RateLimiter, identity: str) -> int:
    """Whole seconds for a ``Retry-After`` header."""
    return max(1, math.ceil(limiter.retry_after(identity)))


def reset_rate_limiters() -> None:
    """Forget every limiter so the next lookup rebuilds it from settings."""
    _limiters.clear()
