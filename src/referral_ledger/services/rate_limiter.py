"""TTL-backed counters for rate limiting and velocity tracking.

Counters are fixed-window: the first increment of a key starts its window and
sets its expiry, later increments inside the window only bump the count.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from threading import Lock
from typing import Final, Protocol

import redis

from referral_ledger.core.errors import RateLimitError
from referral_ledger.core.settings import Settings

logger = logging.getLogger(__name__)

# INCR and EXPIRE run as one script so concurrent callers never race on expiry.
RATE_LIMIT_SCRIPT: Final[str] = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return current
"""


class CounterStore(Protocol):
    """Minimal contract of an external TTL-capable counter store."""

    def incr(self, key: str, ttl_seconds: int) -> int: ...

    def get(self, key: str) -> int: ...

    def ttl(self, key: str) -> int: ...


class MemoryCounterStore:
    """Process-local counter store guarded by a lock.

    Expired entries are dropped when their key is read again, and all of them
    are swept from ``incr`` at most once every ``sweep_interval`` seconds.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        *,
        sweep_interval: float = 60.0,
    ) -> None:
        self._clock = clock
        self._lock = Lock()
        self._counters: dict[str, list[float]] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def _live_entry(self, key: str, now: float) -> list[float] | None:
        entry = self._counters.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            self._counters.pop(key, None)
            return None
        return entry

    def incr(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            entry = self._live_entry(key, now)
            if entry is None:
                entry = [0, now + ttl_seconds]
                self._counters[key] = entry
            entry[0] += 1
            return int(entry[0])

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._counters.items() if entry[1] <= now]
        for key in expired:
            del self._counters[key]
        self._next_sweep = now + self._sweep_interval
        if expired:
            logger.debug("Swept %d expired rate counters", len(expired))

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def get(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            return int(entry[0]) if entry else 0

    def ttl(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            entry = self._live_entry(key, now)
            if entry is None:
                return 0
            return max(1, int(round(entry[1] - now)))

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()


class RedisCounterStore:
    """Counter store backed by Redis, shared across processes.

    Redis failures are logged and treated as an empty counter so that an
    unavailable cache degrades to allowing requests.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client
        self._script = client.register_script(RATE_LIMIT_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> RedisCounterStore:
        return cls(redis.Redis.from_url(url))

    def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            return int(self._script(keys=[key], args=[int(ttl_seconds)]))
        except redis.RedisError as exc:
            logger.error("RATE_LIMIT_ERROR operation=incr key=%s reason=%s", key, exc)
            return 0

    def get(self, key: str) -> int:
        try:
            value = self._redis.get(key)
        except redis.RedisError as exc:
            logger.error("RATE_LIMIT_ERROR operation=get key=%s reason=%s", key, exc)
            return 0
        return int(value) if value is not None else 0

    def ttl(self, key: str) -> int:
        try:
            remaining = self._redis.ttl(key)
        except redis.RedisError as exc:
            logger.error("RATE_LIMIT_ERROR operation=ttl key=%s reason=%s", key, exc)
            return 0
        # -2 means missing, -1 means no expiry; neither yields a useful hint.
        return int(remaining) if remaining and remaining > 0 else 0


def build_counter_store(settings: Settings) -> CounterStore:
    """Return the counter store selected by ``settings.rate_limit_backend``."""
    if settings.rate_limit_backend == "redis":
        return RedisCounterStore.from_url(settings.redis_url)
    return MemoryCounterStore()


class RateLimiter:
    """Counts actions per identity within fixed windows.

    Keys take the form ``{prefix}:{action}:{identity}:{window}`` so the same
    identity can be tracked independently per action and window length.
    """

    def __init__(self, store: CounterStore, prefix: str = "rl") -> None:
        self.store = store
        self.prefix = prefix

    def key_for(self, identity: str, action: str, window: int) -> str:
        return f"{self.prefix}:{action}:{identity}:{int(window)}"

    def increment(self, key: str, window: int) -> int:
        """Atomically bump ``key`` and return the count inside the current window."""
        return self.store.incr(key, int(window))

    def peek(self, key: str, window: int) -> int:
        """Return the count for ``key`` without changing it."""
        return self.store.get(key)

    def retry_after(self, key: str, window: int) -> int:
        """Return the seconds until ``key``'s window resets, falling back to the window."""
        remaining = self.store.ttl(key)
        return remaining if remaining > 0 else int(window)

    def hit(self, identity: str, action: str, window: int, limit: int) -> int:
        """Count one action and raise once ``limit`` is exceeded within ``window``."""
        key = self.key_for(identity, action, window)
        count = self.increment(key, window)
        if count > limit:
            retry_after = self.retry_after(key, window)
            logger.warning(
                "RATE_LIMIT_HIT action=%s identity=%s count=%d limit=%d retry_after=%d",
                action,
                identity[:10],
                count,
                limit,
                retry_after,
            )
            raise RateLimitError(
                f"Too many {action} attempts, retry in {retry_after} seconds",
                retry_after=retry_after,
                context={"action": action, "limit": limit},
            )
        return count
