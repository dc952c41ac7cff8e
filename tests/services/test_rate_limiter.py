"""Tests for the rate limiter and its counter stores."""

from threading import Thread
from unittest.mock import MagicMock

import pytest
import redis

from referral_ledger.core.errors import ErrorKind, RateLimitError
from referral_ledger.core.settings import Settings
from referral_ledger.services.rate_limiter import (
    RATE_LIMIT_SCRIPT,
    MemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
    build_counter_store,
)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestMemoryCounterStore:
    """Fixed-window counting in the process-local store."""

    def test_increment_counts_within_window(self):
        store = MemoryCounterStore(clock=FakeClock())

        assert store.incr("k", 60) == 1
        assert store.incr("k", 60) == 2
        assert store.get("k") == 2

    def test_window_expiry_resets_counter(self):
        clock = FakeClock()
        store = MemoryCounterStore(clock=clock)
        store.incr("k", 60)
        store.incr("k", 60)

        clock.advance(61)

        assert store.get("k") == 0
        assert store.incr("k", 60) == 1

    def test_expired_entries_are_swept(self):
        clock = FakeClock()
        store = MemoryCounterStore(clock=clock, sweep_interval=60)
        for index in range(1000):
            store.incr(f"device-{index}", 10)
        assert len(store) == 1000

        clock.advance(1000)
        store.incr("device-new", 10)

        assert len(store) == 1
        assert store.get("device-new") == 1

    def test_sweep_keeps_live_entries(self):
        clock = FakeClock()
        store = MemoryCounterStore(clock=clock, sweep_interval=5)
        store.incr("short", 3)
        store.incr("long", 600)

        clock.advance(10)
        store.incr("other", 60)

        assert len(store) == 2
        assert store.get("long") == 1
        assert store.get("short") == 0

    def test_later_increments_do_not_extend_window(self):
        clock = FakeClock()
        store = MemoryCounterStore(clock=clock)
        store.incr("k", 60)
        clock.advance(50)
        store.incr("k", 60)

        assert store.ttl("k") == 10
        clock.advance(11)
        assert store.get("k") == 0

    def test_ttl_of_missing_key_is_zero(self):
        assert MemoryCounterStore().ttl("missing") == 0

    def test_concurrent_increments_are_not_lost(self):
        store = MemoryCounterStore()

        def worker() -> None:
            for _ in range(50):
                store.incr("shared", 60)

        threads = [Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get("shared") == 400


class TestRedisCounterStore:
    """Redis-backed store, exercised against a mocked client."""

    def test_incr_runs_script_with_ttl(self):
        client = MagicMock()
        script = client.register_script.return_value
        script.return_value = 3

        store = RedisCounterStore(client)

        assert store.incr("rl:claim:w:60", 60) == 3
        client.register_script.assert_called_once_with(RATE_LIMIT_SCRIPT)
        script.assert_called_once_with(keys=["rl:claim:w:60"], args=[60])

    def test_get_and_ttl_read_through(self):
        client = MagicMock()
        client.get.return_value = b"5"
        client.ttl.return_value = 42

        store = RedisCounterStore(client)

        assert store.get("key") == 5
        assert store.ttl("key") == 42

    def test_missing_key_reads_as_zero(self):
        client = MagicMock()
        client.get.return_value = None
        client.ttl.return_value = -2

        store = RedisCounterStore(client)

        assert store.get("key") == 0
        assert store.ttl("key") == 0

    def test_redis_failure_is_logged_and_allows(self, caplog):
        client = MagicMock()
        client.register_script.return_value.side_effect = redis.ConnectionError("down")
        client.get.side_effect = redis.ConnectionError("down")

        store = RedisCounterStore(client)

        with caplog.at_level("ERROR"):
            assert store.incr("key", 60) == 0
            assert store.get("key") == 0
        assert "RATE_LIMIT_ERROR" in caplog.text


def test_build_counter_store_defaults_to_memory():
    settings = Settings(_env_file=None)
    assert isinstance(build_counter_store(settings), MemoryCounterStore)


def test_build_counter_store_uses_redis_when_configured(mocker):
    from_url = mocker.patch("referral_ledger.services.rate_limiter.redis.Redis.from_url")
    settings = Settings(
        _env_file=None, rate_limit_backend="redis", redis_url="redis://cache:6379/3"
    )

    store = build_counter_store(settings)

    assert isinstance(store, RedisCounterStore)
    from_url.assert_called_once_with("redis://cache:6379/3")


class TestRateLimiter:
    def test_key_layout(self):
        limiter = RateLimiter(MemoryCounterStore(), prefix="rl")
        assert limiter.key_for("1.2.3.4", "referral_ip", 3600) == "rl:referral_ip:1.2.3.4:3600"

    def test_increment_and_peek(self):
        limiter = RateLimiter(MemoryCounterStore())
        key = limiter.key_for("wallet", "claim", 60)

        assert limiter.peek(key, 60) == 0
        assert limiter.increment(key, 60) == 1
        assert limiter.peek(key, 60) == 1

    def test_hit_raises_past_limit_with_retry_hint(self):
        clock = FakeClock()
        limiter = RateLimiter(MemoryCounterStore(clock=clock))

        assert limiter.hit("device-1", "referral_device", 60, limit=2) == 1
        clock.advance(15)
        assert limiter.hit("device-1", "referral_device", 60, limit=2) == 2

        with pytest.raises(RateLimitError) as exc_info:
            limiter.hit("device-1", "referral_device", 60, limit=2)

        assert exc_info.value.kind is ErrorKind.RATE_LIMIT_EXCEEDED
        assert exc_info.value.retry_after == 45
        assert exc_info.value.retryable

    def test_identities_and_actions_are_independent(self):
        limiter = RateLimiter(MemoryCounterStore())

        limiter.hit("a", "claim", 60, limit=1)
        assert limiter.hit("b", "claim", 60, limit=1) == 1
        assert limiter.hit("a", "referral_ip", 60, limit=1) == 1
