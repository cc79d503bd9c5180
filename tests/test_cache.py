"""Balance cache backends — TTL, lazy sweep, invalidation, Redis error handling."""

from __future__ import annotations

import json
from typing import Any, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from leave_engine.common.cache import (
    InMemoryBalanceCache,
    RedisBalanceCache,
    build_balance_cache,
)
from tests.conftest import FakeClock


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the cache backend."""

    def __init__(self, *, fail: bool = False) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        self._check()
        self.store[key] = value
        self.ttls[key] = ex

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    async def aclose(self) -> None:
        self.closed = True


class TestInMemoryBalanceCache:

    async def test_get_set_round_trip(self):
        cache = InMemoryBalanceCache(clock=FakeClock())
        await cache.set("k", {"total": "21.00"})
        assert await cache.get("k") == {"total": "21.00"}
        assert await cache.get("missing") is None

    async def test_expired_entry_is_removed_on_read(self):
        clock = FakeClock()
        cache = InMemoryBalanceCache(default_ttl=300, clock=clock)
        await cache.set("k", 1)

        clock.advance(300)
        assert await cache.get("k") is None
        assert "k" not in cache

    async def test_write_sweeps_other_expired_entries(self):
        clock = FakeClock()
        cache = InMemoryBalanceCache(default_ttl=300, clock=clock)
        await cache.set("old", 1)
        await cache.set("short", 2, ttl_seconds=10)

        clock.advance(301)
        await cache.set("new", 3)

        assert len(cache) == 1
        assert "new" in cache

    async def test_per_entry_ttl_overrides_default(self):
        clock = FakeClock()
        cache = InMemoryBalanceCache(default_ttl=300, clock=clock)
        await cache.set("k", 1, ttl_seconds=5)

        clock.advance(6)
        assert await cache.get("k") is None

    async def test_invalidate_removes_only_named_keys(self):
        cache = InMemoryBalanceCache(clock=FakeClock())
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("c", 3)

        await cache.invalidate("a", "b", "never-set")

        assert await cache.get("a") is None
        assert await cache.get("b") is None
        assert await cache.get("c") == 3

    async def test_close_clears_entries(self):
        cache = InMemoryBalanceCache(clock=FakeClock())
        await cache.set("a", 1)
        await cache.close()
        assert len(cache) == 0


class TestRedisBalanceCache:

    async def test_values_stored_as_namespaced_json_with_ttl(self):
        client = FakeRedis()
        cache = RedisBalanceCache(client, default_ttl=300)

        await cache.set("leave_balances:u:IN:2025", [{"total_days": "21.00"}])

        raw = client.store["leave:leave_balances:u:IN:2025"]
        assert json.loads(raw) == [{"total_days": "21.00"}]
        assert client.ttls["leave:leave_balances:u:IN:2025"] == 300
        assert await cache.get("leave_balances:u:IN:2025") == [{"total_days": "21.00"}]

    async def test_invalidate_deletes_keys(self):
        client = FakeRedis()
        cache = RedisBalanceCache(client)
        await cache.set("a", 1)
        await cache.set("b", 2)

        await cache.invalidate("a", "b")

        assert client.store == {}

    async def test_backend_errors_are_misses(self, caplog):
        cache = RedisBalanceCache(FakeRedis(fail=True))

        await cache.set("a", 1)
        assert await cache.get("a") is None
        await cache.invalidate("a")

        assert "Cache get error" in caplog.text

    async def test_corrupt_value_is_a_miss(self):
        client = FakeRedis()
        client.store["leave:a"] = "{not json"
        cache = RedisBalanceCache(client)
        assert await cache.get("a") is None

    async def test_close_closes_client(self):
        client = FakeRedis()
        await RedisBalanceCache(client).close()
        assert client.closed


class TestBuildBalanceCache:

    def test_memory_backend(self):
        cache = build_balance_cache("memory", redis_url="redis://unused", ttl_seconds=60)
        assert isinstance(cache, InMemoryBalanceCache)
        assert cache.default_ttl == 60

    def test_redis_backend(self):
        cache = build_balance_cache("redis", redis_url="redis://localhost:6379/0", ttl_seconds=60)
        assert isinstance(cache, RedisBalanceCache)
        assert cache.default_ttl == 60

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_balance_cache("memcached", redis_url="", ttl_seconds=60)
