"""Balance read cache — a small key/value contract with TTL and two backends.

The cache only accelerates read-only balance queries. It is never consulted
for a mutation decision, and no backend lets an error escape to the caller:
a failure is logged and treated as a miss.

Values must be JSON-serialisable (the Redis backend stores them as JSON).
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Optional, Protocol

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from leave_engine.common.constants import BALANCE_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


class BalanceCache(Protocol):
    """Contract shared by all cache backends."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None: ...

    async def invalidate(self, *keys: str) -> None: ...

    async def close(self) -> None: ...


# ── Process-local backend ───────────────────────────────────────────

class InMemoryBalanceCache:
    """Dict-backed TTL cache, local to one process.

    Expiry is checked on every read; every write sweeps other expired
    entries, so there is no background timer.
    """

    def __init__(
        self,
        default_ttl: int = BALANCE_CACHE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss: %s", key)
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            logger.debug("Cache expired: %s", key)
            return None
        logger.debug("Cache hit: %s", key)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        self._entries[key] = (self._clock() + ttl, value)
        self._sweep()

    async def invalidate(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    async def close(self) -> None:
        self._entries.clear()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]


# ── Redis backend ───────────────────────────────────────────────────

class RedisBalanceCache:
    """Shared cache on Redis; TTL is delegated to ``SET ... EX``."""

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        namespace: str = "leave",
        default_ttl: int = BALANCE_CACHE_TTL_SECONDS,
    ) -> None:
        self.client = client
        self.namespace = namespace
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisBalanceCache":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(self._key(key))
        except RedisError as e:
            logger.warning("Cache get error for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Failed to decode cached value for %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        try:
            await self.client.set(self._key(key), json.dumps(value, default=str), ex=ttl)
        except (RedisError, TypeError, ValueError) as e:
            logger.warning("Cache set error for %s: %s", key, e)

    async def invalidate(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self.client.delete(*(self._key(k) for k in keys))
        except RedisError as e:
            logger.warning("Cache invalidate error for %s: %s", keys, e)

    async def close(self) -> None:
        try:
            await self.client.aclose()
        except RedisError as e:
            logger.warning("Error closing Redis cache connection: %s", e)


def build_balance_cache(backend: str, *, redis_url: str, ttl_seconds: int) -> BalanceCache:
    """Construct the configured cache backend (``memory`` or ``redis``)."""
    if backend == "redis":
        return RedisBalanceCache.from_url(redis_url, default_ttl=ttl_seconds)
    if backend != "memory":
        raise ValueError(f"Unknown cache backend: {backend!r}")
    return InMemoryBalanceCache(default_ttl=ttl_seconds)
