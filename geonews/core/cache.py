"""
cache.py — TTL cache in front of the trending and query paths.

Caching is strictly a performance layer. Every backend call is bounded by
settings.cache_timeout_seconds and every failure (timeout, connection
refused, bad payload) is logged and treated as a miss, so callers never
see a cache error.

Backends:
  - RedisCache  — redis.asyncio client, values stored as JSON with EX ttl
  - MemoryCache — in-process dict, used when REDIS_URL is unset and in tests

Usage:
    from geonews.core.cache import get_cache

    cache = get_cache()
    hit = await cache.get("trending:51.51:-0.13:5")
    if hit is None:
        await cache.set("trending:51.51:-0.13:5", rows, ttl=300)

A cached empty list is a hit (`[]`), distinct from a miss (`None`).
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional, Protocol

import redis.asyncio as redis

from geonews.core.config import settings

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Raw string store with per-entry TTL."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def close(self) -> None: ...


class MemoryCache:
    """Process-local backend. Expired entries are dropped lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, value)

    async def close(self) -> None:
        self._entries.clear()


class RedisCache:
    """Redis backend; the client reconnects on its own after outages."""

    def __init__(self, url: str, timeout: float) -> None:
        self._redis = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._redis.set(key, value, ex=ttl)

    async def close(self) -> None:
        await self._redis.aclose()


class Cache:
    """
    JSON facade over a backend that never raises.

    get() returns the decoded value or None; set() is fire-and-forget from
    the caller's point of view.
    """

    def __init__(self, backend: CacheBackend, timeout: float = 0.5) -> None:
        self.backend = backend
        self.timeout = timeout

    async def get(self, key: str) -> Any:
        try:
            raw = await asyncio.wait_for(self.backend.get(key), self.timeout)
        except Exception as exc:
            logger.warning("Cache get failed for %r (%s: %s) — treating as miss",
                           key, type(exc).__name__, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %r", key)
            return None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            payload = json.dumps(value)
            await asyncio.wait_for(self.backend.set(key, payload, ttl), self.timeout)
        except Exception as exc:
            logger.warning("Cache set failed for %r (%s: %s)",
                           key, type(exc).__name__, exc)

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception as exc:
            logger.warning("Cache close failed: %s", exc)


def build_cache() -> Cache:
    """Pick the backend from settings.redis_url."""
    if settings.redis_url:
        logger.info("Cache backend: Redis")
        backend: CacheBackend = RedisCache(settings.redis_url, settings.cache_timeout_seconds)
    else:
        logger.info("Cache backend: in-memory (REDIS_URL not set)")
        backend = MemoryCache()
    return Cache(backend, timeout=settings.cache_timeout_seconds)


class CacheClient:
    """Holds the process-wide Cache; replaced wholesale in tests."""

    cache: Cache | None = None

    @property
    def backend_name(self) -> str:
        if self.cache is not None and isinstance(self.cache.backend, RedisCache):
            return "redis"
        return "memory"


cache_client = CacheClient()


async def connect_cache() -> None:
    cache_client.cache = build_cache()


async def close_cache() -> None:
    if cache_client.cache is not None:
        await cache_client.cache.close()
        cache_client.cache = None


def get_cache() -> Cache:
    """FastAPI dependency — falls back to a fresh in-memory cache before startup."""
    if cache_client.cache is None:
        cache_client.cache = Cache(MemoryCache(), timeout=settings.cache_timeout_seconds)
    return cache_client.cache
