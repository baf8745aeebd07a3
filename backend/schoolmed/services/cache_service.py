"""Read cache with prefix and tag invalidation.

Keys are namespaced by prefix (``medication_schedule:<id>``); entries may also
be attached to tags, and a whole tag can be dropped in one call. Every state
change on dose instances or orders calls :func:`invalidate_dose_caches` before
returning so callers never observe a stale read afterwards.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

import redis.asyncio as redis  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

DOSE_CACHE_PREFIXES = (
    "medication_schedule",
    "medication_schedules_list",
    "daily_schedule",
    "student_schedule",
    "parent_schedule",
    "schedule_statistics",
)
DOSE_CACHE_TAG = "medication_schedule_cache_keys"


class CacheBackend:
    """Interface implemented by every cache backend."""

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def set(
        self, key: str, value: Any, ttl: int | None = None, *, tags: Iterable[str] = ()
    ) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError

    async def remove_by_prefix(self, prefix: str) -> int:
        raise NotImplementedError

    async def invalidate_tag(self, tag: str) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryCache(CacheBackend):
    """Process-local cache used for local runs and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float | None, Any]] = {}
        self._tags: dict[str, set[str]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(
        self, key: str, value: Any, ttl: int | None = None, *, tags: Iterable[str] = ()
    ) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (expires_at, value)
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    async def remove_by_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            self._entries.pop(key, None)
        return len(doomed)

    async def invalidate_tag(self, tag: str) -> int:
        keys = self._tags.pop(tag, set())
        for key in keys:
            self._entries.pop(key, None)
        return len(keys)


class RedisCache(CacheBackend):
    """Redis-backed cache; tags are redis sets of member keys."""

    def __init__(self, client: redis.Redis, *, namespace: str = "schoolmed") -> None:
        self._r = client
        self._ns = namespace

    def _k(self, key: str) -> str:
        return f"{self._ns}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._ns}:tag:{tag}"

    async def get(self, key: str) -> Any | None:
        raw = await self._r.get(self._k(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            await self._r.delete(self._k(key))
            return None

    async def set(
        self, key: str, value: Any, ttl: int | None = None, *, tags: Iterable[str] = ()
    ) -> None:
        full = self._k(key)
        await self._r.set(full, json.dumps(value, default=str), ex=ttl)
        for tag in tags:
            await self._r.sadd(self._tag_key(tag), full)

    async def remove(self, key: str) -> None:
        await self._r.delete(self._k(key))

    async def remove_by_prefix(self, prefix: str) -> int:
        pattern = f"{self._k(prefix)}*"
        removed = 0
        batch: list[str] = []
        async for full in self._r.scan_iter(match=pattern, count=500):
            batch.append(full)
            if len(batch) >= 500:
                removed += await self._r.delete(*batch)
                batch.clear()
        if batch:
            removed += await self._r.delete(*batch)
        return removed

    async def invalidate_tag(self, tag: str) -> int:
        tag_key = self._tag_key(tag)
        members = await self._r.smembers(tag_key)
        removed = 0
        if members:
            removed = await self._r.delete(*members)
        await self._r.delete(tag_key)
        return removed

    async def close(self) -> None:
        await self._r.aclose()


_cache: CacheBackend = MemoryCache()


def get_cache() -> CacheBackend:
    return _cache


def set_cache(cache: CacheBackend) -> None:
    global _cache
    _cache = cache


def build_cache(redis_url: str | None) -> CacheBackend:
    """Return a redis cache when a URL is configured, else a memory cache."""
    if not redis_url:
        return MemoryCache()
    client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    return RedisCache(client)


def dose_key(dose_id: Any) -> str:
    return f"medication_schedule:{dose_id}"


async def invalidate_dose_caches(cache: CacheBackend | None = None) -> None:
    """Drop every cached read that a dose or order mutation can make stale.

    Cache outages are logged; the mutation has already been committed.
    """
    cache = cache or get_cache()
    try:
        for prefix in DOSE_CACHE_PREFIXES:
            await cache.remove_by_prefix(prefix)
        await cache.invalidate_tag(DOSE_CACHE_TAG)
    except redis.RedisError:
        logger.exception("Failed to invalidate medication schedule caches")
