"""Tests for the read cache and its invalidation helpers."""

from __future__ import annotations

import pytest

from schoolmed.services import cache_service
from schoolmed.services.cache_service import MemoryCache

pytestmark = pytest.mark.asyncio


async def test_prefix_and_tag_invalidation() -> None:
    cache = MemoryCache()
    await cache.set("daily_schedule:2026-03-02", {"count": 3})
    await cache.set("student_schedule:abc", [1, 2], tags=["roster"])
    await cache.set("unrelated:key", "keep")

    assert await cache.remove_by_prefix("daily_schedule") == 1
    assert await cache.invalidate_tag("roster") == 1
    assert await cache.get("daily_schedule:2026-03-02") is None
    assert await cache.get("student_schedule:abc") is None
    assert await cache.get("unrelated:key") == "keep"


async def test_expired_entries_are_dropped() -> None:
    ticks = [100.0]
    cache = MemoryCache(clock=lambda: ticks[0])
    await cache.set("parent_schedule:1", "value", ttl=30)
    await cache.set("parent_schedule:2", "forever")

    ticks[0] = 129.0
    assert await cache.get("parent_schedule:1") == "value"
    ticks[0] = 130.0
    assert await cache.get("parent_schedule:1") is None
    assert await cache.get("parent_schedule:2") == "forever"


async def test_invalidate_dose_caches_clears_every_schedule_read() -> None:
    cache = MemoryCache()
    for prefix in cache_service.DOSE_CACHE_PREFIXES:
        await cache.set(f"{prefix}:x", 1)
    await cache.set("listing", 1, tags=[cache_service.DOSE_CACHE_TAG])
    await cache.set("health:ok", 1)

    await cache_service.invalidate_dose_caches(cache)

    for prefix in cache_service.DOSE_CACHE_PREFIXES:
        assert await cache.get(f"{prefix}:x") is None
    assert await cache.get("listing") is None
    assert await cache.get("health:ok") == 1


async def test_memory_cache_is_used_without_redis() -> None:
    assert isinstance(cache_service.build_cache(None), MemoryCache)
