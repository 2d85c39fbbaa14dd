import asyncio

import pytest

from streamrelay.cache import TTLCache
from streamrelay.main import _periodic_cache_sweep


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_get_returns_value_until_expiry():
    clock = _Clock()
    cache = TTLCache("t", clock=clock)
    cache.set("a", "x", ttl=10)

    clock.now += 9.9
    assert cache.get("a") == "x"

    clock.now += 0.1
    assert cache.get("a") is None
    assert len(cache) == 0


def test_set_overwrites_and_refreshes_ttl():
    clock = _Clock()
    cache = TTLCache("t", clock=clock)
    cache.set("a", "old", ttl=5)
    clock.now += 4
    cache.set("a", "new", ttl=5)
    clock.now += 4
    assert cache.get("a") == "new"


def test_lru_bound_evicts_least_recently_used():
    cache = TTLCache("t", max_entries=2, clock=_Clock())
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.get("a")
    cache.set("c", 3, ttl=60)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_purge_expired_removes_only_stale_entries():
    clock = _Clock()
    cache = TTLCache("t", clock=clock)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2, ttl=100)
    clock.now += 5

    assert cache.purge_expired() == 1
    assert len(cache) == 1
    assert "long" in cache


def test_pop_and_clear():
    cache = TTLCache("t", clock=_Clock())
    cache.set("a", 1, ttl=60)
    assert cache.pop("a") == 1
    assert cache.pop("a") is None
    cache.set("b", 2, ttl=60)
    cache.clear()
    assert len(cache) == 0


@pytest.mark.anyio
async def test_periodic_sweep_drops_entries_nobody_reads():
    clock = _Clock()
    cache = TTLCache("resolve", clock=clock)
    cache.set("once", "https://cdn.example/x.m3u8", ttl=1)
    clock.now += 2

    swept = []
    purge = cache.purge_expired

    def recording_purge():
        removed = purge()
        swept.append(removed)
        return removed

    cache.purge_expired = recording_purge
    task = asyncio.create_task(_periodic_cache_sweep([cache], interval_seconds=0.01))
    try:
        for _ in range(50):
            if swept:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert swept[0] == 1
    assert len(cache) == 0


def test_unbounded_cache_keeps_every_entry():
    cache = TTLCache("t", clock=_Clock())
    for i in range(500):
        cache.set(str(i), i, ttl=60)
    assert len(cache) == 500
    assert cache.get("0") == 0
