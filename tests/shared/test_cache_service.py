import asyncio

import pytest

from shared.sheets.cache_service import CacheService


class Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _counting_loader(values):
    calls = []

    async def loader():
        calls.append(len(calls))
        value = values[min(len(calls) - 1, len(values) - 1)]
        if isinstance(value, Exception):
            raise value
        return value

    return loader, calls


def test_fresh_value_is_served_from_memory():
    clock = Clock()
    cache = CacheService(clock=clock)
    loader, calls = _counting_loader([["a"], ["b"]])
    cache.register("clients", 60, loader)

    async def runner():
        first = await cache.get("clients")
        clock.now += 30
        second = await cache.get("clients")
        clock.now += 31
        third = await cache.get("clients")
        return first, second, third

    assert asyncio.run(runner()) == (["a"], ["a"], ["b"])
    assert len(calls) == 2
    stats = cache.stats()["clients"]
    assert (stats["hits"], stats["misses"], stats["items"]) == (1, 2, 1)


def test_concurrent_misses_share_one_load():
    cache = CacheService(clock=Clock())
    calls = []

    async def slow_loader():
        calls.append(1)
        await asyncio.sleep(0.01)
        return ["x"]

    cache.register("jobs", 60, slow_loader)

    async def runner():
        return await asyncio.gather(*(cache.get("jobs") for _ in range(5)))

    assert asyncio.run(runner()) == [["x"]] * 5
    assert len(calls) == 1


def test_failed_reload_serves_last_good_value():
    clock = Clock()
    cache = CacheService(clock=clock)
    loader, _calls = _counting_loader([["a"], RuntimeError("quota")])
    cache.register("tasks", 10, loader)

    async def runner():
        await cache.get("tasks")
        clock.now += 11
        return await cache.get("tasks")

    assert asyncio.run(runner()) == ["a"]
    assert cache.stats()["tasks"]["last_error"] == "quota"


def test_failed_first_load_raises():
    cache = CacheService(clock=Clock())
    loader, _calls = _counting_loader([RuntimeError("quota")])
    cache.register("tasks", 10, loader)

    with pytest.raises(RuntimeError):
        asyncio.run(cache.get("tasks"))


def test_invalidate_and_prime():
    cache = CacheService(clock=Clock())
    loader, calls = _counting_loader([["a"], ["b"]])
    cache.register("invoices", 600, loader)

    async def runner():
        await cache.get("invoices")
        cache.invalidate("invoices")
        reloaded = await cache.get("invoices")
        cache.prime("invoices", ["primed"])
        primed = await cache.get("invoices")
        cache.invalidate_all()
        return reloaded, primed

    assert asyncio.run(runner()) == (["b"], ["primed"])
    assert len(calls) == 2
    assert cache.stats()["invoices"]["fresh"] is False


def test_unknown_bucket_is_a_key_error():
    with pytest.raises(KeyError):
        asyncio.run(CacheService().get("nope"))


def test_refresh_now_reloads_fresh_bucket_and_propagates_failure():
    cache = CacheService(clock=Clock())
    loader, calls = _counting_loader([["a"], ["b"], RuntimeError("quota")])
    cache.register("clients", 600, loader)

    async def runner():
        await cache.get("clients")
        refreshed = await cache.refresh_now("clients")
        with pytest.raises(RuntimeError):
            await cache.refresh_now("clients")
        return refreshed, await cache.get("clients")

    assert asyncio.run(runner()) == (["b"], ["b"])
    assert len(calls) == 3
