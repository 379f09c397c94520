"""AsyncTTLCache and the @cached loader decorator."""

from __future__ import annotations

import pytest

from encore.shared.cache import MISSING, AsyncTTLCache, cached


class Loader:
    def __init__(self) -> None:
        self.cache = AsyncTTLCache(maxsize=8, ttl=60)
        self.calls = 0
        self.fail = False

    @cached(cache=lambda self: self.cache, key_func=lambda self, key: f"k:{key}", retry_delay=0)
    async def load(self, key: str) -> str:
        self.calls += 1
        if self.fail:
            raise ConnectionError("database down")
        return f"value-{key}-{self.calls}"


async def test_second_read_hits_cache():
    loader = Loader()
    assert await loader.load("a") == "value-a-1"
    assert await loader.load("a") == "value-a-1"
    assert loader.calls == 1


async def test_invalidate_forces_reload():
    loader = Loader()
    await loader.load("a")
    loader.cache.invalidate("k:a")
    assert await loader.load("a") == "value-a-2"


async def test_stale_value_served_when_loader_fails():
    loader = Loader()
    await loader.load("a")
    loader.cache.invalidate("k:a")
    loader.fail = True
    assert await loader.load("a") == "value-a-1"
    assert loader.calls == 4  # one success, three failed attempts


async def test_error_propagates_without_stale_value():
    loader = Loader()
    loader.fail = True
    with pytest.raises(ConnectionError):
        await loader.load("b")


def test_stale_store_is_bounded():
    cache = AsyncTTLCache(maxsize=2, ttl=60)
    for key in ("a", "b", "c"):
        cache.set(key, key)
    assert cache.get_stale("a") is MISSING
    assert cache.get_stale("c") == "c"
    cache.clear()
    assert cache.size == 0
