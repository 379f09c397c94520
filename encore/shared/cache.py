"""In-process TTL cache with stale fallback.

Used for module configuration reads, which happen on every submission but
change rarely. Each process owns its own cache instances.

When the store is unavailable, reads fall back to the last value seen
(even if its TTL expired) so guests can keep submitting.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """TTL cache with a bounded last-known-good store.

    ``_fresh`` is governed by *ttl*. ``_stale`` keeps the latest value per
    key (LRU, bounded by *maxsize*) and is only read when the loader fails.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._maxsize = maxsize
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._stale: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
            if len(self._locks) > self._maxsize * 2:
                known = set(self._stale)
                for k in list(self._locks):
                    if k not in known and not self._locks[k].locked():
                        del self._locks[k]
        return lock

    def get(self, key: str) -> Any:
        return self._fresh.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self._fresh[key] = value
        self._stale[key] = value
        self._stale.move_to_end(key)
        while len(self._stale) > self._maxsize:
            self._stale.popitem(last=False)

    def invalidate(self, key: str) -> None:
        """Drop the fresh value; the stale copy survives."""
        self._fresh.pop(key, None)

    def clear(self) -> None:
        self._fresh.clear()
        self._stale.clear()

    def get_stale(self, key: str) -> Any:
        value = self._stale.get(key, MISSING)
        if value is not MISSING:
            self._stale.move_to_end(key)
        return value

    @property
    def size(self) -> int:
        return len(self._fresh)


def cached(
    cache: AsyncTTLCache | Callable[[Any], AsyncTTLCache],
    key_func: Callable[..., str],
    *,
    retry: int = 3,
    retry_delay: float = 1.0,
):
    """Cache the result of an async loader.

    Parameters
    ----------
    cache : AsyncTTLCache or callable
        The cache instance, or a callable receiving ``self`` of the decorated
        method and returning the instance (for per-repository caches).
    key_func : callable
        Receives the decorated function's arguments and returns the key.
    retry : int
        Attempts before giving up on the loader.
    retry_delay : float
        Base delay between attempts; attempt *n* waits ``n * retry_delay``.

    After the last failed attempt the stale value is returned if there is
    one, otherwise the loader's exception propagates.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            store = cache if isinstance(cache, AsyncTTLCache) else cache(args[0])
            key = key_func(*args, **kwargs)

            result = store.get(key)
            if result is not MISSING:
                return result

            async with store.lock_for(key):
                result = store.get(key)
                if result is not MISSING:
                    return result

                last_exc: BaseException | None = None
                for attempt in range(1, retry + 1):
                    try:
                        result = await func(*args, **kwargs)
                        store.set(key, result)
                        return result
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        last_exc = exc
                        if attempt < retry:
                            delay = retry_delay * attempt
                            logger.warning(
                                "Load attempt %d/%d failed for %s: %s, retrying in %.1fs",
                                attempt,
                                retry,
                                key,
                                type(exc).__name__,
                                delay,
                            )
                            await asyncio.sleep(delay)

                stale = store.get_stale(key)
                if stale is not MISSING:
                    logger.warning(
                        "Serving stale value for %s (%s)", key, type(last_exc).__name__
                    )
                    return stale

                raise last_exc  # type: ignore[misc]

        return wrapper  # type: ignore[return-value]

    return decorator
