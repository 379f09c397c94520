"""Per-event mutual exclusion for queue mutations."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0  # holders + waiters


class EventLocks:
    """One ``asyncio.Lock`` per event id, created on demand.

    An entry lives only while some coroutine holds or waits for it, so the
    registry does not grow with the number of events ever seen. Locks of
    different events are independent.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, event_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(event_id)
        if entry is None:
            entry = self._entries[event_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[event_id]

    def locked(self, event_id: str) -> bool:
        entry = self._entries.get(event_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
