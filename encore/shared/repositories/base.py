"""Store interfaces implemented by the PostgreSQL and in-memory backends."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

from ..models.module_config import ModuleConfig
from ..models.request import QueueRequest, RequestDraft, RequestKind

# Columns an update may touch; track data and ordering identity are immutable
UPDATABLE_FIELDS = frozenset({"status", "priority", "queue_position", "called_at"})


class RequestStore(Protocol):
    """Durable record of queue requests.

    ``list_active`` returns requests already sorted by their ordering keys.
    Mutations issued inside ``transaction()`` commit together or not at all.
    """

    def transaction(self) -> AbstractAsyncContextManager[None]: ...

    async def create(self, draft: RequestDraft) -> QueueRequest: ...

    async def get(self, event_id: str, request_id: str) -> QueueRequest | None: ...

    async def list_active(self, event_id: str, kind: RequestKind) -> list[QueueRequest]: ...

    async def list_requests(
        self,
        event_id: str,
        kind: RequestKind,
        *,
        statuses: Collection[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[QueueRequest]: ...

    async def count_requests(
        self, event_id: str, kind: RequestKind, *, statuses: Collection[str] | None = None
    ) -> int: ...

    async def list_by_guest(
        self, event_id: str, guest_id: str, kind: RequestKind | None = None
    ) -> list[QueueRequest]: ...

    async def count_active_by_guest(
        self, event_id: str, kind: RequestKind, guest_id: str
    ) -> int: ...

    async def count_by_status(self, event_id: str, kind: RequestKind) -> dict[str, int]: ...

    async def update(self, request_id: str, patch: Mapping[str, Any]) -> QueueRequest: ...

    async def delete(self, request_id: str) -> bool: ...

    async def reassign(
        self, event_id: str, kind: RequestKind, field: str, updates: Mapping[str, int]
    ) -> None: ...

    async def next_turn_number(self, event_id: str, kind: RequestKind) -> int: ...


class ModuleConfigStore(Protocol):
    async def get_or_create(self, event_id: str, module: RequestKind) -> ModuleConfig: ...

    async def update(
        self,
        event_id: str,
        module: RequestKind,
        *,
        enabled: bool | None = None,
        cooldown_seconds: int | None = None,
        max_per_guest: int | None = None,
    ) -> ModuleConfig: ...
