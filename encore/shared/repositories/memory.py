"""In-process store backend for development and tests.

Writes inside ``transaction()`` are staged on a private copy of the tables
and merged into the committed tables only when the block succeeds, so
readers outside the transaction never observe half-applied mutations.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import AsyncIterator, Collection, Mapping
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from ..errors import NotFoundError, QueueValidationError
from ..models.module_config import ModuleConfig
from ..models.request import ACTIVE_STATUSES, QueueRequest, RequestDraft, RequestKind
from ..ordering import strategy_for
from .base import UPDATABLE_FIELDS

logger = logging.getLogger(__name__)


@dataclass
class _Tables:
    requests: dict[str, QueueRequest] = field(default_factory=dict)
    counters: dict[tuple[str, RequestKind], int] = field(default_factory=dict)
    # keys written by the owning transaction
    touched: set[str] = field(default_factory=set)
    touched_counters: set[tuple[str, RequestKind]] = field(default_factory=set)

    def fork(self) -> _Tables:
        return _Tables(requests=dict(self.requests), counters=dict(self.counters))


class MemoryRequestRepository:
    """RequestStore kept in process memory."""

    def __init__(self) -> None:
        self._committed = _Tables()
        self._working: ContextVar[_Tables | None] = ContextVar(
            f"memory_store_tx_{id(self)}", default=None
        )
        self._last_stamp: datetime | None = None

    # --- internals ---

    def _tables(self) -> _Tables:
        working = self._working.get()
        return working if working is not None else self._committed

    def _touch(self, tables: _Tables, request_id: str) -> None:
        if tables is not self._committed:
            tables.touched.add(request_id)

    def _now(self) -> datetime:
        # Strictly increasing so created_at is a usable tie-break
        now = datetime.now(UTC)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    def _select(
        self,
        event_id: str,
        kind: RequestKind | None,
        statuses: Collection[str] | None = None,
        guest_id: str | None = None,
    ) -> list[QueueRequest]:
        return [
            r
            for r in self._tables().requests.values()
            if r.event_id == event_id
            and (kind is None or r.kind == kind)
            and (statuses is None or r.status in statuses)
            and (guest_id is None or r.guest_id == guest_id)
        ]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._working.get() is not None:
            yield
            return
        working = self._committed.fork()
        token = self._working.set(working)
        try:
            yield
        finally:
            self._working.reset(token)
        committed = self._committed
        for request_id in working.touched:
            if request_id in working.requests:
                committed.requests[request_id] = working.requests[request_id]
            else:
                committed.requests.pop(request_id, None)
        for key in working.touched_counters:
            committed.counters[key] = working.counters[key]

    # --- reads ---

    async def get(self, event_id: str, request_id: str) -> QueueRequest | None:
        request = self._tables().requests.get(request_id)
        if request is None or request.event_id != event_id:
            return None
        return request

    async def list_active(self, event_id: str, kind: RequestKind) -> list[QueueRequest]:
        kind = RequestKind(kind)
        return strategy_for(kind).sort(self._select(event_id, kind, ACTIVE_STATUSES[kind]))

    async def list_requests(
        self,
        event_id: str,
        kind: RequestKind,
        *,
        statuses: Collection[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[QueueRequest]:
        kind = RequestKind(kind)
        ordered = strategy_for(kind).sort(self._select(event_id, kind, statuses))
        end = offset + limit if limit is not None else None
        return ordered[offset:end]

    async def count_requests(
        self, event_id: str, kind: RequestKind, *, statuses: Collection[str] | None = None
    ) -> int:
        return len(self._select(event_id, RequestKind(kind), statuses))

    async def list_by_guest(
        self, event_id: str, guest_id: str, kind: RequestKind | None = None
    ) -> list[QueueRequest]:
        requests = self._select(event_id, kind, guest_id=guest_id)
        return sorted(requests, key=lambda r: r.created_at, reverse=True)

    async def count_active_by_guest(self, event_id: str, kind: RequestKind, guest_id: str) -> int:
        kind = RequestKind(kind)
        return len(self._select(event_id, kind, ACTIVE_STATUSES[kind], guest_id))

    async def count_by_status(self, event_id: str, kind: RequestKind) -> dict[str, int]:
        return dict(Counter(r.status for r in self._select(event_id, RequestKind(kind))))

    # --- writes ---

    async def create(self, draft: RequestDraft) -> QueueRequest:
        tables = self._tables()
        now = self._now()
        request = QueueRequest(
            id=uuid.uuid4().hex,
            event_id=draft.event_id,
            guest_id=draft.guest_id,
            kind=draft.kind,
            track=draft.track,
            status=draft.status,
            priority=draft.priority,
            turn_number=draft.turn_number,
            queue_position=draft.queue_position,
            created_at=now,
            updated_at=now,
        )
        tables.requests[request.id] = request
        self._touch(tables, request.id)
        return request

    async def update(self, request_id: str, patch: Mapping[str, Any]) -> QueueRequest:
        invalid = set(patch) - UPDATABLE_FIELDS
        if invalid:
            raise QueueValidationError(f"Fields cannot be updated: {sorted(invalid)}")
        tables = self._tables()
        current = tables.requests.get(request_id)
        if current is None:
            raise NotFoundError(f"Request {request_id} not found", request_id=request_id)
        updated = replace(current, **patch, updated_at=self._now())
        tables.requests[request_id] = updated
        self._touch(tables, request_id)
        return updated

    async def delete(self, request_id: str) -> bool:
        tables = self._tables()
        if tables.requests.pop(request_id, None) is None:
            return False
        self._touch(tables, request_id)
        return True

    async def reassign(
        self, event_id: str, kind: RequestKind, field: str, updates: Mapping[str, int]
    ) -> None:
        if field not in UPDATABLE_FIELDS:
            raise QueueValidationError(f"Cannot reassign field {field}")
        tables = self._tables()
        now = self._now()
        for request_id, value in updates.items():
            current = tables.requests.get(request_id)
            if current is None or current.event_id != event_id or current.kind != kind:
                continue
            tables.requests[request_id] = replace(current, **{field: value}, updated_at=now)
            self._touch(tables, request_id)

    async def next_turn_number(self, event_id: str, kind: RequestKind) -> int:
        tables = self._tables()
        key = (event_id, RequestKind(kind))
        tables.counters[key] = tables.counters.get(key, 0) + 1
        if tables is not self._committed:
            tables.touched_counters.add(key)
        return tables.counters[key]


class MemoryModuleConfigRepository:
    """ModuleConfigStore kept in process memory."""

    def __init__(self, *, default_cooldown_seconds: int = 60, default_max_per_guest: int = 0):
        self.default_cooldown_seconds = default_cooldown_seconds
        self.default_max_per_guest = default_max_per_guest
        self._configs: dict[tuple[str, RequestKind], ModuleConfig] = {}

    async def get_or_create(self, event_id: str, module: RequestKind) -> ModuleConfig:
        key = (event_id, RequestKind(module))
        config = self._configs.get(key)
        if config is None:
            now = datetime.now(UTC)
            config = self._configs[key] = ModuleConfig(
                event_id=event_id,
                module=RequestKind(module),
                cooldown_seconds=self.default_cooldown_seconds,
                max_per_guest=self.default_max_per_guest,
                created_at=now,
                updated_at=now,
            )
            logger.info(f"Created {module} config for event {event_id}")
        return config

    async def update(
        self,
        event_id: str,
        module: RequestKind,
        *,
        enabled: bool | None = None,
        cooldown_seconds: int | None = None,
        max_per_guest: int | None = None,
    ) -> ModuleConfig:
        current = await self.get_or_create(event_id, module)
        changes: dict[str, Any] = {
            k: v
            for k, v in {
                "enabled": enabled,
                "cooldown_seconds": cooldown_seconds,
                "max_per_guest": max_per_guest,
            }.items()
            if v is not None
        }
        config = replace(current, **changes, updated_at=datetime.now(UTC))
        self._configs[(event_id, RequestKind(module))] = config
        return config
