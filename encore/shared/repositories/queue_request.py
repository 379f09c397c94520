"""Repository for the queue_requests and queue_turn_counters tables."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Collection, Mapping
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

import asyncpg

from ..database import UNAVAILABLE_ERRORS
from ..errors import NotFoundError, QueueValidationError, StoreUnavailableError
from ..models.request import ACTIVE_STATUSES, QueueRequest, RequestDraft, RequestKind, TrackRef
from .base import UPDATABLE_FIELDS

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, event_id, guest_id, kind, title, artist, artwork_url, catalog_id, status, "
    "priority, turn_number, queue_position, called_at, created_at, updated_at"
)

_ORDER_BY = {
    RequestKind.SONG: "priority DESC, created_at ASC, id ASC",
    RequestKind.KARAOKE: "queue_position ASC, turn_number ASC",
}


def _row_to_request(row: asyncpg.Record) -> QueueRequest:
    data = dict(row)
    track = TrackRef(
        title=data.pop("title"),
        artist=data.pop("artist"),
        artwork_url=data.pop("artwork_url"),
        catalog_id=data.pop("catalog_id"),
    )
    kind = RequestKind(data.pop("kind"))
    return QueueRequest(kind=kind, track=track, **data)


class PgRequestRepository:
    """Pure SQL operations for queue_requests.

    Calls made inside ``transaction()`` share one connection and commit
    together.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool
        self._tx_conn: ContextVar[asyncpg.Connection | None] = ContextVar(
            f"queue_tx_conn_{id(self)}", default=None
        )

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[asyncpg.Connection]:
        conn = self._tx_conn.get()
        if conn is not None:
            yield conn
            return
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except UNAVAILABLE_ERRORS as e:
            logger.error(f"Request store unavailable: {type(e).__name__}: {e}")
            raise StoreUnavailableError() from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._tx_conn.get() is not None:
            yield
            return
        async with self._acquire() as conn:
            async with conn.transaction():
                token = self._tx_conn.set(conn)
                try:
                    yield
                finally:
                    self._tx_conn.reset(token)

    # --- reads ---

    async def get(self, event_id: str, request_id: str) -> QueueRequest | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM queue_requests WHERE id = $1 AND event_id = $2",
                request_id,
                event_id,
            )
            return _row_to_request(row) if row else None

    async def list_active(self, event_id: str, kind: RequestKind) -> list[QueueRequest]:
        kind = RequestKind(kind)
        return await self.list_requests(event_id, kind, statuses=ACTIVE_STATUSES[kind])

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
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM queue_requests "
                "WHERE event_id = $1 AND kind = $2 "
                "AND ($3::text[] IS NULL OR status = ANY($3::text[])) "
                f"ORDER BY {_ORDER_BY[kind]} "
                "LIMIT $4 OFFSET $5",
                event_id,
                str(kind),
                [str(s) for s in statuses] if statuses is not None else None,
                limit,
                offset,
            )
            return [_row_to_request(row) for row in rows]

    async def count_requests(
        self, event_id: str, kind: RequestKind, *, statuses: Collection[str] | None = None
    ) -> int:
        async with self._acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM queue_requests "
                "WHERE event_id = $1 AND kind = $2 "
                "AND ($3::text[] IS NULL OR status = ANY($3::text[]))",
                event_id,
                str(kind),
                [str(s) for s in statuses] if statuses is not None else None,
            )

    async def list_by_guest(
        self, event_id: str, guest_id: str, kind: RequestKind | None = None
    ) -> list[QueueRequest]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM queue_requests "
                "WHERE event_id = $1 AND guest_id = $2 AND ($3::text IS NULL OR kind = $3) "
                "ORDER BY created_at DESC",
                event_id,
                guest_id,
                str(kind) if kind is not None else None,
            )
            return [_row_to_request(row) for row in rows]

    async def count_active_by_guest(self, event_id: str, kind: RequestKind, guest_id: str) -> int:
        kind = RequestKind(kind)
        async with self._acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM queue_requests "
                "WHERE event_id = $1 AND kind = $2 AND guest_id = $3 AND status = ANY($4::text[])",
                event_id,
                str(kind),
                guest_id,
                [str(s) for s in ACTIVE_STATUSES[kind]],
            )

    async def count_by_status(self, event_id: str, kind: RequestKind) -> dict[str, int]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                "SELECT status, COUNT(*) AS total FROM queue_requests "
                "WHERE event_id = $1 AND kind = $2 GROUP BY status",
                event_id,
                str(kind),
            )
            return {row["status"]: row["total"] for row in rows}

    # --- writes ---

    async def create(self, draft: RequestDraft) -> QueueRequest:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO queue_requests (
                    id, event_id, guest_id, kind, title, artist, artwork_url, catalog_id,
                    status, priority, turn_number, queue_position
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                RETURNING {_COLUMNS}
                """,
                uuid.uuid4().hex,
                draft.event_id,
                draft.guest_id,
                str(draft.kind),
                draft.track.title,
                draft.track.artist,
                draft.track.artwork_url,
                draft.track.catalog_id,
                str(draft.status),
                draft.priority,
                draft.turn_number,
                draft.queue_position,
            )
            return _row_to_request(row)

    async def update(self, request_id: str, patch: Mapping[str, Any]) -> QueueRequest:
        """Apply *patch* (a subset of UPDATABLE_FIELDS) and bump updated_at."""
        invalid = set(patch) - UPDATABLE_FIELDS
        if invalid:
            raise QueueValidationError(f"Fields cannot be updated: {sorted(invalid)}")
        columns = list(patch)
        values = [str(v) if c == "status" else v for c, v in patch.items()]
        assignments = ", ".join(f"{c} = ${i}" for i, c in enumerate(columns, start=2))
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE queue_requests SET {assignments}{', ' if assignments else ''}"
                f"updated_at = NOW() WHERE id = $1 RETURNING {_COLUMNS}",
                request_id,
                *values,
            )
            if not row:
                raise NotFoundError(f"Request {request_id} not found", request_id=request_id)
            return _row_to_request(row)

    async def delete(self, request_id: str) -> bool:
        async with self._acquire() as conn:
            result = await conn.execute("DELETE FROM queue_requests WHERE id = $1", request_id)
            return result == "DELETE 1"

    async def reassign(
        self, event_id: str, kind: RequestKind, field: str, updates: Mapping[str, int]
    ) -> None:
        """Bulk-write one ordering column in a single statement."""
        if field not in UPDATABLE_FIELDS:
            raise QueueValidationError(f"Cannot reassign field {field}")
        if not updates:
            return
        async with self._acquire() as conn:
            await conn.execute(
                f"""
                UPDATE queue_requests AS q
                SET {field} = u.value, updated_at = NOW()
                FROM unnest($3::text[], $4::int[]) AS u(id, value)
                WHERE q.id = u.id AND q.event_id = $1 AND q.kind = $2
                """,
                event_id,
                str(kind),
                list(updates.keys()),
                list(updates.values()),
            )

    async def next_turn_number(self, event_id: str, kind: RequestKind) -> int:
        async with self._acquire() as conn:
            return await conn.fetchval(
                """
                INSERT INTO queue_turn_counters (event_id, kind, last_value)
                VALUES ($1, $2, 1)
                ON CONFLICT (event_id, kind) DO UPDATE
                    SET last_value = queue_turn_counters.last_value + 1
                RETURNING last_value
                """,
                event_id,
                str(kind),
            )
