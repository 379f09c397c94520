"""Queue ordering strategies.

Song requests use a derived order: ``priority`` descending, then
``created_at`` ascending. Nothing positional is stored, so status changes
never desynchronise it.

Karaoke requests store a dense, 0-based ``queue_position`` among the
active set. New requests are appended, removals close the gap and manual
reorders rewrite every position from the supplied id list.

Strategies are pure: they compute key updates from a snapshot of the
active set and never touch the store.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from .errors import InvalidReorderError
from .models.request import QueueRequest, RequestKind

DEFAULT_PRIORITY = 0

_EPOCH = datetime.min.replace(tzinfo=UTC)


def validate_reorder(active: Sequence[QueueRequest], ordered_ids: Sequence[str]) -> None:
    """Reject a reorder payload that is not exactly the active id set."""
    counts = Counter(ordered_ids)
    duplicates = sorted(i for i, n in counts.items() if n > 1)
    if duplicates:
        raise InvalidReorderError("duplicated ids", duplicates=duplicates)

    active_ids = {r.id for r in active}
    unknown = sorted(set(ordered_ids) - active_ids)
    if unknown:
        raise InvalidReorderError("ids not in the active queue", unknown=unknown)

    missing = sorted(active_ids - set(ordered_ids))
    if missing:
        raise InvalidReorderError("active ids missing from payload", missing=missing)


class OrderingStrategy:
    """Kind-specific ordering operations."""

    kind: RequestKind
    field: str  # ordering column rewritten by ``reorder``/``renumber``

    def sort_key(self, request: QueueRequest) -> tuple[Any, ...]:
        raise NotImplementedError

    def insert_keys(self, active: Sequence[QueueRequest]) -> dict[str, int]:
        """Ordering fields for a request joining the active set."""
        raise NotImplementedError

    def rejoin_keys(self, active: Sequence[QueueRequest]) -> dict[str, int]:
        """Ordering fields for a request returning to the active set."""
        return self.insert_keys(active)

    def renumber(self, active: Sequence[QueueRequest]) -> dict[str, int]:
        """Key updates after a request left the active set."""
        return {}

    def reorder(self, active: Sequence[QueueRequest], ordered_ids: Sequence[str]) -> dict[str, int]:
        raise NotImplementedError

    def sort(self, requests: Sequence[QueueRequest]) -> list[QueueRequest]:
        return sorted(requests, key=self.sort_key)


class PriorityOrdering(OrderingStrategy):
    kind = RequestKind.SONG
    field = "priority"

    def sort_key(self, request: QueueRequest) -> tuple[Any, ...]:
        priority = request.priority if request.priority is not None else DEFAULT_PRIORITY
        return (-priority, request.created_at or _EPOCH, request.id)

    def insert_keys(self, active: Sequence[QueueRequest]) -> dict[str, int]:
        return {"priority": DEFAULT_PRIORITY}

    def rejoin_keys(self, active: Sequence[QueueRequest]) -> dict[str, int]:
        # keeps the priority it had before leaving
        return {}

    def reorder(self, active: Sequence[QueueRequest], ordered_ids: Sequence[str]) -> dict[str, int]:
        """First id gets the highest priority, last id gets 1."""
        validate_reorder(active, ordered_ids)
        total = len(ordered_ids)
        current = {r.id: r.priority for r in active}
        updates = {rid: total - rank for rank, rid in enumerate(ordered_ids)}
        return {rid: p for rid, p in updates.items() if current[rid] != p}


class PositionOrdering(OrderingStrategy):
    kind = RequestKind.KARAOKE
    field = "queue_position"

    def sort_key(self, request: QueueRequest) -> tuple[Any, ...]:
        position = request.queue_position if request.queue_position is not None else -1
        return (position, request.turn_number or 0)

    def insert_keys(self, active: Sequence[QueueRequest]) -> dict[str, int]:
        positions = [r.queue_position for r in active if r.queue_position is not None]
        return {"queue_position": max(positions) + 1 if positions else 0}

    def renumber(self, active: Sequence[QueueRequest]) -> dict[str, int]:
        return self._dense(self.sort(active))

    def reorder(self, active: Sequence[QueueRequest], ordered_ids: Sequence[str]) -> dict[str, int]:
        validate_reorder(active, ordered_ids)
        by_id = {r.id: r for r in active}
        return self._dense([by_id[rid] for rid in ordered_ids])

    @staticmethod
    def _dense(ordered: Sequence[QueueRequest]) -> dict[str, int]:
        return {r.id: rank for rank, r in enumerate(ordered) if r.queue_position != rank}


STRATEGIES: dict[RequestKind, OrderingStrategy] = {
    RequestKind.SONG: PriorityOrdering(),
    RequestKind.KARAOKE: PositionOrdering(),
}


def strategy_for(kind: RequestKind) -> OrderingStrategy:
    return STRATEGIES[RequestKind(kind)]
