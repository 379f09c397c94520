"""Status lifecycles for song and karaoke requests.

Both lifecycles are plain transition tables. Operator corrections such as
moving a played song back to PENDING are ordinary entries of the table,
and the tables can be replaced from configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from .errors import InvalidTransitionError, QueueValidationError
from .models.request import (
    INITIAL_STATUS,
    STATUS_ENUMS,
    KaraokeStatus,
    QueueRequest,
    RequestKind,
    SongStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_SONG_TRANSITIONS: dict[str, set[str]] = {
    SongStatus.PENDING: {
        SongStatus.HIGHLIGHTED,
        SongStatus.URGENT,
        SongStatus.PLAYED,
        SongStatus.DISCARDED,
    },
    SongStatus.HIGHLIGHTED: {
        SongStatus.PENDING,
        SongStatus.URGENT,
        SongStatus.PLAYED,
        SongStatus.DISCARDED,
    },
    SongStatus.URGENT: {
        SongStatus.PENDING,
        SongStatus.HIGHLIGHTED,
        SongStatus.PLAYED,
        SongStatus.DISCARDED,
    },
    # corrections
    SongStatus.PLAYED: {SongStatus.PENDING, SongStatus.URGENT},
    SongStatus.DISCARDED: {SongStatus.PENDING, SongStatus.URGENT},
}

DEFAULT_KARAOKE_TRANSITIONS: dict[str, set[str]] = {
    KaraokeStatus.QUEUED: {
        KaraokeStatus.CALLED,
        KaraokeStatus.NO_SHOW,
        KaraokeStatus.CANCELLED,
    },
    KaraokeStatus.CALLED: {
        KaraokeStatus.ON_STAGE,
        KaraokeStatus.QUEUED,
        KaraokeStatus.NO_SHOW,
        KaraokeStatus.CANCELLED,
    },
    KaraokeStatus.ON_STAGE: {KaraokeStatus.COMPLETED},
    # corrections: back to the queue or straight to the mic
    KaraokeStatus.COMPLETED: {KaraokeStatus.QUEUED, KaraokeStatus.CALLED},
    KaraokeStatus.NO_SHOW: {KaraokeStatus.QUEUED, KaraokeStatus.CALLED},
    KaraokeStatus.CANCELLED: {KaraokeStatus.QUEUED, KaraokeStatus.CALLED},
}


def parse_status(kind: RequestKind, value: str) -> str:
    """Normalise a status name for *kind*, rejecting unknown values."""
    enum = STATUS_ENUMS[kind]
    try:
        return enum(str(value).upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum)
        raise QueueValidationError(
            f"Unknown {kind} status '{value}' (expected one of: {allowed})"
        ) from None


class TransitionTable:
    """Allowed status moves for one request kind."""

    def __init__(self, kind: RequestKind, transitions: Mapping[str, Iterable[str]]) -> None:
        self.kind = RequestKind(kind)
        enum = STATUS_ENUMS[self.kind]
        known = {m.value for m in enum}
        table: dict[str, frozenset[str]] = {status: frozenset() for status in known}
        for source, targets in transitions.items():
            targets = set(targets)
            unknown = ({source} | targets) - known
            if unknown:
                raise ValueError(f"Unknown {self.kind} statuses in transition table: {sorted(unknown)}")
            table[enum(source)] = frozenset(enum(t) for t in targets)
        self._table = table

    @classmethod
    def default(cls, kind: RequestKind) -> TransitionTable:
        defaults = {
            RequestKind.SONG: DEFAULT_SONG_TRANSITIONS,
            RequestKind.KARAOKE: DEFAULT_KARAOKE_TRANSITIONS,
        }
        return cls(kind, defaults[RequestKind(kind)])

    @property
    def initial(self) -> str:
        return INITIAL_STATUS[self.kind]

    def targets(self, source: str) -> frozenset[str]:
        return self._table.get(source, frozenset())

    def can_transition(self, source: str, target: str) -> bool:
        return target in self.targets(source)

    def as_dict(self) -> dict[str, list[str]]:
        return {source: sorted(targets) for source, targets in self._table.items()}


class LifecycleStateMachine:
    """Validates transitions and computes their side effects."""

    def __init__(self, tables: Mapping[RequestKind, TransitionTable] | None = None) -> None:
        self._tables = {kind: TransitionTable.default(kind) for kind in RequestKind}
        if tables:
            self._tables.update({RequestKind(k): t for k, t in tables.items()})

    @classmethod
    def from_overrides(
        cls, overrides: Mapping[RequestKind, Mapping[str, Iterable[str]]]
    ) -> LifecycleStateMachine:
        """Build from configured tables; empty mappings keep the defaults."""
        tables = {
            RequestKind(kind): TransitionTable(kind, table)
            for kind, table in overrides.items()
            if table
        }
        for kind in tables:
            logger.info(f"Using configured {kind} transition table")
        return cls(tables)

    def table_for(self, kind: RequestKind) -> TransitionTable:
        return self._tables[RequestKind(kind)]

    def transition(self, request: QueueRequest, target: str, *, now: datetime) -> dict[str, Any]:
        """Return the store patch moving *request* to *target*.

        Raises InvalidTransitionError when the table does not allow the move.
        """
        target = parse_status(request.kind, target)
        if not self.table_for(request.kind).can_transition(request.status, target):
            raise InvalidTransitionError(request.status, target)

        patch: dict[str, Any] = {"status": target}
        if request.kind == RequestKind.KARAOKE:
            if target == KaraokeStatus.CALLED:
                patch["called_at"] = now
            elif target == KaraokeStatus.QUEUED:
                patch["called_at"] = None
        return patch
