"""Data models for the queue_requests table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class RequestKind(StrEnum):
    """Request module. Each kind has its own ordering and lifecycle."""

    SONG = "song"
    KARAOKE = "karaoke"


class SongStatus(StrEnum):
    PENDING = "PENDING"
    HIGHLIGHTED = "HIGHLIGHTED"
    URGENT = "URGENT"
    PLAYED = "PLAYED"
    DISCARDED = "DISCARDED"


class KaraokeStatus(StrEnum):
    QUEUED = "QUEUED"
    CALLED = "CALLED"
    ON_STAGE = "ON_STAGE"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


STATUS_ENUMS: dict[RequestKind, type[StrEnum]] = {
    RequestKind.SONG: SongStatus,
    RequestKind.KARAOKE: KaraokeStatus,
}

INITIAL_STATUS: dict[RequestKind, str] = {
    RequestKind.SONG: SongStatus.PENDING,
    RequestKind.KARAOKE: KaraokeStatus.QUEUED,
}

# Statuses that participate in ordering
ACTIVE_STATUSES: dict[RequestKind, frozenset[str]] = {
    RequestKind.SONG: frozenset(
        {SongStatus.PENDING, SongStatus.HIGHLIGHTED, SongStatus.URGENT}
    ),
    RequestKind.KARAOKE: frozenset(
        {KaraokeStatus.QUEUED, KaraokeStatus.CALLED, KaraokeStatus.ON_STAGE}
    ),
}


def is_active(kind: RequestKind, status: str) -> bool:
    return status in ACTIVE_STATUSES[kind]


@dataclass(frozen=True)
class TrackRef:
    """Track description copied into the request at submission time."""

    title: str
    artist: str | None = None
    artwork_url: str | None = None
    catalog_id: str | None = None  # YouTube / Spotify id when known


@dataclass(frozen=True)
class QueueRequest:
    """Song or karaoke request record.

    Song requests order by ``priority`` (desc) then ``created_at``.
    Karaoke requests carry a stable ``turn_number`` and a dense
    ``queue_position`` among the active set.
    """

    id: str
    event_id: str
    guest_id: str
    kind: RequestKind
    track: TrackRef
    status: str
    priority: int | None = None  # song only
    turn_number: int | None = None  # karaoke only
    queue_position: int | None = None  # karaoke only
    called_at: datetime | None = None  # karaoke only
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def active(self) -> bool:
        return is_active(self.kind, self.status)


@dataclass(frozen=True)
class RequestDraft:
    """Validated submission ready to be persisted."""

    event_id: str
    guest_id: str
    kind: RequestKind
    track: TrackRef
    status: str
    priority: int | None = None
    turn_number: int | None = None
    queue_position: int | None = None
