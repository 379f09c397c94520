"""Shared data models for the encore backend."""

from .change import ChangeType, QueueChange, serialize_config, serialize_request
from .module_config import ModuleConfig
from .request import (
    ACTIVE_STATUSES,
    INITIAL_STATUS,
    STATUS_ENUMS,
    KaraokeStatus,
    QueueRequest,
    RequestDraft,
    RequestKind,
    SongStatus,
    TrackRef,
    is_active,
)

__all__ = [
    "ACTIVE_STATUSES",
    "INITIAL_STATUS",
    "STATUS_ENUMS",
    "ChangeType",
    "KaraokeStatus",
    "ModuleConfig",
    "QueueChange",
    "QueueRequest",
    "RequestDraft",
    "RequestKind",
    "SongStatus",
    "TrackRef",
    "is_active",
    "serialize_config",
    "serialize_request",
]
