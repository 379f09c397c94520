"""Change events published to realtime subscribers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from .module_config import ModuleConfig
from .request import QueueRequest, RequestKind


class ChangeType(StrEnum):
    REQUEST_CREATED = "request.created"
    REQUEST_UPDATED = "request.updated"
    REQUEST_DELETED = "request.deleted"
    QUEUE_REORDERED = "queue.reordered"
    CONFIG_UPDATED = "config.updated"


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_request(request: QueueRequest) -> dict[str, Any]:
    """JSON-safe dict of a request, as sent over the wire."""
    return {
        "id": request.id,
        "event_id": request.event_id,
        "guest_id": request.guest_id,
        "kind": str(request.kind),
        "status": str(request.status),
        "title": request.track.title,
        "artist": request.track.artist,
        "artwork_url": request.track.artwork_url,
        "catalog_id": request.track.catalog_id,
        "priority": request.priority,
        "turn_number": request.turn_number,
        "queue_position": request.queue_position,
        "called_at": _isoformat(request.called_at),
        "created_at": _isoformat(request.created_at),
        "updated_at": _isoformat(request.updated_at),
    }


def serialize_config(config: ModuleConfig) -> dict[str, Any]:
    return {
        "event_id": config.event_id,
        "module": str(config.module),
        "enabled": config.enabled,
        "cooldown_seconds": config.cooldown_seconds,
        "max_per_guest": config.max_per_guest,
        "updated_at": _isoformat(config.updated_at),
    }


@dataclass(frozen=True)
class QueueChange:
    """One committed mutation, scoped to an event.

    ``order`` holds the active request ids in queue order whenever the
    mutation changed the active set or its order.
    """

    type: ChangeType
    event_id: str
    kind: RequestKind
    request: QueueRequest | None = None
    request_id: str | None = None
    order: tuple[str, ...] | None = None
    config: ModuleConfig | None = None
    sequence: int = 0
    emitted_at: datetime | None = None

    @classmethod
    def created(cls, request: QueueRequest, order: list[str]) -> QueueChange:
        return cls(
            type=ChangeType.REQUEST_CREATED,
            event_id=request.event_id,
            kind=request.kind,
            request=request,
            request_id=request.id,
            order=tuple(order),
        )

    @classmethod
    def updated(cls, request: QueueRequest, order: list[str] | None = None) -> QueueChange:
        return cls(
            type=ChangeType.REQUEST_UPDATED,
            event_id=request.event_id,
            kind=request.kind,
            request=request,
            request_id=request.id,
            order=tuple(order) if order is not None else None,
        )

    @classmethod
    def deleted(cls, request: QueueRequest, order: list[str] | None = None) -> QueueChange:
        return cls(
            type=ChangeType.REQUEST_DELETED,
            event_id=request.event_id,
            kind=request.kind,
            request=request,
            request_id=request.id,
            order=tuple(order) if order is not None else None,
        )

    @classmethod
    def reordered(cls, event_id: str, kind: RequestKind, order: list[str]) -> QueueChange:
        return cls(
            type=ChangeType.QUEUE_REORDERED,
            event_id=event_id,
            kind=kind,
            order=tuple(order),
        )

    @classmethod
    def config_updated(cls, config: ModuleConfig) -> QueueChange:
        return cls(
            type=ChangeType.CONFIG_UPDATED,
            event_id=config.event_id,
            kind=config.module,
            config=config,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": str(self.type),
            "event_id": self.event_id,
            "kind": str(self.kind),
            "sequence": self.sequence,
            "emitted_at": _isoformat(self.emitted_at),
        }
        if self.request is not None:
            payload["request"] = serialize_request(self.request)
        if self.request_id is not None:
            payload["request_id"] = self.request_id
        if self.order is not None:
            payload["order"] = list(self.order)
        if self.config is not None:
            payload["config"] = serialize_config(self.config)
        return payload
