"""Song and karaoke request API routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from ...shared.errors import QueueError
from ...shared.models import QueueRequest, RequestKind, TrackRef
from ..core.dependencies import get_queue_service
from ..services.queue_service import QueueService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events/{event_id}", tags=["requests"])


# ============================================
# Response / Request Models
# ============================================


class RequestResponse(BaseModel):
    id: str
    event_id: str
    guest_id: str
    kind: RequestKind
    status: str
    title: str
    artist: str | None = None
    artwork_url: str | None = None
    catalog_id: str | None = None
    priority: int | None = None
    turn_number: int | None = None
    queue_position: int | None = None
    called_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_request(cls, request: QueueRequest) -> "RequestResponse":
        return cls(
            id=request.id,
            event_id=request.event_id,
            guest_id=request.guest_id,
            kind=request.kind,
            status=request.status,
            title=request.track.title,
            artist=request.track.artist,
            artwork_url=request.track.artwork_url,
            catalog_id=request.track.catalog_id,
            priority=request.priority,
            turn_number=request.turn_number,
            queue_position=request.queue_position,
            called_at=request.called_at,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )


class RequestCreate(BaseModel):
    guest_id: str = Field(min_length=1, max_length=128)
    title: str | None = Field(default=None, max_length=200)
    artist: str | None = Field(default=None, max_length=200)
    artwork_url: str | None = Field(default=None, max_length=2048)
    catalog_id: str | None = Field(default=None, max_length=128)
    query: str | None = Field(
        default=None, max_length=500, description="Link or search phrase, used when title is empty"
    )


class RequestUpdate(BaseModel):
    status: str | None = None
    priority: int | None = Field(default=None, ge=0, le=999)


class ReorderBody(BaseModel):
    request_ids: list[str]


class StatsResponse(BaseModel):
    event_id: str
    kind: RequestKind
    total: int
    active: int
    by_status: dict[str, int]


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(status_code=500, detail=f"Failed to {action}")


# ============================================
# Queue Endpoints
# ============================================


@router.post("/{kind}/requests", response_model=RequestResponse, status_code=201)
async def submit_request(
    event_id: str,
    kind: RequestKind,
    body: RequestCreate,
    service: QueueService = Depends(get_queue_service),
) -> RequestResponse:
    """Submit a request as a guest."""
    track = None
    if body.title and body.title.strip():
        track = TrackRef(
            title=body.title,
            artist=body.artist,
            artwork_url=body.artwork_url,
            catalog_id=body.catalog_id,
        )
    try:
        request = await service.submit_request(
            event_id, body.guest_id, kind, track, query=body.query
        )
        return RequestResponse.from_request(request)
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("submit request", e) from None


@router.get("/{kind}/requests", response_model=list[RequestResponse])
async def list_requests(
    event_id: str,
    kind: RequestKind,
    status: str | None = Query(None),
    include_inactive: bool = Query(False),
    limit: int | None = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: QueueService = Depends(get_queue_service),
) -> list[RequestResponse]:
    """List the queue in order (active requests unless filtered otherwise)."""
    try:
        requests = await service.list_queue(
            event_id,
            kind,
            status=status,
            include_inactive=include_inactive,
            limit=limit,
            offset=offset,
        )
        return [RequestResponse.from_request(r) for r in requests]
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("fetch queue", e) from None


@router.get("/{kind}/requests/{request_id}", response_model=RequestResponse)
async def get_request(
    event_id: str,
    kind: RequestKind,
    request_id: str,
    service: QueueService = Depends(get_queue_service),
) -> RequestResponse:
    try:
        request = await service.get_request(event_id, request_id, kind)
        return RequestResponse.from_request(request)
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("fetch request", e) from None


@router.patch("/{kind}/requests/{request_id}", response_model=RequestResponse)
async def update_request(
    event_id: str,
    kind: RequestKind,
    request_id: str,
    body: RequestUpdate,
    service: QueueService = Depends(get_queue_service),
) -> RequestResponse:
    """Change status and/or priority (operator)."""
    try:
        request = await service.update_request(
            event_id, request_id, kind=kind, status=body.status, priority=body.priority
        )
        return RequestResponse.from_request(request)
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("update request", e) from None


@router.delete("/{kind}/requests/{request_id}", status_code=204)
async def delete_request(
    event_id: str,
    kind: RequestKind,
    request_id: str,
    guest_id: str | None = Query(None, description="Set when a guest cancels their own request"),
    service: QueueService = Depends(get_queue_service),
) -> Response:
    try:
        await service.delete_request(event_id, request_id, kind=kind, guest_id=guest_id)
        return Response(status_code=204)
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("delete request", e) from None


@router.put("/{kind}/queue/order", response_model=list[RequestResponse])
async def reorder_queue(
    event_id: str,
    kind: RequestKind,
    body: ReorderBody,
    service: QueueService = Depends(get_queue_service),
) -> list[RequestResponse]:
    """Replace the queue order with the full list of active request ids."""
    try:
        requests = await service.reorder_queue(event_id, kind, body.request_ids)
        return [RequestResponse.from_request(r) for r in requests]
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("reorder queue", e) from None


@router.get("/{kind}/stats", response_model=StatsResponse)
async def get_stats(
    event_id: str,
    kind: RequestKind,
    service: QueueService = Depends(get_queue_service),
) -> StatsResponse:
    try:
        return StatsResponse(**await service.get_stats(event_id, kind))
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("fetch stats", e) from None


# ============================================
# Guest Endpoint
# ============================================


@router.get("/guests/{guest_id}/requests", response_model=list[RequestResponse])
async def list_guest_requests(
    event_id: str,
    guest_id: str,
    kind: RequestKind | None = Query(None),
    service: QueueService = Depends(get_queue_service),
) -> list[RequestResponse]:
    """A guest's own requests, newest first."""
    try:
        requests = await service.list_guest_requests(event_id, guest_id, kind)
        return [RequestResponse.from_request(r) for r in requests]
    except QueueError:
        raise
    except Exception as e:
        raise _internal_error("fetch guest requests", e) from None
