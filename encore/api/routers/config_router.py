"""Module configuration API routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ...shared.errors import QueueError
from ...shared.models import ModuleConfig, RequestKind
from ..core.dependencies import get_queue_service
from ..services.queue_service import QueueService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events/{event_id}", tags=["config"])


class ConfigResponse(BaseModel):
    event_id: str
    module: RequestKind
    enabled: bool
    cooldown_seconds: int
    max_per_guest: int
    updated_at: datetime | None = None

    @classmethod
    def from_config(cls, config: ModuleConfig) -> "ConfigResponse":
        return cls(
            event_id=config.event_id,
            module=config.module,
            enabled=config.enabled,
            cooldown_seconds=config.cooldown_seconds,
            max_per_guest=config.max_per_guest,
            updated_at=config.updated_at,
        )


class ConfigUpdate(BaseModel):
    enabled: bool | None = None
    cooldown_seconds: int | None = Field(default=None, ge=0, le=3600)
    max_per_guest: int | None = Field(default=None, ge=0, le=20, description="0 = unlimited")


@router.get("/{kind}/config", response_model=ConfigResponse)
async def get_config(
    event_id: str,
    kind: RequestKind,
    service: QueueService = Depends(get_queue_service),
) -> ConfigResponse:
    try:
        return ConfigResponse.from_config(await service.get_config(event_id, kind))
    except QueueError:
        raise
    except Exception as e:
        logger.exception(f"Failed to get {kind} config: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch config") from None


@router.put("/{kind}/config", response_model=ConfigResponse)
async def update_config(
    event_id: str,
    kind: RequestKind,
    body: ConfigUpdate,
    service: QueueService = Depends(get_queue_service),
) -> ConfigResponse:
    """Update module settings (enabled, cooldown_seconds, max_per_guest)."""
    if body.enabled is None and body.cooldown_seconds is None and body.max_per_guest is None:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        config = await service.update_config(
            event_id,
            kind,
            enabled=body.enabled,
            cooldown_seconds=body.cooldown_seconds,
            max_per_guest=body.max_per_guest,
        )
        return ConfigResponse.from_config(config)
    except QueueError:
        raise
    except Exception as e:
        logger.exception(f"Failed to update {kind} config: {e}")
        raise HTTPException(status_code=500, detail="Failed to update config") from None
