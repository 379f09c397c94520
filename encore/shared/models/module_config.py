"""Data model for the module_configs table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .request import RequestKind


@dataclass(frozen=True)
class ModuleConfig:
    """Per-event settings of one request module."""

    event_id: str
    module: RequestKind
    enabled: bool = True
    cooldown_seconds: int = 60
    max_per_guest: int = 0  # 0 = unlimited
    created_at: datetime | None = None
    updated_at: datetime | None = None
