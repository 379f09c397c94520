"""Repository for the module_configs table."""

from __future__ import annotations

import logging

import asyncpg

from ..cache import AsyncTTLCache, cached
from ..database import UNAVAILABLE_ERRORS
from ..errors import StoreUnavailableError
from ..models.module_config import ModuleConfig
from ..models.request import RequestKind

logger = logging.getLogger(__name__)

_COLUMNS = "event_id, module, enabled, cooldown_seconds, max_per_guest, created_at, updated_at"


def _cache_key(event_id: str, module: RequestKind) -> str:
    return f"module_config:{event_id}:{module}"


def _row_to_config(row: asyncpg.Record) -> ModuleConfig:
    data = dict(row)
    data["module"] = RequestKind(data["module"])
    return ModuleConfig(**data)


class ModuleConfigRepository:
    """Pure SQL operations for module_configs.

    Reads go through a TTL cache since every submission consults the
    config; updates from this process invalidate their key. A failed read
    is not retried: it serves the last known config or raises
    StoreUnavailableError.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        default_cooldown_seconds: int = 60,
        default_max_per_guest: int = 0,
        cache_ttl: float = 300,
    ) -> None:
        self.pool = pool
        self.default_cooldown_seconds = default_cooldown_seconds
        self.default_max_per_guest = default_max_per_guest
        self.cache = AsyncTTLCache(maxsize=256, ttl=cache_ttl)

    @cached(
        cache=lambda self: self.cache,
        key_func=lambda self, event_id, module: _cache_key(event_id, module),
        retry=1,
    )
    async def get_or_create(self, event_id: str, module: RequestKind) -> ModuleConfig:
        """Get the module config of an event, creating defaults if missing."""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO module_configs (event_id, module, cooldown_seconds, max_per_guest)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (event_id, module) DO UPDATE SET event_id = EXCLUDED.event_id
                    RETURNING {_COLUMNS}
                    """,
                    event_id,
                    str(module),
                    self.default_cooldown_seconds,
                    self.default_max_per_guest,
                )
        except UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError() from e
        return _row_to_config(row)

    async def update(
        self,
        event_id: str,
        module: RequestKind,
        *,
        enabled: bool | None = None,
        cooldown_seconds: int | None = None,
        max_per_guest: int | None = None,
    ) -> ModuleConfig:
        """Update settings. Only provided fields are updated."""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO module_configs (
                        event_id, module, enabled, cooldown_seconds, max_per_guest
                    )
                    VALUES ($1, $2, COALESCE($3, TRUE), COALESCE($4, $6), COALESCE($5, $7))
                    ON CONFLICT (event_id, module) DO UPDATE SET
                        enabled = COALESCE($3, module_configs.enabled),
                        cooldown_seconds = COALESCE($4, module_configs.cooldown_seconds),
                        max_per_guest = COALESCE($5, module_configs.max_per_guest),
                        updated_at = NOW()
                    RETURNING {_COLUMNS}
                    """,
                    event_id,
                    str(module),
                    enabled,
                    cooldown_seconds,
                    max_per_guest,
                    self.default_cooldown_seconds,
                    self.default_max_per_guest,
                )
        except UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError() from e
        result = _row_to_config(row)
        self.cache.invalidate(_cache_key(event_id, module))
        logger.info(f"Updated {module} config for event {event_id}")
        return result
