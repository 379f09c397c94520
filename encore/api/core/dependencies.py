"""Dependency injection utilities for FastAPI"""

import logging

from fastapi import HTTPException

from ...shared.catalog import YouTubeCatalog
from ...shared.database import DatabaseManager
from ...shared.notifier import ChangeNotifier
from ..services.queue_service import QueueService
from .config import Settings, get_settings

logger = logging.getLogger(__name__)


# ============================================
# Database
# ============================================

_db_manager: DatabaseManager | None = None


def get_database_manager() -> DatabaseManager | None:
    """Global database manager, None when running on the memory backend"""
    return _db_manager


def set_database_manager(manager: DatabaseManager | None) -> None:
    global _db_manager
    _db_manager = manager


# ============================================
# Queue Service
# ============================================

_queue_service: QueueService | None = None


def init_queue_service(service: QueueService | None) -> None:
    """Install (or clear, with None) the process-wide QueueService"""
    global _queue_service
    _queue_service = service


def get_queue_service() -> QueueService:
    """Get the QueueService singleton (dependency injection)"""
    if _queue_service is None:
        raise HTTPException(status_code=503, detail="Queue service not ready")
    return _queue_service


def get_notifier() -> ChangeNotifier:
    return get_queue_service().notifier


# ============================================
# Track Catalog
# ============================================

_track_catalog: YouTubeCatalog | None = None


def get_track_catalog(settings: Settings | None = None) -> YouTubeCatalog:
    """Get shared YouTubeCatalog singleton (HTTP session reuse)"""
    global _track_catalog
    if _track_catalog is None:
        settings = settings or get_settings()
        _track_catalog = YouTubeCatalog(
            settings.youtube_api_key, timeout=settings.track_lookup_timeout
        )
    return _track_catalog


async def close_track_catalog() -> None:
    """Close the shared catalog session. Call on app shutdown."""
    global _track_catalog
    if _track_catalog is not None:
        await _track_catalog.close()
        _track_catalog = None
