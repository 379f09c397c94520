"""Store backends for queue requests and module configuration."""

from .base import UPDATABLE_FIELDS, ModuleConfigStore, RequestStore
from .memory import MemoryModuleConfigRepository, MemoryRequestRepository
from .module_config import ModuleConfigRepository
from .queue_request import PgRequestRepository

__all__ = [
    "UPDATABLE_FIELDS",
    "MemoryModuleConfigRepository",
    "MemoryRequestRepository",
    "ModuleConfigRepository",
    "ModuleConfigStore",
    "PgRequestRepository",
    "RequestStore",
]
