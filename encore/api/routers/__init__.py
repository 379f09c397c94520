"""HTTP and WebSocket routes."""

from . import config_router, realtime_router, requests_router

__all__ = ["config_router", "realtime_router", "requests_router"]
