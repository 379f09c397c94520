"""Uvicorn entry point: ``python -m encore.api.main`` or ``encore-api``"""

import uvicorn

from .app import create_app
from .core.config import get_settings


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
