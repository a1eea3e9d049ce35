"""
Main entrypoint for the admin API.

The ``create_app`` function builds and configures the FastAPI
application, which is then instantiated at module import time as
``app``::

    uvicorn amore_api.app.main:app --reload

On startup the database migrations are applied and the roster is
loaded into memory unless it already has been (the bot and the API
share one roster when started together by ``run.py``).
"""

from fastapi import FastAPI

from .api.v1.router import router as v1_router
from .core.config import settings
from .core.db import init_db
from .core.logging_config import setup_logging
from .services import get_services


def create_app() -> FastAPI:
    """Create and configure a FastAPI application."""
    setup_logging(settings.log_level, settings.log_file or None)

    app = FastAPI(title=settings.project_name, version=settings.api_version)
    app.include_router(v1_router, prefix="/api/v1")

    @app.on_event("startup")
    async def startup_event() -> None:
        init_db()
        services = get_services()
        if not len(services.roster.cache):
            await services.roster.load_all()

    return app


app = create_app()
