"""Local control service application.

Run with ``projecthub serve`` or ``uvicorn --factory projecthub.server:create_app``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from projecthub import __version__
from projecthub.config import Settings, get_settings
from projecthub.errors import ProjectHubError
from projecthub.hub.api import HubServices, error_body, router

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, services: HubServices | None = None) -> FastAPI:
    settings = settings or get_settings()
    services = services or HubServices.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.projects_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Project Hub control service v%s", __version__)
        logger.info("Projects dir: %s", settings.projects_dir)
        logger.info("Archive store: %s", settings.store_url)
        yield
        logger.info("Shutting down, stopping previews")
        try:
            await services.preview.stop_all()
        except Exception:
            logger.exception("Error stopping preview during shutdown")

    app = FastAPI(title="Project Hub", version=__version__, lifespan=lifespan)
    app.state.hub = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProjectHubError)
    async def _hub_error(request: Request, exc: ProjectHubError):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})

    app.include_router(router)
    return app
