"""
GitSee Exploration Service - FastAPI Application Entry Point

Usage:
    gitsee-server

Or:
    python -m uvicorn gitsee.main:app --reload --host 0.0.0.0 --port 3000
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from gitsee.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    generic_exception_handler,
    gitsee_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from gitsee.api.routes import gitsee_router, health_router
from gitsee.core.config import Settings, get_settings
from gitsee.core.dependencies import ServiceContainer
from gitsee.core.exceptions import GitseeError

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Log to stderr with timestamps, once per process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use (default: environment settings)
        services: Prebuilt service container (default: built from settings
            at startup)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        - Startup: build the service container, remove stale snapshots
          and expired exploration records
        - Shutdown: cancel background explorations, close HTTP clients
        """
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment}")

        container = services or ServiceContainer.build(settings)
        app.state.services = container
        removed = container.cloner.cleanup_old_repos()
        if removed:
            logger.info(f"Removed {removed} stale snapshot(s)")
        expired = container.store.cleanup_old_explorations()
        if expired:
            logger.info(f"Removed {expired} expired exploration record(s)")

        yield

        logger.info("Shutting down application...")
        await container.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
## GitSee Exploration API

Clone a GitHub repository and let a language model explore it.

### Endpoints
- **POST** `/api/gitsee`: repository metadata and exploration results
- **GET** `/api/gitsee/events/{owner}/{repo}`: live clone and exploration events (SSE)
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(GitseeError, gitsee_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Register routers
    app.include_router(health_router)
    app.include_router(gitsee_router, prefix=settings.api_prefix)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health",
        }

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "gitsee.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


app = create_app()


if __name__ == "__main__":
    main()
