"""
BoardRelay - Discord <-> Trello board event relay

FastAPI application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from boardrelay import __version__
from boardrelay.app.api.admin import router as admin_router
from boardrelay.app.api.webhooks import trello_router
from boardrelay.app.dependencies import (
    Services,
    build_services,
    get_settings,
    initialize_services,
    shutdown_services,
)
from boardrelay.config.schemas import AppSettings
from boardrelay.errors import (
    BoardRelayError,
    ExternalApiError,
    NotConfigured,
    StoreUnavailable,
    ValidationError,
    WebhookConflict,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[BoardRelayError], int] = {
    ValidationError: 422,
    NotConfigured: 404,
    WebhookConflict: 409,
    StoreUnavailable: 503,
    ExternalApiError: 502,
}


async def handle_boardrelay_error(request: Request, exc: BoardRelayError) -> JSONResponse:
    status = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    if status >= 500:
        logger.error(f"[api] {request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"error": str(exc), "context": exc.context})


def create_app(settings: AppSettings | None = None, services: Services | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to environment settings)
        services: Pre-built service container (tests); built from settings otherwise
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting BoardRelay services...")
        container = services or build_services(settings)
        try:
            await initialize_services(container)
            logger.info("BoardRelay services initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize services: {e}", exc_info=True)
            raise
        app.state.services = container

        yield

        logger.info("Shutting down BoardRelay services...")
        try:
            await shutdown_services(container)
            logger.info("BoardRelay services shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)
        finally:
            app.state.services = None

    app = FastAPI(
        title="BoardRelay",
        description="Routes Trello board events to Discord channels across many guilds",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_exception_handler(BoardRelayError, handle_boardrelay_error)

    app.include_router(trello_router)
    app.include_router(admin_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        return {"service": settings.service_name, "version": __version__, "status": "running"}

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        return {"status": "OK", "timestamp": datetime.now(UTC).isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "boardrelay.app.main:app",
        host="0.0.0.0",
        port=get_settings().webhook_port,
        reload=get_settings().debug,
    )
