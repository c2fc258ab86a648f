"""FastAPI application main module.

This module defines the FastAPI application for the StoreRec recommendation
service: health check and metrics endpoints, the recommendation routes, the
error handler mapping StoreRec exceptions to JSON responses, and the
background sweep of expired cache entries.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storerec import __version__
from storerec.api.logging_config import RequestLoggingMiddleware, setup_logging
from storerec.api.metrics import metrics_service
from storerec.api.routes import recommendations
from storerec.config import Settings
from storerec.exceptions import StoreRecException
from storerec.jobs import CacheSweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging and run the cache sweeper for the app's lifetime."""
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger.info("StoreRec starting up", extra={"version": __version__})

    service = recommendations.get_recommendation_service()
    sweeper = CacheSweeper(service.cache, settings.cache_sweep_interval_seconds)
    sweeper.start()
    yield
    sweeper.stop(timeout=5)
    logger.info("StoreRec shutting down")


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="StoreRec API",
        description="Product recommendation service for the storefront",
        version=__version__,
        lifespan=lifespan,
    )

    application.add_middleware(RequestLoggingMiddleware)
    application.include_router(recommendations.router)

    @application.exception_handler(StoreRecException)
    async def storerec_exception_handler(
        request: Request, exc: StoreRecException
    ) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            exc.message,
            extra={"path": str(request.url.path), "status_code": exc.status_code},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message, "details": exc.details},
        )

    @application.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint.

        Returns:
            Dictionary with status key set to "ok".
        """
        return {"status": "ok"}

    @application.get("/metrics")
    def metrics() -> Dict[str, Any]:
        """Request, cache and latency counters."""
        return metrics_service.get_metrics()

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storerec.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
