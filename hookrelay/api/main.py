"""
FastAPI application entry point.
"""

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from hookrelay import __version__
from hookrelay.api.routes import enqueue_router, health_router
from hookrelay.config import get_settings
from hookrelay.db import close_db, get_engine, init_db
from hookrelay.dispatch.registry import DispatchContext
from hookrelay.observability.logging import setup_logging
from hookrelay.observability.metrics import get_metrics, setup_metrics
from hookrelay.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the dispatch context on startup unless one was provided to
    ``create_app``, and tears down everything it built on shutdown.
    """
    if getattr(app.state, "dispatch", None) is not None:
        yield
        return

    settings = get_settings()

    # Startup
    setup_logging()
    setup_metrics()
    setup_tracing()
    session_factory = await init_db()
    instrument_sqlalchemy(get_engine())

    app.state.dispatch = DispatchContext.create(
        session_factory,
        settings=settings,
        start_workers=settings.api_embedded_workers,
    )

    logger.info(
        "Application started",
        extra={"embedded_workers": settings.api_embedded_workers},
    )

    yield

    # Shutdown
    await app.state.dispatch.close()
    app.state.dispatch = None
    await close_db()
    logger.info("Application shutdown")


async def record_request_metrics(request: Request, call_next: Callable):
    """Middleware recording request counts and latency per route."""
    start = time.perf_counter()
    response = await call_next(request)

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    get_metrics().record_api_request(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
        duration_seconds=time.perf_counter() - start,
    )
    return response


def create_app(context: DispatchContext | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        context: Prebuilt dispatch context. When omitted, the lifespan
            handler builds one from the settings at startup.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Webhook Dispatcher API",
        description="Delayed, deduplicated and retried webhook delivery over named queues",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.dispatch = context

    app.add_middleware(BaseHTTPMiddleware, dispatch=record_request_metrics)

    # Include routers
    app.include_router(health_router)
    app.include_router(enqueue_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
