"""
Health check routes.
"""

from fastapi import APIRouter
from fastapi.responses import Response
from sqlalchemy import text

from hookrelay import __version__
from hookrelay.api.dependencies import Session
from hookrelay.db.models import utcnow
from hookrelay.observability.metrics import get_metrics
from hookrelay.types.api import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and broker store connection.",
)
async def health_check(session: Session) -> HealthResponse:
    """
    Perform a health check.

    Checks broker store connectivity and returns service status.
    """
    db_status = "healthy"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(session: Session) -> dict:
    """Kubernetes readiness probe endpoint."""
    try:
        await session.execute(text("SELECT 1"))
        return {"ready": True}
    except Exception:
        return {"ready": False}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
