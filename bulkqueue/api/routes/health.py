"""
Health check routes.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import Response

from bulkqueue import __version__
from bulkqueue.api.dependencies import Manager
from bulkqueue.observability.metrics import get_metrics
from bulkqueue.types.api import HealthResponse
from bulkqueue.types.job import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _store_healthy(manager) -> bool:
    try:
        return await manager.store.ping()
    except Exception as e:
        logger.warning("Queue store health check failed", extra={"error": str(e)})
        return False


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and queue store.",
)
async def health_check(manager: Manager) -> HealthResponse:
    """
    Perform a health check.

    Checks queue store connectivity and returns service status.
    """
    store_healthy = await _store_healthy(manager)

    return HealthResponse(
        status="healthy" if store_healthy else "degraded",
        version=__version__,
        store="healthy" if store_healthy else "unhealthy",
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(manager: Manager) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _store_healthy(manager)}


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
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
