"""
FastAPI application entry point.
"""

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from bulkqueue import __version__
from bulkqueue.api.routes import bulk_upload_router, health_router, jobs_router, queues_router
from bulkqueue.config import get_settings
from bulkqueue.db import close_db, get_engine, init_db
from bulkqueue.errors import QueueError
from bulkqueue.observability.logging import setup_logging
from bulkqueue.observability.metrics import get_metrics, setup_metrics
from bulkqueue.observability.tracing import instrument_fastapi, instrument_sqlalchemy, setup_tracing
from bulkqueue.queue.manager import QueueManager
from bulkqueue.queue.store import QueueStore, SqlQueueStore, build_store
from bulkqueue.queue.ttl import TTLPolicy
from bulkqueue.reaper.main import Reaper
from bulkqueue.worker.main import WorkerPool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Starts the embedded worker pool and reaper on startup and stops them,
    in reverse order, on shutdown.
    """
    # Startup
    setup_logging()
    setup_metrics()
    setup_tracing()

    store = app.state.queue_manager.store
    if isinstance(store, SqlQueueStore):
        await init_db()
        instrument_sqlalchemy(get_engine())

    if app.state.embedded_workers:
        await app.state.pool.start()
        await app.state.reaper.start()

    logger.info("Application started", extra={"embedded_workers": app.state.embedded_workers})

    yield

    # Shutdown
    await app.state.reaper.stop()
    await app.state.pool.stop()
    await store.close()
    await close_db()
    logger.info("Application shutdown")


async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    """Translate queue errors to their HTTP status and {error, detail} body."""
    if exc.status_code >= 500:
        logger.error("Request failed", extra={"path": request.url.path, "error": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def metrics_middleware(request: Request, call_next: Callable):
    """Record request count and latency per route template."""
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


def create_app(
    store: QueueStore | None = None,
    policy: TTLPolicy | None = None,
    pool: WorkerPool | None = None,
    reaper: Reaper | None = None,
    embedded_workers: bool | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        store: Queue store. Defaults to the configured backend.
        policy: Retention policy. Defaults to settings.
        pool: Worker pool run inside the API process.
        reaper: TTL reaper run inside the API process.
        embedded_workers: Start the pool and reaper with the application.
            Defaults to EMBEDDED_WORKERS.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = get_settings()
    store = store or build_store(settings)
    policy = policy or TTLPolicy.from_settings(settings)

    app = FastAPI(
        title="Bulk Upload Queue API",
        description="Background job queue for bulk record uploads with TTL-governed job retention",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.queue_manager = QueueManager(store, policy)
    app.state.pool = pool or WorkerPool(store, policy=policy)
    app.state.reaper = reaper or Reaper(store, policy=policy)
    app.state.embedded_workers = (
        settings.embedded_workers if embedded_workers is None else embedded_workers
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(BaseHTTPMiddleware, dispatch=metrics_middleware)

    app.add_exception_handler(QueueError, queue_error_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(bulk_upload_router)
    app.include_router(jobs_router)
    app.include_router(queues_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "bulkqueue.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
