"""
API routes module.
"""

from bulkqueue.api.routes.bulk_upload import router as bulk_upload_router
from bulkqueue.api.routes.health import router as health_router
from bulkqueue.api.routes.jobs import router as jobs_router
from bulkqueue.api.routes.queues import router as queues_router

__all__ = ["bulk_upload_router", "jobs_router", "queues_router", "health_router"]
