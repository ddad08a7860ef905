"""
Type definitions for the bulk upload queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from bulkqueue.types.api import (
    AllQueueStatsResponse,
    CleanupResponse,
    EnqueueResponse,
    ErrorResponse,
    HealthResponse,
    QueueStatsResponse,
    TTLConfigResponse,
)
from bulkqueue.types.job import (
    JobContext,
    JobHandle,
    JobRecord,
    JobResult,
    JobView,
    QueueStats,
    QueueStatsError,
    TTLInfo,
    utcnow,
)

__all__ = [
    # API types
    "EnqueueResponse",
    "QueueStatsResponse",
    "AllQueueStatsResponse",
    "CleanupResponse",
    "TTLConfigResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "JobRecord",
    "JobHandle",
    "JobResult",
    "JobContext",
    "JobView",
    "TTLInfo",
    "QueueStats",
    "QueueStatsError",
    "utcnow",
]
