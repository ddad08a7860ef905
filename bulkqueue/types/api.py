"""
API request and response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel

from bulkqueue.constants import JobStatus, QueueName
from bulkqueue.types.job import CamelModel, QueueStats, QueueStatsError


class EnqueueResponse(CamelModel):
    """Response body after queueing a bulk upload."""

    job_id: str
    queue_name: QueueName
    status: JobStatus = JobStatus.QUEUED
    total_records: int
    estimated_processing_time: str
    status_check_url: str
    message: str


class QueueStatsResponse(CamelModel):
    """Statistics for one queue."""

    queue_name: QueueName
    statistics: QueueStats
    timestamp: datetime


class AllQueueStatsResponse(CamelModel):
    """Statistics for every queue, keyed by queue name."""

    queues: dict[str, QueueStatsError | QueueStats]
    timestamp: datetime


class TTLSummary(CamelModel):
    """Retention constants summarized in their natural units."""

    job_data_ttl_days: float
    completed_job_cleanup_minutes: float
    failed_job_cleanup_minutes: float


class CleanupResponse(CamelModel):
    """Response body after a manual cleanup."""

    cleaned_jobs: int
    triggered_by: str | None
    triggered_at: datetime
    ttl_config: TTLSummary
    message: str = "Manual cleanup completed successfully"


class DurationUnits(BaseModel):
    """A duration expressed in several units."""

    milliseconds: float
    seconds: float
    minutes: float
    hours: float
    days: float


class TTLConfiguration(CamelModel):
    """All retention durations."""

    job_data_ttl: DurationUnits
    completed_job_cleanup: DurationUnits
    failed_job_cleanup: DurationUnits
    cleanup_interval: DurationUnits


class TTLConfigResponse(CamelModel):
    """Retention configuration, enabled features and descriptions."""

    ttl_configuration: TTLConfiguration
    features: dict[str, bool]
    description: dict[str, str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
