"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class QueueName(StrEnum):
    """Closed set of queues. Each queue has exactly one handler."""

    BULK_UPLOAD_MECHANICS = "bulk-upload-mechanics"
    BULK_UPLOAD_SERVICE_PROVIDERS = "bulk-upload-service-providers"
    BULK_UPLOAD_POLICIES = "bulk-upload-policies"


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - QUEUED -> ACTIVE (claimed by an executor)
    - ACTIVE -> COMPLETED (handler succeeded)
    - ACTIVE -> FAILED (handler failed, timed out, or executor stalled)

    Terminal states are sinks; records leave them only by deletion.
    """

    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# Upload entity per queue: (URL segment, body key, display label)
QUEUE_ENTITIES: dict[QueueName, tuple[str, str, str]] = {
    QueueName.BULK_UPLOAD_MECHANICS: ("mechanics", "mechanics", "Mechanics"),
    QueueName.BULK_UPLOAD_SERVICE_PROVIDERS: (
        "service-providers",
        "serviceProviders",
        "Service providers",
    ),
    QueueName.BULK_UPLOAD_POLICIES: ("policies", "policies", "Policies"),
}

# Advisory throughput used for estimated processing time
RECORDS_PER_MINUTE: dict[QueueName, int] = {
    QueueName.BULK_UPLOAD_MECHANICS: 100,
    QueueName.BULK_UPLOAD_SERVICE_PROVIDERS: 50,
    QueueName.BULK_UPLOAD_POLICIES: 75,
}

# Roles allowed to trigger a manual cleanup
ADMIN_ROLES = frozenset({"admin", "super_admin", "sub_admin"})

STALLED_JOB_REASON = "Job stalled: executor lease expired"

# API constants
API_V1_PREFIX = "/api/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "bulkqueue_jobs"
METRIC_JOBS_ENQUEUED = "bulkqueue_jobs_enqueued_total"
METRIC_JOBS_FINISHED = "bulkqueue_jobs_finished_total"
METRIC_JOB_DURATION = "bulkqueue_job_duration_seconds"
METRIC_JOBS_CLAIMED = "bulkqueue_jobs_claimed_total"
METRIC_JOBS_STALLED = "bulkqueue_jobs_stalled_total"
METRIC_JOBS_REAPED = "bulkqueue_jobs_reaped_total"
METRIC_API_REQUESTS = "bulkqueue_api_requests_total"
METRIC_API_LATENCY = "bulkqueue_api_request_latency_seconds"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_SWEEP_JOBS = "sweep_expired_jobs"
