"""
Queue error hierarchy.

Each error carries the HTTP status and a stable code so the API layer can
translate it without inspecting the message.
"""

from typing import Any


class QueueError(Exception):
    """Base exception for all queue errors."""

    status_code: int = 500
    code: str = "QUEUE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {"error": self.code, "detail": self.message}


class InvalidQueue(QueueError):
    """Raised when a queue name is not one of the registered queues."""

    status_code = 400
    code = "INVALID_QUEUE"

    def __init__(self, queue_name: str):
        super().__init__(
            f"Invalid queue name: {queue_name}",
            details={"queue_name": queue_name},
        )


class InvalidPayload(QueueError):
    """Raised when job data is empty or malformed. No record is created."""

    status_code = 400
    code = "INVALID_PAYLOAD"


class JobNotFound(QueueError):
    """Raised when no record exists for (queue, id), including reaped jobs."""

    status_code = 404
    code = "JOB_NOT_FOUND"

    def __init__(self, queue_name: str, job_id: str):
        super().__init__("Job not found", details={"queue_name": queue_name, "job_id": job_id})


class JobAccessDenied(QueueError):
    """Raised when the caller's organization does not own the job."""

    status_code = 403
    code = "FORBIDDEN"

    def __init__(self):
        super().__init__("Access denied: Job does not belong to your organization")


class StoreUnavailable(QueueError):
    """Raised when the queue store cannot be reached. Safe to retry."""

    status_code = 500
    code = "STORE_UNAVAILABLE"
