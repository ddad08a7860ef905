"""
Job-related type definitions for internal use.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from bulkqueue.constants import JobStatus, QueueName

ProgressReporter = Callable[[int], Awaitable[None]]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the time base of every record."""
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass
class JobRecord:
    """
    The persisted unit of work and its state.

    Stores hand out copies; mutating a returned record never changes the
    stored one.
    """

    id: str
    queue_name: QueueName
    organization_id: str
    payload: list[Any]
    created_at: datetime
    ttl_expires_at: datetime
    request_metadata: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result: dict[str, Any] | None = None
    failed_reason: str | None = None
    attempts_made: int = 0
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None


@dataclass(frozen=True)
class JobHandle:
    """Handle returned to the producer on enqueue."""

    id: str
    queue_name: QueueName


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and the progress callback.
    """

    job_id: str
    queue_name: QueueName
    organization_id: str
    payload: list[Any]
    request_metadata: dict[str, Any]
    attempt: int
    max_attempts: int
    progress_reporter: ProgressReporter | None = None

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    async def report_progress(self, progress: int) -> None:
        """Forward a progress percentage to the job record."""
        if self.progress_reporter is not None:
            await self.progress_reporter(progress)


class CamelModel(BaseModel):
    """Base model serializing field names as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TTLInfo(CamelModel):
    """Retention details of a single job."""

    total_hours: float
    remaining_hours: int
    expires_at: datetime
    is_expired: bool


class JobView(CamelModel):
    """Read-only projection of a job returned by status reads."""

    id: str
    queue_name: QueueName
    status: JobStatus
    progress: int
    result: dict[str, Any] | None = None
    failed_reason: str | None = None
    attempts_made: int
    created_at: datetime
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    ttl: TTLInfo


class QueueStats(BaseModel):
    """Point-in-time job counts for one queue."""

    queued: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, counts: dict[JobStatus, int]) -> "QueueStats":
        """Build stats from a status -> count mapping."""
        values = {status.value: counts.get(status, 0) for status in JobStatus}
        return cls(**values, total=sum(values.values()))


class QueueStatsError(BaseModel):
    """Stats entry for a queue whose counts could not be computed."""

    error: str
