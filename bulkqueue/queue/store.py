"""
Queue store: durable keyed storage of job records, partitioned by queue.

Two implementations share one contract:
- MemoryQueueStore keeps records in process, guarded by an asyncio.Lock.
- SqlQueueStore persists records through SQLAlchemy (PostgreSQL in production).

Every mutation is scoped to a single record. Terminal and progress writes
are conditioned on the writer still owning the ACTIVE record, so a record
deleted or failed by the reaper mid-update is left untouched.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bulkqueue.config import Settings, get_settings
from bulkqueue.constants import JobStatus, QueueName
from bulkqueue.db.repository import JobRepository
from bulkqueue.errors import StoreUnavailable
from bulkqueue.types.job import JobRecord

logger = logging.getLogger(__name__)

TTLCalculator = Callable[[datetime, datetime], datetime]


class QueueStore(ABC):
    """Storage contract used by the manager, worker pool and reaper."""

    @abstractmethod
    async def add(self, record: JobRecord) -> None:
        """Persist a new QUEUED record."""

    @abstractmethod
    async def get(self, queue_name: QueueName, job_id: str) -> JobRecord | None:
        """Get a copy of a record, or None if it does not exist."""

    @abstractmethod
    async def claim_next(
        self,
        queue_name: QueueName,
        worker_id: str,
        now: datetime,
        lease_expires_at: datetime,
    ) -> JobRecord | None:
        """Atomically move the oldest QUEUED record to ACTIVE for one executor."""

    @abstractmethod
    async def update_progress(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        progress: int,
    ) -> bool:
        """Raise progress of an owned ACTIVE record."""

    @abstractmethod
    async def record_attempt(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        attempt: int,
    ) -> bool:
        """Record a retry attempt on an owned ACTIVE record."""

    @abstractmethod
    async def extend_lease(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        lease_expires_at: datetime,
    ) -> bool:
        """Extend the lease of an owned ACTIVE record."""

    @abstractmethod
    async def complete(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        result: dict[str, Any] | None,
        completed_at: datetime,
        ttl_expires_at: datetime,
    ) -> JobRecord | None:
        """Move an owned ACTIVE record to COMPLETED."""

    @abstractmethod
    async def fail(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        reason: str,
        completed_at: datetime,
        ttl_expires_at: datetime,
    ) -> JobRecord | None:
        """Move an owned ACTIVE record to FAILED."""

    @abstractmethod
    async def count_by_status(self, queue_name: QueueName) -> dict[JobStatus, int]:
        """Count records of one queue per status."""

    @abstractmethod
    async def delete_expired(
        self,
        now: datetime,
        hard_cap_cutoff: datetime,
    ) -> dict[QueueName, int]:
        """Delete records past their deadline or created at/before the cutoff."""

    @abstractmethod
    async def fail_stalled(
        self,
        now: datetime,
        reason: str,
        failed_ttl: TTLCalculator,
    ) -> list[JobRecord]:
        """Fail ACTIVE records whose lease expired before now."""

    async def ping(self) -> bool:
        """Check that the store is reachable."""
        await self.count_by_status(next(iter(QueueName)))
        return True

    async def close(self) -> None:
        """Release store resources."""


class MemoryQueueStore(QueueStore):
    """
    In-process queue store.

    A single asyncio.Lock serializes every operation, which makes the
    queued -> active compare-and-swap exclusive across executors. Each queue
    keeps a FIFO of pending ids alongside its records.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._records: dict[QueueName, dict[str, JobRecord]] = {q: {} for q in QueueName}
        self._pending: dict[QueueName, deque[str]] = {q: deque() for q in QueueName}

    def _owned_active(self, queue_name: QueueName, job_id: str, worker_id: str) -> JobRecord | None:
        record = self._records[queue_name].get(job_id)
        if record is None or record.status != JobStatus.ACTIVE or record.lease_owner != worker_id:
            return None
        return record

    async def add(self, record: JobRecord) -> None:
        async with self._lock:
            self._records[record.queue_name][record.id] = replace(record)
            self._pending[record.queue_name].append(record.id)

    async def get(self, queue_name: QueueName, job_id: str) -> JobRecord | None:
        async with self._lock:
            record = self._records[queue_name].get(job_id)
            return replace(record) if record is not None else None

    async def claim_next(
        self,
        queue_name: QueueName,
        worker_id: str,
        now: datetime,
        lease_expires_at: datetime,
    ) -> JobRecord | None:
        async with self._lock:
            pending = self._pending[queue_name]
            while pending:
                job_id = pending.popleft()
                record = self._records[queue_name].get(job_id)
                # Reaped while waiting
                if record is None or record.status != JobStatus.QUEUED:
                    continue
                record.status = JobStatus.ACTIVE
                record.processed_at = now
                record.attempts_made = 1
                record.lease_owner = worker_id
                record.lease_expires_at = lease_expires_at
                return replace(record)
            return None

    async def update_progress(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        progress: int,
    ) -> bool:
        async with self._lock:
            record = self._owned_active(queue_name, job_id, worker_id)
            if record is None or progress < record.progress:
                return False
            record.progress = progress
            return True

    async def record_attempt(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        attempt: int,
    ) -> bool:
        async with self._lock:
            record = self._owned_active(queue_name, job_id, worker_id)
            if record is None:
                return False
            record.attempts_made = attempt
            return True

    async def extend_lease(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        lease_expires_at: datetime,
    ) -> bool:
        async with self._lock:
            record = self._owned_active(queue_name, job_id, worker_id)
            if record is None:
                return False
            record.lease_expires_at = lease_expires_at
            return True

    async def complete(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        result: dict[str, Any] | None,
        completed_at: datetime,
        ttl_expires_at: datetime,
    ) -> JobRecord | None:
        async with self._lock:
            record = self._owned_active(queue_name, job_id, worker_id)
            if record is None:
                return None
            record.status = JobStatus.COMPLETED
            record.progress = 100
            record.result = result
            record.completed_at = completed_at
            record.ttl_expires_at = ttl_expires_at
            record.lease_owner = None
            record.lease_expires_at = None
            return replace(record)

    async def fail(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        reason: str,
        completed_at: datetime,
        ttl_expires_at: datetime,
    ) -> JobRecord | None:
        async with self._lock:
            record = self._owned_active(queue_name, job_id, worker_id)
            if record is None:
                return None
            record.status = JobStatus.FAILED
            record.failed_reason = reason
            record.completed_at = completed_at
            record.ttl_expires_at = ttl_expires_at
            record.lease_owner = None
            record.lease_expires_at = None
            return replace(record)

    async def count_by_status(self, queue_name: QueueName) -> dict[JobStatus, int]:
        async with self._lock:
            counts: dict[JobStatus, int] = {}
            for record in self._records[queue_name].values():
                counts[record.status] = counts.get(record.status, 0) + 1
            return counts

    async def delete_expired(
        self,
        now: datetime,
        hard_cap_cutoff: datetime,
    ) -> dict[QueueName, int]:
        removed: dict[QueueName, int] = {}
        async with self._lock:
            for queue_name, records in self._records.items():
                expired = [
                    job_id
                    for job_id, record in records.items()
                    if record.ttl_expires_at <= now or record.created_at <= hard_cap_cutoff
                ]
                for job_id in expired:
                    del records[job_id]
                if expired:
                    removed[queue_name] = len(expired)
        return removed

    async def fail_stalled(
        self,
        now: datetime,
        reason: str,
        failed_ttl: TTLCalculator,
    ) -> list[JobRecord]:
        failed: list[JobRecord] = []
        async with self._lock:
            for records in self._records.values():
                for record in records.values():
                    if (
                        record.status == JobStatus.ACTIVE
                        and record.lease_expires_at is not None
                        and record.lease_expires_at < now
                    ):
                        record.status = JobStatus.FAILED
                        record.failed_reason = reason
                        record.completed_at = now
                        record.ttl_expires_at = failed_ttl(record.created_at, now)
                        record.lease_owner = None
                        record.lease_expires_at = None
                        failed.append(replace(record))
        return failed


class SqlQueueStore(QueueStore):
    """
    Queue store backed by SQLAlchemy.

    Each operation runs in its own session and commits on success.
    Connection-level failures surface as StoreUnavailable.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing async sessions.
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def _repository(self) -> AsyncIterator[JobRepository]:
        try:
            async with self._session_factory() as session:
                try:
                    yield JobRepository(session)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("Queue store unavailable", extra={"error": str(e)})
            raise StoreUnavailable(f"Queue store unavailable: {e}") from e

    async def add(self, record: JobRecord) -> None:
        async with self._repository() as repo:
            await repo.add(record)

    async def get(self, queue_name: QueueName, job_id: str) -> JobRecord | None:
        async with self._repository() as repo:
            return await repo.get(queue_name, job_id)

    async def claim_next(
        self,
        queue_name: QueueName,
        worker_id: str,
        now: datetime,
        lease_expires_at: datetime,
    ) -> JobRecord | None:
        async with self._repository() as repo:
            return await repo.claim_next(queue_name, worker_id, now, lease_expires_at)

    async def update_progress(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        progress: int,
    ) -> bool:
        async with self._repository() as repo:
            return await repo.update_progress(queue_name, job_id, worker_id, progress)

    async def record_attempt(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        attempt: int,
    ) -> bool:
        async with self._repository() as repo:
            return await repo.record_attempt(queue_name, job_id, worker_id, attempt)

    async def extend_lease(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        lease_expires_at: datetime,
    ) -> bool:
        async with self._repository() as repo:
            return await repo.extend_lease(queue_name, job_id, worker_id, lease_expires_at)

    async def complete(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        result: dict[str, Any] | None,
        completed_at: datetime,
        ttl_expires_at: datetime,
    ) -> JobRecord | None:
        async with self._repository() as repo:
            return await repo.finish(
                queue_name,
                job_id,
                worker_id,
                {
                    "status": JobStatus.COMPLETED,
                    "progress": 100,
                    "result": result,
                    "completed_at": completed_at,
                    "ttl_expires_at": ttl_expires_at,
                },
            )

    async def fail(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        reason: str,
        completed_at: datetime,
        ttl_expires_at: datetime,
    ) -> JobRecord | None:
        async with self._repository() as repo:
            return await repo.finish(
                queue_name,
                job_id,
                worker_id,
                {
                    "status": JobStatus.FAILED,
                    "failed_reason": reason,
                    "completed_at": completed_at,
                    "ttl_expires_at": ttl_expires_at,
                },
            )

    async def count_by_status(self, queue_name: QueueName) -> dict[JobStatus, int]:
        async with self._repository() as repo:
            return await repo.count_by_status(queue_name)

    async def delete_expired(
        self,
        now: datetime,
        hard_cap_cutoff: datetime,
    ) -> dict[QueueName, int]:
        async with self._repository() as repo:
            return await repo.delete_expired(now, hard_cap_cutoff)

    async def fail_stalled(
        self,
        now: datetime,
        reason: str,
        failed_ttl: TTLCalculator,
    ) -> list[JobRecord]:
        async with self._repository() as repo:
            return await repo.fail_stalled(now, reason, failed_ttl)


def build_store(settings: Settings | None = None) -> QueueStore:
    """
    Create the queue store selected by configuration.

    Args:
        settings: Optional settings. Uses cached settings if not provided.

    Returns:
        QueueStore for the configured backend.
    """
    settings = settings or get_settings()
    if settings.queue_backend == "memory":
        return MemoryQueueStore()
    if settings.queue_backend == "database":
        from bulkqueue.db.connection import get_session_factory

        return SqlQueueStore(get_session_factory())
    raise ValueError(f"Unknown queue backend: {settings.queue_backend}")
