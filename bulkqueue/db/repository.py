"""
Job repository for database operations.
Implements the core data access patterns for job records.
"""

import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bulkqueue.constants import JobStatus, QueueName
from bulkqueue.db.models import JobRecordModel
from bulkqueue.types.job import JobRecord

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job record database operations.

    Implements atomic operations for:
    - FIFO claim with a conditional queued -> active update
    - Progress, lease and terminal transitions scoped to the lease owner
    - TTL sweeps and stalled job detection
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    def _owned_active(self, queue_name: QueueName, job_id: str, worker_id: str) -> Any:
        return and_(
            JobRecordModel.queue_name == queue_name,
            JobRecordModel.id == job_id,
            JobRecordModel.status == JobStatus.ACTIVE,
            JobRecordModel.lease_owner == worker_id,
        )

    async def add(self, record: JobRecord) -> None:
        """Insert a new record."""
        self._session.add(JobRecordModel.from_record(record))
        await self._session.flush()

    async def get(self, queue_name: QueueName, job_id: str) -> JobRecord | None:
        """
        Get a record by queue and ID.

        Args:
            queue_name: The queue the job belongs to.
            job_id: The job identifier.

        Returns:
            The record or None if not found.
        """
        stmt = (
            select(JobRecordModel)
            .where(and_(JobRecordModel.queue_name == queue_name, JobRecordModel.id == job_id))
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return row.to_record() if row is not None else None

    async def claim_next(
        self,
        queue_name: QueueName,
        worker_id: str,
        now: datetime,
        lease_expires_at: datetime,
    ) -> JobRecord | None:
        """
        Claim the oldest queued record of a queue.

        The candidate is selected first, then moved to ACTIVE with an update
        conditioned on status still being QUEUED. Only the executor whose
        update matched one row owns the job. On PostgreSQL the candidate
        select also skips rows locked by concurrent claimers. A lost race moves on
        to the next candidate until none is left queued.

        Args:
            queue_name: The queue to claim from.
            worker_id: The claiming executor.
            now: Claim time, stamped as processed_at.
            lease_expires_at: Initial lease deadline.

        Returns:
            The claimed record or None if the queue is empty.
        """
        is_postgres = self._session.get_bind().dialect.name == "postgresql"

        while True:
            candidate = (
                select(JobRecordModel.id)
                .where(
                    and_(
                        JobRecordModel.queue_name == queue_name,
                        JobRecordModel.status == JobStatus.QUEUED,
                    )
                )
                .order_by(JobRecordModel.created_at.asc(), JobRecordModel.id.asc())
                .limit(1)
            )
            if is_postgres:
                candidate = candidate.with_for_update(skip_locked=True)

            job_id = (await self._session.execute(candidate)).scalar_one_or_none()
            if job_id is None:
                return None

            stmt = (
                update(JobRecordModel)
                .execution_options(synchronize_session=False)
                .where(
                    and_(
                        JobRecordModel.queue_name == queue_name,
                        JobRecordModel.id == job_id,
                        JobRecordModel.status == JobStatus.QUEUED,
                    )
                )
                .values(
                    status=JobStatus.ACTIVE,
                    processed_at=now,
                    attempts_made=1,
                    lease_owner=worker_id,
                    lease_expires_at=lease_expires_at,
                )
            )
            result = await self._session.execute(stmt)
            if result.rowcount == 1:
                logger.info(
                    "Claimed job",
                    extra={"job_id": job_id, "queue": str(queue_name), "worker_id": worker_id},
                )
                return await self.get(queue_name, job_id)

    async def update_progress(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        progress: int,
    ) -> bool:
        """Raise progress of an owned active job. Never lowers it."""
        stmt = (
            update(JobRecordModel)
            .execution_options(synchronize_session=False)
            .where(
                and_(
                    self._owned_active(queue_name, job_id, worker_id),
                    JobRecordModel.progress <= progress,
                )
            )
            .values(progress=progress)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def record_attempt(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        attempt: int,
    ) -> bool:
        """Record the start of a retry attempt on an owned active job."""
        stmt = (
            update(JobRecordModel)
            .execution_options(synchronize_session=False)
            .where(self._owned_active(queue_name, job_id, worker_id))
            .values(attempts_made=attempt)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def extend_lease(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        lease_expires_at: datetime,
    ) -> bool:
        """
        Extend the lease on an owned active job (heartbeat).

        Returns:
            True if lease was extended, False otherwise.
        """
        stmt = (
            update(JobRecordModel)
            .execution_options(synchronize_session=False)
            .where(self._owned_active(queue_name, job_id, worker_id))
            .values(lease_expires_at=lease_expires_at)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def finish(
        self,
        queue_name: QueueName,
        job_id: str,
        worker_id: str,
        values: dict[str, Any],
    ) -> JobRecord | None:
        """
        Apply a terminal transition to an owned active job.

        Args:
            queue_name: The queue the job belongs to.
            job_id: The job identifier.
            worker_id: The executor that owns the lease.
            values: Column values of the terminal state.

        Returns:
            Updated record or None if the job vanished or is no longer owned.
        """
        stmt = (
            update(JobRecordModel)
            .execution_options(synchronize_session=False)
            .where(self._owned_active(queue_name, job_id, worker_id))
            .values(lease_owner=None, lease_expires_at=None, **values)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get(queue_name, job_id)

    async def count_by_status(self, queue_name: QueueName) -> dict[JobStatus, int]:
        """
        Get record counts by status for one queue.

        Returns:
            Dictionary of status -> count.
        """
        stmt = (
            select(JobRecordModel.status, func.count())
            .where(JobRecordModel.queue_name == queue_name)
            .group_by(JobRecordModel.status)
        )
        result = await self._session.execute(stmt)
        return {JobStatus(status): count for status, count in result.all()}

    async def delete_expired(
        self,
        now: datetime,
        hard_cap_cutoff: datetime,
    ) -> dict[QueueName, int]:
        """
        Delete records whose retention deadline or hard cap has passed.

        One DELETE statement removes every expired row. Dialects without
        DELETE ... RETURNING count the rows per queue first, in the same
        transaction.

        Returns:
            Number of deleted records per queue.
        """
        expired = or_(
            JobRecordModel.ttl_expires_at <= now,
            JobRecordModel.created_at <= hard_cap_cutoff,
        )
        stmt = delete(JobRecordModel).where(expired).execution_options(synchronize_session=False)

        if self._session.get_bind().dialect.delete_returning:
            result = await self._session.execute(stmt.returning(JobRecordModel.queue_name))
            removed = Counter(QueueName(queue_name) for queue_name in result.scalars())
            return dict(removed)

        counts = await self._session.execute(
            select(JobRecordModel.queue_name, func.count())
            .where(expired)
            .group_by(JobRecordModel.queue_name)
        )
        removed_by_queue = {QueueName(queue_name): count for queue_name, count in counts.all()}
        await self._session.execute(stmt)
        return removed_by_queue

    async def fail_stalled(
        self,
        now: datetime,
        reason: str,
        failed_ttl: Callable[[datetime, datetime], datetime],
    ) -> list[JobRecord]:
        """
        Fail active jobs whose lease expired.

        Args:
            now: Current time.
            reason: Failure reason stored on each stalled job.
            failed_ttl: Callable (created_at, completed_at) -> ttl_expires_at.

        Returns:
            The failed records.
        """
        stmt = select(JobRecordModel).where(
            and_(
                JobRecordModel.status == JobStatus.ACTIVE,
                JobRecordModel.lease_expires_at < now,
            )
        )
        stalled = (await self._session.execute(stmt)).scalars().all()

        failed: list[JobRecord] = []
        for row in stalled:
            result = await self._session.execute(
                update(JobRecordModel)
                .execution_options(synchronize_session=False)
                .where(
                    and_(
                        JobRecordModel.queue_name == row.queue_name,
                        JobRecordModel.id == row.id,
                        JobRecordModel.status == JobStatus.ACTIVE,
                        JobRecordModel.lease_expires_at < now,
                    )
                )
                .values(
                    status=JobStatus.FAILED,
                    failed_reason=reason,
                    completed_at=now,
                    ttl_expires_at=failed_ttl(row.created_at, now),
                    lease_owner=None,
                    lease_expires_at=None,
                )
            )
            if result.rowcount:
                record = await self.get(QueueName(row.queue_name), row.id)
                if record is not None:
                    failed.append(record)

        return failed
