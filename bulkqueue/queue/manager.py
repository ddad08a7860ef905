"""
Queue manager: the producer, status and stats entry points.

The manager is stateless beyond its store, policy and clock, so a single
instance is shared by every request.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from bulkqueue.constants import SPAN_ENQUEUE_JOB, QueueName
from bulkqueue.errors import InvalidPayload, InvalidQueue, JobAccessDenied, JobNotFound
from bulkqueue.observability.metrics import get_metrics
from bulkqueue.observability.tracing import create_span
from bulkqueue.queue.store import QueueStore
from bulkqueue.queue.ttl import TTLPolicy
from bulkqueue.types.job import (
    JobHandle,
    JobRecord,
    JobView,
    QueueStats,
    QueueStatsError,
    utcnow,
)

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Accepts jobs into named queues and answers status and stats reads.

    Features:
    - Payload validation before any record is created
    - Organization-scoped status reads
    - Per-queue stats with failures isolated per queue
    """

    def __init__(
        self,
        store: QueueStore,
        policy: TTLPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the manager.

        Args:
            store: The queue store.
            policy: Retention policy. Built from settings if not provided.
            clock: Source of the current naive UTC time.
        """
        self.store = store
        self.policy = policy or TTLPolicy.from_settings()
        self.clock = clock
        self._metrics = get_metrics()

    @staticmethod
    def resolve_queue(queue_name: str | QueueName) -> QueueName:
        """
        Resolve a queue name string to a registered queue.

        Raises:
            InvalidQueue: If the name is not a registered queue.
        """
        try:
            return QueueName(queue_name)
        except ValueError:
            raise InvalidQueue(str(queue_name)) from None

    async def enqueue(
        self,
        queue_name: str | QueueName,
        payload: Any,
        organization_id: str | None,
        request_metadata: dict[str, Any] | None = None,
    ) -> JobHandle:
        """
        Create a QUEUED job record.

        Args:
            queue_name: Target queue.
            payload: Non-empty list of records to process.
            organization_id: Owner of the job, the sole authorization key.
            request_metadata: Caller identity and request details.

        Returns:
            Handle of the new job.

        Raises:
            InvalidQueue: If the queue is not registered.
            InvalidPayload: If the payload is not a non-empty list or the
                organization is missing.
            StoreUnavailable: If the record could not be persisted.
        """
        queue = self.resolve_queue(queue_name)

        if not isinstance(payload, list) or not payload:
            raise InvalidPayload("Job data must be a non-empty array of records")
        if not organization_id:
            raise InvalidPayload("Organization ID is required")

        with create_span(SPAN_ENQUEUE_JOB, queue=queue.value, organization_id=organization_id):
            now = self.clock()
            record = JobRecord(
                id=str(uuid4()),
                queue_name=queue,
                organization_id=organization_id,
                payload=payload,
                request_metadata=dict(request_metadata or {}),
                created_at=now,
                ttl_expires_at=self.policy.initial_expiry(now),
            )
            await self.store.add(record)

        self._metrics.record_job_enqueued(queue.value)

        logger.info(
            "Job enqueued",
            extra={
                "job_id": record.id,
                "queue": queue.value,
                "organization_id": organization_id,
                "total_records": len(payload),
            },
        )

        return JobHandle(id=record.id, queue_name=queue)

    async def get_status(
        self,
        queue_name: str | QueueName,
        job_id: str,
        organization_id: str | None,
    ) -> JobView:
        """
        Read a job's state on behalf of an organization.

        Raises:
            InvalidQueue: If the queue is not registered.
            JobNotFound: If no record exists, including swept records.
            JobAccessDenied: If the job belongs to another organization.
        """
        queue = self.resolve_queue(queue_name)

        record = await self.store.get(queue, job_id)
        if record is None:
            raise JobNotFound(queue.value, job_id)

        if record.organization_id != organization_id:
            logger.warning(
                "Cross-organization status read denied",
                extra={"job_id": job_id, "queue": queue.value},
            )
            raise JobAccessDenied()

        return JobView(
            id=record.id,
            queue_name=record.queue_name,
            status=record.status,
            progress=record.progress,
            result=record.result,
            failed_reason=record.failed_reason,
            attempts_made=record.attempts_made,
            created_at=record.created_at,
            processed_at=record.processed_at,
            completed_at=record.completed_at,
            metadata=record.request_metadata or None,
            ttl=self.policy.describe_job(record, self.clock()),
        )

    async def get_queue_stats(self, queue_name: str | QueueName) -> QueueStats:
        """Point-in-time counts of one queue."""
        queue = self.resolve_queue(queue_name)
        stats = QueueStats.from_counts(await self.store.count_by_status(queue))
        self._metrics.update_queue_depth(queue.value, stats)
        return stats

    async def get_all_queue_stats(self) -> dict[str, QueueStats | QueueStatsError]:
        """
        Counts of every registered queue.

        A queue whose counts cannot be computed gets an error entry; the
        other queues are still reported.
        """
        stats: dict[str, QueueStats | QueueStatsError] = {}
        for queue in QueueName:
            try:
                stats[queue.value] = await self.get_queue_stats(queue)
            except Exception as e:
                logger.error(
                    "Failed to compute queue stats",
                    extra={"queue": queue.value, "error": str(e)},
                )
                stats[queue.value] = QueueStatsError(error=str(e))
        return stats
