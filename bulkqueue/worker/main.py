"""
Worker pool for executing jobs.

The pool runs a fixed number of executors per queue. Each executor claims
the oldest queued job of its queue, runs the queue's handler with retries,
and records the terminal state.
"""

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from bulkqueue.config import get_settings
from bulkqueue.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, JobStatus, QueueName
from bulkqueue.db import close_db, init_db
from bulkqueue.errors import StoreUnavailable
from bulkqueue.observability.logging import job_log_context, setup_logging
from bulkqueue.observability.metrics import get_metrics
from bulkqueue.observability.tracing import create_span, setup_tracing
from bulkqueue.queue.store import QueueStore, build_store
from bulkqueue.queue.ttl import TTLPolicy
from bulkqueue.types.job import JobContext, JobRecord, JobResult, utcnow
from bulkqueue.worker.handlers import JobHandler, execute_job, get_handler

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Pool of job executors.

    Features:
    - Exclusive FIFO claim per queue through the store
    - Retries in place with exponential backoff; the job stays active
    - Per-attempt execution deadline
    - Heartbeat to extend leases of in-flight jobs
    - Graceful stop: executors finish their current job, then exit
    """

    def __init__(
        self,
        store: QueueStore,
        handlers: dict[QueueName, JobHandler] | None = None,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        lease_seconds: float | None = None,
        heartbeat_interval: float | None = None,
        job_timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        policy: TTLPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        worker_id: str | None = None,
    ):
        """
        Initialize the pool. Unset arguments fall back to settings.

        Args:
            store: The queue store.
            handlers: Handler per queue. Defaults to the registered handlers
                of every queue.
            concurrency: Executors per queue.
            poll_interval: Seconds an idle executor waits before polling again.
            lease_seconds: Lease granted on claim and on each heartbeat.
            heartbeat_interval: Seconds between lease extensions.
            job_timeout: Deadline of a single attempt in seconds.
            max_attempts: Attempts before a job fails.
            backoff_seconds: Base delay between attempts, doubled each retry.
            policy: Retention policy for terminal records.
            clock: Source of the current naive UTC time.
            worker_id: Pool identifier. Defaults to hostname + PID.
        """
        settings = get_settings()

        if handlers is None:
            handlers = {}
            for queue in QueueName:
                handler = get_handler(queue)
                if handler is not None:
                    handlers[queue] = handler

        self.store = store
        self.handlers = handlers
        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.concurrency = concurrency or settings.worker_concurrency
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        )
        self.lease_duration = timedelta(
            seconds=lease_seconds or settings.worker_lease_duration_seconds
        )
        self.heartbeat_interval = heartbeat_interval or settings.worker_heartbeat_interval_seconds
        self.job_timeout = job_timeout or settings.job_timeout_seconds
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.job_backoff_seconds
        )
        self.policy = policy or TTLPolicy.from_settings(settings)
        self.clock = clock

        self._running = False
        self._stop_event = asyncio.Event()
        self._executors: list[asyncio.Task] = []
        self._heartbeat_task: asyncio.Task | None = None
        # (queue, job id) -> executor id holding the lease
        self._in_flight: dict[tuple[QueueName, str], str] = {}
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Spawn the executors and the heartbeat. Returns immediately."""
        if self._running:
            return

        logger.info(
            "Worker pool starting",
            extra={
                "worker_id": self.worker_id,
                "queues": [q.value for q in self.handlers],
                "concurrency": self.concurrency,
            },
        )

        self._running = True
        self._stop_event.clear()

        for queue in self.handlers:
            for index in range(self.concurrency):
                executor_id = f"{self.worker_id}:{queue.value}:{index}"
                self._executors.append(
                    asyncio.create_task(self._executor_loop(queue, executor_id))
                )

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop(self) -> None:
        """Stop the pool gracefully, waiting for in-flight jobs."""
        if not self._running:
            return

        logger.info(
            "Worker pool stopping",
            extra={"worker_id": self.worker_id, "in_flight": len(self._in_flight)},
        )
        self._running = False
        self._stop_event.set()

        await asyncio.gather(*self._executors, return_exceptions=True)
        self._executors = []

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        logger.info("Worker pool stopped", extra={"worker_id": self.worker_id})

    async def run_once(self, queue_name: QueueName) -> bool:
        """
        Claim and process a single job of a queue.

        Returns:
            True if a job was processed, False if the queue was empty.
        """
        return await self._process_next(queue_name, f"{self.worker_id}:{queue_name.value}:manual")

    async def drain(self, queue_name: QueueName) -> int:
        """Process jobs of a queue until it has none queued. Returns the count."""
        processed = 0
        while await self.run_once(queue_name):
            processed += 1
        return processed

    async def _executor_loop(self, queue_name: QueueName, executor_id: str) -> None:
        while self._running:
            try:
                processed = await self._process_next(queue_name, executor_id)
            except Exception as e:
                logger.exception(
                    "Error in executor loop",
                    extra={"executor_id": executor_id, "error": str(e)},
                )
                processed = False

            if not processed and self._running:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except TimeoutError:
                    pass

    async def _process_next(self, queue_name: QueueName, executor_id: str) -> bool:
        now = self.clock()
        with create_span(SPAN_CLAIM_JOB, queue=queue_name.value, executor_id=executor_id):
            record = await self.store.claim_next(
                queue_name, executor_id, now, now + self.lease_duration
            )

        if record is None:
            return False

        self._metrics.record_job_claimed(queue_name.value)
        self._in_flight[(queue_name, record.id)] = executor_id
        try:
            with job_log_context(record.id, queue_name.value, executor_id=executor_id):
                await self._execute(record, executor_id)
        finally:
            self._in_flight.pop((queue_name, record.id), None)
        return True

    def _progress_reporter(self, record: JobRecord, executor_id: str):
        async def report(progress: int) -> None:
            progress = max(0, min(100, int(progress)))
            try:
                updated = await self.store.update_progress(
                    record.queue_name, record.id, executor_id, progress
                )
            except StoreUnavailable as e:
                logger.warning(
                    "Progress update failed",
                    extra={"job_id": record.id, "error": str(e)},
                )
                return
            if not updated:
                logger.debug(
                    "Progress update ignored",
                    extra={"job_id": record.id, "progress": progress},
                )

        return report

    async def _execute(self, record: JobRecord, executor_id: str) -> None:
        """
        Run a claimed job to a terminal state.

        Attempts are retried in place while attempts remain. If the record
        vanishes or is failed by the reaper meanwhile, the terminal update
        matches nothing and is logged.
        """
        start_time = time.monotonic()
        queue = record.queue_name
        handler = self.handlers[queue]
        reporter = self._progress_reporter(record, executor_id)

        attempt = record.attempts_made or 1
        while True:
            context = JobContext(
                job_id=record.id,
                queue_name=queue,
                organization_id=record.organization_id,
                payload=record.payload,
                request_metadata=record.request_metadata,
                attempt=attempt,
                max_attempts=self.max_attempts,
                progress_reporter=reporter,
            )

            logger.info(
                "Executing job",
                extra={"job_id": record.id, "queue": queue.value, "attempt": attempt},
            )

            with create_span(SPAN_EXECUTE_JOB, job_id=record.id, queue=queue.value, attempt=attempt):
                result = await execute_job(context, handler, timeout=self.job_timeout)

            if result.success or context.is_last_attempt:
                break

            delay = self.backoff_seconds * 2 ** (attempt - 1)
            logger.warning(
                "Job attempt failed, retrying",
                extra={
                    "job_id": record.id,
                    "attempt": attempt,
                    "error": result.error,
                    "retry_in": delay,
                },
            )
            await asyncio.sleep(delay)

            attempt += 1
            if not await self.store.record_attempt(queue, record.id, executor_id, attempt):
                logger.info(
                    "Job no longer owned, abandoning retries",
                    extra={"job_id": record.id, "queue": queue.value},
                )
                return

        await self._finish(record, executor_id, result, time.monotonic() - start_time)

    async def _finish(
        self,
        record: JobRecord,
        executor_id: str,
        result: JobResult,
        duration: float,
    ) -> None:
        completed_at = self.clock()
        queue = record.queue_name

        if result.success:
            status = JobStatus.COMPLETED
            updated = await self.store.complete(
                queue,
                record.id,
                executor_id,
                result.output,
                completed_at,
                self.policy.terminal_expiry(status, record.created_at, completed_at),
            )
        else:
            status = JobStatus.FAILED
            updated = await self.store.fail(
                queue,
                record.id,
                executor_id,
                result.error or "Unknown error",
                completed_at,
                self.policy.terminal_expiry(status, record.created_at, completed_at),
            )

        if updated is None:
            logger.info(
                "Job vanished before its terminal update",
                extra={"job_id": record.id, "queue": queue.value, "status": status.value},
            )
            return

        self._metrics.record_job_finished(queue.value, status.value, duration)

        if result.success:
            logger.info(
                "Job completed successfully",
                extra={"job_id": record.id, "queue": queue.value, "duration": f"{duration:.2f}s"},
            )
        else:
            logger.warning(
                "Job failed",
                extra={
                    "job_id": record.id,
                    "queue": queue.value,
                    "error": result.error,
                    "attempts": updated.attempts_made,
                },
            )

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on in-flight jobs.

        This keeps the reaper from failing jobs that are still executing.
        """
        while self._running:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                lease_expires_at = self.clock() + self.lease_duration
                for (queue, job_id), executor_id in list(self._in_flight.items()):
                    extended = await self.store.extend_lease(
                        queue, job_id, executor_id, lease_expires_at
                    )
                    if extended:
                        logger.debug("Extended lease", extra={"job_id": job_id})

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Error in heartbeat loop", extra={"error": str(e)})


async def run_async() -> None:
    """Run a standalone worker pool against the configured store."""
    setup_logging()
    setup_tracing()
    settings = get_settings()
    if settings.queue_backend == "database":
        await init_db()

    pool = WorkerPool(build_store(settings))
    stop = asyncio.Event()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    await pool.start()
    try:
        await stop.wait()
    finally:
        await pool.stop()
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
