"""
TTL reaper for job records.

The reaper deletes records whose retention deadline or hard cap has passed,
on a schedule and on demand. It also fails active jobs whose executor lease
expired, so a crashed executor never leaves a job active forever.
"""

import asyncio
import logging
import signal
from collections import Counter
from collections.abc import Callable
from datetime import datetime

from bulkqueue.config import get_settings
from bulkqueue.constants import SPAN_SWEEP_JOBS, STALLED_JOB_REASON, JobStatus
from bulkqueue.db import close_db, init_db
from bulkqueue.observability.logging import setup_logging
from bulkqueue.observability.metrics import get_metrics
from bulkqueue.observability.tracing import create_span, setup_tracing
from bulkqueue.queue.store import QueueStore, build_store
from bulkqueue.queue.ttl import TTLPolicy
from bulkqueue.types.job import utcnow

logger = logging.getLogger(__name__)


class Reaper:
    """
    Reclaims storage of stale job records.

    Runs two loops while started:
    1. Sweep: every sweep interval, delete expired records
    2. Stall check: fail ACTIVE jobs whose lease expired
    """

    def __init__(
        self,
        store: QueueStore,
        policy: TTLPolicy | None = None,
        interval_seconds: float | None = None,
        stalled_check_interval_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the reaper.

        Args:
            store: The queue store.
            policy: Retention policy. Built from settings if not provided.
            interval_seconds: Seconds between scheduled sweeps.
            stalled_check_interval_seconds: Seconds between stall checks.
            clock: Source of the current naive UTC time.
        """
        settings = get_settings()
        self.store = store
        self.policy = policy or TTLPolicy.from_settings(settings)
        self.interval = interval_seconds or self.policy.sweep_interval.total_seconds()
        self.stalled_check_interval = (
            stalled_check_interval_seconds or settings.worker_stalled_check_interval_seconds
        )
        self.clock = clock

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep and stall-check loops. Returns immediately."""
        if self._running:
            return

        logger.info(
            "Reaper starting",
            extra={
                "interval": self.interval,
                "stalled_check_interval": self.stalled_check_interval,
            },
        )
        self._running = True
        self._tasks = [
            asyncio.create_task(self._sweep_loop()),
            asyncio.create_task(self._stall_loop()),
        ]

    async def stop(self) -> None:
        """Stop both loops. No sweep runs after this returns."""
        if not self._running:
            return

        logger.info("Reaper stopping")
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Reaper stopped")

    async def run_once(self) -> int:
        """
        Sweep expired records once.

        Removes every record whose ttl_expires_at has passed or that was
        created more than the job data TTL ago.

        Returns:
            Number of records removed.
        """
        now = self.clock()
        with create_span(SPAN_SWEEP_JOBS):
            removed = await self.store.delete_expired(now, self.policy.hard_cap_cutoff(now))

        total = sum(removed.values())
        for queue, count in removed.items():
            self._metrics.record_jobs_reaped(queue.value, count)

        if total > 0:
            logger.info(
                "Removed expired jobs",
                extra={"removed": total, "queues": {q.value: c for q, c in removed.items()}},
            )
        return total

    async def fail_stalled_jobs(self) -> int:
        """
        Fail ACTIVE jobs whose executor lease expired.

        Returns:
            Number of jobs failed.
        """
        failed = await self.store.fail_stalled(
            self.clock(),
            STALLED_JOB_REASON,
            lambda created_at, completed_at: self.policy.terminal_expiry(
                JobStatus.FAILED, created_at, completed_at
            ),
        )

        for queue, count in Counter(record.queue_name for record in failed).items():
            self._metrics.record_jobs_stalled(queue.value, count)

        for record in failed:
            logger.warning(
                "Failed stalled job",
                extra={"job_id": record.id, "queue": record.queue_name.value},
            )
        return len(failed)

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("Error in reaper sweep", extra={"error": str(e)})

    async def _stall_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.stalled_check_interval)
            try:
                await self.fail_stalled_jobs()
            except Exception as e:
                logger.exception("Error in stalled job check", extra={"error": str(e)})


async def run_async() -> None:
    """Run a standalone reaper against the configured store."""
    setup_logging()
    setup_tracing()
    settings = get_settings()
    if settings.queue_backend == "database":
        await init_db()

    reaper = Reaper(build_store(settings))
    stop = asyncio.Event()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    await reaper.start()
    try:
        await stop.wait()
    finally:
        await reaper.stop()
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
