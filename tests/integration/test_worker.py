"""
Integration tests for the worker pool and the reaper.
"""

import asyncio
from datetime import timedelta

import pytest

from bulkqueue.constants import STALLED_JOB_REASON, JobStatus, QueueName
from bulkqueue.errors import JobNotFound
from bulkqueue.queue.manager import QueueManager
from bulkqueue.queue.store import MemoryQueueStore
from bulkqueue.reaper.main import Reaper
from bulkqueue.types.job import JobContext, JobResult

MECHANICS = QueueName.BULK_UPLOAD_MECHANICS


def status_is(manager: QueueManager, job_id: str, status: JobStatus):
    async def predicate() -> bool:
        view = await manager.get_status(MECHANICS, job_id, "org-a")
        return view.status == status

    return predicate


class TestWorkerPool:
    """Integration tests for job execution."""

    @pytest.mark.asyncio
    async def test_job_completes(self, manager, make_pool, wait_until, clock, sample_records):
        """Test a job runs to completion with full progress and a result."""

        async def handler(context: JobContext) -> JobResult:
            await context.report_progress(50)
            return JobResult(success=True, output={"uploaded": len(context.payload)})

        pool = make_pool({MECHANICS: handler})
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")

        await pool.start()
        await wait_until(status_is(manager, handle.id, JobStatus.COMPLETED))

        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert view.progress == 100
        assert view.result == {"uploaded": 3}
        assert view.failed_reason is None
        assert view.attempts_made == 1
        assert view.processed_at == clock.now
        assert view.completed_at == clock.now
        assert view.ttl.expires_at == clock.now + timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_progress_visible_while_active(self, manager, make_pool, wait_until, sample_records):
        """Test reported progress is readable before the job finishes."""
        release = asyncio.Event()

        async def handler(context: JobContext) -> JobResult:
            await context.report_progress(40)
            await release.wait()
            return JobResult(success=True)

        pool = make_pool({MECHANICS: handler})
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")
        await pool.start()

        async def at_forty() -> bool:
            view = await manager.get_status(MECHANICS, handle.id, "org-a")
            return view.status == JobStatus.ACTIVE and view.progress == 40

        await wait_until(at_forty)
        release.set()
        await wait_until(status_is(manager, handle.id, JobStatus.COMPLETED))

    @pytest.mark.asyncio
    async def test_job_fails_after_retries(self, manager, make_pool, wait_until, clock, sample_records):
        """Test a failing handler is retried, then the job fails with frozen progress."""
        attempts: list[int] = []

        async def handler(context: JobContext) -> JobResult:
            attempts.append(context.attempt)
            await context.report_progress(10 * context.attempt)
            raise RuntimeError(f"validation failed on attempt {context.attempt}")

        pool = make_pool({MECHANICS: handler})
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")

        await pool.start()
        await wait_until(status_is(manager, handle.id, JobStatus.FAILED))

        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert attempts == [1, 2, 3]
        assert view.attempts_made == 3
        assert view.failed_reason == "validation failed on attempt 3"
        assert view.progress == 30
        assert view.result is None
        assert view.ttl.expires_at == clock.now + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_retry_then_success(self, manager, make_pool, wait_until, sample_records):
        """Test a job succeeding on a later attempt completes."""

        async def handler(context: JobContext) -> JobResult:
            if context.attempt < 2:
                return JobResult(success=False, error="records service busy")
            return JobResult(success=True, output={"attempt": context.attempt})

        pool = make_pool({MECHANICS: handler})
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")

        await pool.start()
        await wait_until(status_is(manager, handle.id, JobStatus.COMPLETED))

        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert view.attempts_made == 2
        assert view.result == {"attempt": 2}

    @pytest.mark.asyncio
    async def test_job_timeout(self, manager, make_pool, wait_until, sample_records):
        """Test an attempt past its deadline fails the job."""

        async def handler(context: JobContext) -> JobResult:
            await asyncio.sleep(10)
            return JobResult(success=True)

        pool = make_pool({MECHANICS: handler}, job_timeout=0.05, max_attempts=1)
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")

        await pool.start()
        await wait_until(status_is(manager, handle.id, JobStatus.FAILED))

        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert "timed out" in view.failed_reason

    @pytest.mark.asyncio
    async def test_invalid_handler_result_fails_job(self, manager, make_pool, wait_until, sample_records):
        """Test a handler returning a non-JobResult fails the job instead of leaving it active."""

        async def handler(context: JobContext):
            return None

        pool = make_pool({MECHANICS: handler}, max_attempts=1)
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")

        await pool.start()
        await wait_until(status_is(manager, handle.id, JobStatus.FAILED))

        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert view.failed_reason == "Handler returned NoneType instead of JobResult"

    @pytest.mark.asyncio
    async def test_no_double_processing(self, manager, make_pool, wait_until):
        """Test 8 executors process 500 jobs exactly once each."""
        processed: list[str] = []

        async def handler(context: JobContext) -> JobResult:
            processed.append(context.job_id)
            await asyncio.sleep(0)
            return JobResult(success=True)

        for i in range(500):
            await manager.enqueue(MECHANICS, [{"index": i}], "org-a")

        pool = make_pool({MECHANICS: handler}, concurrency=8)
        await pool.start()

        async def all_completed() -> bool:
            return (await manager.get_queue_stats(MECHANICS)).completed == 500

        await wait_until(all_completed, timeout=30)

        assert len(processed) == 500
        assert len(set(processed)) == 500

    @pytest.mark.asyncio
    async def test_fifo_with_single_executor(self, manager, make_pool, wait_until, clock):
        """Test a single executor processes jobs in enqueue order."""
        order: list[str] = []

        async def handler(context: JobContext) -> JobResult:
            order.append(context.payload[0]["name"])
            return JobResult(success=True)

        for name in ("first", "second", "third"):
            await manager.enqueue(MECHANICS, [{"name": name}], "org-a")
            clock.advance(seconds=1)

        pool = make_pool({MECHANICS: handler}, concurrency=1)
        await pool.start()

        async def done() -> bool:
            return len(order) == 3

        await wait_until(done)
        assert order == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_graceful_stop_finishes_current_job(self, manager, make_pool, wait_until, sample_records):
        """Test stop waits for the in-flight job to complete."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(context: JobContext) -> JobResult:
            started.set()
            await release.wait()
            return JobResult(success=True)

        pool = make_pool({MECHANICS: handler})
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")
        await pool.start()
        await asyncio.wait_for(started.wait(), timeout=5)

        stopping = asyncio.create_task(pool.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()

        release.set()
        await asyncio.wait_for(stopping, timeout=5)

        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert view.status == JobStatus.COMPLETED
        assert pool.is_running is False

    @pytest.mark.asyncio
    async def test_drain(self, manager, make_pool, sample_records):
        """Test draining a queue without starting the executors."""
        for _ in range(3):
            await manager.enqueue(MECHANICS, sample_records, "org-a")

        pool = make_pool()

        assert await pool.drain(MECHANICS) == 3
        assert (await manager.get_queue_stats(MECHANICS)).completed == 3

    @pytest.mark.asyncio
    async def test_heartbeat_extends_lease(self, store, manager, make_pool, wait_until, clock, sample_records):
        """Test in-flight jobs get their lease extended."""
        release = asyncio.Event()

        async def handler(context: JobContext) -> JobResult:
            await release.wait()
            return JobResult(success=True)

        pool = make_pool({MECHANICS: handler}, lease_seconds=60)
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")
        await pool.start()
        await wait_until(status_is(manager, handle.id, JobStatus.ACTIVE))

        clock.advance(seconds=30)

        async def extended() -> bool:
            record = await store.get(MECHANICS, handle.id)
            return record.lease_expires_at == clock.now + timedelta(seconds=60)

        await wait_until(extended)
        release.set()
        await wait_until(status_is(manager, handle.id, JobStatus.COMPLETED))


class TestReaper:
    """Integration tests for TTL sweeps and stalled jobs."""

    @pytest.mark.asyncio
    async def test_completed_job_swept_after_one_minute(
        self, manager, make_pool, reaper: Reaper, clock, sample_records
    ):
        """Test a completed job is readable until its retention passes, then gone."""
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")
        await make_pool().drain(MECHANICS)

        clock.advance(seconds=59)
        assert await reaper.run_once() == 0
        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert view.status == JobStatus.COMPLETED

        clock.advance(seconds=2)
        assert await reaper.run_once() == 1
        with pytest.raises(JobNotFound):
            await manager.get_status(MECHANICS, handle.id, "org-a")

    @pytest.mark.asyncio
    async def test_failed_job_swept_after_five_minutes(
        self, manager, make_pool, reaper: Reaper, clock, sample_records
    ):
        """Test a failed job survives four minutes and is gone after six."""

        async def handler(context: JobContext) -> JobResult:
            return JobResult(success=False, error="invalid records")

        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")
        await make_pool({MECHANICS: handler}).drain(MECHANICS)

        clock.advance(minutes=4)
        await reaper.run_once()
        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert view.status == JobStatus.FAILED

        clock.advance(minutes=2)
        assert await reaper.run_once() == 1
        with pytest.raises(JobNotFound):
            await manager.get_status(MECHANICS, handle.id, "org-a")

    @pytest.mark.asyncio
    async def test_hard_cap_removes_unprocessed_job(self, manager, reaper: Reaper, clock, sample_records):
        """Test a job never processed is removed three days after creation."""
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")

        clock.advance(days=3, seconds=-1)
        assert await reaper.run_once() == 0

        clock.advance(seconds=1)
        assert await reaper.run_once() == 1
        with pytest.raises(JobNotFound):
            await manager.get_status(MECHANICS, handle.id, "org-a")

    @pytest.mark.asyncio
    async def test_sweep_counts_across_queues(self, manager, reaper: Reaper, clock, sample_records):
        """Test a sweep removes expired jobs of every queue."""
        for queue in QueueName:
            await manager.enqueue(queue, sample_records, "org-a")

        clock.advance(days=4)

        assert await reaper.run_once() == 3

    @pytest.mark.asyncio
    async def test_stalled_job_failed(self, store: MemoryQueueStore, manager, reaper: Reaper, clock, sample_records):
        """Test an active job whose executor stopped heartbeating is failed."""
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")
        await store.claim_next(MECHANICS, "crashed", clock.now, clock.now + timedelta(seconds=60))

        clock.advance(seconds=30)
        assert await reaper.fail_stalled_jobs() == 0

        clock.advance(seconds=31)
        assert await reaper.fail_stalled_jobs() == 1

        view = await manager.get_status(MECHANICS, handle.id, "org-a")
        assert view.status == JobStatus.FAILED
        assert view.failed_reason == STALLED_JOB_REASON
        assert view.ttl.expires_at == clock.now + timedelta(minutes=5)

        # The crashed executor's late completion is ignored
        late = await store.complete(MECHANICS, handle.id, "crashed", {}, clock.now, clock.now)
        assert late is None

    @pytest.mark.asyncio
    async def test_job_deleted_while_executing(
        self, store: MemoryQueueStore, manager, make_pool, reaper: Reaper, wait_until, clock, sample_records
    ):
        """Test a record swept during execution is not resurrected."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(context: JobContext) -> JobResult:
            started.set()
            await release.wait()
            await context.report_progress(80)
            return JobResult(success=True)

        pool = make_pool({MECHANICS: handler})
        handle = await manager.enqueue(MECHANICS, sample_records, "org-a")
        await pool.start()
        await asyncio.wait_for(started.wait(), timeout=5)

        clock.advance(days=3)
        assert await reaper.run_once() == 1

        release.set()
        await pool.stop()

        assert await store.get(MECHANICS, handle.id) is None

    @pytest.mark.asyncio
    async def test_scheduled_sweeps(self, store, manager, policy, clock, wait_until, sample_records):
        """Test the started reaper sweeps on its own and stops sweeping after stop."""
        reaper = Reaper(store, policy, interval_seconds=0.05, stalled_check_interval_seconds=0.05, clock=clock)
        first = await manager.enqueue(MECHANICS, sample_records, "org-a")
        clock.advance(days=4)

        await reaper.start()
        assert reaper.is_running is True

        async def swept() -> bool:
            return await store.get(MECHANICS, first.id) is None

        await wait_until(swept)
        await reaper.stop()
        assert reaper.is_running is False

        second = await manager.enqueue(MECHANICS, sample_records, "org-a")
        clock.advance(days=4)
        await asyncio.sleep(0.2)

        assert await store.get(MECHANICS, second.id) is not None

    @pytest.mark.asyncio
    async def test_reaper_survives_store_errors(self, policy, clock, wait_until):
        """Test a failing sweep is logged and retried on the next pass."""

        class FlakyStore(MemoryQueueStore):
            calls = 0

            async def delete_expired(self, now, hard_cap_cutoff):
                FlakyStore.calls += 1
                if FlakyStore.calls == 1:
                    raise RuntimeError("store hiccup")
                return await super().delete_expired(now, hard_cap_cutoff)

        reaper = Reaper(FlakyStore(), policy, interval_seconds=0.02, stalled_check_interval_seconds=1, clock=clock)
        await reaper.start()

        async def retried() -> bool:
            return FlakyStore.calls >= 2

        try:
            await wait_until(retried)
        finally:
            await reaper.stop()
