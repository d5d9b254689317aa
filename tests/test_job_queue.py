"""Tests for the database-backed analytics job queue."""

import asyncio
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from pydantic import ValidationError

from draftsync.schemas.analytics_job import (
    AnalyticsJobCreate,
    AnalyticsJobType,
    JobPriority,
    JobStatus,
)
from draftsync.services.job_queue import (
    JobCancelledError,
    JobFailedError,
    JobNotCancellableError,
    JobNotFoundError,
    JobQueue,
    JobTimeoutError,
)


T0 = datetime(2026, 3, 1, 9, 0, 0)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(session_maker, clock) -> JobQueue:
    return JobQueue(session_maker, max_attempts=3, retry_delay_seconds=10, clock=clock)


def analysis_job(priority: JobPriority = JobPriority.NORMAL, **kwargs) -> AnalyticsJobCreate:
    return AnalyticsJobCreate(
        user_id=uuid4(),
        document_id=uuid4(),
        job_type=AnalyticsJobType.SNAPSHOT_ANALYSIS,
        priority=priority,
        input={"snapshot_id": str(uuid4())},
        **kwargs,
    )


# ===========================================================================
# Submission
# ===========================================================================

class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_returns_queued_record(self, queue):
        record = await queue.enqueue(analysis_job())

        assert record.status == JobStatus.QUEUED
        assert record.attempts == 0
        assert record.max_attempts == 3
        assert record.priority == JobPriority.NORMAL
        assert record.scheduled_for == T0
        assert record.created_at == T0
        assert record.output is None

    @pytest.mark.asyncio
    async def test_job_max_attempts_overrides_default(self, queue):
        record = await queue.enqueue(analysis_job(max_attempts=5))
        assert record.max_attempts == 5

    @pytest.mark.asyncio
    async def test_get_status(self, queue):
        record = await queue.enqueue(analysis_job())
        assert (await queue.get_status(record.id)).id == record.id

    @pytest.mark.asyncio
    async def test_get_status_unknown(self, queue):
        with pytest.raises(JobNotFoundError):
            await queue.get_status(uuid4())


class TestJobInputValidation:
    def test_input_normalized(self):
        snapshot_id = uuid4()
        job = AnalyticsJobCreate(
            user_id=uuid4(),
            document_id=uuid4(),
            job_type=AnalyticsJobType.SNAPSHOT_ANALYSIS,
            input={"snapshot_id": snapshot_id},
        )
        assert job.input == {"snapshot_id": str(snapshot_id)}

    def test_missing_field_rejected(self):
        with pytest.raises(ValidationError):
            AnalyticsJobCreate(
                user_id=uuid4(),
                document_id=uuid4(),
                job_type=AnalyticsJobType.SNAPSHOT_COMPARISON,
                input={"from_snapshot_id": str(uuid4())},
            )

    def test_reversed_window_rejected(self):
        with pytest.raises(ValidationError):
            AnalyticsJobCreate(
                user_id=uuid4(),
                document_id=uuid4(),
                job_type=AnalyticsJobType.WRITING_VELOCITY,
                input={"start_time": "2026-03-02T00:00:00", "end_time": "2026-03-01T00:00:00"},
            )

    def test_unknown_job_type_rejected(self):
        with pytest.raises(ValidationError):
            AnalyticsJobCreate(user_id=uuid4(), document_id=uuid4(), job_type="sentiment", input={})

    def test_priority_range(self):
        with pytest.raises(ValidationError):
            analysis_job(priority=7)


# ===========================================================================
# Claiming
# ===========================================================================

class TestDequeue:
    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.dequeue() is None

    @pytest.mark.asyncio
    async def test_claim_marks_running(self, queue):
        queued = await queue.enqueue(analysis_job())

        claimed = await queue.dequeue()

        assert claimed.id == queued.id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.attempts == 1
        assert claimed.started_at == T0
        assert await queue.dequeue() is None

    @pytest.mark.asyncio
    async def test_priority_then_age(self, queue, clock):
        low = await queue.enqueue(analysis_job(JobPriority.LOW))
        clock.advance(seconds=1)
        normal_first = await queue.enqueue(analysis_job(JobPriority.NORMAL))
        clock.advance(seconds=1)
        urgent = await queue.enqueue(analysis_job(JobPriority.URGENT))
        clock.advance(seconds=1)
        normal_second = await queue.enqueue(analysis_job(JobPriority.NORMAL))

        order = [(await queue.dequeue()).id for _ in range(4)]

        assert order == [urgent.id, normal_first.id, normal_second.id, low.id]

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_share_a_job(self, queue):
        for _ in range(3):
            await queue.enqueue(analysis_job())

        claimed = await asyncio.gather(*(queue.dequeue() for _ in range(5)))

        ids = [record.id for record in claimed if record is not None]
        assert len(ids) == 3
        assert len(set(ids)) == 3


# ===========================================================================
# Completion and failure
# ===========================================================================

class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_stores_output(self, queue):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()

        assert await queue.complete(job.id, {"metrics": {"word_count": 3}}) is True

        record = await queue.get_status(job.id)
        assert record.status == JobStatus.COMPLETED
        assert record.output == {"metrics": {"word_count": 3}}
        assert record.completed_at == T0

    @pytest.mark.asyncio
    async def test_complete_twice_is_noop(self, queue):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()
        await queue.complete(job.id, {"n": 1})

        assert await queue.complete(job.id, {"n": 2}) is True
        assert (await queue.get_status(job.id)).output == {"n": 1}

    @pytest.mark.asyncio
    async def test_complete_unknown(self, queue):
        with pytest.raises(JobNotFoundError):
            await queue.complete(uuid4(), {})


class TestFail:
    @pytest.mark.asyncio
    async def test_failed_attempt_is_delayed_by_attempts(self, queue, clock):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()

        assert await queue.fail(job.id, "snapshot missing") == JobStatus.QUEUED

        record = await queue.get_status(job.id)
        assert record.status == JobStatus.QUEUED
        assert record.error == "snapshot missing"
        assert record.scheduled_for == T0 + timedelta(seconds=10)
        assert record.started_at is None
        assert await queue.dequeue() is None

        clock.advance(seconds=10)
        claimed = await queue.dequeue()
        assert claimed.attempts == 2

        assert await queue.fail(job.id, "still missing") == JobStatus.QUEUED
        assert (await queue.get_status(job.id)).scheduled_for == clock.now + timedelta(seconds=20)

    @pytest.mark.asyncio
    async def test_attempts_bounded(self, queue, clock):
        job = await queue.enqueue(analysis_job(max_attempts=2))

        await queue.dequeue()
        assert await queue.fail(job.id, "boom") == JobStatus.QUEUED
        clock.advance(minutes=5)
        await queue.dequeue()
        assert await queue.fail(job.id, "boom again") == JobStatus.FAILED

        clock.advance(minutes=5)
        assert await queue.dequeue() is None
        record = await queue.get_status(job.id)
        assert record.status == JobStatus.FAILED
        assert record.attempts == 2
        assert record.error == "boom again"

    @pytest.mark.asyncio
    async def test_permanent_failure(self, queue):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()

        assert await queue.fail(job.id, "bad input", retry=False) == JobStatus.FAILED
        assert (await queue.get_status(job.id)).attempts == 1

    @pytest.mark.asyncio
    async def test_fail_ignored_when_not_running(self, queue):
        job = await queue.enqueue(analysis_job())
        assert await queue.fail(job.id, "not claimed") == JobStatus.QUEUED
        assert (await queue.get_status(job.id)).error is None


# ===========================================================================
# Cancellation
# ===========================================================================

class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_queued(self, queue):
        job = await queue.enqueue(analysis_job())

        record = await queue.cancel(job.id)

        assert record.status == JobStatus.CANCELLED
        assert record.completed_at == T0
        assert await queue.dequeue() is None

    @pytest.mark.asyncio
    async def test_cancel_running_discards_result(self, queue):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()
        await queue.cancel(job.id)

        assert await queue.complete(job.id, {"late": True}) is False

        record = await queue.get_status(job.id)
        assert record.status == JobStatus.CANCELLED
        assert record.output is None

    @pytest.mark.asyncio
    async def test_cancel_terminal_job(self, queue):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()
        await queue.complete(job.id, {})

        with pytest.raises(JobNotCancellableError) as exc_info:
            await queue.cancel(job.id)
        assert exc_info.value.status == "completed"

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, queue):
        with pytest.raises(JobNotFoundError):
            await queue.cancel(uuid4())


# ===========================================================================
# Maintenance
# ===========================================================================

class TestStaleJobs:
    @pytest.mark.asyncio
    async def test_expired_lease_requeued(self, queue, clock):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()
        clock.advance(seconds=120)

        assert await queue.requeue_stale_jobs(timeout_seconds=60) == 1

        record = await queue.get_status(job.id)
        assert record.status == JobStatus.QUEUED
        assert "timed out" in record.error
        assert record.attempts == 1

    @pytest.mark.asyncio
    async def test_fresh_lease_untouched(self, queue, clock):
        await queue.enqueue(analysis_job())
        await queue.dequeue()
        clock.advance(seconds=30)

        assert await queue.requeue_stale_jobs(timeout_seconds=60) == 0

    @pytest.mark.asyncio
    async def test_expired_lease_on_last_attempt_fails(self, queue, clock):
        job = await queue.enqueue(analysis_job(max_attempts=1))
        await queue.dequeue()
        clock.advance(seconds=120)

        await queue.requeue_stale_jobs(timeout_seconds=60)

        assert (await queue.get_status(job.id)).status == JobStatus.FAILED


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_old_finished_jobs_only(self, queue, clock):
        completed = await queue.enqueue(analysis_job(JobPriority.URGENT))
        failed = await queue.enqueue(analysis_job(JobPriority.HIGH))
        cancelled = await queue.enqueue(analysis_job())
        waiting = await queue.enqueue(analysis_job(JobPriority.LOW))

        await queue.dequeue()
        await queue.complete(completed.id, {})
        await queue.dequeue()
        await queue.fail(failed.id, "broken", retry=False)
        await queue.cancel(cancelled.id)

        clock.advance(days=31)
        assert await queue.cleanup_old_jobs(days=30) == 2

        with pytest.raises(JobNotFoundError):
            await queue.get_status(completed.id)
        with pytest.raises(JobNotFoundError):
            await queue.get_status(cancelled.id)
        assert (await queue.get_status(failed.id)).status == JobStatus.FAILED
        assert (await queue.get_status(waiting.id)).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_recent_jobs_kept(self, queue, clock):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()
        await queue.complete(job.id, {})

        clock.advance(days=2)
        assert await queue.cleanup_old_jobs(days=30) == 0


# ===========================================================================
# Waiting
# ===========================================================================

class TestWaitForCompletion:
    @pytest.mark.asyncio
    async def test_returns_when_completed(self, queue):
        job = await queue.enqueue(analysis_job())

        async def finish_later():
            await asyncio.sleep(0.05)
            await queue.dequeue()
            await queue.complete(job.id, {"done": True})

        finisher = asyncio.create_task(finish_later())
        record = await queue.wait_for_completion(job.id, poll_interval=0.01, timeout=5)
        await finisher

        assert record.status == JobStatus.COMPLETED
        assert record.output == {"done": True}

    @pytest.mark.asyncio
    async def test_failed_job_raises(self, queue):
        job = await queue.enqueue(analysis_job())
        await queue.dequeue()
        await queue.fail(job.id, "bad", retry=False)

        with pytest.raises(JobFailedError) as exc_info:
            await queue.wait_for_completion(job.id, poll_interval=0.01, timeout=1)
        assert exc_info.value.record.error == "bad"

    @pytest.mark.asyncio
    async def test_cancelled_job_raises(self, queue):
        job = await queue.enqueue(analysis_job())
        await queue.cancel(job.id)

        with pytest.raises(JobCancelledError):
            await queue.wait_for_completion(job.id, poll_interval=0.01, timeout=1)

    @pytest.mark.asyncio
    async def test_timeout(self, queue):
        job = await queue.enqueue(analysis_job())

        with pytest.raises(JobTimeoutError) as exc_info:
            await queue.wait_for_completion(job.id, poll_interval=0.01, timeout=0.05)
        assert exc_info.value.last_status == JobStatus.QUEUED
