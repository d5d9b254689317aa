"""Tests for the analytics worker draining the job queue."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import delete, update

from draftsync.models import AnalyticsJob
from draftsync.schemas.analytics_job import AnalyticsJobCreate, AnalyticsJobType, JobStatus
from draftsync.services.analytics_worker import DEFAULT_HANDLERS, AnalyticsWorker
from draftsync.services.job_queue import JobQueue


T0 = datetime(2026, 3, 1, 9, 0, 0)


@pytest.fixture
def queue(session_maker) -> JobQueue:
    # A long retry delay keeps a failed job out of the rest of its batch
    return JobQueue(session_maker, max_attempts=3, retry_delay_seconds=3600)


@pytest.fixture
def worker(queue, session_maker) -> AnalyticsWorker:
    return AnalyticsWorker(queue, session_maker)


@pytest_asyncio.fixture
async def two_snapshots(test_document, make_snapshot):
    first = await make_snapshot(test_document, "<p>one two</p>", T0)
    second = await make_snapshot(test_document, "<p>one two three four five</p>", T0 + timedelta(minutes=30))
    return first, second


def job_for(document, job_type: AnalyticsJobType, **input_values) -> AnalyticsJobCreate:
    return AnalyticsJobCreate(
        user_id=uuid4(),
        document_id=document.id,
        job_type=job_type,
        input=input_values,
    )


async def run_one(queue, worker, job: AnalyticsJobCreate):
    record = await queue.enqueue(job)
    result = await worker.run_batch()
    return result, await queue.get_status(record.id)


# ===========================================================================
# Job types
# ===========================================================================

class TestJobTypes:
    @pytest.mark.asyncio
    async def test_snapshot_analysis(self, queue, worker, test_document, two_snapshots):
        _, second = two_snapshots
        result, record = await run_one(
            queue, worker, job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=second.id)
        )

        assert result.processed == 1
        assert result.succeeded == 1
        assert record.status == JobStatus.COMPLETED
        assert record.output["success"] is True
        assert record.output["job_type"] == "snapshot_analysis"
        assert record.output["metrics"]["word_count"] == 5
        assert record.output["processing_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_snapshot_comparison(self, queue, worker, test_document, two_snapshots):
        first, second = two_snapshots
        _, record = await run_one(
            queue,
            worker,
            job_for(
                test_document,
                AnalyticsJobType.SNAPSHOT_COMPARISON,
                from_snapshot_id=first.id,
                to_snapshot_id=second.id,
            ),
        )

        metrics = record.output["metrics"]
        assert metrics["net_word_change"] == 3
        assert metrics["words_added"] == 3
        assert metrics["word_diff"]["additions"] == 3

    @pytest.mark.asyncio
    async def test_writing_velocity(self, queue, worker, test_document, two_snapshots):
        _, record = await run_one(
            queue,
            worker,
            job_for(
                test_document,
                AnalyticsJobType.WRITING_VELOCITY,
                start_time=(T0 - timedelta(hours=1)).isoformat(),
                end_time=(T0 + timedelta(hours=1)).isoformat(),
            ),
        )

        assert record.status == JobStatus.COMPLETED
        assert record.output["metrics"]["total_words_written"] == 3

    @pytest.mark.asyncio
    async def test_structure_analysis(self, queue, worker, test_document, two_snapshots):
        first, _ = two_snapshots
        _, record = await run_one(
            queue, worker, job_for(test_document, AnalyticsJobType.STRUCTURE_ANALYSIS, snapshot_id=first.id)
        )

        assert record.output["metrics"]["total_chapters"] == 1
        assert record.output["metrics"]["total_scenes"] == 1

    @pytest.mark.asyncio
    async def test_session_summary(self, queue, worker, test_document, two_snapshots):
        first, second = two_snapshots
        _, record = await run_one(
            queue,
            worker,
            job_for(
                test_document,
                AnalyticsJobType.SESSION_SUMMARY,
                session_id="morning",
                snapshot_ids=[first.id, second.id],
            ),
        )

        metrics = record.output["metrics"]
        assert metrics["session_id"] == "morning"
        assert metrics["snapshots_created"] == 2
        assert metrics["total_words_written"] == 3

    @pytest.mark.asyncio
    async def test_daily_summary(self, queue, worker, test_document, two_snapshots):
        _, record = await run_one(
            queue,
            worker,
            job_for(test_document, AnalyticsJobType.DAILY_SUMMARY, date="2026-03-01", daily_goal_words=6),
        )

        metrics = record.output["metrics"]
        assert metrics["total_words_written"] == 3
        assert metrics["sessions_count"] == 1
        assert metrics["goal_progress"] == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_weekly_summary(self, queue, worker, test_document, two_snapshots):
        _, record = await run_one(
            queue,
            worker,
            job_for(
                test_document,
                AnalyticsJobType.WEEKLY_SUMMARY,
                start_date="2026-03-01",
                end_date="2026-03-03",
            ),
        )

        metrics = record.output["metrics"]
        assert metrics["total_words_written"] == 3
        assert metrics["days_active"] == 1
        assert len(metrics["daily_metrics"]) == 3

    @pytest.mark.asyncio
    async def test_snapshots_scoped_to_job_document(self, queue, worker, make_document, two_snapshots):
        _, second = two_snapshots
        other = await make_document()
        _, record = await run_one(
            queue, worker, job_for(other, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=second.id)
        )
        assert record.status == JobStatus.QUEUED
        assert "Snapshot not found" in record.error


# ===========================================================================
# Failures
# ===========================================================================

class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_snapshot_is_retried(self, queue, worker, test_document):
        result, record = await run_one(
            queue, worker, job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=uuid4())
        )

        assert result.processed == 1
        assert result.failed == 1
        assert "Snapshot not found" in result.results[0].error
        assert record.status == JobStatus.QUEUED
        assert record.attempts == 1

    @pytest.mark.asyncio
    async def test_missing_snapshot_fails_on_last_attempt(self, session_maker, test_document):
        queue = JobQueue(session_maker, max_attempts=1)
        worker = AnalyticsWorker(queue, session_maker)

        _, record = await run_one(
            queue, worker, job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=uuid4())
        )
        assert record.status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_unsupported_type_fails_permanently(self, queue, session_maker, test_document, two_snapshots):
        handlers = {k: v for k, v in DEFAULT_HANDLERS.items() if k != AnalyticsJobType.SNAPSHOT_ANALYSIS.value}
        worker = AnalyticsWorker(queue, session_maker, handlers=handlers)
        first, _ = two_snapshots

        _, record = await run_one(
            queue, worker, job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=first.id)
        )

        assert record.status == JobStatus.FAILED
        assert record.error == "Unsupported job type: snapshot_analysis"
        assert record.attempts == 1

    @pytest.mark.asyncio
    async def test_invalid_input_fails_permanently(self, queue, worker, session_maker, test_document):
        record = await queue.enqueue(job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=uuid4()))
        async with session_maker() as session:
            await session.execute(
                update(AnalyticsJob).where(AnalyticsJob.id == record.id).values(input={"snapshot_id": "nope"})
            )
            await session.commit()

        result = await worker.run_batch()

        assert result.failed == 1
        record = await queue.get_status(record.id)
        assert record.status == JobStatus.FAILED
        assert record.error.startswith("Invalid input for snapshot_analysis")

    @pytest.mark.asyncio
    async def test_handler_exception_is_retried(self, queue, session_maker, test_document):
        async def broken(job, params, db):
            raise RuntimeError("metrics exploded")

        worker = AnalyticsWorker(queue, session_maker, handlers={AnalyticsJobType.DAILY_SUMMARY.value: broken})

        _, record = await run_one(
            queue, worker, job_for(test_document, AnalyticsJobType.DAILY_SUMMARY, date="2026-03-01")
        )

        assert record.status == JobStatus.QUEUED
        assert record.error == "metrics exploded"

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_batch(self, queue, worker, test_document, two_snapshots):
        first, _ = two_snapshots
        await queue.enqueue(job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=uuid4()))
        await queue.enqueue(job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=first.id))

        result = await worker.run_batch()

        assert result.processed == 2
        assert result.succeeded == 1
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_result_discarded_after_cancel(self, queue, session_maker, test_document):
        async def cancelled_midway(job, params, db):
            await queue.cancel(job.id)
            return {"ignored": True}

        worker = AnalyticsWorker(queue, session_maker, handlers={AnalyticsJobType.DAILY_SUMMARY.value: cancelled_midway})

        result, record = await run_one(
            queue, worker, job_for(test_document, AnalyticsJobType.DAILY_SUMMARY, date="2026-03-01")
        )

        assert result.results[0].success is False
        assert record.status == JobStatus.CANCELLED
        assert record.output is None

    @pytest.mark.asyncio
    async def test_job_deleted_before_completion(self, queue, session_maker, test_document):
        async def deleted_midway(job, params, db):
            await db.execute(delete(AnalyticsJob).where(AnalyticsJob.id == job.id))
            await db.commit()
            return {"ignored": True}

        worker = AnalyticsWorker(queue, session_maker, handlers={AnalyticsJobType.DAILY_SUMMARY.value: deleted_midway})
        await queue.enqueue(job_for(test_document, AnalyticsJobType.DAILY_SUMMARY, date="2026-03-01"))

        result = await worker.run_batch()

        assert result.processed == 1
        assert result.failed == 1
        assert result.results[0].success is False

    @pytest.mark.asyncio
    async def test_job_deleted_before_failure(self, queue, session_maker, test_document, two_snapshots):
        first, _ = two_snapshots

        async def deleted_then_broken(job, params, db):
            await db.execute(delete(AnalyticsJob).where(AnalyticsJob.id == job.id))
            await db.commit()
            raise RuntimeError("metrics exploded")

        worker = AnalyticsWorker(
            queue,
            session_maker,
            handlers={**DEFAULT_HANDLERS, AnalyticsJobType.DAILY_SUMMARY.value: deleted_then_broken},
        )
        await queue.enqueue(job_for(test_document, AnalyticsJobType.DAILY_SUMMARY, date="2026-03-01"))
        await queue.enqueue(job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=first.id))

        result = await worker.run_batch()

        assert result.processed == 2
        assert result.succeeded == 1
        assert [r.error for r in result.results if not r.success] == ["metrics exploded"]


# ===========================================================================
# Batching
# ===========================================================================

class TestBatching:
    @pytest.mark.asyncio
    async def test_empty_queue(self, worker):
        result = await worker.run_batch()
        assert (result.processed, result.succeeded, result.failed) == (0, 0, 0)
        assert result.results == []

    @pytest.mark.asyncio
    async def test_batch_size(self, queue, worker, test_document, two_snapshots):
        first, _ = two_snapshots
        for _ in range(5):
            await queue.enqueue(job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=first.id))

        assert (await worker.run_batch(2)).processed == 2
        assert (await worker.run_batch(10)).processed == 3

    @pytest.mark.asyncio
    async def test_batch_capped_at_max(self, queue, session_maker, test_document, two_snapshots):
        first, _ = two_snapshots
        for _ in range(5):
            await queue.enqueue(job_for(test_document, AnalyticsJobType.SNAPSHOT_ANALYSIS, snapshot_id=first.id))

        worker = AnalyticsWorker(queue, session_maker, max_batch_size=3)
        assert (await worker.run_batch(100)).processed == 3
