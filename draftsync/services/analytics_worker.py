"""Analytics job worker.

Drains the analytics queue in bounded batches: claim a job, load the
snapshots it references, compute metrics and record the outcome. Failures
of one job never stop the batch. Unsupported job types and invalid input
fail the job permanently; anything else is retried by the queue until the
attempt budget runs out.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..schemas.analytics_job import (
    JOB_INPUT_MODELS,
    AnalyticsJobOutput,
    AnalyticsJobRecord,
    AnalyticsJobType,
    DailySummaryInput,
    JobOutcome,
    SessionSummaryInput,
    SnapshotAnalysisInput,
    SnapshotComparisonInput,
    StructureAnalysisInput,
    WeeklySummaryInput,
    WorkerRunResult,
    WritingVelocityInput,
)
from . import analytics_metrics
from .job_queue import JobQueue, JobQueueError
from .snapshot_repository import get_snapshot, get_snapshots, list_snapshots, to_content_snapshot
from .snapshot_store import ContentSnapshot

logger = logging.getLogger(__name__)


class UnsupportedJobTypeError(Exception):
    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unsupported job type: {job_type}")


class InvalidJobInputError(Exception):
    """Job input does not match its type's parameters."""


class SnapshotNotFoundError(Exception):
    pass


JobHandler = Callable[[AnalyticsJobRecord, Any, AsyncSession], Awaitable[dict[str, Any]]]


# =============================================================================
# Handlers
# =============================================================================


async def _load_snapshot(db: AsyncSession, job: AnalyticsJobRecord, snapshot_id) -> ContentSnapshot:
    row = await get_snapshot(db, snapshot_id, job.document_id)
    if row is None:
        raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
    return to_content_snapshot(row)


async def _load_snapshots(db: AsyncSession, job: AnalyticsJobRecord, snapshot_ids) -> list[ContentSnapshot]:
    rows = await get_snapshots(db, snapshot_ids, job.document_id)
    missing = [str(sid) for sid in snapshot_ids if sid not in rows]
    if missing:
        raise SnapshotNotFoundError(f"Snapshots not found: {', '.join(missing)}")
    return [to_content_snapshot(rows[sid]) for sid in snapshot_ids]


async def handle_snapshot_analysis(job, params: SnapshotAnalysisInput, db):
    snapshot = await _load_snapshot(db, job, params.snapshot_id)
    return analytics_metrics.analyze_snapshot(snapshot)


async def handle_snapshot_comparison(job, params: SnapshotComparisonInput, db):
    from_snapshot, to_snapshot = await _load_snapshots(
        db, job, [params.from_snapshot_id, params.to_snapshot_id]
    )
    return analytics_metrics.compare_snapshot_metrics(from_snapshot, to_snapshot)


async def handle_writing_velocity(job, params: WritingVelocityInput, db):
    rows = await list_snapshots(db, job.document_id, start=params.start_time, end=params.end_time)
    snapshots = [to_content_snapshot(row) for row in rows]
    return analytics_metrics.writing_velocity_metrics(snapshots, params.start_time, params.end_time)


async def handle_structure_analysis(job, params: StructureAnalysisInput, db):
    snapshot = await _load_snapshot(db, job, params.snapshot_id)
    return analytics_metrics.analyze_structure(snapshot)


async def handle_session_summary(job, params: SessionSummaryInput, db):
    snapshots = await _load_snapshots(db, job, params.snapshot_ids)
    return analytics_metrics.session_summary(params.session_id, snapshots)


async def handle_daily_summary(job, params: DailySummaryInput, db):
    start = datetime(params.date.year, params.date.month, params.date.day)
    rows = await list_snapshots(db, job.document_id, start=start, end=start + timedelta(days=1))
    snapshots = [to_content_snapshot(row) for row in rows]
    return analytics_metrics.daily_summary(snapshots, params.date, params.daily_goal_words)


async def handle_weekly_summary(job, params: WeeklySummaryInput, db):
    start = datetime(params.start_date.year, params.start_date.month, params.start_date.day)
    end = datetime(params.end_date.year, params.end_date.month, params.end_date.day) + timedelta(days=1)
    rows = await list_snapshots(db, job.document_id, start=start, end=end)
    snapshots = [to_content_snapshot(row) for row in rows]
    return analytics_metrics.weekly_summary(snapshots, params.start_date, params.end_date)


DEFAULT_HANDLERS: dict[str, JobHandler] = {
    AnalyticsJobType.SNAPSHOT_ANALYSIS.value: handle_snapshot_analysis,
    AnalyticsJobType.SNAPSHOT_COMPARISON.value: handle_snapshot_comparison,
    AnalyticsJobType.WRITING_VELOCITY.value: handle_writing_velocity,
    AnalyticsJobType.STRUCTURE_ANALYSIS.value: handle_structure_analysis,
    AnalyticsJobType.SESSION_SUMMARY.value: handle_session_summary,
    AnalyticsJobType.DAILY_SUMMARY.value: handle_daily_summary,
    AnalyticsJobType.WEEKLY_SUMMARY.value: handle_weekly_summary,
}


# =============================================================================
# Worker
# =============================================================================


class AnalyticsWorker:
    """
    Pull-based analytics worker.

    Any number of workers may run against the same queue; the queue's
    atomic claim keeps them from processing the same job concurrently.

    Args:
        queue: Job queue to drain
        session_maker: Factory for the sessions handlers read snapshots with
        handlers: Job type -> handler, defaults to DEFAULT_HANDLERS
        max_batch_size: Upper bound on jobs per batch
    """

    def __init__(
        self,
        queue: JobQueue,
        session_maker: async_sessionmaker[AsyncSession],
        handlers: Optional[dict[str, JobHandler]] = None,
        max_batch_size: Optional[int] = None,
    ):
        self._queue = queue
        self._session_maker = session_maker
        self._handlers = dict(DEFAULT_HANDLERS if handlers is None else handlers)
        self._max_batch_size = max_batch_size or settings.job_max_batch_size

    async def run_batch(self, batch_size: Optional[int] = None) -> WorkerRunResult:
        """
        Process up to `batch_size` jobs, stopping early when the queue is empty.

        The batch size is capped at max_batch_size.
        """
        limit = min(batch_size or settings.job_batch_size, self._max_batch_size)
        results: list[JobOutcome] = []

        for _ in range(limit):
            try:
                job = await self._queue.dequeue()
            except SQLAlchemyError as e:
                logger.error(f"Failed to dequeue analytics job: {e}", exc_info=True)
                break
            if job is None:
                break
            results.append(await self.process_job(job))

        succeeded = sum(1 for r in results if r.success)
        if results:
            logger.info(f"Analytics batch processed {len(results)} jobs ({succeeded} succeeded)")
        return WorkerRunResult(
            processed=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )

    async def process_job(self, job: AnalyticsJobRecord) -> JobOutcome:
        """Run one claimed job and record its outcome on the queue."""
        started = time.perf_counter()
        logger.info(f"Processing analytics job {job.id} of type {job.job_type}")

        try:
            handler, params = self._resolve(job)
            async with self._session_maker() as session:
                metrics = await handler(job, params, session)
        except (UnsupportedJobTypeError, InvalidJobInputError) as e:
            return await self._record_failure(job, e, started, retry=False)
        except Exception as e:
            logger.error(f"Analytics job {job.id} failed: {e}", exc_info=True)
            return await self._record_failure(job, e, started, retry=True)

        elapsed_ms = (time.perf_counter() - started) * 1000
        output = AnalyticsJobOutput(
            job_type=job.job_type,
            success=True,
            metrics=metrics,
            processing_time_ms=elapsed_ms,
            completed_at=datetime.utcnow(),
        )
        try:
            completed = await self._queue.complete(job.id, output.model_dump(mode="json"))
        except (SQLAlchemyError, JobQueueError) as e:
            logger.error(f"Failed to mark analytics job {job.id} completed: {e}", exc_info=True)
            return JobOutcome(
                job_id=job.id,
                job_type=job.job_type,
                success=False,
                error=str(e),
                processing_time_ms=elapsed_ms,
            )

        if completed:
            logger.info(f"Analytics job {job.id} completed in {elapsed_ms:.0f}ms")
        return JobOutcome(
            job_id=job.id,
            job_type=job.job_type,
            success=completed,
            error=None if completed else "Job was no longer running",
            processing_time_ms=elapsed_ms,
        )

    def _resolve(self, job: AnalyticsJobRecord) -> tuple[JobHandler, BaseModel]:
        handler = self._handlers.get(job.job_type)
        try:
            input_model = JOB_INPUT_MODELS[AnalyticsJobType(job.job_type)]
        except ValueError:
            input_model = None
        if handler is None or input_model is None:
            raise UnsupportedJobTypeError(job.job_type)

        try:
            return handler, input_model.model_validate(job.input)
        except ValidationError as e:
            raise InvalidJobInputError(f"Invalid input for {job.job_type}: {e.error_count()} errors") from e

    async def _record_failure(
        self,
        job: AnalyticsJobRecord,
        error: Exception,
        started: float,
        retry: bool,
    ) -> JobOutcome:
        message = str(error) or type(error).__name__
        elapsed_ms = (time.perf_counter() - started) * 1000
        try:
            await self._queue.fail(job.id, message, retry=retry)
        except (SQLAlchemyError, JobQueueError) as e:
            # The job stays running; its lease expiry requeues it
            logger.error(f"Failed to mark analytics job {job.id} failed: {e}", exc_info=True)
        return JobOutcome(
            job_id=job.id,
            job_type=job.job_type,
            success=False,
            error=message,
            processing_time_ms=elapsed_ms,
        )
