"""Analytics job queue backed by the AnalyticsJobs table.

Each operation runs in its own short transaction. Claiming is a single
conditional UPDATE over a `FOR UPDATE SKIP LOCKED` subquery, so concurrent
workers never claim the same job and never wait on each other's rows.

Attempts are counted when a job is claimed. A failed attempt goes back to
the queue, delayed by retry_delay x attempts, until attempts reaches
max_attempts; then the job is failed permanently. Failed jobs are kept for
diagnostics; cleanup only removes completed and cancelled jobs.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from ..config import settings
from ..models.analytics_job import AnalyticsJob
from ..schemas.analytics_job import AnalyticsJobCreate, AnalyticsJobRecord, JobStatus

logger = logging.getLogger(__name__)


class JobQueueError(Exception):
    """Base class for job queue errors."""


class JobNotFoundError(JobQueueError):
    def __init__(self, job_id: UUID):
        self.job_id = job_id
        super().__init__(f"Analytics job {job_id} not found")


class JobNotCancellableError(JobQueueError):
    def __init__(self, job_id: UUID, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Analytics job {job_id} is {status} and cannot be cancelled")


class JobFailedError(JobQueueError):
    """A waited-on job ended without completing."""

    def __init__(self, record: AnalyticsJobRecord):
        self.record = record
        super().__init__(f"Analytics job {record.id} {record.status.value}: {record.error or 'no error recorded'}")


class JobCancelledError(JobFailedError):
    pass


class JobTimeoutError(JobQueueError, TimeoutError):
    def __init__(self, job_id: UUID, timeout: float, last_status: Optional[JobStatus] = None):
        self.job_id = job_id
        self.last_status = last_status
        super().__init__(f"Timed out after {timeout}s waiting for analytics job {job_id}")


class JobQueue:
    """
    Queue operations over AnalyticsJobs.

    Args:
        session_maker: Factory for short-lived sessions
        max_attempts: Default attempt budget for new jobs
        retry_delay_seconds: Linear per-attempt retry delay
        clock: Source of naive-UTC "now"
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._session_maker = session_maker
        self._max_attempts = max_attempts or settings.job_max_attempts
        self._retry_delay = settings.job_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        self._clock = clock or datetime.utcnow

    # =========================================================================
    # Submission boundary
    # =========================================================================

    async def enqueue(self, job: AnalyticsJobCreate) -> AnalyticsJobRecord:
        """Queue a validated job and return its record."""
        now = self._clock()
        row = AnalyticsJob(
            user_id=job.user_id,
            document_id=job.document_id,
            job_type=job.job_type.value,
            status=JobStatus.QUEUED.value,
            priority=int(job.priority),
            input=job.input,
            attempts=0,
            max_attempts=job.max_attempts or self._max_attempts,
            scheduled_for=now,
            created_at=now,
            updated_at=now,
        )
        async with self._session_maker() as session:
            session.add(row)
            await session.flush()
            record = AnalyticsJobRecord.model_validate(row)
            await session.commit()

        logger.info(f"Enqueued {record.job_type} job {record.id} (priority {record.priority})")
        return record

    async def get_status(self, job_id: UUID) -> AnalyticsJobRecord:
        """
        Full record of a job.

        Raises:
            JobNotFoundError: If no such job exists
        """
        async with self._session_maker() as session:
            row = await session.get(AnalyticsJob, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            return AnalyticsJobRecord.model_validate(row)

    async def cancel(self, job_id: UUID) -> AnalyticsJobRecord:
        """
        Cancel a queued or running job.

        A running job keeps executing, but its result is discarded.

        Raises:
            JobNotFoundError: If no such job exists
            JobNotCancellableError: If the job already reached a terminal state
        """
        now = self._clock()
        async with self._session_maker() as session:
            result = await session.execute(
                update(AnalyticsJob)
                .where(AnalyticsJob.id == job_id)
                .where(AnalyticsJob.status.in_([JobStatus.QUEUED.value, JobStatus.RUNNING.value]))
                .values(status=JobStatus.CANCELLED.value, completed_at=now, updated_at=now)
                .returning(AnalyticsJob)
                .execution_options(synchronize_session=False)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                record = AnalyticsJobRecord.model_validate(row)
                await session.commit()
                logger.info(f"Cancelled analytics job {job_id}")
                return record

            current = await session.scalar(select(AnalyticsJob.status).where(AnalyticsJob.id == job_id))
            if current is None:
                raise JobNotFoundError(job_id)
            raise JobNotCancellableError(job_id, current)

    async def wait_for_completion(
        self,
        job_id: UUID,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> AnalyticsJobRecord:
        """
        Poll until the job reaches a terminal state.

        Returns:
            The completed job record

        Raises:
            JobFailedError: If the job failed permanently
            JobCancelledError: If the job was cancelled
            JobTimeoutError: If the timeout elapsed first
            JobNotFoundError: If no such job exists
        """
        poll_interval = settings.job_poll_interval_seconds if poll_interval is None else poll_interval
        timeout = settings.job_wait_timeout_seconds if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            record = await self.get_status(job_id)
            if record.status == JobStatus.COMPLETED:
                return record
            if record.status == JobStatus.CANCELLED:
                raise JobCancelledError(record)
            if record.status == JobStatus.FAILED:
                raise JobFailedError(record)

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise JobTimeoutError(job_id, timeout, record.status)
            await asyncio.sleep(min(poll_interval, remaining))

    # =========================================================================
    # Worker side
    # =========================================================================

    async def dequeue(self) -> Optional[AnalyticsJobRecord]:
        """
        Atomically claim the next eligible job.

        Eligible: queued, scheduled_for reached, attempts left. Ordered by
        priority (highest first) then creation time.
        """
        now = self._clock()
        # Aliased so the subquery is not correlated to the UPDATE target
        candidate = aliased(AnalyticsJob)
        next_job = (
            select(candidate.id)
            .where(candidate.status == JobStatus.QUEUED.value)
            .where(candidate.scheduled_for <= now)
            .where(candidate.attempts < candidate.max_attempts)
            .order_by(candidate.priority.desc(), candidate.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        async with self._session_maker() as session:
            result = await session.execute(
                update(AnalyticsJob)
                .where(AnalyticsJob.id == next_job)
                .where(AnalyticsJob.status == JobStatus.QUEUED.value)
                .values(
                    status=JobStatus.RUNNING.value,
                    started_at=now,
                    attempts=AnalyticsJob.attempts + 1,
                    updated_at=now,
                )
                .returning(AnalyticsJob)
                .execution_options(synchronize_session=False)
            )
            row = result.scalar_one_or_none()
            if row is None:
                await session.rollback()
                return None
            record = AnalyticsJobRecord.model_validate(row)
            await session.commit()

        logger.debug(f"Claimed analytics job {record.id} (attempt {record.attempts}/{record.max_attempts})")
        return record

    async def complete(self, job_id: UUID, output: dict[str, Any]) -> bool:
        """
        Mark a running job completed with its output.

        Applying the same completion twice is a no-op.

        Returns:
            True if the job is completed, False if it was no longer running
            (cancelled, or failed by a lease expiry)
        """
        now = self._clock()
        async with self._session_maker() as session:
            result = await session.execute(
                update(AnalyticsJob)
                .where(AnalyticsJob.id == job_id)
                .where(AnalyticsJob.status == JobStatus.RUNNING.value)
                .values(
                    status=JobStatus.COMPLETED.value,
                    output=output,
                    error=None,
                    completed_at=now,
                    updated_at=now,
                )
                .returning(AnalyticsJob.id)
                .execution_options(synchronize_session=False)
            )
            if result.scalar_one_or_none() is not None:
                await session.commit()
                return True

            current = await session.scalar(select(AnalyticsJob.status).where(AnalyticsJob.id == job_id))
            if current is None:
                raise JobNotFoundError(job_id)
            if current == JobStatus.COMPLETED.value:
                return True

        logger.warning(f"Discarding result of analytics job {job_id}: job is {current}")
        return False

    async def fail(self, job_id: UUID, error: str, retry: bool = True) -> JobStatus:
        """
        Record a failed attempt of a running job.

        Args:
            retry: False fails the job permanently regardless of attempts left

        Returns:
            The job's status afterwards (queued for a retry, or failed)
        """
        now = self._clock()
        async with self._session_maker() as session:
            result = await session.execute(
                select(AnalyticsJob).where(AnalyticsJob.id == job_id).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise JobNotFoundError(job_id)
            if row.status != JobStatus.RUNNING.value:
                logger.warning(f"Ignoring failure of analytics job {job_id}: job is {row.status}")
                return JobStatus(row.status)

            new_status = self._apply_failure(row, error, retry, now)
            await session.commit()
        return new_status

    async def requeue_stale_jobs(self, timeout_seconds: Optional[int] = None) -> int:
        """
        Treat running jobs whose lease expired as failed attempts.

        Returns:
            Number of jobs requeued or failed
        """
        timeout_seconds = settings.job_timeout_seconds if timeout_seconds is None else timeout_seconds
        now = self._clock()
        cutoff = now - timedelta(seconds=timeout_seconds)

        async with self._session_maker() as session:
            result = await session.execute(
                select(AnalyticsJob)
                .where(AnalyticsJob.status == JobStatus.RUNNING.value)
                .where(AnalyticsJob.started_at < cutoff)
                .with_for_update(skip_locked=True)
            )
            rows = list(result.scalars().all())
            for row in rows:
                logger.warning(f"Analytics job {row.id} lease expired (started {row.started_at})")
                self._apply_failure(row, f"Job timed out after {timeout_seconds}s", True, now)
            await session.commit()

        if rows:
            logger.info(f"Recovered {len(rows)} stale analytics jobs")
        return len(rows)

    async def cleanup_old_jobs(self, days: Optional[int] = None) -> int:
        """
        Delete completed and cancelled jobs older than the retention window.

        Returns:
            Number of jobs deleted
        """
        days = settings.job_retention_days if days is None else days
        cutoff = self._clock() - timedelta(days=days)

        async with self._session_maker() as session:
            result = await session.execute(
                delete(AnalyticsJob)
                .where(AnalyticsJob.status.in_([JobStatus.COMPLETED.value, JobStatus.CANCELLED.value]))
                .where(AnalyticsJob.completed_at < cutoff)
            )
            await session.commit()

        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Deleted {deleted} analytics jobs older than {days} days")
        return deleted

    def _apply_failure(self, row: AnalyticsJob, error: str, retry: bool, now: datetime) -> JobStatus:
        row.error = error
        row.updated_at = now
        if retry and row.attempts < row.max_attempts:
            row.status = JobStatus.QUEUED.value
            row.started_at = None
            row.scheduled_for = now + timedelta(seconds=self._retry_delay * row.attempts)
            logger.info(
                f"Analytics job {row.id} failed attempt {row.attempts}/{row.max_attempts}, "
                f"retrying at {row.scheduled_for}"
            )
            return JobStatus.QUEUED

        row.status = JobStatus.FAILED.value
        row.completed_at = now
        logger.warning(f"Analytics job {row.id} failed permanently after {row.attempts} attempts: {error}")
        return JobStatus.FAILED
