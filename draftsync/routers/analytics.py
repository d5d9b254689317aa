"""Analytics job API endpoints.

Job submission and status for the deferred analytics queue, plus an
endpoint that runs one worker batch in-process (the ARQ worker normally
does this on a schedule).
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import get_session_maker
from ..schemas.analytics_job import (
    AnalyticsJobCreate,
    AnalyticsJobRecord,
    WorkerRunRequest,
    WorkerRunResult,
)
from ..services.analytics_worker import AnalyticsWorker
from ..services.job_queue import JobNotCancellableError, JobNotFoundError, JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/analytics",
    tags=["analytics"],
)


def get_job_queue(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> JobQueue:
    return JobQueue(session_maker)


def get_analytics_worker(
    queue: JobQueue = Depends(get_job_queue),
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> AnalyticsWorker:
    return AnalyticsWorker(queue, session_maker)


def _not_found(e: JobNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/jobs", response_model=AnalyticsJobRecord, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    body: AnalyticsJobCreate,
    queue: JobQueue = Depends(get_job_queue),
) -> AnalyticsJobRecord:
    """Queue an analytics job; input is validated against the job type."""
    return await queue.enqueue(body)


@router.get("/jobs/{job_id}", response_model=AnalyticsJobRecord)
async def get_job(
    job_id: UUID,
    queue: JobQueue = Depends(get_job_queue),
) -> AnalyticsJobRecord:
    """Full job record including output or error."""
    try:
        return await queue.get_status(job_id)
    except JobNotFoundError as e:
        raise _not_found(e)


@router.delete("/jobs/{job_id}", response_model=AnalyticsJobRecord)
async def cancel_job(
    job_id: UUID,
    queue: JobQueue = Depends(get_job_queue),
) -> AnalyticsJobRecord:
    """Cancel a queued or running job."""
    try:
        return await queue.cancel(job_id)
    except JobNotFoundError as e:
        raise _not_found(e)
    except JobNotCancellableError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/worker/run", response_model=WorkerRunResult)
async def run_worker_batch(
    body: Optional[WorkerRunRequest] = None,
    worker: AnalyticsWorker = Depends(get_analytics_worker),
) -> WorkerRunResult:
    """Process one batch of queued jobs (batch size capped at the configured maximum)."""
    batch_size = body.batch_size if body else None
    return await worker.run_batch(batch_size)
