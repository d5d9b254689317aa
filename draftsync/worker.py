"""
ARQ Worker Configuration

Background job processing with Redis-backed task queue.
Drains the analytics job queue on a schedule and keeps it healthy.

Run with:
    arq draftsync.worker.WorkerSettings
"""

import logging
from datetime import datetime
from typing import Any

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import settings
from .database import async_session_maker
from .services.analytics_worker import AnalyticsWorker
from .services.job_queue import JobQueue

logger = logging.getLogger(__name__)

# Parse Redis URL into components for ARQ
# Format: redis://host:port/db or redis://:password@host:port/db
def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into ARQ RedisSettings."""
    from urllib.parse import urlparse

    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path.lstrip("/") or 0),
    )


def _session_maker(ctx: dict[str, Any]) -> async_sessionmaker[AsyncSession]:
    return ctx.get("session_maker") or async_session_maker


def _job_queue(ctx: dict[str, Any]) -> JobQueue:
    return ctx.get("job_queue") or JobQueue(_session_maker(ctx))


# =============================================================================
# Analytics Jobs
# =============================================================================


async def process_analytics_jobs(ctx: dict[str, Any]) -> dict[str, Any]:
    """
    Process one batch of queued analytics jobs.

    Returns:
        dict with counts of processed, succeeded and failed jobs
    """
    worker = AnalyticsWorker(_job_queue(ctx), _session_maker(ctx))
    result = await worker.run_batch(settings.job_batch_size)

    if result.processed:
        logger.info(
            f"Analytics jobs complete: {result.succeeded} succeeded, {result.failed} failed"
        )

    return {
        "processed": result.processed,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "run_at": datetime.utcnow().isoformat(),
    }


async def requeue_stale_analytics_jobs(ctx: dict[str, Any]) -> dict[str, int]:
    """
    Reclaim running jobs whose lease expired (worker crashed mid-job).

    Returns:
        dict with count of reclaimed jobs
    """
    reclaimed = 0
    try:
        reclaimed = await _job_queue(ctx).requeue_stale_jobs()
        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} stale analytics jobs")
    except Exception as e:
        logger.error(f"Error reclaiming stale analytics jobs: {e}", exc_info=True)

    return {"reclaimed": reclaimed}


async def cleanup_analytics_jobs(ctx: dict[str, Any]) -> dict[str, Any]:
    """
    Delete completed and cancelled jobs past the retention window.

    Returns:
        dict with count of deleted jobs
    """
    logger.info("Running scheduled analytics job cleanup...")

    deleted = 0
    try:
        deleted = await _job_queue(ctx).cleanup_old_jobs()
        logger.info(f"Analytics job cleanup complete: {deleted} jobs deleted")
    except Exception as e:
        logger.error(f"Error cleaning up analytics jobs: {e}", exc_info=True)

    return {
        "deleted": deleted,
        "run_at": datetime.utcnow().isoformat(),
    }


# =============================================================================
# Startup/Shutdown Hooks
# =============================================================================

async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    logger.info("ARQ worker starting up...")
    ctx["session_maker"] = async_session_maker
    ctx["job_queue"] = JobQueue(async_session_maker)


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    logger.info("ARQ worker shutting down...")
    ctx.pop("job_queue", None)
    ctx.pop("session_maker", None)


# =============================================================================
# Schedule Parsing
# =============================================================================

def parse_schedule_set(value: str) -> set[int]:
    """
    Parse a comma-separated string of integers into a set.

    Examples:
        "0,12" -> {0, 12}
        "0,15,30,45" -> {0, 15, 30, 45}
    """
    return {int(x.strip()) for x in value.split(",") if x.strip()}


def get_analytics_poll_seconds() -> set[int]:
    """Get analytics queue poll seconds from settings."""
    return parse_schedule_set(settings.arq_analytics_poll_seconds)


# =============================================================================
# Worker Settings
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration."""

    # Redis connection
    redis_settings = parse_redis_url(settings.redis_url)

    # Job functions that can be called via arq.enqueue_job()
    functions = [
        process_analytics_jobs,
        requeue_stale_analytics_jobs,
        cleanup_analytics_jobs,
    ]

    # Scheduled cron jobs (configured via .env)
    # ARQ_ANALYTICS_POLL_SECONDS: comma-separated seconds (default every 10s)
    # ARQ_CLEANUP_HOUR: hour of day for old-job cleanup (default 3)
    cron_jobs = [
        cron(process_analytics_jobs, second=get_analytics_poll_seconds()),
        cron(requeue_stale_analytics_jobs, second={0}),
        cron(cleanup_analytics_jobs, hour={settings.arq_cleanup_hour}, minute=0, second=0),
    ]

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown

    # Worker behavior
    max_jobs = 10  # Max concurrent jobs
    job_timeout = 300  # 5 minutes max per job
    keep_result = 3600  # Keep results for 1 hour

    # Health check
    health_check_interval = 30
