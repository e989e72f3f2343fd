"""
RQ job functions for session maintenance.
These are the entry points that the worker calls.
"""

import asyncio
from datetime import timedelta
from typing import Optional

import structlog
from redis import Redis
from rq import Queue

from app.config import settings

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the maintenance job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def schedule_purge(queue: Optional[Queue] = None, delay_minutes: Optional[int] = None) -> str:
    """
    Schedule the next purge run. Needs a worker started with the scheduler.
    Returns the job ID.
    """
    q = queue if queue is not None else get_queue()
    delay = settings.PURGE_INTERVAL_MINUTES if delay_minutes is None else delay_minutes
    job = q.enqueue_in(
        timedelta(minutes=delay),
        purge_expired_sessions_job,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("purge_scheduled", job_id=job.id, delay_minutes=delay)
    return job.id


def purge_expired_sessions_job(reschedule: bool = True) -> dict:
    """
    Delete expired, unfinalized review sessions and their raw uploads, then
    schedule the next run. Runs inside the RQ worker process.
    """
    logger.info("job_started", job="purge_expired_sessions")

    try:
        purged = asyncio.run(_purge_async())
    except Exception as e:
        logger.error("job_failed", job="purge_expired_sessions", error=str(e))
        raise
    finally:
        if reschedule:
            schedule_purge()

    logger.info("job_completed", job="purge_expired_sessions", purged=purged)
    return {"purged": purged}


async def _purge_async() -> int:
    from app.models.database import close_db
    from app.pipeline.taxonomy import Taxonomy
    from app.review.staging import StagingStore
    from app.storage.artifact_store import ArtifactStore
    from app.storage.sql_repository import SqlAssetRepository

    store = StagingStore(SqlAssetRepository(), Taxonomy.default())
    try:
        return await store.purge_expired(artifacts=ArtifactStore())
    finally:
        # pooled connections are bound to this event loop
        await close_db()
