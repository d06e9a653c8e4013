"""Background task scheduler: daily activity-log archival.

Uses FastAPI's lifespan context to build the shared AuditLogService and
to start/stop an asyncio background loop.  No Celery, no APScheduler:
a sleep loop fires once per day at the configured hour.

Usage:
    In main.py:

        from app.services.scheduler import lifespan
        app = FastAPI(lifespan=lifespan, ...)

Configuration:
    ARCHIVE_HOUR=2                   (run at 02:00 UTC daily, via .env)
    ACTIVITY_LOG_RETENTION_DAYS=90
    SCHEDULER_ENABLED=true

Several API workers each run their own loop.  Before a sweep the loop
takes a Redis SET NX lock so only one worker archives per day; the lock
expires on its own after ARCHIVE_LOCK_TTL_SECONDS.  If Redis is down the
sweep runs anyway: flipping `archived` again is a no-op per row, so an
overlapping run can only over-report its count.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from redis.exceptions import RedisError

from app.config import settings
from app.database import async_session
from app.services.audit_log import AuditLogService
from app.utils.redis_client import close_redis, get_redis

logger = logging.getLogger("storefront.scheduler")

ARCHIVE_LOCK_KEY = "storefront:jobs:archive-activity-logs"


async def archive_activity_logs(
    service: AuditLogService, days_to_keep: int | None = None,
) -> int:
    """Archive activity logs past the retention window.

    Failures are logged and re-raised so the caller (scheduler loop or
    CLI) can report them.
    """
    logger.info("Starting archive for activity logs")
    try:
        archived_count = await service.archive_old_logs(days_to_keep)
    except Exception:
        logger.exception("Failed to archive activity logs")
        raise

    if archived_count == 0:
        logger.info("No logs to archive")
        return 0

    logger.info("Successfully archived %d logs", archived_count)
    return archived_count


async def _acquire_run_lock() -> bool:
    """Take the cross-worker archival lock.  True if this worker should run."""
    try:
        client = await get_redis()
        acquired = await client.set(
            ARCHIVE_LOCK_KEY,
            str(uuid.uuid4()),
            nx=True,
            ex=settings.archive_lock_ttl_seconds,
        )
    except RedisError:
        logger.warning("Redis unavailable; running archival without a run lock")
        return True
    return bool(acquired)


async def run_scheduled_archival(service: AuditLogService) -> int | None:
    """One scheduler tick: archive unless another worker holds the lock.

    Returns the archived count, or None when the run was skipped.
    """
    if not await _acquire_run_lock():
        logger.info("Archival already claimed by another worker, skipping")
        return None
    return await archive_activity_logs(service)


def _seconds_until(hour: int, now: datetime) -> float:
    """Seconds from `now` until the next HH:00 UTC."""
    next_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        # Already past today's target, schedule for tomorrow
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def _scheduler_loop(service: AuditLogService) -> None:
    """Sleep loop that fires the archival sweep once per day."""
    while True:
        wait_seconds = _seconds_until(
            settings.archive_hour, datetime.now(timezone.utc)
        )
        logger.info("Next activity log archival in %.0f seconds", wait_seconds)

        await asyncio.sleep(wait_seconds)

        try:
            await run_scheduled_archival(service)
        except Exception:
            logger.exception("Unhandled error in activity log archival")

        # Small buffer to avoid running twice in the same minute
        await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: build services, start the scheduler, clean up on shutdown."""
    service = AuditLogService(async_session)
    app.state.audit_log_service = service

    task = None
    if settings.scheduler_enabled:
        task = asyncio.create_task(_scheduler_loop(service))
        logger.info("Archival scheduler started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Archival scheduler stopped")
        await service.drain()
        await close_redis()
