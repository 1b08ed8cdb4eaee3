"""Internal task scheduler using APScheduler.

Runs maintenance jobs within the FastAPI process. Uses PostgreSQL advisory
locks to prevent duplicate execution when multiple instances are running.

Jobs:
- stale_ai_processing: clears the AI-processing flag on threads whose
  pipeline run died (process restart, crash) so the UI stops showing a
  spinner forever.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text

from app.config import settings
from app.core.database import async_session_maker

logger = logging.getLogger(__name__)

# Advisory lock IDs (arbitrary unique integers, one per job)
STALE_AI_PROCESSING_LOCK_ID = 734101


@asynccontextmanager
async def advisory_lock(lock_id: int) -> AsyncIterator[bool]:
    """
    Acquire a PostgreSQL advisory lock for the duration of the context.

    Uses pg_try_advisory_lock(), which returns immediately: if another
    process holds the lock, the job is skipped.
    """
    async with async_session_maker() as session:
        result = await session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        acquired = result.scalar()

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            await session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": lock_id},
            )
            await session.commit()


async def run_stale_ai_processing_sweep() -> dict[str, Any] | None:
    """
    Clear AI-processing flags older than ``stale_ai_processing_minutes``.

    Returns a report dict if executed, None if skipped or failed.
    """
    async with advisory_lock(STALE_AI_PROCESSING_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Stale-AI sweep: skipped (another instance is running)")
            return None

        try:
            from app.domain.feedback_thread_operations import feedback_thread_ops

            cutoff = datetime.now(UTC) - timedelta(minutes=settings.stale_ai_processing_minutes)
            async with async_session_maker() as db:
                cleared = await feedback_thread_ops.clear_stale_ai_processing(db, cutoff)
                await db.commit()

            if cleared:
                logger.warning(f"[scheduler] Stale-AI sweep: cleared {cleared} stuck thread(s)")
            return {"cleared": cleared, "cutoff": cutoff.isoformat()}

        except Exception as e:
            logger.exception(f"[scheduler] Stale-AI sweep: failed with error: {e}")
            return None


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            run_stale_ai_processing_sweep,
            trigger=IntervalTrigger(minutes=settings.stale_ai_sweep_interval_minutes),
            id="stale_ai_processing",
            name="Clear Stale AI-Processing Flags",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with stale-AI sweep every "
            f"{settings.stale_ai_sweep_interval_minutes} min"
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("[scheduler] Stopped")

    async def trigger_now(self, job_id: str) -> dict[str, Any] | None:
        """
        Manually trigger a job immediately (for testing/debugging).

        Returns the job result or None if job not found.
        """
        if job_id == "stale_ai_processing":
            return await run_stale_ai_processing_sweep()
        return None


scheduler = Scheduler()
