"""Scheduled cleanup jobs."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError

from defi_agent.store.db import Database
from defi_agent.store.repository import TASK_RETENTION_HOURS, Repository
from defi_agent.utils.logging import get_logger

logger = get_logger(__name__)

PURGE_TASKS_JOB = "purge_tasks"


class CleanupService:
    """Periodic cleanup of old task records."""

    def __init__(
        self,
        db: Database,
        scheduler: AsyncIOScheduler,
        retention_hours: int = TASK_RETENTION_HOURS,
        interval_hours: int = 6,
    ):
        self.db = db
        self.scheduler = scheduler
        self.retention_hours = retention_hours
        self.interval_hours = interval_hours

    def start(self) -> None:
        """Register cleanup jobs with the scheduler."""
        self.scheduler.add_job(
            self.purge_old_tasks,
            trigger="interval",
            hours=self.interval_hours,
            id=PURGE_TASKS_JOB,
            replace_existing=True,
        )
        logger.info(
            "cleanup_jobs_started",
            jobs=[PURGE_TASKS_JOB],
            retention_hours=self.retention_hours,
        )

    async def purge_old_tasks(self) -> None:
        """Remove task records older than the retention period."""
        try:
            async with self.db.session() as session:
                removed = await Repository(session).purge_old_tasks(self.retention_hours)
            logger.info("purge_tasks_success", removed=removed)
        except SQLAlchemyError as exc:
            logger.error("purge_tasks_failed", error=str(exc))


__all__ = ["CleanupService", "PURGE_TASKS_JOB"]
