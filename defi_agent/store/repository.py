"""High-level database operations."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from defi_agent.tasks import Task
from defi_agent.utils.logging import get_logger

from .db import Database, TaskRecord

logger = get_logger(__name__)

TASK_RETENTION_HOURS = 72


class Repository:
    """CRUD utilities wrapping SQLModel sessions."""

    def __init__(self, session) -> None:
        self.session = session

    async def save_task(self, task: Task) -> TaskRecord:
        """Insert or update the record for ``task``."""
        artifacts = (
            json.dumps([a.model_dump(by_alias=True, mode="json") for a in task.artifacts])
            if task.artifacts
            else None
        )
        history = json.dumps(task.history, default=str) if task.history else None

        record = await self.session.get(TaskRecord, task.id)
        if record is None:
            record = TaskRecord(id=task.id, context_id=task.context_id, state=task.state.value)
            self.session.add(record)
        record.state = task.state.value
        record.message = task.text or None
        record.artifacts = artifacts
        record.history = history
        record.updated_at = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        result = await self.session.execute(
            select(TaskRecord).where(TaskRecord.id == task_id)
        )
        return result.scalar_one_or_none()

    async def list_tasks_for_context(
        self, context_id: str, limit: int = 20
    ) -> List[TaskRecord]:
        """Most recent tasks of a conversation, oldest first."""
        result = await self.session.execute(
            select(TaskRecord)
            .where(TaskRecord.context_id == context_id)
            .order_by(TaskRecord.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def purge_old_tasks(
        self,
        retention_hours: int = TASK_RETENTION_HOURS,
    ) -> int:
        """Remove task records older than the retention period."""
        cutoff = datetime.utcnow() - timedelta(hours=retention_hours)
        result = await self.session.execute(
            TaskRecord.__table__.delete().where(TaskRecord.created_at < cutoff)
        )
        await self.session.commit()
        return result.rowcount


class TaskStore:
    """Persists orchestrator tasks through short-lived repository sessions."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def save_task(self, task: Task) -> None:
        try:
            async with self.db.session() as session:
                await Repository(session).save_task(task)
        except SQLAlchemyError as exc:
            logger.error("task_persist_failed", task_id=task.id, error=str(exc))

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        async with self.db.session() as session:
            return await Repository(session).get_task(task_id)


__all__ = ["Repository", "TASK_RETENTION_HOURS", "TaskStore"]
