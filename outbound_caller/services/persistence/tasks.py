"""Scheduled task persistence service."""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from outbound_caller.db.models import ScheduledTask

TASK_PENDING = "pending"
TASK_IN_PROGRESS = "in_progress"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"


class TaskPersistenceService:
    """Service for selecting, claiming and resolving scheduled tasks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_task(self, task_id: int) -> Optional[ScheduledTask]:
        """Get task by ID with its lead."""
        result = await self.db.execute(
            select(ScheduledTask)
            .where(ScheduledTask.id == task_id)
            .options(selectinload(ScheduledTask.lead))
        )
        return result.scalar_one_or_none()

    async def get_due_call_tasks(
        self, now: datetime, tolerance: timedelta
    ) -> List[ScheduledTask]:
        """Pending call tasks scheduled within +/- tolerance of now, oldest first."""
        result = await self.db.execute(
            select(ScheduledTask)
            .where(
                ScheduledTask.task_type == "call",
                ScheduledTask.status == TASK_PENDING,
                ScheduledTask.scheduled_at >= now - tolerance,
                ScheduledTask.scheduled_at <= now + tolerance,
            )
            .options(selectinload(ScheduledTask.lead))
            .order_by(ScheduledTask.scheduled_at, ScheduledTask.id)
        )
        return list(result.scalars().all())

    async def claim_task(self, task_id: int) -> bool:
        """
        Move a task from pending to in_progress.

        Single conditional UPDATE; returns True only for the caller whose
        update matched the row, so two dispatchers can never both own a task.
        """
        result = await self.db.execute(
            update(ScheduledTask)
            .where(ScheduledTask.id == task_id, ScheduledTask.status == TASK_PENDING)
            .values(status=TASK_IN_PROGRESS)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def resolve_task(
        self, task_id: int, status: str, metadata: Dict[str, Any]
    ) -> bool:
        """Move an in_progress task to its final status. Returns False if it was not in_progress."""
        result = await self.db.execute(
            update(ScheduledTask)
            .where(ScheduledTask.id == task_id, ScheduledTask.status == TASK_IN_PROGRESS)
            .values(
                status=status,
                result_metadata=metadata,
                completed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1
