"""Places the calls that scheduled tasks ask for."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.core.config import settings
from outbound_caller.core.exceptions import NotFound, OutboundCallerError
from outbound_caller.services.call_session.manager import CallSessionManager
from outbound_caller.services.call_session.reconciler import StatusReconciler
from outbound_caller.services.persistence.tasks import TaskPersistenceService

logger = logging.getLogger(__name__)


class DispatchResult(BaseModel):
    """Outcome of dispatching one task."""

    task_id: int
    lead_name: Optional[str] = None
    success: bool
    status: str  # initiated, failed, skipped
    message: str
    call_id: Optional[str] = None


class DispatchReport(BaseModel):
    processed: int = 0
    results: List[DispatchResult] = []


class ScheduledCallDispatcher:
    """
    Dials every pending call task that is due.

    Tasks are handled one after another. Each task is claimed with a
    conditional update before dialing, so overlapping runs never dial the
    same task twice. Failures are collected per task and never stop the run.
    """

    def __init__(
        self,
        db: AsyncSession,
        manager: CallSessionManager,
        reconciler: StatusReconciler,
        tolerance: Optional[timedelta] = None,
    ):
        self.db = db
        self.manager = manager
        self.reconciler = reconciler
        self.tolerance = tolerance or timedelta(minutes=settings.dispatch_tolerance_minutes)
        self.task_persistence = TaskPersistenceService(db)

    async def run(self, now: Optional[datetime] = None) -> DispatchReport:
        now = now or datetime.utcnow()
        tasks = await self.task_persistence.get_due_call_tasks(now, self.tolerance)
        logger.info(f"[DISPATCH] {len(tasks)} due call task(s) around {now.isoformat()}")

        # Ids only: a failed placement rolls back the session and expires loaded rows
        task_ids = [task.id for task in tasks]

        report = DispatchReport()
        for task_id in task_ids:
            # Cancellation lands between tasks, never halfway through one
            result = await asyncio.shield(self._dispatch(task_id))
            report.results.append(result)
            if result.status != "skipped":
                report.processed += 1

        logger.info(
            f"[DISPATCH] Run finished - processed: {report.processed}, "
            f"placed: {sum(1 for r in report.results if r.success)}"
        )
        return report

    async def _dispatch(self, task_id: int) -> DispatchResult:
        task = await self.task_persistence.get_task(task_id)
        lead = task.lead if task else None
        lead_name = lead.name if lead else None

        claimed = await self.task_persistence.claim_task(task_id)
        if not claimed:
            logger.info(f"[DISPATCH] Task {task_id} already claimed elsewhere, skipping")
            return DispatchResult(
                task_id=task_id,
                lead_name=lead_name,
                success=False,
                status="skipped",
                message="Task was claimed by another run",
            )

        try:
            if lead is None:
                raise NotFound(f"Lead for task {task_id} not found")
            call_id = await self.manager.place(lead.phone, lead, task_id=task_id)
        except Exception as e:
            if isinstance(e, OutboundCallerError):
                message = f"{type(e).__name__}: {e}"
                logger.warning(f"[DISPATCH] Task {task_id} not placed - {message}")
            else:
                message = f"Unexpected error: {e}"
                logger.error(f"[DISPATCH] Task {task_id} not placed - {message}", exc_info=True)
            await self.db.rollback()
            await self.reconciler.resolve_unplaced_task(task_id, message)
            return DispatchResult(
                task_id=task_id,
                lead_name=lead_name,
                success=False,
                status="failed",
                message=message,
            )

        logger.info(f"[DISPATCH] Task {task_id} placed - CallSid: {call_id}")
        return DispatchResult(
            task_id=task_id,
            lead_name=lead_name,
            success=True,
            status="initiated",
            message="Call initiated successfully",
            call_id=call_id,
        )
