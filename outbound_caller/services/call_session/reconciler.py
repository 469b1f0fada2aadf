"""Reconciles provider status callbacks with call sessions and scheduled tasks."""
import logging
from datetime import datetime
from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.core.exceptions import OutboundCallerError
from outbound_caller.services.agent.insights import CallInsights
from outbound_caller.services.call_session.manager import CallSessionManager
from outbound_caller.services.call_session.models import (
    CallStatus,
    StatusOutcome,
    from_provider_status,
)
from outbound_caller.services.persistence.calls import CallPersistenceService
from outbound_caller.services.persistence.leads import LeadPersistenceService
from outbound_caller.services.persistence.tasks import (
    TASK_COMPLETED,
    TASK_FAILED,
    TaskPersistenceService,
)

logger = logging.getLogger(__name__)


def parse_duration(value: Union[str, int, None]) -> Optional[int]:
    """Parse the provider's CallDuration, which arrives as a form string."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"[RECONCILE] Ignoring unparseable call duration '{value}'")
        return None


class StatusReconciler:
    """
    Turns provider status callbacks into call session transitions, and
    terminal calls into resolved tasks and stored insights.

    A task reaches a final status only through this class: once when its
    call turns terminal, or through ``resolve_unplaced_task`` when no call
    was ever placed.
    """

    def __init__(self, db: AsyncSession, manager: CallSessionManager):
        self.db = db
        self.manager = manager
        self.call_persistence = CallPersistenceService(db)
        self.lead_persistence = LeadPersistenceService(db)
        self.task_persistence = TaskPersistenceService(db)

    async def handle_status_event(
        self,
        call_id: str,
        provider_status: Optional[str],
        duration: Union[str, int, None] = None,
    ) -> StatusOutcome:
        status = from_provider_status(provider_status)
        if status is None:
            logger.warning(
                f"[RECONCILE] Unrecognized provider status '{provider_status}' - CallSid: {call_id}"
            )
            return StatusOutcome(call_id=call_id, reason=f"unrecognized status '{provider_status}'")

        outcome = await self.manager.on_status_event(call_id, status, parse_duration(duration))
        if not outcome.known or not outcome.became_terminal:
            return outcome

        if outcome.task_id is not None:
            await self._resolve_task(outcome, provider_status)

        await self._store_insights(outcome)
        return outcome

    async def _resolve_task(self, outcome: StatusOutcome, provider_status: str) -> None:
        task_status = TASK_COMPLETED if outcome.status == CallStatus.COMPLETED else TASK_FAILED
        metadata = {
            "call_id": outcome.call_id,
            "call_status": provider_status,
            "call_duration": outcome.duration_seconds,
            "flagged": outcome.flagged,
        }
        resolved = await self.task_persistence.resolve_task(outcome.task_id, task_status, metadata)
        if resolved:
            logger.info(f"[RECONCILE] Task {outcome.task_id} -> {task_status} - CallSid: {outcome.call_id}")
        else:
            logger.warning(
                f"[RECONCILE] Task {outcome.task_id} was not in progress, left unchanged - "
                f"CallSid: {outcome.call_id}"
            )

    async def _store_insights(self, outcome: StatusOutcome) -> None:
        """Summarize the finished call; runs after the call lock is released."""
        context = outcome.context
        try:
            if context is None:
                context = await self.manager.load_context(outcome.call_id)
        except OutboundCallerError as e:
            logger.warning(f"[RECONCILE] Cannot rebuild context for summary - CallSid: {outcome.call_id}: {e}")
            context = None

        if context is None:
            insights = CallInsights.unavailable("No conversation context")
        else:
            insights = await self.manager.engine.summarize(context)

        data = insights.model_dump()
        await self.call_persistence.update_insights(outcome.call_id, data)

        if insights.available and outcome.lead_id is not None:
            await self.lead_persistence.update_ai_insights(
                outcome.lead_id,
                {**data, "call_id": outcome.call_id, "analyzed_at": datetime.utcnow().isoformat()},
            )

    async def resolve_unplaced_task(self, task_id: int, message: str) -> bool:
        """Fail a claimed task whose placement never produced a call."""
        resolved = await self.task_persistence.resolve_task(
            task_id,
            TASK_FAILED,
            {"call_id": None, "call_status": "not_placed", "error": message, "flagged": False},
        )
        if resolved:
            logger.info(f"[RECONCILE] Task {task_id} failed before placement: {message}")
        else:
            logger.warning(f"[RECONCILE] Task {task_id} was not in progress, left unchanged")
        return resolved
