"""Call session persistence service."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from outbound_caller.db.models import CallSession, Lead, TranscriptEntry
from outbound_caller.services.agent.state import TranscriptTurn


class CallPersistenceService:
    """Service for persisting call session data."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_call_session(
        self, call_id: str, lead: Lead, task_id: Optional[int] = None
    ) -> CallSession:
        """Create a call session in its initial state."""
        now = datetime.utcnow()
        call_session = CallSession(
            call_id=call_id,
            task_id=task_id,
            lead_id=lead.id,
            lead_name=lead.name,
            company_id=lead.company_id,
            status="initiated",
            started_at=now,
            conversation_turn_count=0,
            status_history=[{"status": "initiated", "at": now.isoformat(), "flagged": False}],
        )
        self.db.add(call_session)
        await self.db.commit()
        await self.db.refresh(call_session)
        return call_session

    async def get_call_session(self, call_id: str) -> Optional[CallSession]:
        """Get call session by provider call id."""
        result = await self.db.execute(
            select(CallSession)
            .where(CallSession.call_id == call_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_call_session_with_transcript(self, call_id: str) -> Optional[CallSession]:
        result = await self.db.execute(
            select(CallSession)
            .where(CallSession.call_id == call_id)
            .options(selectinload(CallSession.transcript_entries))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_call_sessions(
        self, lead_id: Optional[int] = None, limit: int = 50
    ) -> List[CallSession]:
        """Most recent call sessions first, with transcripts."""
        query = (
            select(CallSession)
            .options(selectinload(CallSession.transcript_entries))
            .execution_options(populate_existing=True)
            .order_by(CallSession.started_at.desc(), CallSession.id.desc())
            .limit(limit)
        )
        if lead_id is not None:
            query = query.where(CallSession.lead_id == lead_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_transcript(self, call_session_id: int) -> List[TranscriptEntry]:
        """Transcript entries in spoken order."""
        result = await self.db.execute(
            select(TranscriptEntry)
            .where(TranscriptEntry.call_session_id == call_session_id)
            .order_by(TranscriptEntry.position)
        )
        return list(result.scalars().all())

    async def count_transcript_entries(self, call_session_id: int) -> int:
        result = await self.db.execute(
            select(func.count(TranscriptEntry.id)).where(
                TranscriptEntry.call_session_id == call_session_id
            )
        )
        return result.scalar_one()

    async def append_transcript(
        self, call_session: CallSession, turns: Sequence[TranscriptTurn]
    ) -> None:
        """Add transcript lines after the ones already stored. Does not commit."""
        if not turns:
            return
        position = await self.count_transcript_entries(call_session.id)
        for turn in turns:
            self.db.add(
                TranscriptEntry(
                    call_session_id=call_session.id,
                    position=position,
                    speaker=turn.speaker.value,
                    text=turn.text,
                    spoken_at=turn.timestamp,
                )
            )
            position += 1

    @staticmethod
    def record_status(
        call_session: CallSession,
        status: str,
        flagged: bool = False,
        reason: Optional[str] = None,
    ) -> None:
        """Set the session status and append it to the status history. Does not commit."""
        entry: Dict[str, Any] = {
            "status": status,
            "at": datetime.utcnow().isoformat(),
            "flagged": flagged,
        }
        if reason:
            entry["reason"] = reason
        # Reassign so the JSON column is marked dirty
        call_session.status_history = list(call_session.status_history or []) + [entry]
        call_session.status = status

    async def update_recording(self, call_id: str, recording_ref: str) -> Optional[CallSession]:
        """Attach a recording reference to a call session."""
        call_session = await self.get_call_session(call_id)
        if call_session:
            call_session.recording_ref = recording_ref
            await self.db.commit()
        return call_session

    async def update_insights(self, call_id: str, insights: Dict[str, Any]) -> Optional[CallSession]:
        call_session = await self.get_call_session(call_id)
        if call_session:
            call_session.insights = insights
            await self.db.commit()
        return call_session
