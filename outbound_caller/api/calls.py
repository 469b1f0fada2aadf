"""Call placement and history API endpoints."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.core.dependencies import get_session_manager, get_status_reconciler
from outbound_caller.core.exceptions import (
    ConfigError,
    InvalidNumber,
    NotFound,
    OutboundCallerError,
    ProviderError,
)
from outbound_caller.db.database import get_db
from outbound_caller.db.models import CallSession
from outbound_caller.services.call_session.manager import CallSessionManager
from outbound_caller.services.call_session.reconciler import StatusReconciler
from outbound_caller.services.persistence.calls import CallPersistenceService
from outbound_caller.services.persistence.leads import LeadPersistenceService
from outbound_caller.services.persistence.tasks import TaskPersistenceService

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFound: 404,
    InvalidNumber: 400,
    ProviderError: 502,
    ConfigError: 503,
}


def _http_error(error: Exception) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


class PlaceCallRequest(BaseModel):
    """Manual call placement request."""
    lead_id: int
    phone_number: Optional[str] = None  # Defaults to the lead's phone
    from_number: Optional[str] = None
    task_id: Optional[int] = None


class PlaceCallResponse(BaseModel):
    success: bool
    call_id: str
    status: str


class TranscriptEntryResponse(BaseModel):
    """Transcript line response model."""
    position: int
    speaker: str
    text: str
    spoken_at: str


class CallSessionResponse(BaseModel):
    """Call session response model."""
    id: int
    call_id: str
    task_id: Optional[int] = None
    lead_id: Optional[int] = None
    lead_name: Optional[str] = None
    status: str
    started_at: str
    ended_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    recording_ref: Optional[str] = None
    conversation_turn_count: int
    status_history: Optional[list] = None
    insights: Optional[dict] = None
    transcript: List[TranscriptEntryResponse] = []


def _to_response(call_session: CallSession) -> CallSessionResponse:
    return CallSessionResponse(
        id=call_session.id,
        call_id=call_session.call_id,
        task_id=call_session.task_id,
        lead_id=call_session.lead_id,
        lead_name=call_session.lead_name,
        status=call_session.status,
        started_at=call_session.started_at.isoformat() if call_session.started_at else "",
        ended_at=call_session.ended_at.isoformat() if call_session.ended_at else None,
        duration_seconds=call_session.duration_seconds,
        recording_ref=call_session.recording_ref,
        conversation_turn_count=call_session.conversation_turn_count or 0,
        status_history=call_session.status_history,
        insights=call_session.insights,
        transcript=[
            TranscriptEntryResponse(
                position=entry.position,
                speaker=entry.speaker,
                text=entry.text,
                spoken_at=entry.spoken_at.isoformat() if entry.spoken_at else "",
            )
            for entry in call_session.transcript_entries
        ],
    )


@router.post("/api/calls", response_model=PlaceCallResponse)
async def place_call(
    payload: PlaceCallRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    session_manager: CallSessionManager = Depends(get_session_manager),
    reconciler: StatusReconciler = Depends(get_status_reconciler),
):
    """Place a call to a lead right away, optionally on behalf of a pending task."""
    logger.info(
        f"[PLACE CALL] Request received - lead: {payload.lead_id}, task: {payload.task_id}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    lead = await LeadPersistenceService(db).get_lead(payload.lead_id)
    if lead is None:
        raise HTTPException(status_code=404, detail=f"Lead {payload.lead_id} not found")

    if payload.task_id is not None:
        task_persistence = TaskPersistenceService(db)
        task = await task_persistence.get_task(payload.task_id)
        if task is None or task.lead_id != lead.id:
            raise HTTPException(status_code=404, detail=f"Task {payload.task_id} not found for lead {lead.id}")
        if not await task_persistence.claim_task(payload.task_id):
            raise HTTPException(status_code=409, detail=f"Task {payload.task_id} is not pending")

    try:
        call_id = await session_manager.place(
            payload.phone_number or lead.phone,
            lead,
            from_number=payload.from_number,
            task_id=payload.task_id,
        )
    except Exception as e:
        if isinstance(e, OutboundCallerError):
            message = f"{type(e).__name__}: {e}"
            logger.warning(f"[PLACE CALL] Placement failed - lead: {payload.lead_id}, Error: {message}")
        else:
            message = f"Unexpected error: {e}"
            logger.error(f"[PLACE CALL] Placement failed - lead: {payload.lead_id}, Error: {message}", exc_info=True)
        await db.rollback()
        if payload.task_id is not None:
            await reconciler.resolve_unplaced_task(payload.task_id, message)
        raise _http_error(e) from e

    return PlaceCallResponse(success=True, call_id=call_id, status="initiated")


@router.get("/api/calls", response_model=List[CallSessionResponse])
async def get_call_history(
    request: Request,
    lead_id: Optional[int] = None,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
):
    """Get recent call sessions with their transcripts."""
    logger.info(
        f"[CALL HISTORY] Request received - lead: {lead_id}, limit: {limit}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    call_sessions = await CallPersistenceService(db).list_call_sessions(lead_id=lead_id, limit=limit)
    logger.info(f"[CALL HISTORY] Found {len(call_sessions)} call sessions")
    return [_to_response(call_session) for call_session in call_sessions]


@router.get("/api/calls/{call_id}", response_model=CallSessionResponse)
async def get_call(call_id: str, db: AsyncSession = Depends(get_db)):
    """Get one call session with its transcript."""
    call_session = await CallPersistenceService(db).get_call_session_with_transcript(call_id)
    if call_session is None:
        raise HTTPException(status_code=404, detail=f"Call {call_id} not found")
    return _to_response(call_session)
