"""Twilio voice webhook endpoints."""
import logging
from fastapi import APIRouter, Request, Form, Depends, Query
from fastapi.responses import Response

from outbound_caller.core.dependencies import get_session_manager, get_status_reconciler
from outbound_caller.core.exceptions import UnknownCallId
from outbound_caller.services.call_session.manager import CallSessionManager
from outbound_caller.services.call_session.reconciler import StatusReconciler
from outbound_caller.services.speech.twiml import TwimlBuilder

router = APIRouter()
logger = logging.getLogger(__name__)


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/voice/answer")
async def handle_answer(
    request: Request,
    CallSid: str = Form(...),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle an answered outbound call.

    Twilio fetches this when the lead picks up; the reply greets them and
    opens a listening window.
    """
    logger.info(f"[ANSWER] Call answered - CallSid: {CallSid}, Client: {_client(request)}")

    twiml = await session_manager.greet_and_gather(CallSid)

    logger.info(f"[ANSWER] TwiML length: {len(twiml)} bytes - CallSid: {CallSid}")
    return Response(content=twiml, media_type="application/xml")


@router.post("/voice/gather")
async def handle_gather(
    request: Request,
    CallSid: str = Query(...),
    SpeechResult: str = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle gathered speech from Twilio.

    This endpoint is called after Twilio collects the lead's speech, and
    again without SpeechResult when the listening window timed out.
    """
    logger.info(
        f"[GATHER] Received speech input - CallSid: {CallSid}, "
        f"SpeechResult length: {len(SpeechResult) if SpeechResult else 0}, "
        f"Client: {_client(request)}"
    )
    if SpeechResult:
        logger.debug(
            f"[GATHER] Speech text: '{SpeechResult[:200]}{'...' if len(SpeechResult) > 200 else ''}' - CallSid: {CallSid}"
        )

    twiml = await session_manager.on_speech_event(CallSid, SpeechResult)
    return Response(content=twiml, media_type="application/xml")


@router.post("/voice/status")
async def handle_call_status(
    request: Request,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    CallDuration: str = Form(None),
    reconciler: StatusReconciler = Depends(get_status_reconciler),
):
    """
    Handle call status updates from Twilio.

    Always answers OK so Twilio does not retry.
    """
    logger.info(
        f"[CALL STATUS] Received status update - CallSid: {CallSid}, "
        f"CallStatus: {CallStatus}, CallDuration: {CallDuration}, Client: {_client(request)}"
    )

    try:
        outcome = await reconciler.handle_status_event(CallSid, CallStatus, CallDuration)
        if outcome.became_terminal:
            logger.info(
                f"[CALL STATUS] Call ended - CallSid: {CallSid}, Final status: {outcome.status}"
            )
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )

    return Response(content="OK", media_type="text/plain")


@router.post("/voice/recording")
async def handle_recording(
    request: Request,
    CallSid: str = Form(...),
    RecordingUrl: str = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Handle the recording-completed callback from Twilio."""
    logger.info(f"[RECORDING] Recording callback - CallSid: {CallSid}, Client: {_client(request)}")

    if not RecordingUrl:
        logger.warning(f"[RECORDING] Callback without RecordingUrl - CallSid: {CallSid}")
        return Response(content="OK", media_type="text/plain")

    try:
        await session_manager.attach_recording(CallSid, RecordingUrl)
    except UnknownCallId:
        logger.info(f"[RECORDING] Discarding recording for untracked call - CallSid: {CallSid}")
    except Exception as e:
        logger.error(
            f"[RECORDING] Error storing recording - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )

    return Response(content="OK", media_type="text/plain")


@router.post("/voice/fallback")
async def handle_fallback(request: Request):
    """Last-resort document if Twilio cannot reach the primary webhooks."""
    logger.warning(f"[FALLBACK] Fallback webhook hit - Client: {_client(request)}")
    return Response(content=TwimlBuilder().apology(), media_type="application/xml")
