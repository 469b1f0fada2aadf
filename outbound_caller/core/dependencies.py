"""FastAPI dependencies."""
from functools import lru_cache
from typing import Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.core.config import settings
from outbound_caller.db.database import get_db
from outbound_caller.services.agent.agent import ConversationEngine
from outbound_caller.services.agent.backend import GenerativeBackend, OpenAIBackend
from outbound_caller.services.call_session.manager import CallSessionManager
from outbound_caller.services.call_session.reconciler import StatusReconciler
from outbound_caller.services.scheduling.dispatcher import ScheduledCallDispatcher
from outbound_caller.services.telephony.provider import TelephonyProvider, TwilioProvider


@lru_cache
def get_generative_backend() -> Optional[GenerativeBackend]:
    """OpenAI backend, or None when no API key is configured."""
    if not settings.openai_configured:
        return None
    return OpenAIBackend(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.llm_timeout_seconds,
    )


@lru_cache
def get_telephony_provider() -> TelephonyProvider:
    """Twilio provider; placing a call raises ConfigError if credentials are missing."""
    return TwilioProvider(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        default_from_number=settings.twilio_phone_number,
    )


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute callback URLs.

    Uses BASE_URL if set (e.g. an ngrok tunnel), otherwise the request's own
    base URL.
    """
    if settings.base_url:
        return settings.base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def get_conversation_engine(
    db: AsyncSession = Depends(get_db),
    backend: Optional[GenerativeBackend] = Depends(get_generative_backend),
) -> ConversationEngine:
    return ConversationEngine(db, backend)


def get_session_manager(
    db: AsyncSession = Depends(get_db),
    engine: ConversationEngine = Depends(get_conversation_engine),
    telephony: TelephonyProvider = Depends(get_telephony_provider),
    base_url: str = Depends(get_base_url),
) -> CallSessionManager:
    """Get call session manager."""
    return CallSessionManager(db, engine, telephony, base_url)


def get_status_reconciler(
    db: AsyncSession = Depends(get_db),
    manager: CallSessionManager = Depends(get_session_manager),
) -> StatusReconciler:
    return StatusReconciler(db, manager)


def get_dispatcher(
    db: AsyncSession = Depends(get_db),
    manager: CallSessionManager = Depends(get_session_manager),
    reconciler: StatusReconciler = Depends(get_status_reconciler),
) -> ScheduledCallDispatcher:
    return ScheduledCallDispatcher(db, manager, reconciler)
