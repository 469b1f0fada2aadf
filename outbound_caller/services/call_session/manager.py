"""Call session manager."""
import logging
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import urlencode
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.core.config import settings
from outbound_caller.core.exceptions import NotFound, UnknownCallId
from outbound_caller.db.models import CallSession, Lead
from outbound_caller.services.agent.agent import ConversationEngine
from outbound_caller.services.agent.constants import (
    GOODBYE_LINE,
    NO_INPUT_LINE,
    SILENCE_GOODBYE_LINE,
)
from outbound_caller.services.agent.state import ConversationContext, Speaker, TranscriptTurn
from outbound_caller.services.call_session.locks import CallLockRegistry, call_locks
from outbound_caller.services.call_session.models import (
    CallStatus,
    StatusOutcome,
    evaluate_transition,
    is_terminal,
)
from outbound_caller.services.persistence.calls import CallPersistenceService
from outbound_caller.services.speech.twiml import TwimlBuilder
from outbound_caller.services.telephony.numbers import normalize_phone_number
from outbound_caller.services.telephony.provider import TelephonyProvider

logger = logging.getLogger(__name__)

# Module-level conversation storage (persists across requests)
# Rebuilt from the database when missing, e.g. after a restart
_contexts: Dict[str, ConversationContext] = {}


class CallSessionManager:
    """Owns the lifecycle of outbound calls and turns webhooks into TwiML."""

    def __init__(
        self,
        db: AsyncSession,
        engine: ConversationEngine,
        telephony: TelephonyProvider,
        base_url: str,
        locks: Optional[CallLockRegistry] = None,
        max_silent_prompts: Optional[int] = None,
    ):
        self.db = db
        self.engine = engine
        self.telephony = telephony
        self.base_url = (base_url or "").rstrip("/")
        self.locks = locks or call_locks
        self.max_silent_prompts = (
            max_silent_prompts if max_silent_prompts is not None else settings.max_silent_prompts
        )
        self.call_persistence = CallPersistenceService(db)
        self.twiml = TwimlBuilder()

    def answer_url(self) -> str:
        return f"{self.base_url}/webhooks/voice/answer"

    def gather_url(self, call_id: str) -> str:
        return f"{self.base_url}/webhooks/voice/gather?{urlencode({'CallSid': call_id})}"

    def status_url(self) -> str:
        return f"{self.base_url}/webhooks/voice/status"

    def recording_url(self) -> str:
        return f"{self.base_url}/webhooks/voice/recording"

    async def place(
        self,
        to_number: str,
        lead: Lead,
        from_number: Optional[str] = None,
        task_id: Optional[int] = None,
    ) -> str:
        """
        Dial a lead and start tracking the call.

        Returns:
            The provider call id of the new call session

        Raises:
            InvalidNumber: the destination cannot be normalized
            ConfigError: telephony is not configured
            ProviderError: the provider rejected the call (not retried)
        """
        destination = normalize_phone_number(to_number)
        logger.info(f"[PLACE] Dialing lead={lead.id} to={destination} task={task_id}")

        call_id = await self.telephony.place_call(
            to=destination,
            from_=from_number,
            answer_url=self.answer_url(),
            status_url=self.status_url(),
            recording_url=self.recording_url(),
        )

        await self.call_persistence.create_call_session(call_id, lead, task_id=task_id)
        logger.info(f"[PLACE] Call session created - CallSid: {call_id}, lead={lead.id}")
        return call_id

    async def _build_context(self, call_session: CallSession) -> ConversationContext:
        """Recreate a conversation context from the stored session and transcript."""
        if call_session.lead_id is None:
            raise NotFound(f"Call {call_session.call_id} has no lead")

        context = await self.engine.initialize(
            call_session.lead_id,
            task_id=call_session.task_id,
            call_id=call_session.call_id,
        )
        entries = await self.call_persistence.get_transcript(call_session.id)
        context.transcript = [
            TranscriptTurn(speaker=Speaker(entry.speaker), text=entry.text, timestamp=entry.spoken_at)
            for entry in entries
        ]
        context.turn_count = call_session.conversation_turn_count or 0
        return context

    async def _get_context(self, call_session: CallSession) -> ConversationContext:
        context = _contexts.get(call_session.call_id)
        if context is None:
            context = await self._build_context(call_session)
            _contexts[call_session.call_id] = context
            logger.debug(f"[SESSION MANAGER] Context attached - CallSid: {call_session.call_id}")
        return context

    async def load_context(self, call_id: str) -> Optional[ConversationContext]:
        """Context for a call that is no longer live; not registered."""
        call_session = await self.call_persistence.get_call_session(call_id)
        if call_session is None:
            return None
        return await self._build_context(call_session)

    def _advance(self, call_session: CallSession, new_status: CallStatus) -> bool:
        """Apply a non-terminal move if the status graph allows it. Does not commit."""
        current = CallStatus(call_session.status)
        decision = evaluate_transition(current, new_status)
        if not decision.apply:
            return False
        if decision.flagged:
            logger.warning(
                f"[SESSION MANAGER] Flagged transition - CallSid: {call_session.call_id}, "
                f"{decision.reason}"
            )
        self.call_persistence.record_status(
            call_session, new_status.value, flagged=decision.flagged, reason=decision.reason
        )
        return True

    async def on_status_event(
        self,
        call_id: str,
        status: CallStatus,
        duration_seconds: Optional[int] = None,
    ) -> StatusOutcome:
        """Apply a provider status to a call session under its lock."""
        async with self.locks.hold(call_id):
            call_session = await self.call_persistence.get_call_session(call_id)
            if call_session is None:
                logger.warning(f"[CALL STATUS] Unknown call, ignoring {status.value} - CallSid: {call_id}")
                return StatusOutcome(call_id=call_id, known=False, reason="unknown call")

            current = CallStatus(call_session.status)
            decision = evaluate_transition(current, status)
            outcome = StatusOutcome(
                call_id=call_id,
                status=current,
                previous_status=current,
                task_id=call_session.task_id,
                lead_id=call_session.lead_id,
                reason=decision.reason,
            )

            if not decision.apply:
                logger.info(
                    f"[CALL STATUS] Ignoring {status.value} for {current.value} call "
                    f"({decision.reason}) - CallSid: {call_id}"
                )
                return outcome

            self.call_persistence.record_status(
                call_session, status.value, flagged=decision.flagged, reason=decision.reason
            )
            if decision.flagged:
                logger.warning(f"[CALL STATUS] Flagged transition - CallSid: {call_id}, {decision.reason}")

            outcome.applied = True
            outcome.flagged = decision.flagged
            outcome.status = status

            if is_terminal(status):
                call_session.ended_at = datetime.utcnow()
                if duration_seconds is not None:
                    call_session.duration_seconds = duration_seconds
                outcome.became_terminal = True
                outcome.duration_seconds = call_session.duration_seconds
                outcome.context = _contexts.pop(call_id, None)

            await self.db.commit()

        logger.info(f"[CALL STATUS] {current.value} -> {status.value} - CallSid: {call_id}")
        return outcome

    async def greet_and_gather(self, call_id: str, lead_name: Optional[str] = None) -> str:
        """First document of an answered call: greeting plus a listening window."""
        try:
            async with self.locks.hold(call_id):
                call_session = await self.call_persistence.get_call_session(call_id)
                if call_session is None:
                    logger.warning(f"[ANSWER] Unknown call - CallSid: {call_id}")
                    return self.twiml.apology()

                if is_terminal(CallStatus(call_session.status)):
                    return self.twiml.speak_and_hang_up(GOODBYE_LINE)

                self._advance(call_session, CallStatus.ANSWERED)
                context = await self._get_context(call_session)

                spoken = [turn.text for turn in context.transcript if turn.speaker == Speaker.AGENT]
                if spoken:
                    await self.db.commit()
                    logger.info(f"[ANSWER] Call already greeted, repeating last line - CallSid: {call_id}")
                    return self.twiml.speak_and_listen(spoken[-1], self.gather_url(call_id))

                before = len(context.transcript)
                greeting = await self.engine.initial_greeting(
                    context, lead_name or call_session.lead_name
                )
                await self.call_persistence.append_transcript(call_session, context.transcript[before:])
                await self.db.commit()

            logger.info(f"[ANSWER] Greeting generated (length: {len(greeting)}) - CallSid: {call_id}")
            return self.twiml.speak_and_listen(greeting, self.gather_url(call_id))

        except Exception as e:
            logger.error(
                f"[ANSWER] Error building greeting - CallSid: {call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self.db.rollback()
            _contexts.pop(call_id, None)
            return self.twiml.apology()

    async def on_speech_event(self, call_id: str, speech_text: Optional[str]) -> str:
        """
        Handle what the lead said and return the next TwiML document.

        Status events win ties: if the call turned terminal before this
        event got the lock, the lead hears a goodbye and the engine is
        never consulted.
        """
        try:
            async with self.locks.hold(call_id):
                call_session = await self.call_persistence.get_call_session(call_id)
                if call_session is None:
                    logger.warning(f"[GATHER] Unknown call - CallSid: {call_id}")
                    return self.twiml.apology()

                if is_terminal(CallStatus(call_session.status)):
                    logger.info(
                        f"[GATHER] Speech after call ended ({call_session.status}) - CallSid: {call_id}"
                    )
                    return self.twiml.speak_and_hang_up(GOODBYE_LINE)

                self._advance(call_session, CallStatus.IN_CONVERSATION)
                context = await self._get_context(call_session)

                speech = (speech_text or "").strip()
                if not speech:
                    context.silent_prompts += 1
                    await self.db.commit()
                    if context.silent_prompts >= self.max_silent_prompts:
                        logger.info(f"[GATHER] Too many silent prompts, hanging up - CallSid: {call_id}")
                        return self.twiml.speak_and_hang_up(SILENCE_GOODBYE_LINE)
                    logger.warning(f"[GATHER] No speech result provided - CallSid: {call_id}")
                    return self.twiml.speak_and_listen(NO_INPUT_LINE, self.gather_url(call_id))

                before = len(context.transcript)
                reply = await self.engine.process_turn(context, speech)
                await self.call_persistence.append_transcript(call_session, context.transcript[before:])
                call_session.conversation_turn_count = context.turn_count
                await self.db.commit()

            if context.wrapping_up:
                return self.twiml.speak_and_hang_up(reply)
            return self.twiml.speak_and_listen(reply, self.gather_url(call_id))

        except Exception as e:
            logger.error(
                f"[GATHER] Error processing speech input - CallSid: {call_id}, "
                f"SpeechResult: '{speech_text[:100] if speech_text else 'None'}', "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self.db.rollback()
            _contexts.pop(call_id, None)
            return self.twiml.apology()

    async def attach_recording(self, call_id: str, recording_ref: str) -> None:
        """
        Store the recording reference of a call.

        Raises:
            UnknownCallId: no call session exists for ``call_id``
        """
        call_session = await self.call_persistence.update_recording(call_id, recording_ref)
        if call_session is None:
            raise UnknownCallId(call_id)
        logger.info(f"[RECORDING] Recording attached - CallSid: {call_id}")
