"""LLM conversation engine."""
import asyncio
import json
import logging
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.core.config import settings
from outbound_caller.core.exceptions import BackendError, BackendTimeout, ConfigError, NotFound
from outbound_caller.services.agent.backend import GenerativeBackend
from outbound_caller.services.agent.constants import (
    CLOSING_LINE,
    FALLBACK_GREETING_TEMPLATE,
    FALLBACK_TURN_LINE,
    GREETING_SCRIPT_PLACEHOLDER,
    KNOWLEDGE_CONFIRMATION_TOKEN,
)
from outbound_caller.services.agent.insights import CallInsights, KnowledgeVerification
from outbound_caller.services.agent.prompt import (
    build_turn_messages,
    get_greeting_prompt,
    get_summary_prompt,
    get_system_prompt,
    get_verification_prompt,
)
from outbound_caller.services.agent.state import ConversationContext, Speaker
from outbound_caller.services.knowledge.builder import build_knowledge_context
from outbound_caller.services.knowledge.repository import KnowledgeRepository
from outbound_caller.services.persistence.leads import LeadPersistenceService

logger = logging.getLogger(__name__)


def _clean_utterance(text: str) -> str:
    """Strip speaker labels and wrapping quotes a model sometimes adds."""
    text = " ".join(text.split())
    for prefix in ("Agent:", f"{settings.agent_name}:"):
        if text.lower().startswith(prefix.lower()):
            text = text[len(prefix):].strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


def render_greeting_script(script: str, lead_name: Optional[str]) -> str:
    """Fill the {lead_name} placeholder of a custom greeting script."""
    return script.replace(GREETING_SCRIPT_PLACEHOLDER, lead_name or "there").strip()


def fallback_greeting(lead_name: Optional[str], company_name: Optional[str]) -> str:
    return FALLBACK_GREETING_TEMPLATE.format(
        lead_name=lead_name or "there",
        agent_name=settings.agent_name,
        company_name=company_name or "our team",
    )


class ConversationEngine:
    """Drives what the agent says on a call, one lead utterance at a time."""

    def __init__(
        self,
        db: AsyncSession,
        backend: Optional[GenerativeBackend],
        max_turns: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.db = db
        self.backend = backend
        self.max_turns = max_turns if max_turns is not None else settings.max_conversation_turns
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.llm_timeout_seconds
        )
        self.knowledge_repository = KnowledgeRepository(db)
        self.lead_persistence = LeadPersistenceService(db)

    async def initialize(
        self,
        lead_id: int,
        task_id: Optional[int] = None,
        call_id: Optional[str] = None,
    ) -> ConversationContext:
        """
        Build the context for a new conversation.

        Raises:
            ConfigError: no generative backend is configured
            NotFound: the lead does not exist
        """
        if self.backend is None:
            raise ConfigError("No generative backend configured (set OPENAI_API_KEY)")

        lead = await self.lead_persistence.get_lead(lead_id)
        if lead is None:
            raise NotFound(f"Lead {lead_id} not found")

        knowledge = await self.knowledge_repository.get_company_knowledge(lead.company_id)

        context = ConversationContext(
            call_id=call_id,
            lead_id=lead.id,
            lead_name=lead.name,
            company_id=lead.company_id,
            company_name=knowledge.company_name,
            task_id=task_id,
            knowledge_text=build_knowledge_context(knowledge),
            greeting_script=knowledge.greeting_script,
            max_turns=self.max_turns,
        )
        logger.info(
            f"[AGENT] Initialized conversation call={call_id} lead={lead.id} company={lead.company_id}"
        )
        return context

    async def _generate(self, messages: List[Dict[str, str]], json_mode: bool = False) -> str:
        """Call the backend with a timeout; every failure surfaces as BackendError."""
        if self.backend is None:
            raise BackendError("No generative backend configured")

        try:
            text = await asyncio.wait_for(
                self.backend.generate(messages, json_mode=json_mode),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise BackendTimeout(f"Backend did not answer within {self.timeout_seconds}s") from e
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"Backend failed: {e}") from e

        if not text or not text.strip():
            raise BackendError("Backend returned an empty reply")
        return text.strip()

    async def initial_greeting(
        self, context: ConversationContext, lead_name: Optional[str] = None
    ) -> str:
        """Opening line once the call is answered. Never empty."""
        name = (lead_name or context.lead_name or "").strip() or None

        greeting = ""
        if context.greeting_script and context.greeting_script.strip():
            greeting = render_greeting_script(context.greeting_script, name)
            logger.info(f"[AGENT] Using custom greeting script for call={context.call_id}")
        else:
            messages = [
                {"role": "system", "content": get_system_prompt(context)},
                {"role": "user", "content": get_greeting_prompt(name)},
            ]
            try:
                greeting = _clean_utterance(await self._generate(messages))
            except BackendError as e:
                logger.warning(f"[AGENT] Greeting generation failed for call={context.call_id}: {e}")

        if not greeting:
            greeting = fallback_greeting(name, context.company_name)

        context.add_transcript_turn(Speaker.AGENT, greeting)
        return greeting

    async def process_turn(self, context: ConversationContext, lead_utterance: str) -> str:
        """
        Record what the lead said and produce the agent's reply.

        Once the turn counter passes the ceiling the closing line is returned
        without consulting the backend and ``context.wrapping_up`` is set.
        Backend failures are answered with a fixed fallback line, so this
        never raises and never returns an empty string.
        """
        utterance = (lead_utterance or "").strip()
        context.add_transcript_turn(Speaker.LEAD, utterance)
        context.turn_count += 1
        context.silent_prompts = 0

        logger.info(
            f"[AGENT INPUT] call={context.call_id} turn={context.turn_count}/{context.max_turns} "
            f"lead='{utterance}'"
        )

        if context.turn_count > context.max_turns:
            context.wrapping_up = True
            reply = CLOSING_LINE
            logger.info(f"[AGENT] Turn ceiling reached for call={context.call_id}, closing")
        else:
            try:
                reply = _clean_utterance(await self._generate(build_turn_messages(context)))
                if not reply:
                    raise BackendError("Reply was empty after cleanup")
            except BackendError as e:
                logger.warning(f"[AGENT] Turn generation failed for call={context.call_id}: {e}")
                reply = FALLBACK_TURN_LINE

        context.add_transcript_turn(Speaker.AGENT, reply)
        logger.info(f"[AGENT OUTPUT] call={context.call_id} agent='{reply}'")
        return reply

    async def summarize(self, context: ConversationContext) -> CallInsights:
        """Analyze the finished call. Any failure yields CallInsights.unavailable()."""
        if not context.has_lead_speech():
            return CallInsights.unavailable("The lead never spoke")

        messages = [{"role": "user", "content": get_summary_prompt(context.get_transcript_text())}]
        try:
            content = await self._generate(messages, json_mode=True)
            data = json.loads(content)
        except (BackendError, json.JSONDecodeError) as e:
            logger.warning(f"[AGENT] Summary failed for call={context.call_id}: {e}")
            return CallInsights.unavailable(str(e))

        if not isinstance(data, dict):
            logger.warning(f"[AGENT] Summary for call={context.call_id} was not a JSON object")
            return CallInsights.unavailable("Analysis was not a JSON object")

        insights = CallInsights.from_model_output(data)
        logger.info(
            f"[AGENT] Insights call={context.call_id} qualified={insights.qualified} "
            f"interest={insights.interest_level} sentiment={insights.sentiment}"
        )
        return insights

    async def verify_knowledge(self, knowledge_text: str) -> KnowledgeVerification:
        """Ask the backend to confirm it understood a knowledge base."""
        messages = [{"role": "user", "content": get_verification_prompt(knowledge_text)}]
        try:
            content = await self._generate(messages)
        except BackendError as e:
            logger.warning(f"[AGENT] Knowledge verification failed: {e}")
            return KnowledgeVerification(confirmed=False, error=str(e))

        confirmed = content.upper().startswith(KNOWLEDGE_CONFIRMATION_TOKEN)
        return KnowledgeVerification(confirmed=confirmed, response=content)
