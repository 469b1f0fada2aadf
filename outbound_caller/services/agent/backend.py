"""Generative backends the conversation engine talks to."""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from outbound_caller.core.exceptions import BackendError, BackendTimeout

logger = logging.getLogger(__name__)


class GenerativeBackend(ABC):
    """Turns a list of chat messages into one text reply."""

    @abstractmethod
    async def generate(self, messages: List[Dict[str, str]], json_mode: bool = False) -> str:
        """Return the model's reply. Raises BackendError on failure."""


class OpenAIBackend(GenerativeBackend):
    """Backend for OpenAI chat completions."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: Optional[float] = None):
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model

    async def generate(self, messages: List[Dict[str, str]], json_mode: bool = False) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.7,
                **kwargs,
            )
        except openai.APITimeoutError as e:
            raise BackendTimeout(f"OpenAI request timed out: {e}") from e
        except openai.OpenAIError as e:
            raise BackendError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise BackendError("OpenAI returned no choices")

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise BackendError("OpenAI returned an empty reply")

        logger.debug(f"[LLM] {len(content)} chars from {self.model}")
        return content.strip()
