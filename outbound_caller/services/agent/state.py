"""Conversation state management."""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class Speaker(str, Enum):
    """Who said a transcript line."""

    AGENT = "agent"
    LEAD = "lead"

    def __str__(self) -> str:
        return self.value


class TranscriptTurn(BaseModel):
    """One spoken line of a call."""

    speaker: Speaker
    text: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ConversationContext(BaseModel):
    """Dialogue state of one live call, passed into every engine operation."""

    call_id: Optional[str] = None
    lead_id: Optional[int] = None
    lead_name: Optional[str] = None
    company_id: Optional[int] = None
    company_name: Optional[str] = None
    task_id: Optional[int] = None

    knowledge_text: str = ""
    greeting_script: Optional[str] = None

    transcript: List[TranscriptTurn] = []
    turn_count: int = 0
    max_turns: int = 10
    wrapping_up: bool = False  # Closing line spoken, call should end
    silent_prompts: int = 0  # Consecutive gathers that came back without speech

    def add_transcript_turn(self, speaker: Speaker, text: str) -> TranscriptTurn:
        """Append a line to the transcript."""
        turn = TranscriptTurn(speaker=speaker, text=text)
        self.transcript.append(turn)
        return turn

    def get_transcript_text(self) -> str:
        """Get full transcript as text."""
        return "\n".join(
            f"{turn.speaker.value.title()}: {turn.text}" for turn in self.transcript
        )

    def has_lead_speech(self) -> bool:
        return any(turn.speaker == Speaker.LEAD for turn in self.transcript)
