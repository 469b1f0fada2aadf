"""Call session status graph."""
from enum import Enum
from typing import Dict, FrozenSet, Optional
from pydantic import BaseModel

from outbound_caller.services.agent.state import ConversationContext


class CallStatus(str, Enum):
    """Lifecycle status of a call session."""

    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    IN_CONVERSATION = "in_conversation"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no_answer"

    def __str__(self) -> str:
        return self.value


TERMINAL_STATUSES: FrozenSet[CallStatus] = frozenset(
    {CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.BUSY, CallStatus.NO_ANSWER}
)

# Position of each live status along initiated -> ringing -> answered -> in_conversation
_RANK: Dict[CallStatus, int] = {
    CallStatus.INITIATED: 0,
    CallStatus.RINGING: 1,
    CallStatus.ANSWERED: 2,
    CallStatus.IN_CONVERSATION: 3,
}

# Predecessors after which a terminal status is unremarkable
_EXPECTED_BEFORE_TERMINAL: Dict[CallStatus, FrozenSet[CallStatus]] = {
    CallStatus.COMPLETED: frozenset({CallStatus.ANSWERED, CallStatus.IN_CONVERSATION}),
    CallStatus.BUSY: frozenset({CallStatus.INITIATED, CallStatus.RINGING}),
    CallStatus.NO_ANSWER: frozenset({CallStatus.INITIATED, CallStatus.RINGING}),
    CallStatus.FAILED: frozenset(_RANK),
}

# Provider (Twilio) CallStatus values
_PROVIDER_STATUS_MAP: Dict[str, CallStatus] = {
    "queued": CallStatus.INITIATED,
    "initiated": CallStatus.INITIATED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.ANSWERED,
    "answered": CallStatus.ANSWERED,
    "completed": CallStatus.COMPLETED,
    "busy": CallStatus.BUSY,
    "no-answer": CallStatus.NO_ANSWER,
    "failed": CallStatus.FAILED,
    "canceled": CallStatus.FAILED,
}


def is_terminal(status: CallStatus) -> bool:
    return status in TERMINAL_STATUSES


def from_provider_status(provider_status: Optional[str]) -> Optional[CallStatus]:
    """Map a provider status string to a CallStatus, or None if unrecognized."""
    if not provider_status:
        return None
    return _PROVIDER_STATUS_MAP.get(provider_status.strip().lower())


class TransitionDecision(BaseModel):
    """Result of evaluating one proposed status change."""

    apply: bool
    flagged: bool = False
    reason: Optional[str] = None


def evaluate_transition(current: CallStatus, new: CallStatus) -> TransitionDecision:
    """
    Decide whether a session in ``current`` should move to ``new``.

    Terminal statuses absorb everything. A terminal event is always applied
    but flagged when it arrives from an unexpected predecessor (for example
    ``completed`` straight from ``ringing``). Duplicates and events ranking
    below the current status are ignored. Forward moves that skip a status
    are applied and flagged.
    """
    if is_terminal(current):
        return TransitionDecision(apply=False, reason=f"already terminal ({current.value})")

    if is_terminal(new):
        if current in _EXPECTED_BEFORE_TERMINAL[new]:
            return TransitionDecision(apply=True)
        return TransitionDecision(
            apply=True,
            flagged=True,
            reason=f"{new.value} arrived while {current.value}",
        )

    if new == current:
        return TransitionDecision(apply=False, reason="duplicate")

    if _RANK[new] < _RANK[current]:
        return TransitionDecision(
            apply=False, reason=f"stale ({new.value} after {current.value})"
        )

    if _RANK[new] - _RANK[current] > 1:
        return TransitionDecision(
            apply=True,
            flagged=True,
            reason=f"skipped from {current.value} to {new.value}",
        )

    return TransitionDecision(apply=True)


class StatusOutcome(BaseModel):
    """What happened when a status event was applied to a call session."""

    call_id: str
    known: bool = True
    applied: bool = False
    flagged: bool = False
    status: Optional[CallStatus] = None
    previous_status: Optional[CallStatus] = None
    became_terminal: bool = False
    task_id: Optional[int] = None
    lead_id: Optional[int] = None
    duration_seconds: Optional[int] = None
    reason: Optional[str] = None
    context: Optional[ConversationContext] = None  # Detached on becoming terminal
