"""Post-call insights and knowledge verification results."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from outbound_caller.services.agent.constants import (
    INTEREST_LEVELS,
    OBJECTION_CATEGORIES,
    SENTIMENTS,
)


class CallInsights(BaseModel):
    """What the agent learned from one call."""

    available: bool = True
    qualified: bool = False
    interest_level: str = "none"
    sentiment: str = "neutral"
    objections: List[str] = []
    summary: str = ""
    reason: Optional[str] = None  # Set when insights are unavailable

    @classmethod
    def unavailable(cls, reason: str = "Analysis unavailable") -> "CallInsights":
        return cls(available=False, summary="", reason=reason)

    @classmethod
    def from_model_output(cls, data: Dict[str, Any]) -> "CallInsights":
        """
        Build insights from the model's JSON, coercing anything off-vocabulary.

        Unknown sentiment becomes neutral, unknown interest becomes none and
        unknown objection labels are folded into "other".
        """
        sentiment = str(data.get("sentiment", "")).strip().lower()
        if sentiment not in SENTIMENTS:
            sentiment = "neutral"

        interest = str(data.get("interest_level", "")).strip().lower()
        if interest not in INTEREST_LEVELS:
            interest = "none"

        objections = []
        raw_objections = data.get("objections") or []
        if isinstance(raw_objections, str):
            raw_objections = [raw_objections]
        if isinstance(raw_objections, list):
            for item in raw_objections:
                label = str(item).strip().lower().replace(" ", "_")
                if not label:
                    continue
                if label not in OBJECTION_CATEGORIES:
                    label = "other"
                if label not in objections:
                    objections.append(label)

        qualified = data.get("qualified", False)
        if isinstance(qualified, str):
            qualified = qualified.strip().lower() in ("true", "yes")

        summary = data.get("summary") or ""

        return cls(
            qualified=bool(qualified),
            interest_level=interest,
            sentiment=sentiment,
            objections=objections,
            summary=str(summary).strip(),
        )


class KnowledgeVerification(BaseModel):
    """Whether the backend confirmed it can work from a knowledge base."""

    confirmed: bool
    response: Optional[str] = None
    error: Optional[str] = None
