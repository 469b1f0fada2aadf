"""Lead persistence service."""
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.db.models import Lead


class LeadPersistenceService:
    """Service for reading leads and storing what calls learned about them."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_lead(self, lead_id: int) -> Optional[Lead]:
        """Get lead by ID."""
        return await self.db.get(Lead, lead_id)

    async def update_ai_insights(self, lead_id: int, insights: Dict[str, Any]) -> Optional[Lead]:
        """Replace the lead's AI insights with the latest call analysis."""
        lead = await self.get_lead(lead_id)
        if lead:
            lead.ai_insights = insights
            await self.db.commit()
        return lead
