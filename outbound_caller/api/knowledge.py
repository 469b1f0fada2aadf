"""Knowledge base API endpoints."""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.core.dependencies import get_conversation_engine
from outbound_caller.db.database import get_db
from outbound_caller.db.models import Company
from outbound_caller.services.agent.agent import ConversationEngine
from outbound_caller.services.knowledge.repository import KnowledgeRepository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/knowledge/{company_id}")
async def get_knowledge_context(company_id: int, db: AsyncSession = Depends(get_db)):
    """Get the knowledge text the agent is given for a company."""
    if await db.get(Company, company_id) is None:
        raise HTTPException(status_code=404, detail=f"Company {company_id} not found")
    text = await KnowledgeRepository(db).get_knowledge_text(company_id)
    return {"company_id": company_id, "knowledge": text}


@router.post("/api/knowledge/{company_id}/verify")
async def verify_knowledge(
    company_id: int,
    db: AsyncSession = Depends(get_db),
    engine: ConversationEngine = Depends(get_conversation_engine),
):
    """Ask the language model to confirm it understood a company's knowledge base."""
    if await db.get(Company, company_id) is None:
        raise HTTPException(status_code=404, detail=f"Company {company_id} not found")

    text = await KnowledgeRepository(db).get_knowledge_text(company_id)
    verification = await engine.verify_knowledge(text)
    logger.info(f"[KNOWLEDGE] Verification for company {company_id}: confirmed={verification.confirmed}")
    return {"company_id": company_id, **verification.model_dump()}
