"""Knowledge repository."""
import logging
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_caller.db.models import Company, KnowledgeBase
from outbound_caller.services.knowledge.base import CompanyKnowledge, Product, Service
from outbound_caller.services.knowledge.builder import build_knowledge_context

logger = logging.getLogger(__name__)

EntryT = TypeVar("EntryT", bound=BaseModel)


def _parse_entries(raw: Optional[List[Any]], model: Type[EntryT]) -> List[EntryT]:
    """
    Parse stored JSON entries.

    Partly filled entries are kept and render their gaps as placeholders;
    only entries that are not objects at all are skipped.
    """
    entries = []
    for item in raw or []:
        if not isinstance(item, dict):
            logger.warning(f"[KNOWLEDGE] Skipping {model.__name__} entry that is not an object: {item!r}")
            continue
        entries.append(model.model_validate(item))
    return entries


class KnowledgeRepository:
    """Repository for company knowledge."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_company_knowledge(self, company_id: Optional[int]) -> CompanyKnowledge:
        """
        Load a company's knowledge.

        A company without a knowledge record yields an empty
        CompanyKnowledge, which renders as placeholder sections.
        """
        if company_id is None:
            return CompanyKnowledge()

        company = await self.db.get(Company, company_id)
        result = await self.db.execute(
            select(KnowledgeBase).where(KnowledgeBase.company_id == company_id)
        )
        record = result.scalar_one_or_none()

        if record is None:
            logger.info(f"[KNOWLEDGE] No knowledge base for company {company_id}, using placeholders")
            return CompanyKnowledge(
                company_id=company_id,
                company_name=company.name if company else None,
            )

        return CompanyKnowledge(
            company_id=company_id,
            company_name=company.name if company else None,
            company_info=record.company_info,
            products=_parse_entries(record.products, Product),
            services=_parse_entries(record.services, Service),
            sales_instructions=record.sales_instructions,
            greeting_script=record.greeting_script,
        )

    async def get_knowledge_text(self, company_id: Optional[int]) -> str:
        """Get a company's knowledge as formatted text for LLM context."""
        knowledge = await self.get_company_knowledge(company_id)
        return build_knowledge_context(knowledge)
