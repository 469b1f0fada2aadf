"""Render company knowledge as a stable text context for the language model.

The output always carries the same four section headers, in the same order,
whatever the input holds. Absent values are written as ``Not provided.`` so
the model never has to guess whether a section was dropped or is empty.
"""
from typing import Any, List, Optional, Union

from outbound_caller.services.knowledge.base import CompanyKnowledge

NOT_PROVIDED = "Not provided."

SECTION_COMPANY = "## Company Information"
SECTION_PRODUCTS = "## Products"
SECTION_SERVICES = "## Services"
SECTION_SALES_INSTRUCTIONS = "## Sales Instructions"

SECTION_HEADERS = (
    SECTION_COMPANY,
    SECTION_PRODUCTS,
    SECTION_SERVICES,
    SECTION_SALES_INSTRUCTIONS,
)


def _text(value: Optional[str]) -> str:
    if value is None:
        return NOT_PROVIDED
    value = value.strip()
    return value if value else NOT_PROVIDED


def _price(value: Optional[Union[float, str]]) -> str:
    if value is None or value == "":
        return NOT_PROVIDED
    if isinstance(value, (int, float)):
        return f"${value:,.2f}"
    return _text(str(value))


def _listing(value: Union[List[Any], str, None]) -> str:
    if isinstance(value, list):
        items = [str(item).strip() for item in value if item is not None]
        items = [item for item in items if item]
        return ", ".join(items) if items else NOT_PROVIDED
    return _text(value)


def build_knowledge_context(knowledge: CompanyKnowledge) -> str:
    """Build the knowledge text block handed to the generative backend."""
    lines = ["# Knowledge Base Information", ""]

    lines.append(SECTION_COMPANY)
    if knowledge.company_name:
        lines.append(f"Name: {knowledge.company_name.strip()}")
    lines.append(_text(knowledge.company_info))
    lines.append("")

    lines.append(SECTION_PRODUCTS)
    if knowledge.products:
        for index, product in enumerate(knowledge.products, start=1):
            lines.append(f"### {index}. {_text(product.name)}")
            lines.append(f"Price: {_price(product.price)}")
            lines.append(f"Description: {_text(product.description)}")
            lines.append(f"Features: {_listing(product.features)}")
            lines.append("")
    else:
        lines.append(NOT_PROVIDED)
        lines.append("")

    lines.append(SECTION_SERVICES)
    if knowledge.services:
        for index, service in enumerate(knowledge.services, start=1):
            lines.append(f"### {index}. {_text(service.name)}")
            lines.append(f"Price: {_price(service.price)}")
            lines.append(f"Description: {_text(service.description)}")
            lines.append(f"Benefits: {_listing(service.benefits)}")
            lines.append("")
    else:
        lines.append(NOT_PROVIDED)
        lines.append("")

    lines.append(SECTION_SALES_INSTRUCTIONS)
    lines.append(_text(knowledge.sales_instructions))

    return "\n".join(lines)
