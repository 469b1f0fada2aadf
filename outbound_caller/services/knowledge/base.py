"""Company knowledge models."""
from typing import Any, List, Optional, Union
from pydantic import BaseModel, field_validator


def _scalar_text(value: Any) -> Any:
    """Read numbers and other scalars as text."""
    if value is None or isinstance(value, (str, list)):
        return value
    return str(value)


class _CatalogEntry(BaseModel):
    """Fields shared by products and services. Every field may be missing."""

    name: Optional[str] = None
    price: Optional[Union[float, str]] = None
    description: Optional[str] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, list):
            return ", ".join(str(item) for item in value)
        return _scalar_text(value)

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> Any:
        if value is None or isinstance(value, (int, float, str)):
            return value
        return str(value)


class Product(_CatalogEntry):
    """Product the agent may pitch."""

    features: Union[List[Any], str, None] = None

    @field_validator("features", mode="before")
    @classmethod
    def _coerce_features(cls, value: Any) -> Any:
        return _scalar_text(value)


class Service(_CatalogEntry):
    """Service the agent may pitch."""

    benefits: Union[List[Any], str, None] = None

    @field_validator("benefits", mode="before")
    @classmethod
    def _coerce_benefits(cls, value: Any) -> Any:
        return _scalar_text(value)


class CompanyKnowledge(BaseModel):
    """Everything the agent knows about the company it calls for."""

    company_id: Optional[int] = None
    company_name: Optional[str] = None
    company_info: Optional[str] = None
    products: List[Product] = []
    services: List[Service] = []
    sales_instructions: Optional[str] = None
    greeting_script: Optional[str] = None
