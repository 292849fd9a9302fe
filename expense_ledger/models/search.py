"""
Search and Paging Models

ExpenseSearchCriteria is the sparse set of optional filters a caller
may supply. Every field is optional; an absent field never restricts.
"""

from datetime import date
from decimal import Decimal
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


T = TypeVar("T")


class ExpenseSearchCriteria(BaseModel):
    """Optional search criteria over a single user's expenses."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category_id: Optional[UUID] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    search_text: Optional[str] = Field(default=None, max_length=200)
    currency: Optional[str] = Field(default=None, max_length=3)
    tag: Optional[str] = Field(default=None, max_length=50)


class Page(BaseModel):
    """Zero-based page request."""
    model_config = ConfigDict(frozen=True)

    number: int = Field(default=0, ge=0)
    size: int = Field(default=20, ge=1, le=500)

    @property
    def offset(self) -> int:
        return self.number * self.size


class PagedResult(BaseModel, Generic[T]):
    """One page of results plus the total number of matches."""

    items: list[T] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    page: Page = Field(default_factory=Page)

    @property
    def has_next(self) -> bool:
        return self.page.offset + len(self.items) < self.total
