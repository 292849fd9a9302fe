"""
Report Models

Aggregates come out of the ledger store as *Aggregate rows; the report
engine turns them into *ReportRow values for callers.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class MonthlyAggregate(BaseModel):
    """Raw (month, currency) rollup from the ledger store."""

    month: int = Field(..., ge=1, le=12)
    currency: str
    total: Decimal
    count: int = Field(..., ge=1)


class CategoryAggregate(BaseModel):
    """Raw per-category rollup from the ledger store."""

    category_id: UUID
    category_name: str
    color: Optional[str] = None
    icon: Optional[str] = None
    total: Decimal
    count: int = Field(..., ge=1)


class MonthlyReportRow(BaseModel):
    """Total and count for one (month, currency) pair of a year."""

    year: int
    month: int = Field(..., ge=1, le=12)
    currency: str
    total: Decimal
    expense_count: int


class CategoryReportRow(BaseModel):
    """Total, count and share of the grand total for one category."""

    category_id: UUID
    category_name: str
    color: Optional[str] = None
    icon: Optional[str] = None
    total: Decimal
    expense_count: int
    percentage: float = Field(..., ge=0.0, le=100.0)
