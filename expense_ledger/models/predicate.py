"""
Expense Predicate Models

An ExpensePredicate is a plain, immutable value: the user scope plus a
tuple of typed criteria, combined with logical AND. Stores receive it
as data and either translate it or evaluate it with
`expense_ledger.queries.filters.matches`.
"""

from datetime import date
from decimal import Decimal
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class _Criterion(BaseModel):
    model_config = ConfigDict(frozen=True)


class DateRange(_Criterion):
    """Inclusive; either bound may be open."""
    kind: Literal["date_range"] = "date_range"
    start: Optional[date] = None
    end: Optional[date] = None


class CategoryIs(_Criterion):
    kind: Literal["category"] = "category"
    category_id: UUID


class AmountRange(_Criterion):
    """Inclusive; either bound may be open."""
    kind: Literal["amount_range"] = "amount_range"
    minimum: Optional[Decimal] = None
    maximum: Optional[Decimal] = None


class TextSearch(_Criterion):
    """Case-insensitive substring over description, tags and category name."""
    kind: Literal["text"] = "text"
    needle: str


class CurrencyIs(_Criterion):
    kind: Literal["currency"] = "currency"
    code: str


class HasTag(_Criterion):
    """Case-insensitive exact membership in the expense's tag set."""
    kind: Literal["tag"] = "tag"
    tag: str


Criterion = Union[DateRange, CategoryIs, AmountRange, TextSearch, CurrencyIs, HasTag]


class ExpensePredicate(BaseModel):
    """Logical AND of `criteria`, scoped to one user's expenses."""
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    criteria: tuple[Criterion, ...] = ()

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(c.kind for c in self.criteria)

    @property
    def is_unrestricted(self) -> bool:
        """True when only the user scope applies."""
        return not self.criteria
