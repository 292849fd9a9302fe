"""
Ledger Data Models

Users, categories and expenses as held by the strongly-consistent ledger store.

DESIGN DECISION: We use Pydantic v2 models with validators that normalize
at write time. Currency codes are uppercased here, so every stored expense
compares equal to a filter regardless of how the caller typed the code.
"""

import datetime as dt
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


MAX_AMOUNT_INTEGER_DIGITS = 10
CENTS = Decimal("0.01")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def normalize_currency(value: str) -> str:
    """Strip and uppercase an ISO-4217 code, rejecting anything but 3 letters."""
    code = value.strip().upper()
    if len(code) != 3 or not code.isalpha() or not code.isascii():
        raise ValueError("Currency must be 3 letters (ISO 4217)")
    return code


def normalize_amount(value: Decimal) -> Decimal:
    """Quantize to exactly two fractional digits and enforce the digit limits."""
    if value <= 0:
        raise ValueError("Amount must be greater than 0")
    exponent = value.normalize().as_tuple().exponent
    if isinstance(exponent, int) and exponent < -2:
        raise ValueError("Amount cannot have more than 2 decimal places")
    quantized = value.quantize(CENTS, rounding=ROUND_HALF_UP)
    integer_digits = len(str(int(quantized)))
    if integer_digits > MAX_AMOUNT_INTEGER_DIGITS:
        raise ValueError(
            f"Amount cannot have more than {MAX_AMOUNT_INTEGER_DIGITS} integer digits"
        )
    return quantized


def normalize_tags(value: Any) -> set[str]:
    """Accept any iterable of strings; strip, drop blanks, deduplicate."""
    if value is None:
        return set()
    if isinstance(value, str):
        value = [value]
    tags = set()
    for raw in value:
        tag = str(raw).strip()
        if not tag:
            continue
        if len(tag) > 50:
            raise ValueError("Tags cannot exceed 50 characters")
        tags.add(tag)
    return tags


# =============================================================================
# USERS & CATEGORIES
# =============================================================================

class User(BaseModel):
    """
    A ledger user.

    Email uniqueness is case-insensitive, so emails are stored lowercased.
    The credential hash is opaque here; hashing happens elsewhere.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(..., min_length=3, max_length=254)
    display_name: str = Field(..., min_length=1, max_length=100)
    credential_hash: str = Field(default="", repr=False)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Email must contain '@'")
        return v.lower()


class Category(BaseModel):
    """An expense category, owned by exactly one user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(
        ...,
        min_length=2,
        max_length=50,
        description="Unique per owner (case-sensitive)"
    )
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseFields(BaseModel):
    """Validated, caller-supplied expense fields shared by drafts and records."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category_id: UUID
    amount: Decimal = Field(
        ...,
        description="Positive, at most 10 integer digits, exactly 2 decimals"
    )
    currency: str = Field(..., description="ISO-4217 code, stored uppercase")
    date: date
    description: Optional[str] = Field(default=None, max_length=500)
    tags: set[str] = Field(default_factory=set)

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return normalize_amount(v)

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return normalize_currency(v)

    @field_validator('date')
    @classmethod
    def validate_not_future(cls, v: date) -> date:
        if v > date.today():
            raise ValueError("Date cannot be in the future")
        return v

    @field_validator('description')
    @classmethod
    def blank_description_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator('tags', mode='before')
    @classmethod
    def validate_tags(cls, v: Any) -> set[str]:
        return normalize_tags(v)


class ExpenseDraft(ExpenseFields):
    """Input for creating an expense; the owner comes from the caller."""
    pass


class ExpenseUpdate(BaseModel):
    """Partial update; only fields that are set are applied."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category_id: Optional[UUID] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    date: Optional[dt.date] = None
    description: Optional[str] = None
    tags: Optional[set[str]] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class Expense(ExpenseFields):
    """
    A persisted expense.

    `receipt_id` is the legacy single-receipt link. It is only a cache of the
    most recently linked receipt; the receipt index is authoritative.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    receipt_id: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_draft(cls, user_id: UUID, draft: ExpenseDraft) -> "Expense":
        return cls(user_id=user_id, **draft.model_dump())

    def with_changes(self, changes: dict[str, Any]) -> "Expense":
        """Return a re-validated copy with `changes` applied."""
        return Expense.model_validate({**self.model_dump(), **changes})
