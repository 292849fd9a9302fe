"""
Receipt Metadata Models

A receipt is two things kept in two different stores:
1. Raw bytes in the blob store, addressed by an opaque content handle
2. A metadata record in the receipt index pointing at that handle

The metadata record optionally references an expense. The index cannot
enforce that reference; the consistency coordinator does.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from expense_ledger.models.ledger import utcnow


def new_receipt_id() -> str:
    return uuid4().hex


class ReceiptState(str, Enum):
    """
    Lifecycle state of a receipt metadata record.

    Valid transitions:
        UNLINKED -> LINKED        (link)
        LINKED   -> UNLINKED      (unlink, expense-delete cascade)
        LINKED   -> LINKED        (re-link to another expense)
        any      -> DELETED       (delete receipt)
    """
    UNLINKED = "unlinked"
    LINKED = "linked"
    DELETED = "deleted"


class ReceiptMetadata(BaseModel):
    """Metadata for one stored receipt file."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_receipt_id)
    user_id: UUID = Field(..., description="Owner; immutable once set")
    expense_id: Optional[UUID] = Field(
        default=None,
        description="Linked expense, None while unassigned"
    )
    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=3, max_length=100)
    size_bytes: int = Field(..., ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    content_handle: str = Field(..., min_length=1)
    uploaded_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def state(self) -> ReceiptState:
        return ReceiptState.LINKED if self.expense_id else ReceiptState.UNLINKED

    @property
    def is_linked(self) -> bool:
        return self.expense_id is not None
