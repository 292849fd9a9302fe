"""
Abstract Storage Interfaces

DESIGN DECISION: We define an abstract interface for each store.
This allows us to:
1. Swap the in-memory stores for real backends without touching the engines
2. Use in-memory storage for testing
3. Keep the consistency protocol decoupled from any one backend

Three stores with three different guarantees:
- LedgerStoreInterface: strongly consistent, enforces uniqueness and has a
  transactional boundary
- ReceiptIndexInterface: receipt metadata; knows nothing about the ledger,
  so it cannot enforce the expense reference
- BlobStoreInterface: raw bytes behind opaque handles it issues itself
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import AsyncContextManager, BinaryIO, Optional
from uuid import UUID

from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.ledger import Category, Expense, User
from expense_ledger.models.predicate import ExpensePredicate
from expense_ledger.models.receipt import ReceiptMetadata
from expense_ledger.models.reports import CategoryAggregate, MonthlyAggregate
from expense_ledger.models.search import Page, PagedResult


class LedgerStoreInterface(ABC):
    """
    Users, categories and expenses.

    Implementations must raise DuplicateError on uniqueness violations and
    CategoryInUseError when deleting a referenced category.
    """

    # Users ---------------------------------------------------------------

    @abstractmethod
    async def find_user(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup."""
        pass

    @abstractmethod
    async def save_user(self, user: User) -> User:
        pass

    # Categories ------------------------------------------------------------

    @abstractmethod
    async def find_category(self, category_id: UUID) -> Optional[Category]:
        pass

    @abstractmethod
    async def list_categories(self, user_id: UUID) -> list[Category]:
        pass

    @abstractmethod
    async def save_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def delete_category(self, category_id: UUID) -> bool:
        pass

    @abstractmethod
    async def count_category_expenses(self, category_id: UUID) -> int:
        pass

    # Expenses ------------------------------------------------------------

    @abstractmethod
    async def find_expense(self, expense_id: UUID) -> Optional[Expense]:
        pass

    @abstractmethod
    async def save_expense(self, expense: Expense) -> Expense:
        """
        Insert or replace an expense.

        Assigns `updated_at`; it never moves backwards for a given expense.
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> bool:
        """
        Delete an expense.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def query_expenses(
        self,
        user_id: UUID,
        predicate: ExpensePredicate,
        page: Page,
    ) -> PagedResult[Expense]:
        """
        Run `predicate` over the user's expenses.

        Results are ordered by date, newest first, ties broken by
        creation time, newest first.
        """
        pass

    @abstractmethod
    async def sum_expenses(
        self,
        user_id: UUID,
        predicate: ExpensePredicate,
    ) -> dict[str, Decimal]:
        """Sum of matching amounts, keyed by currency."""
        pass

    @abstractmethod
    async def monthly_aggregates(self, user_id: UUID, year: int) -> list[MonthlyAggregate]:
        """One row per (month, currency) with at least one expense in `year`."""
        pass

    @abstractmethod
    async def category_aggregates(
        self,
        user_id: UUID,
        date_from: date,
        date_to: date,
        currency: Optional[str] = None,
    ) -> list[CategoryAggregate]:
        """One row per category with at least one expense in the inclusive range."""
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Transactional boundary.

        Writes made inside the block are committed together or not at all.
        """
        pass


class ReceiptIndexInterface(ABC):
    """Receipt metadata records pointing into the blob store."""

    @abstractmethod
    async def find_by_receipt_id(self, receipt_id: str) -> Optional[ReceiptMetadata]:
        pass

    @abstractmethod
    async def find_by_expense_id(self, expense_id: UUID) -> list[ReceiptMetadata]:
        pass

    @abstractmethod
    async def find_by_user(self, user_id: UUID, page: Page) -> PagedResult[ReceiptMetadata]:
        pass

    @abstractmethod
    async def find_unassigned(self, user_id: UUID, page: Page) -> PagedResult[ReceiptMetadata]:
        """Receipts of the user whose expense reference is None."""
        pass

    @abstractmethod
    async def find_linked(self, user_id: UUID) -> list[ReceiptMetadata]:
        """All receipts of the user that reference some expense."""
        pass

    @abstractmethod
    async def save(self, receipt: ReceiptMetadata) -> ReceiptMetadata:
        """
        Insert or replace a metadata record.

        Raises:
            OwnershipViolationError: If an existing record has a different user_id
        """
        pass

    @abstractmethod
    async def delete_by_id(self, receipt_id: str) -> bool:
        pass

    @abstractmethod
    async def clear_expense_ref(self, expense_id: UUID) -> list[str]:
        """
        Set expense_id to None on every record referencing `expense_id`.

        Idempotent.

        Returns:
            IDs of the records that were changed
        """
        pass

    @abstractmethod
    async def content_handles(self) -> set[str]:
        """Every blob handle referenced by some metadata record."""
        pass


class BlobStoreInterface(ABC):
    """Raw receipt bytes. Knows nothing about receipts or expenses."""

    @abstractmethod
    async def store(self, content: bytes, filename: str, mime_type: str) -> str:
        """
        Store bytes.

        Returns:
            The opaque content handle for the stored object
        """
        pass

    @abstractmethod
    async def fetch(self, handle: str) -> Optional[BinaryIO]:
        """Open the stored object, or None if the handle is unknown."""
        pass

    @abstractmethod
    async def delete(self, handle: str) -> bool:
        pass

    @abstractmethod
    async def list_handles(self) -> set[str]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        pass

    @abstractmethod
    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        """All events of one logical operation, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Newest first."""
        pass
