"""
In-Memory Storage Implementation

Dictionary-backed implementations of every storage interface. Used by the
test-suite and for local runs where no backend is configured.

The ledger store behaves like the relational store it stands in for:
- uniqueness (case-insensitive email, per-owner category name)
- foreign keys (expense -> user, expense -> category)
- "category in use" protection
- a transactional boundary that rolls back on error

Records are copied on the way in and out, so callers never hold a
reference into the store's state.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, timedelta
from decimal import Decimal
from io import BytesIO
from typing import AsyncIterator, BinaryIO, Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.errors import (
    CategoryInUseError,
    DuplicateError,
    NotFoundError,
    OwnershipViolationError,
)
from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.ledger import Category, Expense, User, utcnow
from expense_ledger.models.predicate import ExpensePredicate
from expense_ledger.models.receipt import ReceiptMetadata
from expense_ledger.models.reports import CategoryAggregate, MonthlyAggregate
from expense_ledger.models.search import Page, PagedResult
from expense_ledger.queries.filters import matches
from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    BlobStoreInterface,
    LedgerStoreInterface,
    ReceiptIndexInterface,
)


logger = structlog.get_logger(__name__)


def _paginate(items: list, page: Page) -> PagedResult:
    return PagedResult(
        items=items[page.offset:page.offset + page.size],
        total=len(items),
        page=page,
    )


class InMemoryLedgerStore(LedgerStoreInterface):
    """Ledger store held in process memory."""

    def __init__(self):
        self._users: dict[UUID, User] = {}
        self._categories: dict[UUID, Category] = {}
        self._expenses: dict[UUID, Expense] = {}
        self._tx_lock = asyncio.Lock()

    # Users ---------------------------------------------------------------

    async def find_user(self, user_id: UUID) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        canonical = email.strip().lower()
        for user in self._users.values():
            if user.email == canonical:
                return user.model_copy(deep=True)
        return None

    async def save_user(self, user: User) -> User:
        for existing in self._users.values():
            if existing.id != user.id and existing.email == user.email.lower():
                raise DuplicateError(f"Email already registered: {user.email}")
        self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    # Categories ------------------------------------------------------------

    async def find_category(self, category_id: UUID) -> Optional[Category]:
        category = self._categories.get(category_id)
        return category.model_copy(deep=True) if category else None

    async def list_categories(self, user_id: UUID) -> list[Category]:
        return sorted(
            (c.model_copy(deep=True) for c in self._categories.values() if c.user_id == user_id),
            key=lambda c: c.name.lower(),
        )

    async def save_category(self, category: Category) -> Category:
        if category.user_id not in self._users:
            raise NotFoundError("User", category.user_id)
        for existing in self._categories.values():
            if (
                existing.id != category.id
                and existing.user_id == category.user_id
                and existing.name == category.name
            ):
                raise DuplicateError(f"Category name already exists: {category.name}")
        self._categories[category.id] = category.model_copy(deep=True)
        return category.model_copy(deep=True)

    async def delete_category(self, category_id: UUID) -> bool:
        if category_id not in self._categories:
            return False
        in_use = await self.count_category_expenses(category_id)
        if in_use:
            raise CategoryInUseError(category_id, in_use)
        del self._categories[category_id]
        return True

    async def count_category_expenses(self, category_id: UUID) -> int:
        return sum(1 for e in self._expenses.values() if e.category_id == category_id)

    # Expenses ------------------------------------------------------------

    async def find_expense(self, expense_id: UUID) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    async def save_expense(self, expense: Expense) -> Expense:
        if expense.user_id not in self._users:
            raise NotFoundError("User", expense.user_id)
        if expense.category_id not in self._categories:
            raise NotFoundError("Category", expense.category_id)

        stored = expense.model_copy(deep=True)
        now = utcnow()
        existing = self._expenses.get(expense.id)
        if existing is not None:
            stored.created_at = existing.created_at
            if now <= existing.updated_at:
                now = existing.updated_at + timedelta(microseconds=1)
        stored.updated_at = now

        self._expenses[stored.id] = stored
        return stored.model_copy(deep=True)

    async def delete_expense(self, expense_id: UUID) -> bool:
        return self._expenses.pop(expense_id, None) is not None

    def _matching(self, user_id: UUID, predicate: ExpensePredicate) -> list[Expense]:
        found = []
        for expense in self._expenses.values():
            if expense.user_id != user_id:
                continue
            category = self._categories.get(expense.category_id)
            if matches(predicate, expense, category.name if category else None):
                found.append(expense)
        return found

    async def query_expenses(
        self,
        user_id: UUID,
        predicate: ExpensePredicate,
        page: Page,
    ) -> PagedResult[Expense]:
        found = self._matching(user_id, predicate)
        found.sort(key=lambda e: (e.date, e.created_at), reverse=True)
        return _paginate([e.model_copy(deep=True) for e in found], page)

    async def sum_expenses(
        self,
        user_id: UUID,
        predicate: ExpensePredicate,
    ) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))
        for expense in self._matching(user_id, predicate):
            totals[expense.currency] += expense.amount
        return dict(totals)

    async def monthly_aggregates(self, user_id: UUID, year: int) -> list[MonthlyAggregate]:
        groups: dict[tuple[int, str], list[Decimal]] = defaultdict(list)
        for expense in self._expenses.values():
            if expense.user_id == user_id and expense.date.year == year:
                groups[(expense.date.month, expense.currency)].append(expense.amount)

        return [
            MonthlyAggregate(
                month=month,
                currency=currency,
                total=sum(amounts, Decimal("0.00")),
                count=len(amounts),
            )
            for (month, currency), amounts in sorted(groups.items())
        ]

    async def category_aggregates(
        self,
        user_id: UUID,
        date_from: date,
        date_to: date,
        currency: Optional[str] = None,
    ) -> list[CategoryAggregate]:
        groups: dict[UUID, list[Decimal]] = defaultdict(list)
        for expense in self._expenses.values():
            if expense.user_id != user_id:
                continue
            if not date_from <= expense.date <= date_to:
                continue
            if currency and expense.currency != currency:
                continue
            groups[expense.category_id].append(expense.amount)

        rows = []
        for category_id, amounts in groups.items():
            category = self._categories[category_id]
            rows.append(CategoryAggregate(
                category_id=category_id,
                category_name=category.name,
                color=category.color,
                icon=category.icon,
                total=sum(amounts, Decimal("0.00")),
                count=len(amounts),
            ))
        return rows

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._tx_lock:
            snapshot = (
                dict(self._users),
                dict(self._categories),
                dict(self._expenses),
            )
            try:
                yield
            except BaseException:
                self._users, self._categories, self._expenses = snapshot
                logger.debug("ledger_transaction_rolled_back")
                raise


class InMemoryReceiptIndex(ReceiptIndexInterface):
    """Receipt metadata held in process memory."""

    def __init__(self):
        self._receipts: dict[str, ReceiptMetadata] = {}

    async def find_by_receipt_id(self, receipt_id: str) -> Optional[ReceiptMetadata]:
        receipt = self._receipts.get(receipt_id)
        return receipt.model_copy(deep=True) if receipt else None

    async def find_by_expense_id(self, expense_id: UUID) -> list[ReceiptMetadata]:
        return [
            r.model_copy(deep=True)
            for r in self._receipts.values()
            if r.expense_id == expense_id
        ]

    def _for_user(self, user_id: UUID, unassigned_only: bool = False) -> list[ReceiptMetadata]:
        found = [
            r.model_copy(deep=True)
            for r in self._receipts.values()
            if r.user_id == user_id and not (unassigned_only and r.expense_id is not None)
        ]
        found.sort(key=lambda r: r.uploaded_at, reverse=True)
        return found

    async def find_by_user(self, user_id: UUID, page: Page) -> PagedResult[ReceiptMetadata]:
        return _paginate(self._for_user(user_id), page)

    async def find_unassigned(self, user_id: UUID, page: Page) -> PagedResult[ReceiptMetadata]:
        return _paginate(self._for_user(user_id, unassigned_only=True), page)

    async def find_linked(self, user_id: UUID) -> list[ReceiptMetadata]:
        return [r for r in self._for_user(user_id) if r.expense_id is not None]

    async def save(self, receipt: ReceiptMetadata) -> ReceiptMetadata:
        existing = self._receipts.get(receipt.id)
        if existing is not None and existing.user_id != receipt.user_id:
            raise OwnershipViolationError("Receipt", receipt.id)
        self._receipts[receipt.id] = receipt.model_copy(deep=True)
        return receipt.model_copy(deep=True)

    async def delete_by_id(self, receipt_id: str) -> bool:
        return self._receipts.pop(receipt_id, None) is not None

    async def clear_expense_ref(self, expense_id: UUID) -> list[str]:
        cleared = []
        now = utcnow()
        for receipt in self._receipts.values():
            if receipt.expense_id == expense_id:
                receipt.expense_id = None
                receipt.updated_at = now
                cleared.append(receipt.id)
        return cleared

    async def content_handles(self) -> set[str]:
        return {r.content_handle for r in self._receipts.values()}


class InMemoryBlobStore(BlobStoreInterface):
    """Receipt bytes held in process memory."""

    def __init__(self):
        self._blobs: dict[str, tuple[bytes, str, str]] = {}

    async def store(self, content: bytes, filename: str, mime_type: str) -> str:
        handle = uuid4().hex
        self._blobs[handle] = (bytes(content), filename, mime_type)
        return handle

    async def fetch(self, handle: str) -> Optional[BinaryIO]:
        blob = self._blobs.get(handle)
        return BytesIO(blob[0]) if blob else None

    async def delete(self, handle: str) -> bool:
        return self._blobs.pop(handle, None) is not None

    async def list_handles(self) -> set[str]:
        return set(self._blobs)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit trail held in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
