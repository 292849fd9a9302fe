"""
Shared fixtures.

Every store is the in-memory implementation; nothing here touches the
network. Failure injection is done with small subclasses that make one
method raise.
"""

import random
from datetime import date, timedelta
from decimal import Decimal
from io import BytesIO
from typing import Iterable, Optional

import pytest
from PIL import Image

from expense_ledger.audit import AuditLogger
from expense_ledger.config import AppSettings
from expense_ledger.consistency import ConsistencyCoordinator
from expense_ledger.models.ledger import Category, Expense, User
from expense_ledger.queries import ExpenseQueryExecutor, ReportEngine
from expense_ledger.services.accounts import AccountService
from expense_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryBlobStore,
    InMemoryLedgerStore,
    InMemoryReceiptIndex,
)
from expense_ledger.validation import InputValidator


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color=(200, 200, 200)).save(buffer, format=fmt)
    return buffer.getvalue()


PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"


class SpyBlobStore(InMemoryBlobStore):
    """Counts calls so tests can assert a blob was never written."""

    def __init__(self):
        super().__init__()
        self.store_calls = 0
        self.delete_calls = 0

    async def store(self, content, filename, mime_type):
        self.store_calls += 1
        return await super().store(content, filename, mime_type)

    async def delete(self, handle):
        self.delete_calls += 1
        return await super().delete(handle)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20260115)


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(max_upload_size_mb=1)


@pytest.fixture
def validator(app_settings) -> InputValidator:
    return InputValidator(app_settings)


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def receipts() -> InMemoryReceiptIndex:
    return InMemoryReceiptIndex()


@pytest.fixture
def blobs() -> SpyBlobStore:
    return SpyBlobStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def accounts(ledger) -> AccountService:
    return AccountService(ledger, timeout=1.0)


@pytest.fixture
def executor(ledger, validator) -> ExpenseQueryExecutor:
    return ExpenseQueryExecutor(ledger, validator=validator, timeout=1.0)


@pytest.fixture
def reports(ledger, validator) -> ReportEngine:
    return ReportEngine(ledger, validator=validator, timeout=1.0)


@pytest.fixture
def make_coordinator(ledger, receipts, blobs, audit_logger, validator):
    """Build a coordinator, optionally over replacement stores."""
    def build(**overrides) -> ConsistencyCoordinator:
        options = dict(
            ledger=ledger,
            receipts=receipts,
            blobs=blobs,
            audit_logger=audit_logger,
            validator=validator,
            timeout=1.0,
            retry_attempts=3,
            retry_max_wait=0,
        )
        options.update(overrides)
        return ConsistencyCoordinator(**options)
    return build


@pytest.fixture
def coordinator(make_coordinator) -> ConsistencyCoordinator:
    return make_coordinator()


# =============================================================================
# Seeding helpers
# =============================================================================

async def add_user(ledger: InMemoryLedgerStore, email: str = "alice@example.com") -> User:
    return await ledger.save_user(User(email=email, display_name=email.split("@")[0]))


async def add_category(
    ledger: InMemoryLedgerStore,
    user: User,
    name: str,
    color: Optional[str] = None,
    icon: Optional[str] = None,
) -> Category:
    return await ledger.save_category(
        Category(user_id=user.id, name=name, color=color, icon=icon)
    )


async def add_expense(
    ledger: InMemoryLedgerStore,
    user: User,
    category: Category,
    amount: str,
    on: date,
    currency: str = "USD",
    description: Optional[str] = None,
    tags: Iterable[str] = (),
) -> Expense:
    return await ledger.save_expense(Expense(
        user_id=user.id,
        category_id=category.id,
        amount=Decimal(amount),
        currency=currency,
        date=on,
        description=description,
        tags=set(tags),
    ))


async def add_random_expenses(
    ledger: InMemoryLedgerStore,
    user: User,
    categories: list[Category],
    rng: random.Random,
    count: int,
) -> list[Expense]:
    """Deterministic sample data driven by an explicit generator."""
    start = date(2025, 1, 1)
    expenses = []
    for _ in range(count):
        expenses.append(await add_expense(
            ledger,
            user,
            rng.choice(categories),
            amount=f"{rng.randint(1, 50000) / 100:.2f}",
            on=start + timedelta(days=rng.randint(0, 364)),
            currency=rng.choice(["USD", "EUR"]),
            description=rng.choice(["lunch", "taxi", "groceries", None]),
            tags=rng.sample(["work", "family", "travel"], rng.randint(0, 2)),
        ))
    return expenses


@pytest.fixture
async def alice(ledger) -> User:
    return await add_user(ledger, "alice@example.com")


@pytest.fixture
async def bob(ledger) -> User:
    return await add_user(ledger, "bob@example.com")
