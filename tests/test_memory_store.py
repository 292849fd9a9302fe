"""
Tests for the in-memory stores.

The ledger store enforces the same constraints a relational store would,
so these double as the contract the real backend must meet.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from expense_ledger.errors import (
    CategoryInUseError,
    DuplicateError,
    NotFoundError,
    OwnershipViolationError,
)
from expense_ledger.models.ledger import Category, Expense, User
from expense_ledger.models.receipt import ReceiptMetadata
from expense_ledger.models.search import Page

from conftest import add_category, add_expense


def _receipt(user_id, expense_id=None, handle="h") -> ReceiptMetadata:
    return ReceiptMetadata(
        user_id=user_id,
        expense_id=expense_id,
        filename="r.pdf",
        mime_type="application/pdf",
        size_bytes=3,
        content_handle=handle,
    )


class TestLedgerConstraints:
    """Tests for uniqueness and reference checks."""

    async def test_duplicate_email(self, ledger, alice):
        with pytest.raises(DuplicateError):
            await ledger.save_user(User(email="ALICE@example.com", display_name="Imposter"))

    async def test_find_user_by_email(self, ledger, alice):
        assert (await ledger.find_user_by_email(" Alice@Example.com ")).id == alice.id

    async def test_duplicate_category_name(self, ledger, alice):
        await add_category(ledger, alice, "Food")
        with pytest.raises(DuplicateError):
            await add_category(ledger, alice, "Food")

    async def test_category_needs_user(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.save_category(Category(user_id=uuid4(), name="Food"))

    async def test_expense_needs_category(self, ledger, alice):
        with pytest.raises(NotFoundError):
            await ledger.save_expense(Expense(
                user_id=alice.id,
                category_id=uuid4(),
                amount=Decimal("1.00"),
                currency="USD",
                date=date(2026, 1, 1),
            ))

    async def test_category_in_use(self, ledger, alice):
        food = await add_category(ledger, alice, "Food")
        await add_expense(ledger, alice, food, "1.00", date(2026, 1, 1))

        with pytest.raises(CategoryInUseError):
            await ledger.delete_category(food.id)
        assert await ledger.count_category_expenses(food.id) == 1

    async def test_records_are_copies(self, ledger, alice):
        food = await add_category(ledger, alice, "Food")
        expense = await add_expense(ledger, alice, food, "1.00", date(2026, 1, 1))

        expense.description = "changed outside"

        assert (await ledger.find_expense(expense.id)).description is None


class TestLedgerTimestamps:
    """Tests for created_at and updated_at handling."""

    async def test_resave_keeps_created_and_advances_updated(self, ledger, alice):
        food = await add_category(ledger, alice, "Food")
        first = await add_expense(ledger, alice, food, "1.00", date(2026, 1, 1))

        stamps = [first.updated_at]
        current = first
        for amount in ("2.00", "3.00", "4.00"):
            current = await ledger.save_expense(current.with_changes({"amount": Decimal(amount)}))
            stamps.append(current.updated_at)

        assert current.created_at == first.created_at
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)


class TestLedgerTransaction:
    """Tests for the transactional boundary."""

    async def test_rollback_on_error(self, ledger, alice):
        food = await add_category(ledger, alice, "Food")
        expense = await add_expense(ledger, alice, food, "1.00", date(2026, 1, 1))

        with pytest.raises(RuntimeError):
            async with ledger.transaction():
                await ledger.delete_expense(expense.id)
                raise RuntimeError("abort")

        assert await ledger.find_expense(expense.id) is not None

    async def test_commit(self, ledger, alice):
        food = await add_category(ledger, alice, "Food")
        expense = await add_expense(ledger, alice, food, "1.00", date(2026, 1, 1))

        async with ledger.transaction():
            assert await ledger.delete_expense(expense.id)

        assert await ledger.find_expense(expense.id) is None


class TestReceiptIndex:
    """Tests for the in-memory receipt index."""

    async def test_owner_cannot_change(self, receipts, alice, bob):
        receipt = await receipts.save(_receipt(alice.id))

        with pytest.raises(OwnershipViolationError):
            await receipts.save(receipt.model_copy(update={"user_id": bob.id}))

    async def test_clear_expense_ref(self, receipts, alice):
        expense_id = uuid4()
        linked = await receipts.save(_receipt(alice.id, expense_id))
        other = await receipts.save(_receipt(alice.id, uuid4()))

        assert await receipts.clear_expense_ref(expense_id) == [linked.id]
        assert await receipts.clear_expense_ref(expense_id) == []
        assert (await receipts.find_by_receipt_id(other.id)).expense_id is not None

    async def test_unassigned_and_linked(self, receipts, alice, bob):
        free = await receipts.save(_receipt(alice.id))
        tied = await receipts.save(_receipt(alice.id, uuid4()))
        await receipts.save(_receipt(bob.id))

        unassigned = await receipts.find_unassigned(alice.id, Page())
        assert [r.id for r in unassigned.items] == [free.id]
        assert [r.id for r in await receipts.find_linked(alice.id)] == [tied.id]

    async def test_content_handles(self, receipts, alice):
        await receipts.save(_receipt(alice.id, handle="a"))
        await receipts.save(_receipt(alice.id, handle="b"))

        assert await receipts.content_handles() == {"a", "b"}


class TestBlobStore:
    """Tests for the in-memory blob store."""

    async def test_store_fetch_delete(self, blobs):
        handle = await blobs.store(b"bytes", "r.pdf", "application/pdf")

        assert (await blobs.fetch(handle)).read() == b"bytes"
        assert await blobs.delete(handle)
        assert await blobs.fetch(handle) is None
        assert not await blobs.delete(handle)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
