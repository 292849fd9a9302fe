"""
Error Taxonomy for Expense Ledger

Every failure surfaced by the engines and the coordinator is one of these.
Callers (an HTTP layer, a CLI, a job runner) map them to their own responses.

DESIGN DECISION: Retryability is a property of the exception class.
Only StorageTransientError is retryable; everything else is a client error
or a consistency signal that retrying would not fix.
"""

from typing import Any, Optional


class ExpenseLedgerError(Exception):
    """Base exception for all expense ledger errors."""

    retryable: bool = False


class NotFoundError(ExpenseLedgerError, LookupError):
    """A referenced user, category, expense or receipt does not exist."""

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class OwnershipViolationError(ExpenseLedgerError):
    """The entity exists but belongs to a different user."""

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} does not belong to the user")


class InvalidRangeError(ExpenseLedgerError, ValueError):
    """Inverted date/amount range or an out-of-bounds year."""
    pass


class InvalidInputError(ExpenseLedgerError, ValueError):
    """A field value is unacceptable (empty upload, future date, ...)."""
    pass


class DuplicateError(ExpenseLedgerError):
    """Attempted to insert a duplicate entity."""
    pass


class CategoryInUseError(ExpenseLedgerError):
    """A category cannot be deleted while expenses reference it."""

    def __init__(self, category_id: Any, expense_count: int):
        self.category_id = category_id
        self.expense_count = expense_count
        super().__init__(
            f"Category {category_id} is in use by {expense_count} expense(s)"
        )


class StorageError(ExpenseLedgerError):
    """Base exception for storage backend failures."""
    pass


class StorageTransientError(StorageError):
    """
    Timeout or connection failure talking to a store.

    Safe to retry with backoff at the caller's discretion.
    """

    retryable = True

    def __init__(self, store: str, message: str):
        self.store = store
        super().__init__(f"{store}: {message}")


class PartialConsistencyFailure(ExpenseLedgerError):
    """
    A cross-store operation succeeded on one side and failed on the other.

    `orphans` lists the resources deliberately left behind (for example
    a blob handle whose metadata write failed) so a sweep can reclaim them.
    """

    def __init__(
        self,
        message: str,
        orphans: Optional[dict[str, list[str]]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.orphans = orphans or {}
        self.cause = cause
        super().__init__(message)
