"""
Expense Query Executor

DESIGN DECISION: Query execution is DETERMINISTIC and validated up front.
Callers hand over sparse criteria; this executor:
1. Validates ranges (before any storage call)
2. Checks the user and, when given, the category's owner
3. Asks the filter engine for a predicate
4. Runs that predicate against the ledger store

The ledger store is the only source of rows. Nothing is estimated,
and amounts in different currencies are never added together.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.config import get_settings
from expense_ledger.errors import NotFoundError, OwnershipViolationError
from expense_ledger.models.ledger import Expense
from expense_ledger.models.predicate import ExpensePredicate
from expense_ledger.models.search import ExpenseSearchCriteria, Page, PagedResult
from expense_ledger.queries.filters import FilterEngine
from expense_ledger.services.storage.guard import guarded
from expense_ledger.services.storage.interface import LedgerStoreInterface
from expense_ledger.validation.validator import InputValidator


logger = structlog.get_logger(__name__)

STORE_NAME = "ledger"


class ExpenseQueryExecutor:
    """
    Executes expense searches and totals for one user at a time.

    GUARANTEES:
    - Invalid ranges fail before the store is queried
    - Only the calling user's expenses are ever returned
    - A category filter naming another user's category is refused,
      never silently scoped
    """

    def __init__(
        self,
        ledger: LedgerStoreInterface,
        validator: Optional[InputValidator] = None,
        filters: Optional[FilterEngine] = None,
        timeout: Optional[float] = None,
    ):
        self._ledger = ledger
        self._validator = validator or InputValidator()
        self._filters = filters or FilterEngine()
        self._timeout = timeout if timeout is not None else get_settings().storage.timeout_seconds

    async def _call(self, coro, timeout: Optional[float]):
        return await guarded(coro, STORE_NAME, timeout if timeout is not None else self._timeout)

    async def _prepare(
        self,
        user_id: UUID,
        criteria: ExpenseSearchCriteria,
        timeout: Optional[float],
    ) -> ExpensePredicate:
        """Validate, check ownership, compose."""
        self._validator.validate_search_criteria(criteria)

        if await self._call(self._ledger.find_user(user_id), timeout) is None:
            raise NotFoundError("User", user_id)

        if criteria.category_id is not None:
            category = await self._call(self._ledger.find_category(criteria.category_id), timeout)
            if category is None:
                raise NotFoundError("Category", criteria.category_id)
            if category.user_id != user_id:
                raise OwnershipViolationError("Category", criteria.category_id)

        return self._filters.compose(user_id, criteria)

    async def search(
        self,
        user_id: UUID,
        criteria: Optional[ExpenseSearchCriteria] = None,
        page: Optional[Page] = None,
        timeout: Optional[float] = None,
    ) -> PagedResult[Expense]:
        """
        Find the user's expenses matching `criteria`.

        Results are ordered by date descending, then creation time descending.

        Raises:
            InvalidRangeError: Inverted date or amount range
            NotFoundError: Unknown user or category
            OwnershipViolationError: Category belongs to another user
            StorageTransientError: Timeout or connection failure
        """
        criteria = criteria or ExpenseSearchCriteria()
        page = page or Page(size=get_settings().app.default_page_size)

        predicate = await self._prepare(user_id, criteria, timeout)
        result = await self._call(self._ledger.query_expenses(user_id, predicate, page), timeout)

        logger.debug(
            "expense_search_executed",
            user_id=str(user_id),
            criteria=list(predicate.kinds),
            result_count=len(result.items),
            total=result.total,
        )
        return result

    async def total(
        self,
        user_id: UUID,
        criteria: Optional[ExpenseSearchCriteria] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, Decimal]:
        """Sum of matching expenses per currency. Empty when nothing matches."""
        predicate = await self._prepare(user_id, criteria or ExpenseSearchCriteria(), timeout)
        return await self._call(self._ledger.sum_expenses(user_id, predicate), timeout)

    async def get_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        timeout: Optional[float] = None,
    ) -> Expense:
        """Fetch one expense, refusing other users' expenses."""
        expense = await self._call(self._ledger.find_expense(expense_id), timeout)
        if expense is None:
            raise NotFoundError("Expense", expense_id)
        if expense.user_id != user_id:
            raise OwnershipViolationError("Expense", expense_id)
        return expense
