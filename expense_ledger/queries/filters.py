"""
Expense Filter Engine

Turns a sparse ExpenseSearchCriteria into an ExpensePredicate and
evaluates predicates against expenses with a single matcher function.

DESIGN DECISION: The predicate is data, not a tree of closures.
- Stores can translate it (SQL WHERE, sheet filter) or evaluate it with
  `matches` directly, as the in-memory store does
- Two predicates built from equal inputs compare equal
- Only supplied criteria appear in the tuple; an absent criterion is
  simply not there, so the empty tuple matches every expense of the user

Range validation is NOT done here. The caller boundary (ExpenseQueryExecutor)
rejects inverted ranges before a predicate is ever built.
"""

from typing import Optional
from uuid import UUID

from expense_ledger.models.ledger import Expense
from expense_ledger.models.predicate import (
    AmountRange,
    CategoryIs,
    Criterion,
    CurrencyIs,
    DateRange,
    ExpensePredicate,
    HasTag,
    TextSearch,
)
from expense_ledger.models.search import ExpenseSearchCriteria


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def build_predicate(user_id: UUID, criteria: ExpenseSearchCriteria) -> ExpensePredicate:
    """
    Compose the predicate for `criteria`.

    Pure: reads the (frozen) criteria, returns a new value, touches nothing else.
    """
    parts: list[Criterion] = []

    if criteria.date_from is not None or criteria.date_to is not None:
        parts.append(DateRange(start=criteria.date_from, end=criteria.date_to))

    if criteria.category_id is not None:
        parts.append(CategoryIs(category_id=criteria.category_id))

    if criteria.min_amount is not None or criteria.max_amount is not None:
        parts.append(AmountRange(minimum=criteria.min_amount, maximum=criteria.max_amount))

    text = _clean(criteria.search_text)
    if text:
        parts.append(TextSearch(needle=text.lower()))

    currency = _clean(criteria.currency)
    if currency:
        parts.append(CurrencyIs(code=currency.upper()))

    tag = _clean(criteria.tag)
    if tag:
        parts.append(HasTag(tag=tag.lower()))

    return ExpensePredicate(user_id=user_id, criteria=tuple(parts))


def _criterion_matches(
    criterion: Criterion,
    expense: Expense,
    category_name: Optional[str],
) -> bool:
    if isinstance(criterion, DateRange):
        if criterion.start is not None and expense.date < criterion.start:
            return False
        if criterion.end is not None and expense.date > criterion.end:
            return False
        return True

    if isinstance(criterion, CategoryIs):
        return expense.category_id == criterion.category_id

    if isinstance(criterion, AmountRange):
        if criterion.minimum is not None and expense.amount < criterion.minimum:
            return False
        if criterion.maximum is not None and expense.amount > criterion.maximum:
            return False
        return True

    if isinstance(criterion, TextSearch):
        needle = criterion.needle
        if expense.description and needle in expense.description.lower():
            return True
        if any(needle in tag.lower() for tag in expense.tags):
            return True
        return bool(category_name) and needle in category_name.lower()

    if isinstance(criterion, CurrencyIs):
        return expense.currency.upper() == criterion.code

    if isinstance(criterion, HasTag):
        return any(tag.lower() == criterion.tag for tag in expense.tags)

    raise TypeError(f"Unknown criterion: {criterion!r}")


def matches(
    predicate: ExpensePredicate,
    expense: Expense,
    category_name: Optional[str] = None,
) -> bool:
    """
    Evaluate `predicate` against one expense.

    `category_name` is the name of the expense's category; it is only
    consulted by free-text search.
    """
    if expense.user_id != predicate.user_id:
        return False
    return all(
        _criterion_matches(criterion, expense, category_name)
        for criterion in predicate.criteria
    )


class FilterEngine:
    """Stateless facade over build_predicate and matches."""

    def compose(self, user_id: UUID, criteria: ExpenseSearchCriteria) -> ExpensePredicate:
        return build_predicate(user_id, criteria)

    def matches(
        self,
        predicate: ExpensePredicate,
        expense: Expense,
        category_name: Optional[str] = None,
    ) -> bool:
        return matches(predicate, expense, category_name)
