"""Expense search and reporting package."""

from expense_ledger.queries.executor import ExpenseQueryExecutor
from expense_ledger.queries.filters import FilterEngine, build_predicate, matches
from expense_ledger.queries.reports import ReportEngine, category_percentages

__all__ = [
    "ExpenseQueryExecutor",
    "FilterEngine",
    "ReportEngine",
    "build_predicate",
    "category_percentages",
    "matches",
]
