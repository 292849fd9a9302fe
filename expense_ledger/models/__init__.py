"""
Data Models Package

This package contains all Pydantic models used in the Expense Ledger system.
All data flowing through the system must conform to these schemas.
"""

from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from expense_ledger.models.ledger import (
    Category,
    Expense,
    ExpenseDraft,
    ExpenseUpdate,
    User,
)
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
from expense_ledger.models.receipt import ReceiptMetadata, ReceiptState
from expense_ledger.models.reports import (
    CategoryAggregate,
    CategoryReportRow,
    MonthlyAggregate,
    MonthlyReportRow,
)
from expense_ledger.models.search import ExpenseSearchCriteria, Page, PagedResult

__all__ = [
    # Ledger models
    "Category",
    "Expense",
    "ExpenseDraft",
    "ExpenseUpdate",
    "User",
    # Predicate models
    "AmountRange",
    "CategoryIs",
    "Criterion",
    "CurrencyIs",
    "DateRange",
    "ExpensePredicate",
    "HasTag",
    "TextSearch",
    # Receipt models
    "ReceiptMetadata",
    "ReceiptState",
    # Report models
    "CategoryAggregate",
    "CategoryReportRow",
    "MonthlyAggregate",
    "MonthlyReportRow",
    # Search models
    "ExpenseSearchCriteria",
    "Page",
    "PagedResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
