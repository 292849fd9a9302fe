"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
In-memory backends cover every store; receipt metadata can also live in
Google Sheets, and audit events in a Sheets audit log.
"""

from expense_ledger.services.storage.guard import guarded
from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    BlobStoreInterface,
    LedgerStoreInterface,
    ReceiptIndexInterface,
)
from expense_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBlobStore,
    InMemoryLedgerStore,
    InMemoryReceiptIndex,
)
from expense_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptIndex,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BlobStoreInterface",
    "LedgerStoreInterface",
    "ReceiptIndexInterface",
    # Call guard
    "guarded",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBlobStore",
    "InMemoryLedgerStore",
    "InMemoryReceiptIndex",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsReceiptIndex",
]
