"""Services package."""

from expense_ledger.services.storage import (
    AuditStorageInterface,
    BlobStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptIndex,
    InMemoryAuditStorage,
    InMemoryBlobStore,
    InMemoryLedgerStore,
    InMemoryReceiptIndex,
    LedgerStoreInterface,
    ReceiptIndexInterface,
    guarded,
)
from expense_ledger.services.blob import (
    CloudinaryBlobStore,
    clean_filename,
    detect_mime_type,
)
from expense_ledger.services.accounts import AccountService

__all__ = [
    # Account services
    "AccountService",
    # Blob services
    "CloudinaryBlobStore",
    "clean_filename",
    "detect_mime_type",
    # Storage services
    "AuditStorageInterface",
    "BlobStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsReceiptIndex",
    "InMemoryAuditStorage",
    "InMemoryBlobStore",
    "InMemoryLedgerStore",
    "InMemoryReceiptIndex",
    "LedgerStoreInterface",
    "ReceiptIndexInterface",
    "guarded",
]
