"""Receipt blob services package."""

from expense_ledger.services.blob.cloudinary_store import CloudinaryBlobStore
from expense_ledger.services.blob.content import clean_filename, detect_mime_type

__all__ = [
    "CloudinaryBlobStore",
    "clean_filename",
    "detect_mime_type",
]
