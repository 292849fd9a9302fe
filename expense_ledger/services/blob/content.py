"""
Receipt content inspection.

Receipts arrive with a client-declared mime type that is often wrong
("application/octet-stream" from a phone upload, ".jpg" that is a PNG).
The stored mime type is derived from the bytes where possible.
"""

import mimetypes
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError


GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

PDF_MAGIC = b"%PDF-"


def detect_mime_type(
    content: bytes,
    declared: Optional[str] = None,
    filename: Optional[str] = None,
) -> str:
    """
    Work out the mime type of a receipt.

    Order of precedence:
    1. The image format Pillow recognises in the bytes
    2. The PDF signature
    3. The declared type, unless it is a generic octet-stream
    4. A guess from the filename extension
    5. application/octet-stream
    """
    try:
        with Image.open(BytesIO(content)) as img:
            mime = Image.MIME.get(img.format or "")
            if mime:
                return mime
    except (UnidentifiedImageError, OSError, ValueError):
        pass

    if content.startswith(PDF_MAGIC):
        return "application/pdf"

    declared = (declared or "").strip().lower()
    if declared not in GENERIC_MIME_TYPES:
        return declared

    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            return guessed

    return "application/octet-stream"


def clean_filename(filename: Optional[str]) -> str:
    """Strip any client-side directory part; fall back to a fixed name."""
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name[:255] or "receipt"
