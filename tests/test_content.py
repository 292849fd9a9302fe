"""
Tests for receipt content inspection.
"""

import pytest

from expense_ledger.services.blob import clean_filename, detect_mime_type

from conftest import PDF_BYTES, image_bytes


class TestDetectMimeType:
    """Tests for detect_mime_type."""

    @pytest.mark.parametrize("fmt,expected", [
        ("PNG", "image/png"),
        ("JPEG", "image/jpeg"),
        ("GIF", "image/gif"),
    ])
    def test_image_bytes_win_over_declared_type(self, fmt, expected):
        assert detect_mime_type(image_bytes(fmt), "application/pdf", "scan.pdf") == expected

    def test_pdf_signature(self):
        assert detect_mime_type(PDF_BYTES, "application/octet-stream") == "application/pdf"

    def test_declared_type_used_for_unknown_bytes(self):
        assert detect_mime_type(b"plain words", " Text/Plain ") == "text/plain"

    def test_generic_declared_type_falls_back_to_extension(self):
        assert detect_mime_type(b"plain words", "application/octet-stream", "a.txt") == "text/plain"

    def test_nothing_to_go_on(self):
        assert detect_mime_type(b"\x00\x01\x02") == "application/octet-stream"

    def test_empty_content(self):
        assert detect_mime_type(b"", None, "r.png") == "image/png"


class TestCleanFilename:
    """Tests for clean_filename."""

    @pytest.mark.parametrize("raw,expected", [
        ("receipt.png", "receipt.png"),
        ("/tmp/uploads/receipt.png", "receipt.png"),
        ("C:\\Users\\me\\receipt.png", "receipt.png"),
        ("  ", "receipt"),
        (None, "receipt"),
    ])
    def test_clean(self, raw, expected):
        assert clean_filename(raw) == expected

    def test_truncated(self):
        assert len(clean_filename("a" * 300 + ".pdf")) == 255


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
