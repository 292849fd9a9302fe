"""
Boundary Validation

DESIGN DECISION: Inputs are validated at the caller boundary, before any
store is touched.
- Inverted date or amount ranges fail here, so a bad search never costs
  a storage round-trip
- Report years are checked against configured bounds
- Uploads are checked for emptiness, size and type before the blob write,
  so a rejected upload can never orphan a blob

Field-level rules (amount precision, currency shape, name length) live on
the pydantic models themselves. This module covers the rules that span
fields or depend on configuration.

IMPORTANT: Validation NEVER silently fixes issues. It raises.
"""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError

from expense_ledger.config import AppSettings, get_settings
from expense_ledger.errors import InvalidInputError, InvalidRangeError
from expense_ledger.models.search import ExpenseSearchCriteria


def validate_date_range(date_from: Optional[date], date_to: Optional[date]) -> None:
    """Raise InvalidRangeError when both bounds are given and inverted."""
    if date_from is not None and date_to is not None and date_from > date_to:
        raise InvalidRangeError(
            f"date_from ({date_from.isoformat()}) is after date_to ({date_to.isoformat()})"
        )


def validate_amount_range(
    min_amount: Optional[Decimal],
    max_amount: Optional[Decimal],
) -> None:
    """Raise InvalidRangeError when both bounds are given and inverted."""
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise InvalidRangeError(
            f"min_amount ({min_amount}) is greater than max_amount ({max_amount})"
        )


class InputValidator:
    """
    Validates caller input against cross-field rules and configured limits.

    Stateless apart from the settings it reads.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def validate_search_criteria(self, criteria: ExpenseSearchCriteria) -> None:
        """
        Check the ranges of a search.

        Raises:
            InvalidRangeError: If a date or amount range is inverted
        """
        validate_date_range(criteria.date_from, criteria.date_to)
        validate_amount_range(criteria.min_amount, criteria.max_amount)

        for bound in (criteria.min_amount, criteria.max_amount):
            if bound is not None and bound < 0:
                raise InvalidRangeError(f"Amount bounds must not be negative: {bound}")

    def validate_report_year(self, year: int) -> None:
        """Raise InvalidRangeError for a year outside the configured bounds."""
        low = self._settings.min_report_year
        high = self._settings.max_report_year
        if not low <= year <= high:
            raise InvalidRangeError(f"Year {year} is outside [{low}, {high}]")

    def validate_upload(self, content: bytes, mime_type: str) -> None:
        """
        Check a receipt upload before anything is stored.

        Raises:
            InvalidInputError: If the file is empty, too large, or of a
                type that is not accepted
        """
        if not content:
            raise InvalidInputError("Receipt file is empty")

        limit = self._settings.max_upload_size_bytes
        if len(content) > limit:
            raise InvalidInputError(
                f"Receipt file is {len(content)} bytes; the limit is {limit} bytes"
            )

        allowed = self._settings.allowed_receipt_types_list
        if mime_type.lower() not in allowed:
            raise InvalidInputError(
                f"Receipt type {mime_type} is not accepted. Allowed: {', '.join(allowed)}"
            )


@contextmanager
def input_errors():
    """Re-raise pydantic ValidationError as InvalidInputError."""
    try:
        yield
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'value'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidInputError(problems) from e
