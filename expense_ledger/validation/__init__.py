"""Validation package."""

from expense_ledger.validation.validator import (
    InputValidator,
    input_errors,
    validate_amount_range,
    validate_date_range,
)

__all__ = [
    "InputValidator",
    "input_errors",
    "validate_amount_range",
    "validate_date_range",
]
