"""
Report Engine

Monthly and category rollups over one user's expenses.

DESIGN DECISION: Reports are sparse.
Months or categories with no expenses produce no row; callers that want
a dense calendar fill the gaps themselves. Currencies are opaque codes,
so the monthly report keeps one row per (month, currency) and never adds
amounts in different currencies together.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.config import get_settings
from expense_ledger.errors import NotFoundError
from expense_ledger.models.ledger import normalize_currency
from expense_ledger.models.reports import (
    CategoryAggregate,
    CategoryReportRow,
    MonthlyReportRow,
)
from expense_ledger.services.storage.guard import guarded
from expense_ledger.services.storage.interface import LedgerStoreInterface
from expense_ledger.validation.validator import InputValidator, validate_date_range


logger = structlog.get_logger(__name__)

STORE_NAME = "ledger"

PERCENT_PLACES = Decimal("0.0001")


def category_percentages(aggregates: list[CategoryAggregate]) -> list[CategoryReportRow]:
    """
    Turn per-category aggregates into report rows with percentages.

    The grand total is the sum of the row totals, so the percentages of
    a non-empty report add up to 100 within rounding. A zero grand total
    gives every row 0.0.

    The share itself is rounded half-up to 4 places (50 of 65 gives
    76.9231). Totals are already exact cents, so rounding them before the
    division would change nothing, and rounding the ratio instead would
    truncate shares to 2 places (76.92).
    """
    grand_total = sum((a.total for a in aggregates), Decimal("0"))

    rows = []
    for aggregate in aggregates:
        if grand_total > 0:
            share = (aggregate.total / grand_total * 100).quantize(PERCENT_PLACES, ROUND_HALF_UP)
            percentage = float(share)
        else:
            percentage = 0.0
        rows.append(CategoryReportRow(
            category_id=aggregate.category_id,
            category_name=aggregate.category_name,
            color=aggregate.color,
            icon=aggregate.icon,
            total=aggregate.total,
            expense_count=aggregate.count,
            percentage=percentage,
        ))

    rows.sort(key=lambda r: (-r.total, r.category_name))
    return rows


class ReportEngine:
    """Builds monthly and category reports from ledger aggregates."""

    def __init__(
        self,
        ledger: LedgerStoreInterface,
        validator: Optional[InputValidator] = None,
        timeout: Optional[float] = None,
    ):
        self._ledger = ledger
        self._validator = validator or InputValidator()
        self._timeout = timeout if timeout is not None else get_settings().storage.timeout_seconds

    async def _require_user(self, user_id: UUID) -> None:
        if await guarded(self._ledger.find_user(user_id), STORE_NAME, self._timeout) is None:
            raise NotFoundError("User", user_id)

    async def monthly_report(self, user_id: UUID, year: int) -> list[MonthlyReportRow]:
        """
        Totals per (month, currency) for `year`, ordered by month then currency.

        Raises:
            InvalidRangeError: If `year` is outside the configured bounds
            NotFoundError: If the user does not exist
        """
        self._validator.validate_report_year(year)
        await self._require_user(user_id)

        aggregates = await guarded(
            self._ledger.monthly_aggregates(user_id, year), STORE_NAME, self._timeout
        )
        rows = [
            MonthlyReportRow(
                year=year,
                month=a.month,
                currency=a.currency,
                total=a.total,
                expense_count=a.count,
            )
            for a in aggregates
        ]
        rows.sort(key=lambda r: (r.month, r.currency))

        logger.debug("monthly_report_built", user_id=str(user_id), year=year, rows=len(rows))
        return rows

    async def category_report(
        self,
        user_id: UUID,
        date_from: date,
        date_to: date,
        currency: Optional[str] = None,
    ) -> list[CategoryReportRow]:
        """
        Totals, counts and percentage shares per category over an
        inclusive date range, largest total first.

        With `currency`, only expenses in that currency are counted.
        Without it, amounts are summed as stored.

        Raises:
            InvalidRangeError: If date_from is after date_to
            NotFoundError: If the user does not exist
        """
        validate_date_range(date_from, date_to)
        code = normalize_currency(currency) if currency else None
        await self._require_user(user_id)

        aggregates = await guarded(
            self._ledger.category_aggregates(user_id, date_from, date_to, code),
            STORE_NAME,
            self._timeout,
        )
        rows = category_percentages(aggregates)

        logger.debug(
            "category_report_built",
            user_id=str(user_id),
            date_from=date_from.isoformat(),
            date_to=date_to.isoformat(),
            rows=len(rows),
        )
        return rows
