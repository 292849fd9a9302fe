"""
Store Call Guard

Every store call made by the engines and the coordinator goes through
`guarded`. It applies the caller's timeout and turns timeouts and
connection failures into StorageTransientError, the one retryable error.
Domain errors raised by a store (DuplicateError, NotFoundError, ...) pass
through untouched.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

import structlog

from expense_ledger.errors import ExpenseLedgerError, StorageTransientError


T = TypeVar("T")

logger = structlog.get_logger(__name__)


async def guarded(
    call: Awaitable[T],
    store: str,
    timeout: Optional[float],
) -> T:
    """
    Await a store call with a timeout.

    Args:
        call: The pending store coroutine
        store: Store name for error messages ("ledger", "receipt_index", "blob")
        timeout: Seconds to wait, or None to wait indefinitely

    Raises:
        StorageTransientError: On timeout or connection failure
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except ExpenseLedgerError:
        raise
    except asyncio.TimeoutError as e:
        logger.warning("store_call_timed_out", store=store, timeout=timeout)
        raise StorageTransientError(store, f"timed out after {timeout}s") from e
    except (ConnectionError, OSError) as e:
        logger.warning("store_call_failed", store=store, error=str(e))
        raise StorageTransientError(store, f"connection failure: {e}") from e
