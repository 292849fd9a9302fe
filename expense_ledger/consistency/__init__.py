"""Cross-store consistency package."""

from expense_ledger.consistency.coordinator import ConsistencyCoordinator

__all__ = ["ConsistencyCoordinator"]
