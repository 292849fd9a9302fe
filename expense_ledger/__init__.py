"""
Expense Ledger - Source Package

Multi-user expense tracking with receipts kept outside the ledger.

DESIGN PRINCIPLES:
1. The ledger is strongly consistent; receipts are not, so a coordinator
   orders every cross-store write
2. Fail early, fail visibly
3. No silent corrections
4. Every cross-store mutation must be auditable
5. Storage backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Ledger Team"
