"""
Cycle Ledger - Source Package

The ledger core of a personal budgeting app: monthly cycles with an
income target, expenses logged against them, and views that stay in
sync with the records.

DESIGN PRINCIPLES:
1. Derived values are computed, never stored
2. Every committed write is broadcast before the command returns
3. A missing record is absent, not an error
4. Storage layer is swappable
"""

from cycle_ledger.repository import BudgetRepository, create_repository

__version__ = "1.0.0"
__author__ = "Cycle Ledger Team"

__all__ = ["BudgetRepository", "create_repository"]
