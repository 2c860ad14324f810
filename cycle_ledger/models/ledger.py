"""
Core Data Models for Cycle Ledger

These models define the records the store persists (Cycle, Transaction) and
the values derived from them (Ledger, portfolio summaries).

Records are immutable: edits are expressed with ``model_copy(update=...)``
and written back through the repository. Text fields are stripped of
surrounding whitespace on construction.

Amounts and income are plain floats. Negative values are accepted.
"""

import calendar
import time
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


def now_millis() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


# =============================================================================
# STORED RECORDS
# =============================================================================

class Cycle(BaseModel):
    """
    One budgeting period (a calendar month) with an income target.

    ``(year, month)`` is unique across all cycles. ``id`` and ``created_at``
    are assigned by the store on insert and never change afterwards.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: Optional[int] = Field(
        default=None,
        description="Store-assigned identifier (None before insert)"
    )
    label: str = Field(
        default="",
        description="Free text label, may be empty"
    )
    year: int = Field(
        ...,
        description="Calendar year"
    )
    month: int = Field(
        ...,
        ge=1,
        le=12,
        description="Calendar month (1-12)"
    )
    income: float = Field(
        default=0.0,
        description="Target income for the period"
    )
    created_at: int = Field(
        default_factory=now_millis,
        description="Creation time in epoch milliseconds"
    )

    @property
    def period_key(self) -> tuple[int, int]:
        return (self.year, self.month)

    @property
    def display_label(self) -> str:
        """Label, or the month name and year when the label is blank."""
        if self.label:
            return self.label
        return f"{calendar.month_name[self.month]} {self.year}"

    @property
    def short_label(self) -> str:
        """Compact ``MM/YY`` label used on insight charts."""
        return f"{self.month:02d}/{str(self.year)[-2:]}"


class Transaction(BaseModel):
    """
    A single expense recorded against a cycle.

    Deleting the cycle deletes its transactions.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: Optional[int] = Field(
        default=None,
        description="Store-assigned identifier (None before insert)"
    )
    cycle_id: int = Field(
        ...,
        description="Cycle this expense belongs to"
    )
    title: str = Field(
        ...,
        description="What the money was spent on"
    )
    amount: float = Field(
        ...,
        description="Expense value"
    )
    category: str = Field(
        default="",
        description="Free text category, may be empty"
    )
    spent_at: int = Field(
        default_factory=now_millis,
        description="When the expense happened, in epoch milliseconds"
    )

    @property
    def sort_key(self) -> tuple[int, int]:
        """Key for newest-first ordering (spent_at, then id)."""
        return (self.spent_at, self.id or 0)


# =============================================================================
# DERIVED VALUES
# =============================================================================

class Ledger(BaseModel):
    """
    Read-only view of one cycle with its transactions and totals.

    Never persisted. Built fresh for every change event.
    """
    model_config = ConfigDict(frozen=True)

    cycle: Cycle
    transactions: tuple[Transaction, ...] = ()
    total_spent: float = 0.0
    balance: float = 0.0

    @property
    def transaction_count(self) -> int:
        return len(self.transactions)


class InsightPoint(BaseModel):
    """One cycle on the insights chart."""
    model_config = ConfigDict(frozen=True)

    cycle_id: int
    label: str
    income: float
    spent: float

    @property
    def balance(self) -> float:
        return self.income - self.spent


class PortfolioSummary(BaseModel):
    """
    Cross-cycle aggregate built from a portfolio snapshot.

    ``points`` are ordered chronologically (oldest first).
    """
    model_config = ConfigDict(frozen=True)

    cycle_count: int = 0
    total_income: float = 0.0
    total_spent: float = 0.0
    average_income: float = 0.0
    average_spent: float = 0.0
    points: tuple[InsightPoint, ...] = ()

    @property
    def total_balance(self) -> float:
        return self.total_income - self.total_spent
