"""
Ledger Aggregation Engine

Derived values are never stored. Every ledger and every portfolio
figure is computed from the records currently in the store:

- ``build_ledger`` and ``summarize_portfolio`` are pure functions
- ``LedgerAggregator`` reads the records they need and calls them

A ledger for a cycle that no longer exists is ``None`` (absent), not an
error. Observers treat absent as "cycle was removed".
"""

from typing import Iterable, Optional, Sequence

from cycle_ledger.models.ledger import (
    Cycle,
    InsightPoint,
    Ledger,
    PortfolioSummary,
    Transaction,
)
from cycle_ledger.services.storage import RecordStoreInterface


def order_transactions(transactions: Iterable[Transaction]) -> tuple[Transaction, ...]:
    """Newest first: spent_at descending, ties broken by id descending."""
    return tuple(sorted(transactions, key=lambda tx: tx.sort_key, reverse=True))


def build_ledger(cycle: Cycle, transactions: Iterable[Transaction]) -> Ledger:
    """
    Combine a cycle with its transactions.

    total_spent is the exact sum of the given amounts and
    balance = income - total_spent.
    """
    ordered = order_transactions(transactions)
    total_spent = sum((tx.amount for tx in ordered), 0.0)
    return Ledger(
        cycle=cycle,
        transactions=ordered,
        total_spent=total_spent,
        balance=cycle.income - total_spent,
    )


def summarize_portfolio(snapshot: Sequence[tuple[Cycle, float]]) -> PortfolioSummary:
    """Aggregate a portfolio snapshot into totals, averages and chart points."""
    if not snapshot:
        return PortfolioSummary()

    chronological = sorted(snapshot, key=lambda pair: pair[0].period_key)
    points = tuple(
        InsightPoint(
            cycle_id=cycle.id,
            label=cycle.short_label,
            income=cycle.income,
            spent=spent,
        )
        for cycle, spent in chronological
    )

    count = len(points)
    total_income = sum((point.income for point in points), 0.0)
    total_spent = sum((point.spent for point in points), 0.0)

    return PortfolioSummary(
        cycle_count=count,
        total_income=total_income,
        total_spent=total_spent,
        average_income=total_income / count,
        average_spent=total_spent / count,
        points=points,
    )


class LedgerAggregator:
    """
    Computes ledgers and portfolio figures from the record store.

    GUARANTEES:
    - Only returns values derived from what is stored right now
    - Never caches; every call re-reads the records
    """

    def __init__(self, store: RecordStoreInterface):
        self._store = store

    async def compute_ledger(self, cycle_id: int) -> Optional[Ledger]:
        """Current ledger for a cycle, or None when the cycle is gone."""
        cycle = await self._store.find_cycle(cycle_id)
        if cycle is None:
            return None
        transactions = await self._store.list_transactions(cycle_id)
        return build_ledger(cycle, transactions)

    async def snapshot_totals(self) -> list[tuple[Cycle, float]]:
        """
        One (cycle, spent) pair per existing cycle.

        Pairs follow the cycle list order (year desc, month desc).
        """
        cycles = await self._store.list_cycles()
        return [(cycle, await self._store.sum_amount(cycle.id)) for cycle in cycles]

    async def portfolio_summary(self) -> PortfolioSummary:
        return summarize_portfolio(await self.snapshot_totals())
