"""
Tests for ledger aggregation

The pure functions are tested directly; LedgerAggregator is tested
against a real SQLite store.
"""

import pytest

from cycle_ledger.aggregation import (
    LedgerAggregator,
    build_ledger,
    order_transactions,
    summarize_portfolio,
)
from cycle_ledger.models.ledger import Cycle, PortfolioSummary, Transaction


def make_cycle(cycle_id=1, year=2024, month=3, income=2000.0) -> Cycle:
    return Cycle(id=cycle_id, year=year, month=month, income=income)


def make_tx(tx_id, amount, spent_at=1_000, cycle_id=1) -> Transaction:
    return Transaction(
        id=tx_id,
        cycle_id=cycle_id,
        title=f"tx {tx_id}",
        amount=amount,
        spent_at=spent_at,
    )


class TestBuildLedger:
    """Tests for build_ledger."""

    def test_totals(self):
        """total_spent is the sum of amounts and balance is income minus it."""
        ledger = build_ledger(make_cycle(), [make_tx(1, 800.0), make_tx(2, 150.5)])
        assert ledger.total_spent == 950.5
        assert ledger.balance == 1049.5
        assert ledger.transaction_count == 2

    def test_empty_cycle(self):
        """A cycle without transactions has its full income as balance."""
        ledger = build_ledger(make_cycle(income=300.0), [])
        assert ledger.transactions == ()
        assert ledger.total_spent == 0.0
        assert ledger.balance == 300.0

    def test_negative_values(self):
        """Negative income and refunds are summed without clamping."""
        ledger = build_ledger(
            make_cycle(income=-100.0),
            [make_tx(1, 50.0), make_tx(2, -20.0)],
        )
        assert ledger.total_spent == 30.0
        assert ledger.balance == -130.0

    def test_transactions_newest_first(self):
        """Ledger rows are spent_at desc with ties broken by id desc."""
        txs = [
            make_tx(1, 1.0, spent_at=100),
            make_tx(2, 1.0, spent_at=300),
            make_tx(3, 1.0, spent_at=100),
            make_tx(4, 1.0, spent_at=200),
        ]
        ledger = build_ledger(make_cycle(), txs)
        assert [tx.id for tx in ledger.transactions] == [2, 4, 3, 1]
        assert order_transactions(reversed(txs)) == ledger.transactions


class TestSummarizePortfolio:
    """Tests for summarize_portfolio."""

    def test_empty_snapshot(self):
        """An empty snapshot gives an all-zero summary."""
        assert summarize_portfolio([]) == PortfolioSummary()

    def test_points_are_chronological(self):
        """Chart points run oldest first with MM/YY labels."""
        snapshot = [
            (make_cycle(3, 2024, 2, income=1000.0), 400.0),
            (make_cycle(2, 2024, 1, income=1200.0), 1300.0),
            (make_cycle(1, 2023, 12, income=800.0), 200.0),
        ]
        summary = summarize_portfolio(snapshot)

        assert [p.cycle_id for p in summary.points] == [1, 2, 3]
        assert [p.label for p in summary.points] == ["12/23", "01/24", "02/24"]
        assert summary.points[1].balance == -100.0

    def test_totals_and_averages(self):
        """Test totals, balance and per-cycle averages."""
        snapshot = [
            (make_cycle(1, 2024, 1, income=1000.0), 400.0),
            (make_cycle(2, 2024, 2, income=2000.0), 800.0),
        ]
        summary = summarize_portfolio(snapshot)

        assert summary.cycle_count == 2
        assert summary.total_income == 3000.0
        assert summary.total_spent == 1200.0
        assert summary.total_balance == 1800.0
        assert summary.average_income == 1500.0
        assert summary.average_spent == 600.0


class TestLedgerAggregator:
    """Tests for LedgerAggregator over a SQLite store."""

    @pytest.mark.asyncio
    async def test_compute_ledger(self, store):
        """Test ledger computation from stored records."""
        cycle = await store.insert_cycle(Cycle(year=2024, month=3, income=2000.0))
        await store.insert_transaction(
            Transaction(cycle_id=cycle.id, title="Rent", amount=800.0, spent_at=1_000)
        )
        await store.insert_transaction(
            Transaction(cycle_id=cycle.id, title="Groceries", amount=150.5, spent_at=2_000)
        )

        ledger = await LedgerAggregator(store).compute_ledger(cycle.id)

        assert ledger.cycle == cycle
        assert [tx.title for tx in ledger.transactions] == ["Groceries", "Rent"]
        assert ledger.total_spent == 950.5
        assert ledger.balance == 1049.5

    @pytest.mark.asyncio
    async def test_compute_ledger_missing_cycle(self, store):
        """A ledger for a missing cycle is absent, not an error."""
        assert await LedgerAggregator(store).compute_ledger(42) is None

    @pytest.mark.asyncio
    async def test_snapshot_totals(self, store):
        """One (cycle, spent) pair per cycle, in cycle list order."""
        older = await store.insert_cycle(Cycle(year=2023, month=11, income=500.0))
        newer = await store.insert_cycle(Cycle(year=2024, month=2, income=900.0))
        await store.insert_transaction(Transaction(cycle_id=older.id, title="a", amount=120.0))
        await store.insert_transaction(Transaction(cycle_id=older.id, title="b", amount=30.0))

        aggregator = LedgerAggregator(store)
        snapshot = await aggregator.snapshot_totals()

        assert snapshot == [(newer, 0.0), (older, 150.0)]

        summary = await aggregator.portfolio_summary()
        assert summary.cycle_count == 2
        assert [p.cycle_id for p in summary.points] == [older.id, newer.id]
        assert summary.total_spent == 150.0

    @pytest.mark.asyncio
    async def test_snapshot_totals_empty(self, store):
        """No cycles means an empty snapshot and summary."""
        aggregator = LedgerAggregator(store)
        assert await aggregator.snapshot_totals() == []
        assert (await aggregator.portfolio_summary()).cycle_count == 0
