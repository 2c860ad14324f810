"""Ledger aggregation package."""

from cycle_ledger.aggregation.aggregator import (
    LedgerAggregator,
    build_ledger,
    order_transactions,
    summarize_portfolio,
)

__all__ = [
    "LedgerAggregator",
    "build_ledger",
    "order_transactions",
    "summarize_portfolio",
]
