"""
Data Models Package

This package contains all Pydantic models used in the Cycle Ledger system.
All data flowing through the system must conform to these schemas.
"""

from cycle_ledger.models.ledger import (
    Cycle,
    InsightPoint,
    Ledger,
    PortfolioSummary,
    Transaction,
    now_millis,
)
from cycle_ledger.models.events import (
    CYCLES_SCOPE,
    ChangeEvent,
    ChangeEventBuilder,
    ChangeKind,
    cycle_scope,
)

__all__ = [
    # Ledger models
    "Cycle",
    "InsightPoint",
    "Ledger",
    "PortfolioSummary",
    "Transaction",
    "now_millis",
    # Change events
    "CYCLES_SCOPE",
    "ChangeEvent",
    "ChangeEventBuilder",
    "ChangeKind",
    "cycle_scope",
]
