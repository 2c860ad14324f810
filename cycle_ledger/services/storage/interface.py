"""
Abstract Record Store Interface

The record store is the only component that reads or writes raw records.
Defining it as an interface keeps the repository and the aggregator
independent of the storage engine, so SQLite can be swapped for another
backend without changing ledger logic.

Contract shared by every implementation:
1. ``(year, month)`` is unique across cycles (ConstraintViolationError)
2. Deleting a cycle deletes its transactions
3. Mutations on a missing id raise NotFoundError; lookups return None
4. Every successful mutation is published to the change notifier
   before the call returns
"""

from abc import ABC, abstractmethod
from typing import Optional

from cycle_ledger.models.ledger import Cycle, Transaction


class RecordStoreInterface(ABC):
    """
    Abstract interface for cycle and transaction storage.

    Any storage implementation must implement these methods.
    """

    # ── CYCLES ────────────────────────────────────────────

    @abstractmethod
    async def insert_cycle(self, cycle: Cycle) -> Cycle:
        """
        Insert a new cycle.

        Args:
            cycle: The cycle to persist (its id is ignored)

        Returns:
            The stored cycle with its id assigned

        Raises:
            ConstraintViolationError: If (year, month) is already taken
        """
        pass

    @abstractmethod
    async def update_cycle(self, cycle: Cycle) -> Cycle:
        """
        Overwrite label, year, month and income of an existing cycle.

        ``created_at`` keeps its stored value.

        Raises:
            ConstraintViolationError: If the new (year, month) belongs to another cycle
            NotFoundError: If the cycle doesn't exist
        """
        pass

    @abstractmethod
    async def delete_cycle(self, cycle_id: int) -> None:
        """
        Delete a cycle and all of its transactions.

        Raises:
            NotFoundError: If the cycle doesn't exist
        """
        pass

    @abstractmethod
    async def find_cycle(self, cycle_id: int) -> Optional[Cycle]:
        """Retrieve a cycle by id, or None."""
        pass

    @abstractmethod
    async def list_cycles(self) -> list[Cycle]:
        """List all cycles, newest period first (year desc, month desc)."""
        pass

    # ── TRANSACTIONS ──────────────────────────────────────

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction.

        Returns:
            The stored transaction with its id assigned

        Raises:
            NotFoundError: If the referenced cycle doesn't exist
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Overwrite an existing transaction.

        Raises:
            NotFoundError: If the transaction or its target cycle doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: int) -> None:
        """
        Delete a transaction by id.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def find_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """Retrieve a transaction by id, or None."""
        pass

    @abstractmethod
    async def list_transactions(self, cycle_id: int) -> list[Transaction]:
        """List a cycle's transactions, newest first (spent_at desc, id desc)."""
        pass

    @abstractmethod
    async def sum_amount(self, cycle_id: int) -> float:
        """Sum of a cycle's transaction amounts (0.0 when there are none)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConstraintViolationError(StorageError):
    """A write would break a uniqueness constraint."""
    pass


class ConnectionError(StorageError):
    """Could not open the storage backend."""
    pass
