"""
Budget Repository

The single entry point presentation code uses. It ties together the
record store, the change notifier, the ledger aggregator and the shared
observation streams, and defines:
1. Observation (cycle list, per-cycle ledger)
2. Commands (create/update/delete cycles and transactions)
3. One-shot insight queries (portfolio snapshot and summary)

The repository enforces the boundaries:
- Every write goes through the record store, which publishes the change
- Derived values always come from the aggregator, never from a cache
- Looking up or deleting something that is gone is not an error

The store is constructed explicitly and passed in; there is no global
database handle. Use ``create_repository`` for the default wiring.
"""

from datetime import date
from pathlib import Path
from typing import AsyncIterator, Optional

from cycle_ledger.aggregation import LedgerAggregator
from cycle_ledger.audit import AuditLogger
from cycle_ledger.config import get_settings
from cycle_ledger.models.events import CYCLES_SCOPE, cycle_scope
from cycle_ledger.models.ledger import (
    Cycle,
    Ledger,
    PortfolioSummary,
    Transaction,
    now_millis,
)
from cycle_ledger.observation import SharedStream
from cycle_ledger.services.notifier import ChangeNotifier
from cycle_ledger.services.storage import (
    ConstraintViolationError,
    NotFoundError,
    RecordStoreInterface,
    SQLiteRecordStore,
)


class BudgetRepository:
    """
    Observable ledger repository.

    Observation streams are shared: every subscriber of the cycle list,
    and every subscriber of one cycle's ledger, is fed by a single upstream
    that stops ``grace_period_seconds`` after its last subscriber leaves.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        notifier: ChangeNotifier,
        aggregator: Optional[LedgerAggregator] = None,
        audit_logger: Optional[AuditLogger] = None,
        grace_period_seconds: Optional[float] = None,
    ):
        """
        Args:
            store: Record store; must publish its changes to ``notifier``
            notifier: Change notifier the observation streams subscribe to
            aggregator: Ledger aggregator (built over ``store`` if omitted)
            audit_logger: Audit logger attached to ``notifier``
            grace_period_seconds: Idle time before a stream stops.
                                  Defaults to the configured value (5s).
        """
        self._store = store
        self._notifier = notifier
        self._aggregator = aggregator or LedgerAggregator(store)
        self._audit_logger = audit_logger or AuditLogger()
        self._audit_logger.attach(notifier)

        if grace_period_seconds is None:
            grace_period_seconds = get_settings().observation.grace_period_seconds
        self._grace_period = grace_period_seconds

        self._cycles_stream: SharedStream[list[Cycle]] = SharedStream(
            "cycles",
            self._cycle_list_values,
            self._grace_period,
        )
        self._ledger_streams: dict[int, SharedStream[Optional[Ledger]]] = {}

    # ── OBSERVATION ───────────────────────────────────────

    def observe_cycles(self) -> AsyncIterator[list[Cycle]]:
        """
        Stream of full cycle-list snapshots (year desc, month desc).

        The first value is the current list; a new one follows every
        cycle create, update and delete.
        """
        return self._cycles_stream.subscribe()

    def observe_ledger(self, cycle_id: int) -> AsyncIterator[Optional[Ledger]]:
        """
        Stream of ledgers for one cycle.

        The first value is the current ledger; a new one follows every
        change to the cycle or its transactions. ``None`` means the cycle
        does not exist (or was deleted).
        """
        stream = self._ledger_streams.get(cycle_id)
        if stream is None:
            stream = SharedStream(
                f"ledger:{cycle_id}",
                lambda: self._ledger_values(cycle_id),
                self._grace_period,
                on_stop=lambda: self._forget_ledger_stream(cycle_id, stream),
            )
            self._ledger_streams[cycle_id] = stream
        return stream.subscribe()

    def _forget_ledger_stream(self, cycle_id: int, stream: SharedStream) -> None:
        # A newer stream may already own this cycle id
        if self._ledger_streams.get(cycle_id) is stream:
            del self._ledger_streams[cycle_id]

    def stream_for(self, cycle_id: Optional[int] = None) -> Optional[SharedStream]:
        """The shared stream behind ``observe_ledger`` (or the cycle list)."""
        if cycle_id is None:
            return self._cycles_stream
        return self._ledger_streams.get(cycle_id)

    async def _cycle_list_values(self) -> AsyncIterator[list[Cycle]]:
        async with self._notifier.subscribe(CYCLES_SCOPE) as events:
            async for _event in events:
                if events.pending:
                    continue  # a newer change is queued; read once for all
                yield await self._store.list_cycles()

    async def _ledger_values(self, cycle_id: int) -> AsyncIterator[Optional[Ledger]]:
        async with self._notifier.subscribe(cycle_scope(cycle_id)) as events:
            async for _event in events:
                if events.pending:
                    continue
                yield await self._aggregator.compute_ledger(cycle_id)

    # ── CYCLE COMMANDS ────────────────────────────────────

    async def create_cycle(
        self,
        label: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
        income: float = 0.0,
    ) -> int:
        """
        Create a cycle and return its id.

        Year and month default to the current calendar month.

        Raises:
            ConstraintViolationError: If a cycle for (year, month) exists
            ValueError: If month is outside 1..12
        """
        today = date.today()
        cycle = Cycle(
            label=label.strip(),
            year=year if year is not None else today.year,
            month=month if month is not None else today.month,
            income=income,
        )
        try:
            stored = await self._store.insert_cycle(cycle)
        except ConstraintViolationError as e:
            self._audit_logger.log_constraint_violation(cycle.year, cycle.month, str(e))
            raise
        return stored.id

    async def update_cycle(self, cycle: Cycle) -> Optional[Cycle]:
        """
        Write back an edited cycle.

        Returns the stored cycle, or None if it no longer exists.

        Raises:
            ConstraintViolationError: If another cycle owns the new (year, month)
        """
        try:
            return await self._store.update_cycle(cycle)
        except ConstraintViolationError as e:
            self._audit_logger.log_constraint_violation(cycle.year, cycle.month, str(e))
            raise
        except NotFoundError:
            self._audit_logger.log_missing_record("update", "cycle", cycle.id)
            return None

    async def delete_cycle(self, cycle: Cycle) -> None:
        """Delete a cycle and its transactions. Deleting twice is a no-op."""
        try:
            await self._store.delete_cycle(cycle.id)
        except NotFoundError:
            self._audit_logger.log_missing_record("delete", "cycle", cycle.id)

    async def get_cycle(self, cycle_id: int) -> Optional[Cycle]:
        return await self._store.find_cycle(cycle_id)

    async def adjust_income(self, cycle_id: int, income: float) -> Optional[Cycle]:
        """Change a cycle's income target. No-op if the cycle is gone."""
        cycle = await self.get_cycle(cycle_id)
        if cycle is None:
            self._audit_logger.log_missing_record("adjust_income", "cycle", cycle_id)
            return None
        return await self.update_cycle(cycle.model_copy(update={"income": income}))

    async def update_cycle_meta(
        self,
        cycle_id: int,
        label: str,
        year: int,
        month: int,
    ) -> Optional[Cycle]:
        """
        Change a cycle's label and period. No-op if the cycle is gone.

        Raises:
            ConstraintViolationError: If another cycle owns (year, month)
            ValueError: If month is outside 1..12
        """
        cycle = await self.get_cycle(cycle_id)
        if cycle is None:
            self._audit_logger.log_missing_record("update_meta", "cycle", cycle_id)
            return None
        edited = Cycle(
            id=cycle.id,
            label=label.strip(),
            year=year,
            month=month,
            income=cycle.income,
            created_at=cycle.created_at,
        )
        return await self.update_cycle(edited)

    # ── TRANSACTION COMMANDS ──────────────────────────────

    async def add_transaction(
        self,
        cycle_id: int,
        title: str,
        amount: float,
        category: str = "",
        spent_at: Optional[int] = None,
    ) -> int:
        """
        Record an expense and return its id.

        ``spent_at`` is epoch milliseconds and defaults to now.

        Raises:
            NotFoundError: If the cycle does not exist
        """
        transaction = Transaction(
            cycle_id=cycle_id,
            title=title.strip(),
            amount=amount,
            category=category.strip(),
            spent_at=spent_at if spent_at is not None else now_millis(),
        )
        stored = await self._store.insert_transaction(transaction)
        return stored.id

    async def update_transaction(self, transaction: Transaction) -> Optional[Transaction]:
        """Write back an edited transaction. Returns None if it no longer exists."""
        try:
            return await self._store.update_transaction(transaction)
        except NotFoundError:
            self._audit_logger.log_missing_record("update", "transaction", transaction.id)
            return None

    async def delete_transaction(self, transaction: Transaction) -> None:
        """Delete a transaction. Deleting twice is a no-op."""
        try:
            await self._store.delete_transaction(transaction.id)
        except NotFoundError:
            self._audit_logger.log_missing_record("delete", "transaction", transaction.id)

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return await self._store.find_transaction(transaction_id)

    # ── INSIGHTS ──────────────────────────────────────────

    async def snapshot_totals(self) -> list[tuple[Cycle, float]]:
        """One (cycle, spent) pair per existing cycle, computed now."""
        return await self._aggregator.snapshot_totals()

    async def portfolio_summary(self) -> PortfolioSummary:
        """Totals, averages and chart points across all cycles."""
        return await self._aggregator.portfolio_summary()

    # ── LIFECYCLE ─────────────────────────────────────────

    async def close(self) -> None:
        """Stop every observation stream and detach the audit logger."""
        await self._cycles_stream.close()
        for stream in list(self._ledger_streams.values()):
            await stream.close()
        self._ledger_streams.clear()
        self._audit_logger.detach(self._notifier)

    async def __aenter__(self) -> "BudgetRepository":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_repository(
    db_path: Optional[Path] = None,
    grace_period_seconds: Optional[float] = None,
) -> BudgetRepository:
    """
    Build a repository over a SQLite store.

    Args:
        db_path: Database file. Defaults to the configured storage path.
        grace_period_seconds: Idle time before a stream stops.
    """
    notifier = ChangeNotifier()
    store = SQLiteRecordStore(db_path, notifier=notifier)
    return BudgetRepository(
        store,
        notifier,
        grace_period_seconds=grace_period_seconds,
    )
