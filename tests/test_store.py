"""
Tests for the SQLite record store

Covers uniqueness, cascade delete, ordering, missing-record errors and
the change events published for every committed write.
"""

import asyncio
import sqlite3

import pytest

from cycle_ledger.models.events import CYCLES_SCOPE, ChangeKind, cycle_scope
from cycle_ledger.models.ledger import Cycle, Transaction
from cycle_ledger.services.storage import (
    ConstraintViolationError,
    NotFoundError,
    SQLiteRecordStore,
    StorageError,
)

from conftest import next_value, slow_down_writes


async def _cycle(store, year=2024, month=3, income=2000.0, label="") -> Cycle:
    return await store.insert_cycle(Cycle(label=label, year=year, month=month, income=income))


async def _tx(store, cycle_id, amount=10.0, spent_at=1_000, title="item") -> Transaction:
    return await store.insert_transaction(
        Transaction(cycle_id=cycle_id, title=title, amount=amount, spent_at=spent_at)
    )


class TestCycleStorage:
    """Tests for cycle records."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, store):
        """Test that insert assigns an id and the record can be found."""
        stored = await _cycle(store, label="March")
        assert stored.id is not None
        found = await store.find_cycle(stored.id)
        assert found == stored

    @pytest.mark.asyncio
    async def test_find_missing_cycle_returns_none(self, store):
        """Test lookup of an unknown id."""
        assert await store.find_cycle(999) is None

    @pytest.mark.asyncio
    async def test_duplicate_period_rejected(self, store):
        """Test that a second cycle for the same (year, month) fails."""
        await _cycle(store, 2024, 3)
        with pytest.raises(ConstraintViolationError):
            await _cycle(store, 2024, 3, label="again")

        cycles = await store.list_cycles()
        assert [(c.year, c.month) for c in cycles] == [(2024, 3)]

    @pytest.mark.asyncio
    async def test_concurrent_inserts_same_period(self, store):
        """Only one of several concurrent inserts for one period succeeds."""
        results = await asyncio.gather(
            *(_cycle(store, 2025, 1, label=f"try {i}") for i in range(6)),
            return_exceptions=True,
        )
        stored = [r for r in results if isinstance(r, Cycle)]
        rejected = [r for r in results if isinstance(r, ConstraintViolationError)]
        assert len(stored) == 1
        assert len(rejected) == 5
        assert len(await store.list_cycles()) == 1

    @pytest.mark.asyncio
    async def test_list_cycles_ordering(self, store):
        """Cycles are listed year desc, month desc for any insertion order."""
        for year, month in [(2023, 5), (2024, 1), (2023, 12), (2024, 11), (2022, 7)]:
            await _cycle(store, year, month)

        periods = [(c.year, c.month) for c in await store.list_cycles()]
        assert periods == [(2024, 11), (2024, 1), (2023, 12), (2023, 5), (2022, 7)]

    @pytest.mark.asyncio
    async def test_update_keeps_created_at(self, store):
        """Test that updates change fields but never created_at."""
        stored = await _cycle(store)
        edited = stored.model_copy(update={"income": 2500.0, "label": "New", "created_at": 1})
        updated = await store.update_cycle(edited)
        assert updated.income == 2500.0
        assert updated.label == "New"
        assert updated.created_at == stored.created_at

    @pytest.mark.asyncio
    async def test_update_to_taken_period_rejected(self, store):
        """Moving a cycle onto another cycle's period fails."""
        first = await _cycle(store, 2024, 3)
        await _cycle(store, 2024, 4)
        with pytest.raises(ConstraintViolationError):
            await store.update_cycle(first.model_copy(update={"month": 4}))

        assert (await store.find_cycle(first.id)).month == 3

    @pytest.mark.asyncio
    async def test_update_own_period_allowed(self, store):
        """A cycle may be saved again with its own period."""
        stored = await _cycle(store, 2024, 3)
        updated = await store.update_cycle(stored.model_copy(update={"label": "same slot"}))
        assert updated.period_key == (2024, 3)

    @pytest.mark.asyncio
    async def test_mutating_missing_cycle_raises(self, store):
        """Update and delete of a missing cycle raise NotFoundError."""
        ghost = Cycle(id=404, year=2024, month=1)
        with pytest.raises(NotFoundError):
            await store.update_cycle(ghost)
        with pytest.raises(NotFoundError):
            await store.delete_cycle(404)

    @pytest.mark.asyncio
    async def test_delete_cascades_to_transactions(self, store):
        """Deleting a cycle deletes all of its transactions."""
        cycle = await _cycle(store)
        other = await _cycle(store, 2024, 4)
        tx1 = await _tx(store, cycle.id)
        tx2 = await _tx(store, cycle.id)
        kept = await _tx(store, other.id)

        await store.delete_cycle(cycle.id)

        assert await store.find_cycle(cycle.id) is None
        assert await store.find_transaction(tx1.id) is None
        assert await store.find_transaction(tx2.id) is None
        assert await store.list_transactions(cycle.id) == []
        assert await store.find_transaction(kept.id) == kept

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, store, db_path):
        """Records are durable across store instances."""
        cycle = await _cycle(store, label="Durable")
        await _tx(store, cycle.id, amount=42.0)

        reopened = SQLiteRecordStore(db_path)
        assert (await reopened.find_cycle(cycle.id)).label == "Durable"
        assert await reopened.sum_amount(cycle.id) == 42.0


class TestTransactionStorage:
    """Tests for transaction records."""

    @pytest.mark.asyncio
    async def test_list_transactions_ordering(self, store):
        """Transactions are listed spent_at desc, ties broken by id desc."""
        cycle = await _cycle(store)
        a = await _tx(store, cycle.id, spent_at=1_000, title="a")
        b = await _tx(store, cycle.id, spent_at=3_000, title="b")
        c = await _tx(store, cycle.id, spent_at=1_000, title="c")
        d = await _tx(store, cycle.id, spent_at=2_000, title="d")

        ids = [tx.id for tx in await store.list_transactions(cycle.id)]
        assert ids == [b.id, d.id, c.id, a.id]

    @pytest.mark.asyncio
    async def test_sum_amount(self, store):
        """Sum is 0.0 without transactions and includes negative amounts."""
        cycle = await _cycle(store)
        assert await store.sum_amount(cycle.id) == 0.0

        await _tx(store, cycle.id, amount=800.0)
        await _tx(store, cycle.id, amount=150.5)
        await _tx(store, cycle.id, amount=-50.0)
        assert await store.sum_amount(cycle.id) == pytest.approx(900.5)

    @pytest.mark.asyncio
    async def test_insert_for_missing_cycle_raises(self, store):
        """Transactions need an existing cycle."""
        with pytest.raises(NotFoundError):
            await _tx(store, cycle_id=12345)

    @pytest.mark.asyncio
    async def test_update_transaction(self, store):
        """Test that edited fields are persisted."""
        cycle = await _cycle(store)
        tx = await _tx(store, cycle.id, amount=10.0)
        await store.update_transaction(tx.model_copy(update={"amount": 25.0, "title": "Lunch"}))

        found = await store.find_transaction(tx.id)
        assert found.amount == 25.0
        assert found.title == "Lunch"

    @pytest.mark.asyncio
    async def test_mutating_missing_transaction_raises(self, store):
        """Update and delete of a missing transaction raise NotFoundError."""
        cycle = await _cycle(store)
        ghost = Transaction(id=777, cycle_id=cycle.id, title="ghost", amount=1.0)
        with pytest.raises(NotFoundError):
            await store.update_transaction(ghost)
        with pytest.raises(NotFoundError):
            await store.delete_transaction(777)

    @pytest.mark.asyncio
    async def test_schema_enforces_cascade(self, store, db_path):
        """The persisted layout itself carries the cascade relationship."""
        cycle = await _cycle(store)
        await _tx(store, cycle.id)

        conn = sqlite3.connect(db_path)
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("DELETE FROM cycles WHERE id = ?", (cycle.id,))
            conn.commit()
            remaining = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]
        finally:
            conn.close()
        assert remaining == 0


class TestChangePublication:
    """Every committed write is published before the call returns."""

    @pytest.mark.asyncio
    async def test_cycle_insert_published_to_both_scopes(self, store, notifier):
        """Cycle changes reach the list scope and the cycle scope."""
        async with notifier.subscribe(CYCLES_SCOPE) as cycles_sub:
            assert (await next_value(cycles_sub)).kind == ChangeKind.SNAPSHOT
            cycle = await _cycle(store)

            async with notifier.subscribe(cycle_scope(cycle.id)) as cycle_sub:
                assert (await next_value(cycle_sub)).kind == ChangeKind.SNAPSHOT

                event = await next_value(cycles_sub)
                assert event.kind == ChangeKind.CYCLE_CREATED
                assert event.record_id == cycle.id

                await store.update_cycle(cycle.model_copy(update={"income": 1.0}))
                assert cycle_sub.pending == 1
                assert (await next_value(cycle_sub)).kind == ChangeKind.CYCLE_UPDATED
                assert (await next_value(cycles_sub)).kind == ChangeKind.CYCLE_UPDATED

    @pytest.mark.asyncio
    async def test_transaction_events_in_commit_order(self, store, notifier):
        """Test that events arrive in commit order."""
        cycle = await _cycle(store)
        async with notifier.subscribe(cycle_scope(cycle.id)) as sub:
            await next_value(sub)  # snapshot
            tx = await _tx(store, cycle.id)
            await store.update_transaction(tx.model_copy(update={"amount": 2.0}))
            await store.delete_transaction(tx.id)

            kinds = [(await next_value(sub)).kind for _ in range(3)]
            assert kinds == [
                ChangeKind.TRANSACTION_CREATED,
                ChangeKind.TRANSACTION_UPDATED,
                ChangeKind.TRANSACTION_DELETED,
            ]

    @pytest.mark.asyncio
    async def test_failed_write_publishes_nothing(self, store, notifier):
        """A refused write is not broadcast."""
        await _cycle(store, 2024, 3)
        async with notifier.subscribe(CYCLES_SCOPE) as sub:
            await next_value(sub)  # snapshot
            with pytest.raises(ConstraintViolationError):
                await _cycle(store, 2024, 3)
            assert sub.pending == 0

    @pytest.mark.asyncio
    async def test_cancelled_write_still_commits_and_publishes(self, store, notifier, monkeypatch):
        """Cancelling the caller neither loses the write nor its event."""
        cycle = await _cycle(store)
        slow_down_writes(store, monkeypatch)

        async with notifier.subscribe(cycle_scope(cycle.id)) as sub:
            await next_value(sub)  # snapshot
            pending = asyncio.create_task(_tx(store, cycle.id, amount=800.0))
            await asyncio.sleep(0.05)
            pending.cancel()
            with pytest.raises(asyncio.CancelledError):
                await pending

            follow_up = await _tx(store, cycle.id, amount=1.0)

            first = await next_value(sub)
            second = await next_value(sub)
            assert first.kind == ChangeKind.TRANSACTION_CREATED
            assert second.kind == ChangeKind.TRANSACTION_CREATED
            assert first.record_id < second.record_id == follow_up.id

        assert await store.sum_amount(cycle.id) == 801.0


class TestWriteRetries:
    """Only a locked database is retried."""

    def test_locked_database_is_retried(self, store):
        """Test that a write hitting a locked database is attempted again."""
        calls = []

        def operation(conn):
            calls.append(conn)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return "done", []

        assert store._run_write(operation) == ("done", [])
        assert len(calls) == 2

    def test_other_operational_errors_are_not_retried(self, store):
        """Test that a permanent failure is raised on the first attempt."""
        calls = []

        def operation(conn):
            calls.append(conn)
            raise sqlite3.OperationalError("no such table: budgets")

        with pytest.raises(sqlite3.OperationalError, match="no such table"):
            store._run_write(operation)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_storage_error(self, db_path, notifier):
        """A database that stays locked surfaces as StorageError."""
        store = SQLiteRecordStore(db_path, notifier=notifier, write_retry_attempts=2)
        calls = []

        def operation(conn):
            calls.append(conn)
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(StorageError):
            await store._write(operation)
        assert len(calls) == 2
