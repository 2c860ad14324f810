"""
SQLite Record Store Implementation

SQLite is used as the storage backend because:
1. It ships with Python, no server to run on a single device
2. It enforces the UNIQUE(year, month) index and the cascade delete natively
3. The whole ledger fits comfortably in one file

TRADEOFFS:
- sqlite3 is blocking, so every operation runs on a worker thread
  (asyncio.to_thread) to keep the event loop free
- One connection per operation; cheap for SQLite and avoids sharing a
  connection across threads

Writes are serialized through a single asyncio.Lock. The uniqueness check,
the write and the change notification all happen while the lock is held,
so two concurrent creates for the same (year, month) cannot both succeed
and events are published in commit order.

A write runs as its own task that the caller awaits through asyncio.shield.
Cancelling the caller does not interrupt the write: it still commits,
publishes its events and releases the lock afterwards.
"""

import asyncio
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, TypeVar

import structlog
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cycle_ledger.config import get_settings
from cycle_ledger.models.events import ChangeEvent, ChangeEventBuilder
from cycle_ledger.models.ledger import Cycle, Transaction
from cycle_ledger.services.notifier import ChangeNotifier
from cycle_ledger.services.storage.interface import (
    ConnectionError,
    ConstraintViolationError,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")

# A write returns its result plus the events to publish once it committed
WriteResult = tuple[T, list[ChangeEvent]]


def _is_locked_error(error: BaseException) -> bool:
    """Only a busy or locked database is worth another attempt."""
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cycles (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    label       TEXT NOT NULL DEFAULT '',
    year        INTEGER NOT NULL,
    month       INTEGER NOT NULL CHECK(month >= 1 AND month <= 12),
    income      REAL NOT NULL,
    created_at  INTEGER NOT NULL,
    UNIQUE(year, month)
);

CREATE TABLE IF NOT EXISTS transactions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_id    INTEGER NOT NULL REFERENCES cycles(id) ON DELETE CASCADE,
    title       TEXT NOT NULL,
    amount      REAL NOT NULL,
    category    TEXT NOT NULL DEFAULT '',
    spent_at    INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_cycle_id ON transactions(cycle_id);
CREATE INDEX IF NOT EXISTS idx_transactions_spent_at ON transactions(spent_at);
"""


class SQLiteRecordStore(RecordStoreInterface):
    """
    SQLite implementation of the record store.

    Every successful mutation is handed to the change notifier before the
    coroutine returns.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        notifier: Optional[ChangeNotifier] = None,
        timeout_seconds: Optional[float] = None,
        write_retry_attempts: Optional[int] = None,
    ):
        """
        Initialize the store and create the schema if needed.

        Args:
            db_path: Path to the SQLite database file. Defaults to the
                     configured storage path.
            notifier: Change notifier to publish to. A private one is
                      created when omitted.
            timeout_seconds: How long to wait on a locked database
            write_retry_attempts: Attempts for a write hitting a locked database

        Raises:
            ConnectionError: If the database file cannot be opened
        """
        settings = get_settings().storage
        self.db_path = Path(db_path) if db_path is not None else settings.path
        self._timeout = timeout_seconds or settings.timeout_seconds
        self._retry_attempts = write_retry_attempts or settings.write_retry_attempts
        self._notifier = notifier or ChangeNotifier()
        self._write_lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task] = set()

        self._ensure_db_directory()
        self._init_schema()

    @property
    def notifier(self) -> ChangeNotifier:
        return self._notifier

    # ── CONNECTION & SCHEMA ───────────────────────────────

    def _ensure_db_directory(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConnectionError(f"Cannot create database directory {self.db_path.parent}: {e}")

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections with commit/rollback."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self._timeout)
        except sqlite3.Error as e:
            raise ConnectionError(f"Failed to open database {self.db_path}: {e}")

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.error("database_error", error=str(e), db_path=str(self.db_path))
            conn.rollback()
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        try:
            with self._get_connection() as conn:
                conn.executescript(SCHEMA_SQL)
        except sqlite3.Error as e:
            raise ConnectionError(f"Failed to initialize schema in {self.db_path}: {e}")
        logger.info("record_store_ready", db_path=str(self.db_path))

    def _run_write(self, operation: Callable[[sqlite3.Connection], WriteResult]) -> WriteResult:
        """Run one write in its own transaction, retrying a locked database."""
        retrying = Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception(_is_locked_error),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                with self._get_connection() as conn:
                    return operation(conn)
        raise StorageError("Write was not attempted")

    def _run_read(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        with self._get_connection() as conn:
            return operation(conn)

    async def _write(self, operation: Callable[[sqlite3.Connection], WriteResult]):
        task = asyncio.ensure_future(self._commit_and_publish(operation))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)
        return await asyncio.shield(task)

    async def _commit_and_publish(self, operation: Callable[[sqlite3.Connection], WriteResult]):
        async with self._write_lock:
            try:
                result, events = await asyncio.to_thread(self._run_write, operation)
            except StorageError:
                raise
            except sqlite3.Error as e:
                raise StorageError(f"Write failed: {e}") from e

            for event in events:
                self._notifier.publish(event)
            return result

    async def _read(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        try:
            return await asyncio.to_thread(self._run_read, operation)
        except StorageError:
            raise
        except sqlite3.Error as e:
            raise StorageError(f"Read failed: {e}") from e

    # ── ROW CONVERSION ────────────────────────────────────

    @staticmethod
    def _row_to_cycle(row: sqlite3.Row) -> Cycle:
        return Cycle(
            id=row["id"],
            label=row["label"],
            year=row["year"],
            month=row["month"],
            income=row["income"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            cycle_id=row["cycle_id"],
            title=row["title"],
            amount=row["amount"],
            category=row["category"],
            spent_at=row["spent_at"],
        )

    # ── HELPERS (run on the worker thread) ────────────────

    @staticmethod
    def _require_cycle(conn: sqlite3.Connection, cycle_id: Optional[int]) -> None:
        if cycle_id is None:
            raise NotFoundError("Cycle has no id")
        row = conn.execute("SELECT 1 FROM cycles WHERE id = ?", (cycle_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Cycle not found: {cycle_id}")

    @staticmethod
    def _check_period_free(
        conn: sqlite3.Connection,
        year: int,
        month: int,
        exclude_id: Optional[int] = None,
    ) -> None:
        row = conn.execute(
            "SELECT id FROM cycles WHERE year = ? AND month = ?",
            (year, month),
        ).fetchone()
        if row is not None and row["id"] != exclude_id:
            raise ConstraintViolationError(
                f"A cycle for {year}-{month:02d} already exists (id {row['id']})"
            )

    # ── CYCLES ────────────────────────────────────────────

    async def insert_cycle(self, cycle: Cycle) -> Cycle:
        def operation(conn: sqlite3.Connection) -> WriteResult:
            self._check_period_free(conn, cycle.year, cycle.month)
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO cycles (label, year, month, income, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (cycle.label, cycle.year, cycle.month, cycle.income, cycle.created_at),
                )
            except sqlite3.IntegrityError as e:
                raise ConstraintViolationError(
                    f"A cycle for {cycle.year}-{cycle.month:02d} already exists"
                ) from e
            stored = cycle.model_copy(update={"id": cursor.lastrowid})
            return stored, [
                ChangeEventBuilder.cycle_created(stored.id, stored.year, stored.month)
            ]

        return await self._write(operation)

    async def update_cycle(self, cycle: Cycle) -> Cycle:
        def operation(conn: sqlite3.Connection) -> WriteResult:
            self._require_cycle(conn, cycle.id)
            self._check_period_free(conn, cycle.year, cycle.month, exclude_id=cycle.id)
            try:
                conn.execute(
                    """
                    UPDATE cycles
                    SET label = ?, year = ?, month = ?, income = ?
                    WHERE id = ?
                    """,
                    (cycle.label, cycle.year, cycle.month, cycle.income, cycle.id),
                )
            except sqlite3.IntegrityError as e:
                raise ConstraintViolationError(
                    f"A cycle for {cycle.year}-{cycle.month:02d} already exists"
                ) from e
            row = conn.execute("SELECT * FROM cycles WHERE id = ?", (cycle.id,)).fetchone()
            stored = self._row_to_cycle(row)
            return stored, [
                ChangeEventBuilder.cycle_updated(stored.id, stored.year, stored.month)
            ]

        return await self._write(operation)

    async def delete_cycle(self, cycle_id: int) -> None:
        def operation(conn: sqlite3.Connection) -> WriteResult:
            self._require_cycle(conn, cycle_id)
            removed = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE cycle_id = ?",
                (cycle_id,),
            ).fetchone()[0]
            conn.execute("DELETE FROM cycles WHERE id = ?", (cycle_id,))
            return None, [ChangeEventBuilder.cycle_deleted(cycle_id, removed)]

        await self._write(operation)

    async def find_cycle(self, cycle_id: int) -> Optional[Cycle]:
        def operation(conn: sqlite3.Connection) -> Optional[Cycle]:
            row = conn.execute("SELECT * FROM cycles WHERE id = ?", (cycle_id,)).fetchone()
            return self._row_to_cycle(row) if row else None

        return await self._read(operation)

    async def list_cycles(self) -> list[Cycle]:
        def operation(conn: sqlite3.Connection) -> list[Cycle]:
            rows = conn.execute(
                "SELECT * FROM cycles ORDER BY year DESC, month DESC"
            ).fetchall()
            return [self._row_to_cycle(row) for row in rows]

        return await self._read(operation)

    # ── TRANSACTIONS ──────────────────────────────────────

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        def operation(conn: sqlite3.Connection) -> WriteResult:
            self._require_cycle(conn, transaction.cycle_id)
            cursor = conn.execute(
                """
                INSERT INTO transactions (cycle_id, title, amount, category, spent_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    transaction.cycle_id,
                    transaction.title,
                    transaction.amount,
                    transaction.category,
                    transaction.spent_at,
                ),
            )
            stored = transaction.model_copy(update={"id": cursor.lastrowid})
            return stored, [
                ChangeEventBuilder.transaction_created(stored.id, stored.cycle_id)
            ]

        return await self._write(operation)

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        def operation(conn: sqlite3.Connection) -> WriteResult:
            if transaction.id is None:
                raise NotFoundError("Transaction has no id")
            row = conn.execute(
                "SELECT cycle_id FROM transactions WHERE id = ?",
                (transaction.id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Transaction not found: {transaction.id}")
            previous_cycle_id = row["cycle_id"]
            self._require_cycle(conn, transaction.cycle_id)
            conn.execute(
                """
                UPDATE transactions
                SET cycle_id = ?, title = ?, amount = ?, category = ?, spent_at = ?
                WHERE id = ?
                """,
                (
                    transaction.cycle_id,
                    transaction.title,
                    transaction.amount,
                    transaction.category,
                    transaction.spent_at,
                    transaction.id,
                ),
            )
            return transaction, [
                ChangeEventBuilder.transaction_updated(
                    transaction.id, transaction.cycle_id, previous_cycle_id
                )
            ]

        return await self._write(operation)

    async def delete_transaction(self, transaction_id: int) -> None:
        def operation(conn: sqlite3.Connection) -> WriteResult:
            row = conn.execute(
                "SELECT cycle_id FROM transactions WHERE id = ?",
                (transaction_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")
            conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
            return None, [
                ChangeEventBuilder.transaction_deleted(transaction_id, row["cycle_id"])
            ]

        await self._write(operation)

    async def find_transaction(self, transaction_id: int) -> Optional[Transaction]:
        def operation(conn: sqlite3.Connection) -> Optional[Transaction]:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?",
                (transaction_id,),
            ).fetchone()
            return self._row_to_transaction(row) if row else None

        return await self._read(operation)

    async def list_transactions(self, cycle_id: int) -> list[Transaction]:
        def operation(conn: sqlite3.Connection) -> list[Transaction]:
            rows = conn.execute(
                """
                SELECT * FROM transactions
                WHERE cycle_id = ?
                ORDER BY spent_at DESC, id DESC
                """,
                (cycle_id,),
            ).fetchall()
            return [self._row_to_transaction(row) for row in rows]

        return await self._read(operation)

    async def sum_amount(self, cycle_id: int) -> float:
        def operation(conn: sqlite3.Connection) -> float:
            row = conn.execute(
                "SELECT COALESCE(SUM(amount), 0.0) FROM transactions WHERE cycle_id = ?",
                (cycle_id,),
            ).fetchone()
            return float(row[0])

        return await self._read(operation)
