"""
Shared fixtures.

Every test gets its own SQLite file under pytest's tmp_path, so tests
never share records.
"""

import asyncio
import time

import pytest
import pytest_asyncio

from cycle_ledger.repository import BudgetRepository
from cycle_ledger.services.notifier import ChangeNotifier
from cycle_ledger.services.storage import SQLiteRecordStore


# Short grace period so idle streams stop quickly in tests
TEST_GRACE_PERIOD = 0.05


async def next_value(stream, timeout: float = 2.0):
    """Await the next item of an async iterator, failing instead of hanging."""
    return await asyncio.wait_for(stream.__anext__(), timeout)


def slow_down_writes(store, monkeypatch, delay: float = 0.2) -> None:
    """Make every write of ``store`` hold its worker thread for ``delay`` seconds."""
    run_write = store._run_write

    def slow_run_write(operation):
        time.sleep(delay)
        return run_write(operation)

    monkeypatch.setattr(store, "_run_write", slow_run_write)


async def next_matching(stream, predicate, timeout: float = 2.0):
    """
    Await the first value of an async iterator that satisfies ``predicate``.

    Observation streams may emit intermediate values while several writes
    land, so tests wait for the state they expect instead of counting.
    """
    async def scan():
        async for value in stream:
            if predicate(value):
                return value
        raise AssertionError("stream ended before a matching value arrived")

    return await asyncio.wait_for(scan(), timeout)


async def eventually(condition, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll ``condition`` until it holds, failing after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "ledger.db"


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def store(db_path, notifier):
    return SQLiteRecordStore(db_path, notifier=notifier)


@pytest_asyncio.fixture
async def repository(store, notifier):
    repo = BudgetRepository(store, notifier, grace_period_seconds=TEST_GRACE_PERIOD)
    yield repo
    await repo.close()
