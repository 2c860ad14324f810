"""
Shared Observation Streams

A SharedStream runs one upstream producer for any number of subscribers.

Lifecycle:
1. Nothing runs until the first subscriber starts iterating
2. Every value the producer yields goes to every current subscriber
3. A subscriber that attaches while the producer is running first receives
   the latest value (replay), then every later value
4. When the last subscriber detaches, the producer keeps running for the
   grace period. A subscriber attaching inside that window cancels the stop.
   Otherwise the producer is cancelled and the cached value is discarded;
   the next subscriber starts a fresh producer.

If the producer fails, the error is raised in every current subscriber and
the stream resets.
"""

import asyncio
from typing import AsyncIterator, Callable, Generic, Optional, TypeVar

import structlog


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _Marker:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


_NO_VALUE = _Marker("no value")
_END = _Marker("end")


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class SharedStream(Generic[T]):
    """
    One upstream producer multicast to many subscribers.

    ``producer`` is called with no arguments each time the stream (re)starts
    and must return an async iterator. ``on_stop`` is called each time the
    producer is stopped for lack of subscribers.
    """

    def __init__(
        self,
        name: str,
        producer: Callable[[], AsyncIterator[T]],
        grace_period: float,
        on_stop: Optional[Callable[[], None]] = None,
    ):
        self.name = name
        self._producer = producer
        self._grace_period = grace_period
        self._subscribers: list[asyncio.Queue] = []
        self._latest = _NO_VALUE
        self._task: Optional[asyncio.Task] = None
        self._stop_handle: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_stop = on_stop

    @property
    def active(self) -> bool:
        """True while the upstream producer is running."""
        return self._task is not None and not self._task.done()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def stopping(self) -> bool:
        """True while the grace period after the last subscriber is running."""
        return self._stop_handle is not None

    async def subscribe(self) -> AsyncIterator[T]:
        """
        Iterate the stream's values.

        Close the iterator (``aclose`` or ``contextlib.aclosing``) to detach.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._attach(queue)
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            self._detach(queue)

    async def close(self) -> None:
        """Stop the producer now and end every subscriber's iteration."""
        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None
        task, self._task = self._task, None
        self._latest = _NO_VALUE
        self._broadcast(_END)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # ── INTERNALS ─────────────────────────────────────────

    def _attach(self, queue: asyncio.Queue) -> None:
        self._loop = asyncio.get_running_loop()
        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None
            logger.debug("stream_stop_cancelled", stream=self.name)

        self._subscribers.append(queue)
        if self._latest is not _NO_VALUE:
            queue.put_nowait(self._latest)

        if self._task is None:
            self._task = self._loop.create_task(self._run())
            logger.debug("stream_started", stream=self.name)

    def _detach(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
        if self._subscribers or self._task is None or self._stop_handle is not None:
            return
        if self._grace_period <= 0:
            self._stop()
        else:
            self._stop_handle = self._loop.call_later(self._grace_period, self._stop)

    def _stop(self) -> None:
        self._stop_handle = None
        if self._subscribers:
            return
        task, self._task = self._task, None
        self._latest = _NO_VALUE
        if task is not None and not task.done():
            task.cancel()
        logger.debug("stream_stopped", stream=self.name)
        if self._on_stop is not None:
            self._on_stop()

    def _broadcast(self, item) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(item)

    async def _run(self) -> None:
        try:
            async for value in self._producer():
                self._latest = value
                self._broadcast(value)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("stream_failed", stream=self.name, error=str(e))
            self._reset_if_current()
            self._broadcast(_Failure(e))
        else:
            self._reset_if_current()
            self._broadcast(_END)

    def _reset_if_current(self) -> None:
        if self._task is asyncio.current_task():
            self._task = None
            self._latest = _NO_VALUE
