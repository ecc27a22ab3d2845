"""
One-shot timers with cancellable handles.

The history manager (text-edit quiet period) and the autosave writer
(debounce) both need "run this later unless superseded". Each owner keeps
the handle it got from `call_later` and cancels it itself; there is no
ambient cancellation.

- ManualScheduler: virtual time, advanced explicitly (tests, scripting)
- AsyncioScheduler: backed by the running event loop (the local service)
"""

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Callable, Optional


class TimerHandle(ABC):
    """Handle to a scheduled callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...


class Scheduler(ABC):
    """Runs callbacks after a delay expressed in milliseconds."""

    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class _ManualHandle(TimerHandle):
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """
    Deterministic scheduler driven by `advance()`.

    Callbacks run in due-time order (ties in scheduling order), inside the
    `advance()` call that moves the clock past their due time.
    """

    def __init__(self):
        self._now = 0.0
        self._queue: list[tuple[float, int, _ManualHandle]] = []
        self._counter = itertools.count()

    @property
    def now(self) -> float:
        """Current virtual time in milliseconds."""
        return self._now

    @property
    def pending(self) -> int:
        """Number of callbacks still waiting to run."""
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _ManualHandle(self._now + max(0.0, delay_ms), callback)
        heapq.heappush(self._queue, (handle.due, next(self._counter), handle))
        return handle

    def advance(self, delay_ms: float) -> None:
        """Move the clock forward, running every callback that becomes due."""
        target = self._now + delay_ms
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            self._now = due
            if not handle.cancelled:
                handle.cancel()
                handle.callback()
        self._now = target

    def run_all(self) -> None:
        """Run everything still pending, in order."""
        while self._queue:
            due, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if not handle.cancelled:
                handle.cancel()
                handle.callback()


class _AsyncioHandle(TimerHandle):
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop (the running one by default)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return _AsyncioHandle(loop.call_later(max(0.0, delay_ms) / 1000.0, callback))
