"""
Deferred-execution services for playback and animation.

The playback machine never sleeps or spawns timers itself; it asks a
Scheduler for one-shot callbacks. Hosts inject AsyncioScheduler (single
event loop, cooperative) and tests inject VirtualScheduler, whose clock only
moves when advance() is called.
"""

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from constants import FRAME_INTERVAL_MS


class TimerHandle(ABC):
    """A pending one-shot callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class Scheduler(ABC):
    """Source of one-shot delayed callbacks and a millisecond clock."""

    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_ms milliseconds."""
        pass

    @abstractmethod
    def now_ms(self) -> float:
        pass


class _AsyncioHandle(TimerHandle):
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop.

    Args:
        loop: Event loop to schedule on (default: the running loop)
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        return _AsyncioHandle(self.loop.call_later(delay_ms / 1000.0, callback))

    def now_ms(self) -> float:
        return self.loop.time() * 1000.0


class _VirtualHandle(TimerHandle):
    def __init__(self, due_ms: float, callback: Callable[[], None]):
        self.due_ms = due_ms
        self.callback = callback
        self._cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler(Scheduler):
    """
    Deterministic scheduler with a manually advanced clock.

    Callbacks run inside advance(), in due-time order (scheduling order for
    equal due times). Callbacks may schedule further callbacks; those run in
    the same advance() call if they fall due before its end.
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = start_ms
        self._queue: List[Tuple[float, int, _VirtualHandle]] = []
        self._seq = itertools.count()

    def now_ms(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _VirtualHandle(self._now + max(0.0, delay_ms), callback)
        heapq.heappush(self._queue, (handle.due_ms, next(self._seq), handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of callbacks still waiting to run."""
        return sum(1 for _, _, h in self._queue if not h.cancelled and not h.fired)

    def advance(self, ms: float) -> int:
        """
        Move the clock forward and run everything that falls due.

        Returns:
            Number of callbacks run
        """
        end = self._now + ms
        ran = 0
        while self._queue and self._queue[0][0] <= end:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            handle.fired = True
            handle.callback()
            ran += 1
        self._now = end
        return ran


class FrameLoop:
    """
    Explicit per-frame callback driven by a Scheduler.

    The next frame is requested only after the current one ran and only
    while the loop is running, so stop() takes effect deterministically.

    Args:
        scheduler: Source of deferred callbacks
        on_frame: Called with the scheduler time of each frame
        interval_ms: Target frame interval
    """

    def __init__(self, scheduler: Scheduler, on_frame: Callable[[float], None],
                 interval_ms: float = FRAME_INTERVAL_MS):
        self._scheduler = scheduler
        self._on_frame = on_frame
        self.interval_ms = interval_ms
        self._handle: Optional[TimerHandle] = None
        self._running = False
        self.frames = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._arm()

    def stop(self) -> None:
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self) -> None:
        self._handle = self._scheduler.call_later(self.interval_ms, self._frame)

    def _frame(self) -> None:
        self._handle = None
        if not self._running:
            return
        self.frames += 1
        try:
            self._on_frame(self._scheduler.now_ms())
        finally:
            # on_frame may have stopped (or restarted) the loop
            if self._running and self._handle is None:
                self._arm()
