"""
Timers the poller schedules its ticks on.

`ThreadingScheduler` is the real thing. `ManualScheduler` keeps a virtual
clock that only moves when `advance()` is called, so poller tests are
deterministic and instant.
"""
from __future__ import annotations

import heapq
import itertools
import threading
from typing import Callable, List, Tuple


class Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    def call_later(self, delay: float, fn: Callable[[], None]) -> Handle:
        raise NotImplementedError


class _TimerHandle(Handle):
    def __init__(self, timer: threading.Timer) -> None:
        super().__init__()
        self._timer = timer

    def cancel(self) -> None:
        super().cancel()
        self._timer.cancel()


class ThreadingScheduler(Scheduler):
    def call_later(self, delay: float, fn: Callable[[], None]) -> Handle:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        handle = _TimerHandle(timer)
        timer.start()
        return handle


class ManualScheduler(Scheduler):
    def __init__(self) -> None:
        self.now = 0.0
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, Callable[[], None], Handle]] = []

    def call_later(self, delay: float, fn: Callable[[], None]) -> Handle:
        handle = Handle()
        heapq.heappush(self._queue, (self.now + max(delay, 0.0), next(self._seq), fn, handle))
        return handle

    def pending(self) -> int:
        """Scheduled callbacks that have not run or been cancelled."""
        return sum(1 for _, _, _, h in self._queue if not h.cancelled)

    def next_due(self) -> float:
        live = [due for due, _, _, h in self._queue if not h.cancelled]
        return min(live) if live else float("inf")

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, running everything that falls due in order.
        Callbacks scheduled while advancing run too if they fall in the window.
        Returns the number of callbacks run.
        """
        target = self.now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, fn, handle = heapq.heappop(self._queue)
            self.now = due
            if handle.cancelled:
                continue
            fn()
            ran += 1
        self.now = target
        return ran
