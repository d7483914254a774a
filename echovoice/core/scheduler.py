"""
echovoice/core/scheduler.py — Timer scheduling for gesture and countdown logic.

The emergency trigger never sleeps; it registers callbacks through a
:class:`Scheduler`. :class:`LoopScheduler` binds to the running asyncio loop,
:class:`ManualScheduler` is a virtual clock advanced explicitly (simulation,
replay and tests).
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Callable, Optional, Protocol, runtime_checkable


@runtime_checkable
class TimerHandle(Protocol):
    """Anything with a ``cancel()`` method."""

    def cancel(self) -> None:
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Minimal timer interface required by the emergency trigger."""

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        """Run *callback* once after *delay_s* seconds."""
        ...

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...


class LoopScheduler:
    """
    Scheduler backed by an asyncio event loop.

    The loop is resolved lazily on the first :meth:`call_later` so the
    scheduler can be constructed outside a running loop.

    Args:
        loop: Explicit loop; defaults to the running loop at first use.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop.call_later(delay_s, callback)

    def now(self) -> float:
        if self._loop is not None:
            return self._loop.time()
        return time.monotonic()


class _ManualHandle:
    """Handle returned by :class:`ManualScheduler`."""

    __slots__ = ("due", "seq", "callback", "cancelled")

    def __init__(self, due: float, seq: int, callback: Callable[[], None]) -> None:
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "_ManualHandle") -> bool:
        return (self.due, self.seq) < (other.due, other.seq)


class ManualScheduler:
    """
    Deterministic virtual-clock scheduler.

    Time only moves when :meth:`advance` is called; due callbacks run in
    deadline order (registration order on ties), including callbacks that
    are scheduled by other callbacks within the advanced window.

    Example::

        sched = ManualScheduler()
        sched.call_later(2.0, lambda: print("fired"))
        sched.advance(1.999)   # nothing
        sched.advance(0.001)   # fired
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[_ManualHandle] = []
        self._seq = itertools.count()

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _ManualHandle(self._now + max(0.0, delay_s), next(self._seq), callback)
        heapq.heappush(self._queue, handle)
        return handle

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due."""
        target = self._now + seconds
        while self._queue and self._queue[0].due <= target + 1e-9:
            handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, handle.due)
            handle.callback()
        self._now = target

    def advance_ms(self, ms: float) -> None:
        """Convenience wrapper around :meth:`advance` in milliseconds."""
        self.advance(ms / 1000.0)

    @property
    def pending(self) -> int:
        """Number of live (non-cancelled) timers."""
        return sum(1 for h in self._queue if not h.cancelled)
