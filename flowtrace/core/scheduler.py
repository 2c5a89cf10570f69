"""Cooperative single-threaded scheduling: frame callbacks, timers, debouncing."""

from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable

log = logging.getLogger(__name__)

Callback = Callable[[], None]


@dataclass(order=True)
class _Timer:
    due_ms: float
    seq: int
    callback: Callback = field(compare=False)
    cancelled: bool = field(default=False, compare=False)


class Handle:
    """Opaque cancellation handle returned by the scheduler."""

    __slots__ = ("_timer", "_frame_id")

    def __init__(self, timer: _Timer | None = None, frame_id: int | None = None) -> None:
        self._timer = timer
        self._frame_id = frame_id


class FrameScheduler:
    """
    Drives frame callbacks and delayed timers from one logical thread.

    The clock is virtual unless a ``clock`` function returning milliseconds is
    supplied. Each ``tick()`` advances the clock, fires due timers, then runs
    the frame callbacks that were requested before the tick started; callbacks
    requested from inside a frame run on the next tick.
    """

    def __init__(self, frame_ms: float = 16.0, clock: Callable[[], float] | None = None) -> None:
        self.frame_ms = frame_ms
        self._clock = clock
        self._virtual_ms = 0.0
        self._frames: dict[int, Callback] = {}
        self._timers: list[_Timer] = []
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def now(self) -> float:
        return self._clock() if self._clock else self._virtual_ms

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def request_frame(self, callback: Callback) -> Handle:
        frame_id = next(self._ids)
        self._frames[frame_id] = callback
        return Handle(frame_id=frame_id)

    def call_later(self, delay_ms: float, callback: Callback) -> Handle:
        timer = _Timer(self.now() + max(delay_ms, 0.0), next(self._ids), callback)
        heapq.heappush(self._timers, timer)
        return Handle(timer=timer)

    def cancel(self, handle: Handle | None) -> None:
        """Cancel a pending callback. Unknown or already-fired handles are ignored."""
        if handle is None:
            return
        if handle._frame_id is not None:
            self._frames.pop(handle._frame_id, None)
        if handle._timer is not None:
            handle._timer.cancelled = True

    @property
    def pending(self) -> int:
        live_timers = sum(1 for t in self._timers if not t.cancelled)
        return len(self._frames) + live_timers

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    def tick(self, elapsed_ms: float | None = None) -> None:
        """Advance one frame: fire due timers then this frame's callbacks."""
        if self._clock is None:
            self._virtual_ms += self.frame_ms if elapsed_ms is None else elapsed_ms
        self._fire_timers()
        frames, self._frames = self._frames, {}
        for callback in frames.values():
            self._run(callback)

    def advance(self, duration_ms: float) -> None:
        """Run as many frames as fit into ``duration_ms``."""
        remaining = duration_ms
        while remaining > 0:
            step = min(self.frame_ms, remaining)
            self.tick(step)
            remaining -= step

    def run_until_idle(self, limit_ms: float = 60_000.0) -> None:
        """Tick until nothing is pending or ``limit_ms`` of clock time has passed."""
        start = self.now()
        while self.pending and self.now() - start < limit_ms:
            self.tick()

    def _fire_timers(self) -> None:
        now = self.now()
        while self._timers and self._timers[0].due_ms <= now:
            timer = heapq.heappop(self._timers)
            if not timer.cancelled:
                timer.cancelled = True
                self._run(timer.callback)

    @staticmethod
    def _run(callback: Callback) -> None:
        try:
            callback()
        except Exception:
            log.exception("scheduled callback %r failed", callback)


class Debouncer:
    """Single-slot timer: each trigger replaces the pending call."""

    def __init__(self, scheduler: FrameScheduler, delay_ms: float) -> None:
        self._scheduler = scheduler
        self.delay_ms = delay_ms
        self._handle: Handle | None = None
        self._callback: Callback | None = None

    @property
    def pending(self) -> bool:
        return self._callback is not None

    def trigger(self, callback: Callback) -> None:
        self.cancel()
        self._callback = callback
        self._handle = self._scheduler.call_later(self.delay_ms, self._fire)

    def cancel(self) -> None:
        self._scheduler.cancel(self._handle)
        self._handle = None
        self._callback = None

    def flush(self) -> None:
        """Run the pending call now, if there is one."""
        callback = self._callback
        self.cancel()
        if callback is not None:
            callback()

    def _fire(self) -> None:
        callback = self._callback
        self._handle = None
        self._callback = None
        if callback is not None:
            callback()
