"""Layout convergence detection from per-frame geometry samples.

CSS transitions and transforms never surface as DOM mutations, so the only
reliable signal that a page has stopped moving is sampling bounding rects
every frame and watching the aggregate delta fall below a noise threshold.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Callable

from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.document import DocumentAdapter
from flowtrace.core.errors import DocumentError
from flowtrace.core.scheduler import FrameScheduler, Handle
from flowtrace.core.types import NewElement, NodeRef, Rect, SettlementReport

log = logging.getLogger(__name__)

SettledCallback = Callable[[SettlementReport], None]

_DURATION = re.compile(r"^\s*(-?\d*\.?\d+)\s*(ms|s)\s*$")


class MonitorState(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    STABLE = "stable"
    TIMED_OUT = "timed_out"
    FORCED = "forced"


def parse_duration_ms(value: str | None) -> float:
    """Largest entry of a CSS time list: '0.3s, 150ms' -> 300.0"""
    longest = 0.0
    for part in (value or "").split(","):
        match = _DURATION.match(part)
        if not match:
            continue
        amount = float(match.group(1))
        ms = amount * 1000 if match.group(2) == "s" else amount
        longest = max(longest, ms)
    return longest


class StabilizationMonitor:
    """
    Samples the geometry of candidate nodes once per frame until it settles.

    Settlement fires when the summed per-frame delta has stayed under
    ``layout_delta_px`` for ``min_stable_frames`` consecutive frames and at
    least ``min_wait_ms`` has passed, or unconditionally once
    ``max_timeout_ms`` has elapsed. The callback runs exactly once.
    """

    def __init__(
        self,
        document: DocumentAdapter,
        scheduler: FrameScheduler,
        config: FlowTraceConfig | None = None,
    ) -> None:
        self._doc = document
        self._scheduler = scheduler
        self._settings = (config or DEFAULT_CONFIG).stabilization
        self._candidates: dict[str, NodeRef] = {}
        self._prev_rects: dict[str, Rect] = {}
        self._new_elements: list[NewElement] = []
        self._max_css_ms = 0.0
        self._state = MonitorState.IDLE
        self._on_settled: SettledCallback | None = None
        self._frame_handle: Handle | None = None
        self._timeout_handle: Handle | None = None
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._frame_count = 0
        self._stable_frames = 0
        self._max_shift = 0.0
        self._settle_frame: int | None = None
        self._start_ms = self._scheduler.now()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def candidate_count(self) -> int:
        return len(self._candidates)

    @property
    def max_css_duration_ms(self) -> float:
        return self._max_css_ms

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def add_candidate(self, node: NodeRef) -> None:
        """Track ``node`` and take its first geometry sample immediately."""
        if node.key in self._candidates:
            return
        try:
            rect = self._doc.measure(node).rect
        except DocumentError:
            log.debug("candidate %s is not measurable, skipped", node)
            return
        self._candidates[node.key] = node
        self._prev_rects[node.key] = rect
        self._note_css_timing(node)

    def add_candidates(self, nodes: list[NodeRef]) -> None:
        for node in nodes:
            self.add_candidate(node)

    def add_new_element(self, node: NodeRef, locator: str | None) -> None:
        """Track a node that appeared during observation and report it as new."""
        self.add_candidate(node)
        rect = self._prev_rects.get(node.key)
        if rect is None:
            return
        if rect.width > 0 or rect.height > 0:
            self._new_elements.append(
                NewElement(locator=locator, width=round(rect.width), height=round(rect.height))
            )

    def _note_css_timing(self, node: NodeRef) -> None:
        try:
            style = self._doc.computed_style(node)
        except DocumentError:
            return
        duration = parse_duration_ms(style.get("transition-duration")) + parse_duration_ms(
            style.get("transition-delay")
        )
        animation = parse_duration_ms(style.get("animation-duration")) + parse_duration_ms(
            style.get("animation-delay")
        )
        self._max_css_ms = max(self._max_css_ms, duration, animation)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, on_settled: SettledCallback) -> None:
        if self._state is MonitorState.OBSERVING:
            return
        self._reset_counters()
        self._on_settled = on_settled
        self._state = MonitorState.OBSERVING
        self._frame_handle = self._scheduler.request_frame(self._tick)
        # hard ceiling even if the host stops delivering frames
        self._timeout_handle = self._scheduler.call_later(
            self._settings.max_timeout_ms, self._on_timeout
        )

    def stop(self) -> None:
        """Cancel pending work. Safe to call at any time, any number of times."""
        self._scheduler.cancel(self._frame_handle)
        self._scheduler.cancel(self._timeout_handle)
        self._frame_handle = None
        self._timeout_handle = None
        if self._state is MonitorState.OBSERVING:
            self._state = MonitorState.IDLE

    def cleanup(self) -> None:
        """Release every tracked node and the callback."""
        self.stop()
        self._candidates.clear()
        self._prev_rects.clear()
        self._new_elements = []
        self._on_settled = None

    def force_stabilize(self) -> SettlementReport | None:
        """Settle immediately with ``stabilized=False, forced=True``."""
        if self._state is not MonitorState.OBSERVING:
            return None
        report = self._report(stabilized=False, timed_out=False, forced=True)
        self._settle(MonitorState.FORCED, report)
        return report

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------

    def _tick(self) -> None:
        self._frame_handle = None
        if self._state is not MonitorState.OBSERVING:
            return

        self._frame_count += 1
        frame_delta = self._sample()

        self._max_shift = max(self._max_shift, frame_delta)
        if frame_delta < self._settings.layout_delta_px:
            self._stable_frames += 1
            if self._settle_frame is None:
                self._settle_frame = self._frame_count
        else:
            self._stable_frames = 0
            self._settle_frame = None

        elapsed = self._elapsed()
        stable = (
            self._stable_frames >= self._settings.min_stable_frames
            and elapsed >= self._settings.min_wait_ms
        )
        if stable:
            self._settle(MonitorState.STABLE, self._report(stabilized=True, timed_out=False))
        elif elapsed >= self._settings.max_timeout_ms:
            self._settle(MonitorState.TIMED_OUT, self._report(stabilized=False, timed_out=True))
        else:
            self._frame_handle = self._scheduler.request_frame(self._tick)

    def _sample(self) -> float:
        """Sum |Δtop|+|Δleft|+|Δwidth|+|Δheight| over attached candidates."""
        frame_delta = 0.0
        for key, node in list(self._candidates.items()):
            if not self._doc.is_attached(node):
                self._drop(key)
                continue
            try:
                current = self._doc.measure(node).rect
            except DocumentError:
                self._drop(key)
                continue
            previous = self._prev_rects.get(key)
            if previous is not None:
                frame_delta += current.delta(previous)
            self._prev_rects[key] = current
        return frame_delta

    def _drop(self, key: str) -> None:
        self._candidates.pop(key, None)
        self._prev_rects.pop(key, None)

    def _on_timeout(self) -> None:
        self._timeout_handle = None
        if self._state is MonitorState.OBSERVING:
            log.debug("stabilization timed out after %d frames", self._frame_count)
            self._settle(MonitorState.TIMED_OUT, self._report(stabilized=False, timed_out=True))

    def _elapsed(self) -> float:
        return self._scheduler.now() - self._start_ms

    def _report(self, *, stabilized: bool, timed_out: bool, forced: bool = False) -> SettlementReport:
        return SettlementReport(
            frames_observed=self._frame_count,
            max_layout_shift=round(self._max_shift, 2),
            settle_frame=self._settle_frame,
            stabilized=stabilized,
            timed_out=timed_out,
            total_ms=self._elapsed(),
            new_elements=tuple(self._new_elements),
            max_css_duration_ms=self._max_css_ms,
            forced=forced,
        )

    def _settle(self, state: MonitorState, report: SettlementReport) -> None:
        self.stop()
        self._state = state
        callback, self._on_settled = self._on_settled, None
        if callback is not None:
            callback(report)
