"""Unit tests for FrameScheduler and Debouncer (virtual clock)."""

from __future__ import annotations

import logging

from flowtrace.core.scheduler import Debouncer, FrameScheduler


class TestFrameScheduler:
    def setup_method(self):
        self.scheduler = FrameScheduler(frame_ms=16.0)
        self.calls: list[str] = []

    # ------------------------------------------------------------------ frames

    def test_frame_runs_on_next_tick(self):
        self.scheduler.request_frame(lambda: self.calls.append("frame"))
        assert self.calls == []
        self.scheduler.tick()
        assert self.calls == ["frame"]
        assert self.scheduler.now() == 16.0

    def test_frame_requested_inside_frame_waits_a_tick(self):
        def outer():
            self.calls.append("outer")
            self.scheduler.request_frame(lambda: self.calls.append("inner"))

        self.scheduler.request_frame(outer)
        self.scheduler.tick()
        assert self.calls == ["outer"]
        self.scheduler.tick()
        assert self.calls == ["outer", "inner"]

    def test_cancel_frame(self):
        handle = self.scheduler.request_frame(lambda: self.calls.append("frame"))
        self.scheduler.cancel(handle)
        self.scheduler.tick()
        assert self.calls == []
        assert self.scheduler.pending == 0

    # ------------------------------------------------------------------ timers

    def test_timers_fire_before_frames(self):
        self.scheduler.request_frame(lambda: self.calls.append("frame"))
        self.scheduler.call_later(10, lambda: self.calls.append("timer"))
        self.scheduler.tick()
        assert self.calls == ["timer", "frame"]

    def test_timer_fires_once_when_due(self):
        self.scheduler.call_later(40, lambda: self.calls.append("timer"))
        self.scheduler.advance(32)
        assert self.calls == []
        self.scheduler.advance(16)
        assert self.calls == ["timer"]
        self.scheduler.advance(100)
        assert self.calls == ["timer"]

    def test_cancel_timer_and_unknown_handles(self):
        handle = self.scheduler.call_later(10, lambda: self.calls.append("timer"))
        self.scheduler.cancel(handle)
        self.scheduler.cancel(handle)
        self.scheduler.cancel(None)
        self.scheduler.advance(50)
        assert self.calls == []

    def test_advance_uses_partial_last_step(self):
        self.scheduler.advance(40)
        assert self.scheduler.now() == 40.0

    def test_run_until_idle(self):
        self.scheduler.call_later(100, lambda: self.calls.append("a"))
        self.scheduler.call_later(300, lambda: self.calls.append("b"))
        self.scheduler.run_until_idle()
        assert self.calls == ["a", "b"]
        assert self.scheduler.pending == 0

    def test_failing_callback_is_logged_not_raised(self, caplog):
        def boom():
            raise RuntimeError("boom")

        self.scheduler.request_frame(boom)
        self.scheduler.request_frame(lambda: self.calls.append("after"))
        with caplog.at_level(logging.ERROR, logger="flowtrace.core.scheduler"):
            self.scheduler.tick()
        assert self.calls == ["after"]
        assert "failed" in caplog.text

    def test_external_clock(self):
        now = [1000.0]
        scheduler = FrameScheduler(clock=lambda: now[0])
        scheduler.call_later(50, lambda: self.calls.append("timer"))
        scheduler.tick()
        assert self.calls == []
        now[0] = 1050.0
        scheduler.tick()
        assert self.calls == ["timer"]


class TestDebouncer:
    def setup_method(self):
        self.scheduler = FrameScheduler(frame_ms=16.0)
        self.debouncer = Debouncer(self.scheduler, 150)
        self.calls: list[int] = []

    def test_only_last_trigger_fires(self):
        self.debouncer.trigger(lambda: self.calls.append(1))
        self.scheduler.advance(100)
        self.debouncer.trigger(lambda: self.calls.append(2))
        self.scheduler.advance(100)
        assert self.calls == []
        self.scheduler.advance(100)
        assert self.calls == [2]
        assert not self.debouncer.pending

    def test_flush_runs_pending_now(self):
        self.debouncer.trigger(lambda: self.calls.append(1))
        self.debouncer.flush()
        assert self.calls == [1]
        self.scheduler.advance(500)
        assert self.calls == [1]

    def test_cancel_drops_pending(self):
        self.debouncer.trigger(lambda: self.calls.append(1))
        self.debouncer.cancel()
        self.debouncer.flush()
        self.scheduler.advance(500)
        assert self.calls == []
