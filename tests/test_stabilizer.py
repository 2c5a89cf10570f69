"""Unit tests for StabilizationMonitor driven by a virtual frame clock."""

from __future__ import annotations

from flowtrace.core.scheduler import FrameScheduler
from flowtrace.core.types import Rect, SettlementReport
from flowtrace.dom.html import HtmlDocument
from flowtrace.monitor.stabilizer import MonitorState, StabilizationMonitor, parse_duration_ms


def make_page(markup: str = '<div id="panel"></div>') -> HtmlDocument:
    doc = HtmlDocument(f"<html><body>{markup}</body></html>")
    doc.set_geometry(doc.find("#panel"), Rect(top=10, left=10, width=200, height=100))
    return doc


class TestStabilizationMonitor:
    def setup_method(self):
        self.doc = make_page()
        self.panel = self.doc.find("#panel")
        self.scheduler = FrameScheduler(frame_ms=16.0)
        self.monitor = StabilizationMonitor(self.doc, self.scheduler)
        self.reports: list[SettlementReport] = []

    # ------------------------------------------------------------------ settling

    def test_still_page_settles_after_min_wait(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.start(self.reports.append)
        self.scheduler.advance(1000)

        assert len(self.reports) == 1
        report = self.reports[0]
        assert report.stabilized
        assert not report.timed_out
        assert report.frames_observed == 32
        assert report.settle_frame == 1
        assert report.total_ms == 512
        assert report.max_layout_shift == 0
        assert self.monitor.state is MonitorState.STABLE

    def test_motion_delays_settlement(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.start(self.reports.append)
        for i in range(1, 41):
            self.doc.set_geometry(self.panel, height=100 + 10 * i)
            self.scheduler.tick()
        assert self.reports == []
        self.scheduler.advance(1000)

        report = self.reports[0]
        assert report.stabilized
        assert report.max_layout_shift == 10
        # first stable frame comes after the last moving one
        assert report.settle_frame == 41
        assert report.frames_observed == 55

    def test_constant_motion_times_out(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.start(self.reports.append)
        for i in range(1, 250):
            self.doc.set_geometry(self.panel, top=10 + i)
            self.scheduler.tick()

        assert len(self.reports) == 1
        report = self.reports[0]
        assert not report.stabilized
        assert report.timed_out
        assert report.frames_observed == 187
        assert report.settle_frame is None
        assert self.monitor.state is MonitorState.TIMED_OUT

    def test_timeout_without_frames(self):
        # the host stopped delivering frames; the timer still fires
        self.monitor.start(self.reports.append)
        self.scheduler.cancel(self.monitor._frame_handle)
        self.scheduler.advance(3100)
        assert self.reports[0].timed_out
        assert self.reports[0].frames_observed == 0

    def test_callback_runs_exactly_once(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.start(self.reports.append)
        self.scheduler.advance(4000)
        assert self.monitor.force_stabilize() is None
        assert len(self.reports) == 1

    # ------------------------------------------------------------------ forcing / cleanup

    def test_force_stabilize(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.start(self.reports.append)
        self.scheduler.advance(48)
        report = self.monitor.force_stabilize()
        assert report.forced
        assert not report.stabilized
        assert report.frames_observed == 3
        assert self.reports == [report]
        assert self.monitor.state is MonitorState.FORCED

    def test_cleanup_cancels_callback(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.start(self.reports.append)
        self.monitor.cleanup()
        self.scheduler.advance(4000)
        assert self.reports == []
        assert self.monitor.candidate_count == 0
        assert self.scheduler.pending == 0

    # ------------------------------------------------------------------ candidates

    def test_detached_candidate_is_dropped(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.start(self.reports.append)
        self.doc.remove(self.panel)
        self.scheduler.tick()
        assert self.monitor.candidate_count == 0

    def test_duplicate_and_detached_candidates_ignored(self):
        self.monitor.add_candidate(self.panel)
        self.monitor.add_candidate(self.panel)
        assert self.monitor.candidate_count == 1
        gone = self.doc.append_html(self.doc.body(), "<p></p>")[0]
        self.doc.remove(gone)
        self.monitor.add_candidates([self.panel, gone])
        assert self.monitor.candidate_count == 1

    def test_new_elements_reported_with_size(self):
        added = self.doc.append_html(self.doc.body(), '<div class="toast"></div><div class="empty"></div>')
        self.doc.set_geometry(added[0], Rect(width=120.4, height=40.6))
        self.monitor.start(self.reports.append)
        self.monitor.add_new_element(added[0], "div.toast")
        self.monitor.add_new_element(added[1], "div.empty")
        self.scheduler.advance(1000)

        new = self.reports[0].new_elements
        assert len(new) == 1
        assert new[0].locator == "div.toast"
        assert (new[0].width, new[0].height) == (120, 41)

    def test_css_timing_recorded(self):
        self.doc.set_style(self.panel, transition_duration="0.3s", transition_delay="100ms")
        self.monitor.add_candidate(self.panel)
        assert self.monitor.max_css_duration_ms == 400


class TestParseDuration:
    def test_longest_entry_wins(self):
        assert parse_duration_ms("0.3s, 150ms") == 300
        assert parse_duration_ms("250ms") == 250

    def test_garbage_is_zero(self):
        assert parse_duration_ms(None) == 0
        assert parse_duration_ms("auto") == 0
