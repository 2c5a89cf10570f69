"""Unit tests for RecordingController (offline document, virtual clock)."""

from __future__ import annotations

import pytest

from flowtrace.core.errors import FlowTraceError, NotRecordingError
from flowtrace.dom.html import HtmlDocument
from flowtrace.recorder.controller import RecordingController
from flowtrace.recorder.events import ClickEvent, InputEvent

PAGE = """
<html><body>
  <nav id="menu" class="menu"><button id="toggle">Menu</button></nav>
  <input id="q" name="q" placeholder="Search">
</body></html>
"""


def make_controller(**kwargs) -> RecordingController:
    doc = HtmlDocument(PAGE, url="https://shop.example.com/")
    return RecordingController(doc, **kwargs)


class TestRecordingController:
    def setup_method(self):
        self.steps = []
        self.controller = make_controller(on_step=self.steps.append)
        self.doc = self.controller.document

    # ------------------------------------------------------------------ commands

    def test_start_and_stop(self):
        assert self.controller.start_recording().status == "started"
        assert self.controller.recording
        result = self.controller.stop_recording()
        assert result.status == "stopped"
        assert result.count == 0
        assert not self.controller.recording

    def test_click_with_mutations_end_to_end(self):
        self.controller.start_recording()
        self.controller.ingest(ClickEvent(target=self.doc.find("#toggle")))
        self.doc.add_class(self.doc.find("#menu"), "open")
        self.controller.scheduler.advance(1000)
        result = self.controller.stop_recording()

        assert result.count == 1
        (step,) = self.steps
        assert step.effects.class_toggles[0].locator == "#menu"
        assert step.effects.class_toggles[0].added == ("open",)

    def test_stop_finalizes_open_session(self):
        self.controller.start_recording()
        self.controller.ingest(ClickEvent(target=self.doc.find("#toggle")))
        assert self.controller.stop_recording().count == 1
        assert self.steps[0].visual_settling.forced

    def test_stop_drops_pending_debounced_input(self):
        self.controller.start_recording()
        self.controller.ingest(InputEvent(target=self.doc.find("#q"), value="shoes"))
        assert self.controller.stop_recording().count == 0
        self.controller.scheduler.advance(1000)
        assert self.steps == []

    def test_start_resets_previous_recording(self):
        self.controller.start_recording()
        self.controller.ingest(ClickEvent(target=self.doc.find("#toggle")))
        self.controller.stop_recording()
        self.controller.start_recording()
        assert self.controller.get_trace().count == 0

    def test_captures_require_recording(self):
        with pytest.raises(NotRecordingError):
            self.controller.capture_checkpoint()
        with pytest.raises(NotRecordingError):
            self.controller.mark_capture("x")

    def test_capture_commands(self):
        self.controller.start_recording()
        assert self.controller.capture_checkpoint().status == "captured"
        self.controller.scheduler.advance(1000)
        assert self.controller.mark_capture("Hero").status == "marked"
        self.controller.stop_recording()
        kinds = [s.trigger.type.value for s in self.steps]
        assert kinds == ["checkpoint", "capture_point"]

    # ------------------------------------------------------------------ trace retrieval

    def test_get_trace_steps_only(self):
        self.controller.start_recording()
        self.controller.ingest(ClickEvent(target=self.doc.find("#toggle")))
        self.controller.stop_recording()
        result = self.controller.get_trace()
        assert result.status == "ok"
        assert result.count == 1
        assert result.steps[0]["trigger"]["selector"] == "#toggle"
        assert result.workflow is None
        assert "workflow" not in result.to_dict()

    def test_get_trace_compiled_ir(self):
        self.controller.start_recording()
        self.controller.ingest(ClickEvent(target=self.doc.find("#toggle")))
        self.controller.stop_recording()
        workflow = self.controller.get_trace(compile="ir").workflow
        assert [node["type"] for node in workflow] == ["START", "WAIT", "CLICK", "OUTPUT"]
        assert workflow[0]["params"]["url"] == "https://shop.example.com/"

    def test_get_trace_compiled_graph(self):
        self.controller.start_recording()
        self.controller.ingest(ClickEvent(target=self.doc.find("#toggle")))
        self.controller.stop_recording()
        workflow = self.controller.get_trace(compile="graph").workflow
        assert set(workflow) == {"semantic_actions", "patterns", "workflow_graph", "workflow_steps", "metadata"}
        assert workflow["workflow_graph"]["nodes"][0]["type"] == "START"

    def test_get_trace_unknown_mode(self):
        with pytest.raises(FlowTraceError):
            self.controller.get_trace(compile="xml")

    # ------------------------------------------------------------------ dispatch

    def test_handle_dispatches_by_name(self):
        assert self.controller.handle("start_recording").status == "started"
        assert self.controller.handle("mark_capture", label="Top").status == "marked"
        result = self.controller.handle("stop_recording")
        assert result.to_dict() == {"status": "stopped", "count": 1}

    def test_handle_unknown_command(self):
        result = self.controller.handle("rewind")
        assert result.status == "unknown_action"
        assert not result.ok

    def test_handle_reports_errors(self):
        result = self.controller.handle("capture_checkpoint")
        assert result.status == "error"
        assert "requires an active recording" in result.message
        assert self.controller.handle("get_trace", compile="xml").status == "error"
