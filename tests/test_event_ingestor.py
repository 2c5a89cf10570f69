"""Unit tests for EventIngestor: host events -> recorder sessions."""

from __future__ import annotations

import datetime

import pytest

from flowtrace.core.scheduler import FrameScheduler
from flowtrace.core.types import Modifiers, Rect, TriggerType
from flowtrace.dom.html import HtmlDocument
from flowtrace.recorder.events import (
    ChangeEvent,
    CheckpointEvent,
    ClickEvent,
    EventIngestor,
    ExpandEvent,
    FocusEvent,
    HeightNudgeEvent,
    InputEvent,
    KeyEvent,
    MarkCaptureEvent,
    ScrollEvent,
    Shortcut,
    StyleBatchEvent,
    StyleChangeEvent,
    SubmitEvent,
    find_constrained_container,
)
from flowtrace.recorder.manager import SessionRecorder

PAGE = """
<html><body>
  <button id="save">Save</button>
  <form id="search"><input id="q" name="q"><select id="sort"><option>a</option></select></form>
  <input type="checkbox" id="agree">
  <div id="editor" contenteditable="true"></div>
  <div id="plain">text</div>
  <div id="panel" style="height: 100px; overflow: auto"><p id="row">row</p></div>
</body></html>
"""

CTRL_SHIFT = Modifiers(ctrl=True, shift=True)


class TestEventIngestor:
    def setup_method(self):
        self.doc = HtmlDocument(PAGE, url="https://example.com/")
        self.scheduler = FrameScheduler(frame_ms=16.0)
        self.recorder = SessionRecorder(self.doc, self.scheduler)
        self.ingestor = EventIngestor(
            self.recorder,
            self.doc,
            self.scheduler,
            wall_clock=lambda: datetime.datetime(2024, 1, 1, 9, 30, 5),
        )
        self.ingestor.start()

    def node(self, css: str):
        return self.doc.find(css)

    def steps(self):
        self.recorder.finalize_current_session()
        return self.recorder.steps

    # ------------------------------------------------------------------ lifecycle

    def test_ignored_when_not_recording(self):
        self.ingestor.stop()
        assert not self.ingestor.ingest(ClickEvent(target=self.node("#save")))
        assert self.steps() == []

    def test_click(self):
        assert self.ingestor.ingest(ClickEvent(target=self.node("#save"), x=5, y=6, button=2))
        (step,) = self.steps()
        assert step.trigger.type is TriggerType.CLICK
        assert step.trigger.button == 2
        assert step.trigger.locator == "#save"

    def test_submit(self):
        assert self.ingestor.ingest(SubmitEvent(target=self.node("#search")))
        assert self.steps()[0].trigger.type is TriggerType.SUBMIT

    # ------------------------------------------------------------------ keyboard

    def test_only_capture_keys_are_recorded(self):
        assert not self.ingestor.ingest(KeyEvent(target=self.node("#q"), key="a"))
        assert self.ingestor.ingest(KeyEvent(target=self.node("#q"), key="Enter"))
        (step,) = self.steps()
        assert step.trigger.type is TriggerType.KEYDOWN
        assert step.trigger.key == "Enter"

    def test_capture_shortcut_marks_capture(self):
        assert self.ingestor.ingest(KeyEvent(target=self.node("#q"), key="c", modifiers=CTRL_SHIFT))
        (step,) = self.steps()
        assert step.trigger.type is TriggerType.CAPTURE_POINT
        assert step.trigger.capture_label == "Capture 09:30:05"

    def test_mark_capture_with_label(self):
        self.ingestor.ingest(MarkCaptureEvent(label="Pricing table"))
        assert self.steps()[0].trigger.capture_label == "Pricing table"

    def test_shortcut_parse(self):
        shortcut = Shortcut.parse("Ctrl+Shift+E")
        assert shortcut.key == "E"
        assert shortcut.modifiers == CTRL_SHIFT
        with pytest.raises(ValueError):
            Shortcut.parse("hyper+x")

    # ------------------------------------------------------------------ form fields

    def test_input_is_debounced_to_final_value(self):
        q = self.node("#q")
        for value in ("c", "ca", "cat"):
            assert self.ingestor.ingest(InputEvent(target=q, value=value))
            self.scheduler.advance(100)
        assert self.ingestor.has_pending_capture
        self.scheduler.advance(300)

        (step,) = self.steps()
        assert step.trigger.type is TriggerType.INPUT
        assert step.trigger.value == "cat"
        # same value again is not a new capture
        assert not self.ingestor.ingest(InputEvent(target=q, value="cat"))

    def test_untrusted_and_non_text_input_skipped(self):
        assert not self.ingestor.ingest(InputEvent(target=self.node("#q"), value="x", trusted=False))
        assert not self.ingestor.ingest(InputEvent(target=self.node("#plain"), value="x"))
        assert self.ingestor.ingest(InputEvent(target=self.node("#editor"), value="hello"))

    def test_checkbox_change_becomes_boolean_string(self):
        assert self.ingestor.ingest(ChangeEvent(target=self.node("#agree"), value="on", checked=True))
        step = self.steps()[0]
        assert step.trigger.type is TriggerType.INPUT_CHANGE
        assert step.trigger.value == "true"

    def test_change_on_select(self):
        assert self.ingestor.ingest(ChangeEvent(target=self.node("#sort"), value="a"))
        assert not self.ingestor.ingest(ChangeEvent(target=self.node("#plain"), value="a"))
        assert self.steps()[0].trigger.value == "a"

    def test_focus_only_on_fields(self):
        assert not self.ingestor.ingest(FocusEvent(target=self.node("#save")))
        assert self.ingestor.ingest(FocusEvent(target=self.node("#q")))
        assert self.ingestor.ingest(FocusEvent(target=self.node("#editor")))
        assert [s.trigger.type for s in self.steps()] == [TriggerType.FOCUS, TriggerType.FOCUS]

    # ------------------------------------------------------------------ scrolling

    def test_scroll_is_debounced_and_measured_from_first_event(self):
        for y in (50, 150, 250):
            self.ingestor.ingest(ScrollEvent(target=None, scroll_x=0, scroll_y=y))
            self.scheduler.advance(50)
        self.scheduler.advance(200)

        (step,) = self.steps()
        scroll = step.trigger.scroll
        assert step.trigger.type is TriggerType.SCROLL
        assert (scroll.from_y, scroll.to_y) == (50, 250)

    def test_small_scroll_is_dropped(self):
        self.ingestor.ingest(ScrollEvent(target=None, scroll_x=0, scroll_y=0))
        self.ingestor.ingest(ScrollEvent(target=None, scroll_x=0, scroll_y=100))
        self.scheduler.advance(200)
        assert self.steps() == []

    # ------------------------------------------------------------------ captures

    def test_checkpoint_closes_open_session(self):
        self.ingestor.ingest(ClickEvent(target=self.node("#save")))
        assert self.ingestor.ingest(CheckpointEvent())
        click, checkpoint = self.steps()
        assert click.visual_settling.forced
        assert checkpoint.trigger.type is TriggerType.CHECKPOINT

    # ------------------------------------------------------------------ styles / expansion

    def test_style_events(self):
        panel = self.node("#panel")
        assert self.ingestor.ingest(StyleChangeEvent(target=panel, property="max-height", value="none"))
        assert not self.ingestor.ingest(StyleBatchEvent(target=self.node("#row"), styles={}))
        assert self.ingestor.ingest(StyleBatchEvent(target=self.node("#row"), styles={"color": "red"}))
        single, batch = self.steps()
        assert single.trigger.style_change.priority == "important"
        assert batch.trigger.style_changes_batch[0].property == "color"

    def test_expand_shortcut_targets_constrained_container(self):
        panel = self.node("#panel")
        self.doc.set_geometry(panel, Rect(height=100, width=400))
        self.doc.set_scroll_size(panel, 400)

        assert self.ingestor.ingest(KeyEvent(target=self.node("#row"), key="e", modifiers=CTRL_SHIFT))
        (step,) = self.steps()
        assert step.trigger.type is TriggerType.EXPAND
        assert step.trigger.locator == "#panel"
        assert step.trigger.expand_params.mode == "fit-content"

    def test_expand_shortcut_without_container(self):
        assert not self.ingestor.ingest(KeyEvent(target=self.node("#save"), key="e", modifiers=CTRL_SHIFT))

    def test_height_nudges_commit_one_style_change(self):
        panel = self.node("#panel")
        self.doc.set_geometry(panel, Rect(height=100, width=400))
        self.ingestor.ingest(ExpandEvent(target=panel))
        up = KeyEvent(target=panel, key="ArrowUp", modifiers=CTRL_SHIFT)
        assert self.ingestor.ingest(up)
        self.scheduler.advance(100)
        assert self.ingestor.ingest(up)
        self.scheduler.advance(400)

        expand, nudge = self.steps()
        assert nudge.trigger.type is TriggerType.STYLE_CHANGE
        assert nudge.trigger.style_change.property == "height"
        assert nudge.trigger.style_change.value == "200px"

    def test_height_nudge_floor(self):
        panel = self.node("#panel")
        self.doc.set_geometry(panel, Rect(height=60, width=400))
        self.ingestor.ingest(ExpandEvent(target=panel))
        self.ingestor.ingest(HeightNudgeEvent(delta_px=-50))
        self.scheduler.advance(400)
        assert self.steps()[-1].trigger.style_change.value == "50px"

    def test_height_nudge_without_expand(self):
        assert not self.ingestor.ingest(HeightNudgeEvent(delta_px=50))


class TestFindConstrainedContainer:
    def test_overflowing_ancestor(self):
        doc = HtmlDocument(PAGE)
        panel = doc.find("#panel")
        doc.set_geometry(panel, Rect(height=100))
        doc.set_scroll_size(panel, 300)
        assert find_constrained_container(doc, doc.find("#row")) == panel

    def test_falls_back_to_start_with_declared_height(self):
        doc = HtmlDocument(PAGE)
        panel = doc.find("#panel")
        assert find_constrained_container(doc, panel) == panel

    def test_none_without_constraint(self):
        doc = HtmlDocument(PAGE)
        assert find_constrained_container(doc, doc.find("#plain")) is None
