"""Unit tests for SessionRecorder and InteractionSession."""

from __future__ import annotations

from flowtrace.core.scheduler import FrameScheduler
from flowtrace.core.types import ClassToggle, NodeRef, Point, Rect, TriggerType
from flowtrace.dom.html import HtmlDocument
from flowtrace.recorder.manager import RecorderState, SessionRecorder
from flowtrace.recorder.session import SessionState, TriggerRequest

PAGE = """
<html><body>
  <div id="menu" class="menu">
    <button id="toggle">Menu</button>
  </div>
  <form id="login">
    <input name="email" placeholder="Email">
    <input type="checkbox" id="remember" title="Remember me">
  </form>
  <ul id="list"><li>a</li><li>b</li><li>c</li><li>d</li><li>e</li><li>f</li><li>g</li></ul>
</body></html>
"""


def make_request(doc: HtmlDocument, css: str, kind: TriggerType = TriggerType.CLICK, **kwargs) -> TriggerRequest:
    return TriggerRequest(type=kind, target=doc.find(css), **kwargs)


class TestSessionRecorder:
    def setup_method(self):
        self.doc = HtmlDocument(PAGE, url="https://example.com/")
        self.scheduler = FrameScheduler(frame_ms=16.0)
        self.completed = []
        self.recorder = SessionRecorder(self.doc, self.scheduler, on_step=self.completed.append)
        self.doc.observe_mutations(self.recorder.add_mutations)

    # ------------------------------------------------------------------ lifecycle

    def test_click_settles_into_one_step(self):
        session = self.recorder.start_session(
            make_request(self.doc, "#toggle", coordinates=Point(10, 20), button=0)
        )
        assert session.state is SessionState.OBSERVING
        assert self.recorder.state is RecorderState.OBSERVING

        self.scheduler.advance(1000)

        assert self.recorder.state is RecorderState.IDLE
        (step,) = self.recorder.steps
        assert step.trigger.type is TriggerType.CLICK
        assert step.trigger.locator == "#toggle"
        assert step.trigger.coordinates == Point(10, 20)
        assert step.visual_settling.stabilized
        assert step.duration_ms == 512
        assert self.completed == [step]

    def test_class_toggles_are_recorded(self):
        self.recorder.start_session(make_request(self.doc, "#toggle"))
        self.doc.add_class(self.doc.find("#menu"), "open")
        self.scheduler.advance(1000)

        effects = self.recorder.steps[0].effects
        assert effects.class_toggles == (ClassToggle(locator="#menu", added=("open",), removed=()),)
        assert effects.body_class_changes is None

    def test_class_toggles_are_capped(self):
        self.recorder.start_session(make_request(self.doc, "#toggle"))
        for li in self.doc.query_within(self.doc.find("#list"), "li"):
            self.doc.add_class(li, "seen")
        self.scheduler.advance(1000)
        assert len(self.recorder.steps[0].effects.class_toggles) == 5

    def test_body_class_changes(self):
        self.recorder.start_session(make_request(self.doc, "#toggle"))
        self.doc.add_class(self.doc.body(), "modal-open")
        self.scheduler.advance(1000)
        changes = self.recorder.steps[0].effects.body_class_changes
        assert changes.added == ("modal-open",)
        assert changes.removed == ()

    def test_new_elements_come_from_settlement(self):
        self.recorder.start_session(make_request(self.doc, "#toggle"))
        with self.doc.batch():
            added = self.doc.append_html(self.doc.body(), '<div class="dialog">Hello</div>')
            self.doc.set_geometry(added[0], Rect(top=100, left=100, width=300, height=200))
        self.scheduler.advance(1000)

        step = self.recorder.steps[0]
        assert len(step.effects.new_elements) == 1
        assert (step.effects.new_elements[0].width, step.effects.new_elements[0].height) == (300, 200)
        assert step.effects.new_elements == step.visual_settling.new_elements

    def test_new_session_finalizes_previous(self):
        first = self.recorder.start_session(make_request(self.doc, "#toggle"))
        self.scheduler.advance(48)
        self.recorder.start_session(make_request(self.doc, "#menu"))

        assert first.is_finalized
        assert len(self.recorder.steps) == 1
        settling = self.recorder.steps[0].visual_settling
        assert settling.forced
        assert not settling.stabilized
        assert settling.frames_observed == 3

    def test_finalize_is_idempotent(self):
        session = self.recorder.start_session(make_request(self.doc, "#toggle"))
        step = self.recorder.finalize_current_session()
        assert self.recorder.finalize_current_session() is None
        assert session.finalize() is step
        self.scheduler.advance(4000)
        assert len(self.recorder.steps) == 1

    def test_mutations_after_finalize_are_ignored(self):
        session = self.recorder.start_session(make_request(self.doc, "#toggle"))
        self.recorder.finalize_current_session()
        self.doc.add_class(self.doc.find("#menu"), "late")
        assert session.mutation_count == 0
        assert self.recorder.steps[0].effects.class_toggles == ()

    def test_reset_clears_log(self):
        self.recorder.start_session(make_request(self.doc, "#toggle"))
        self.recorder.reset()
        assert self.recorder.steps == []
        assert self.recorder.state is RecorderState.IDLE
        # dedup history is gone too
        assert self.recorder.start_session(make_request(self.doc, "#toggle")) is not None

    # ------------------------------------------------------------------ deduplication

    def test_same_event_within_window_is_dropped(self):
        assert self.recorder.start_session(make_request(self.doc, "#toggle")) is not None
        self.scheduler.advance(400)
        assert self.recorder.start_session(make_request(self.doc, "#toggle")) is None
        self.scheduler.advance(200)
        assert self.recorder.start_session(make_request(self.doc, "#toggle")) is not None

    def test_input_family_within_window_is_dropped(self):
        field = "input[name='email']"
        assert self.recorder.start_session(make_request(self.doc, field, TriggerType.INPUT, value="a")) is not None
        self.scheduler.advance(800)
        assert self.recorder.start_session(
            make_request(self.doc, field, TriggerType.INPUT_CHANGE, value="a")
        ) is None
        self.scheduler.advance(300)
        assert self.recorder.start_session(
            make_request(self.doc, field, TriggerType.INPUT_CHANGE, value="a")
        ) is not None

    def test_different_target_is_not_a_duplicate(self):
        self.recorder.start_session(make_request(self.doc, "#toggle"))
        assert self.recorder.start_session(make_request(self.doc, "#menu")) is not None

    # ------------------------------------------------------------------ trigger capture

    def test_value_kept_only_for_text_input(self):
        self.recorder.start_session(make_request(self.doc, "#toggle", value="ignored"))
        self.recorder.start_session(
            make_request(self.doc, "input[name='email']", TriggerType.INPUT, value="me@example.com")
        )
        self.recorder.finalize_current_session()
        click, typed = self.recorder.steps
        assert click.trigger.value is None
        assert typed.trigger.value == "me@example.com"

    def test_metadata_for_inputs(self):
        self.recorder.start_session(make_request(self.doc, "input[name='email']", TriggerType.FOCUS))
        self.recorder.start_session(make_request(self.doc, "#remember"))
        self.recorder.finalize_current_session()
        email, remember = (step.trigger.metadata for step in self.recorder.steps)

        assert email.tag_name == "input"
        assert email.text == "Email"
        assert email.placeholder == "Email"
        assert email.aria_label == "email"
        assert email.role == "input"
        assert remember.aria_label == "Remember me"
        assert remember.input_type == "checkbox"

    def test_metadata_text_is_capped(self):
        self.doc.append_html(self.doc.body(), f'<button id="long">{"x" * 300}</button>')
        self.recorder.start_session(make_request(self.doc, "#long"))
        self.recorder.finalize_current_session()
        assert len(self.recorder.steps[0].trigger.metadata.text) == 100

    def test_detached_target_has_no_locator(self):
        request = TriggerRequest(type=TriggerType.CLICK, target=NodeRef("missing"))
        self.recorder.start_session(request)
        self.recorder.finalize_current_session()
        trigger = self.recorder.steps[0].trigger
        assert trigger.locator is None
        assert trigger.metadata.tag_name == ""

    def test_viewport_is_captured(self):
        self.recorder.start_session(make_request(self.doc, "#toggle"))
        self.recorder.finalize_current_session()
        assert self.recorder.steps[0].trigger.viewport == self.doc.viewport()
