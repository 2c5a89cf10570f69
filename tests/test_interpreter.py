"""Unit tests for TraceInterpreter (pure data, no document)."""

from __future__ import annotations

from flowtrace.compiler.interpreter import FORMAT_VERSION, TraceInterpreter
from flowtrace.compiler.types import GraphNodeType, Intent, IRType, PatternKind
from flowtrace.core.types import (
    ClassDiff,
    Effects,
    ElementMetadata,
    NewElement,
    SettlementReport,
    Step,
    Trigger,
    TriggerType,
)


def make_step(
    kind: TriggerType = TriggerType.CLICK,
    locator: str | None = "#go",
    *,
    tag: str = "div",
    text: str = "",
    role: str = "",
    key: str | None = None,
    shift: float = 0.0,
    body_added: tuple[str, ...] = (),
    new_elements: tuple[NewElement, ...] = (),
) -> Step:
    return Step(
        step_id=f"s-{locator}",
        trigger=Trigger(
            type=kind,
            locator=locator,
            key=key,
            metadata=ElementMetadata(tag_name=tag, role=role or tag, text=text),
        ),
        effects=Effects(
            body_class_changes=ClassDiff(added=body_added) if body_added else None,
            new_elements=new_elements,
        ),
        visual_settling=SettlementReport(
            frames_observed=32,
            max_layout_shift=shift,
            stabilized=True,
            new_elements=new_elements,
        ),
    )


def tab_clicks(count: int = 3) -> list[Step]:
    return [make_step(locator=f"ul.tabs > li:nth-of-type({i})", tag="li") for i in range(1, count + 1)]


class TestDeriveIntent:
    def setup_method(self):
        self.interpreter = TraceInterpreter()

    def intent(self, step: Step) -> Intent:
        return self.interpreter.derive_intent(step)

    def test_checkpoint_wins(self):
        step = make_step(TriggerType.CHECKPOINT, "body", body_added=("modal-open",))
        assert self.intent(step) is Intent.INITIAL_STATE_CAPTURE

    def test_overlay_from_body_class(self):
        assert self.intent(make_step(body_added=("is-active",))) is Intent.OPEN_OVERLAY
        assert self.intent(make_step(body_added=("dark",))) is Intent.USER_INTERACTION

    def test_ui_expansion_needs_button_like_target(self):
        assert self.intent(make_step(tag="button", shift=12)) is Intent.UI_EXPANSION
        assert self.intent(make_step(tag="span", role="button", shift=12)) is Intent.UI_EXPANSION
        assert self.intent(make_step(tag="div", shift=12)) is Intent.VISUAL_TRANSITION

    def test_new_elements_mean_transition(self):
        step = make_step(new_elements=(NewElement("div.toast", 100, 40),))
        assert self.intent(step) is Intent.VISUAL_TRANSITION

    def test_small_shift_is_noise(self):
        assert self.intent(make_step(tag="button", shift=5)) is Intent.USER_INTERACTION

    def test_keyboard_and_submit(self):
        assert self.intent(make_step(TriggerType.SUBMIT, "#f")) is Intent.FORM_SUBMISSION
        assert self.intent(make_step(TriggerType.KEYDOWN, key="Enter")) is Intent.CONFIRM_ACTION
        assert self.intent(make_step(TriggerType.KEYDOWN, key="Escape")) is Intent.CANCEL_ACTION
        assert self.intent(make_step(TriggerType.KEYDOWN, key="Tab")) is Intent.USER_INTERACTION

    def test_needs_stabilization_above_noise_floor(self):
        assert not self.interpreter.needs_stabilization(make_step(shift=1))
        assert self.interpreter.needs_stabilization(make_step(shift=1.5))

    def test_dominant_new_element_skips_backdrops(self):
        step = make_step(new_elements=(
            NewElement("div.modal-backdrop", 1440, 900),
            NewElement("div.modal", 600, 400),
            NewElement("span.badge", 20, 20),
        ))
        assert self.interpreter.dominant_new_element(step) == "div.modal"

    def test_dominant_new_element_falls_back_to_first(self):
        step = make_step(new_elements=(NewElement("div.fade", 10, 10),))
        assert self.interpreter.dominant_new_element(step) == "div.fade"


class TestCollections:
    def setup_method(self):
        self.interpreter = TraceInterpreter()

    def test_index_variants_form_a_collection(self):
        collections = self.interpreter.detect_collections(tab_clicks(3))
        (group,) = collections.values()
        assert group.normalized_locator == "ul.tabs > li"
        assert group.item_count == 3
        assert len(group.original_locators) == 3

    def test_repeated_identical_clicks_are_not_a_collection(self):
        steps = [make_step(locator="ul.tabs > li:nth-of-type(1)") for _ in range(3)]
        assert self.interpreter.detect_collections(steps) == {}

    def test_non_clicks_are_ignored(self):
        steps = [make_step(TriggerType.FOCUS, f"ul > li:nth-of-type({i})") for i in (1, 2)]
        assert self.interpreter.detect_collections(steps) == {}

    def test_collection_members_get_normalized_selector(self):
        steps = tab_clicks(2) + [make_step(locator="#other")]
        actions = self.interpreter.interpret(steps).actions
        assert actions[0].trigger.selector == "ul.tabs > li"
        assert actions[0].trigger.original_selector == "ul.tabs > li:nth-of-type(1)"
        assert actions[0].trigger.is_collection
        assert not actions[2].trigger.is_collection


class TestInterpret:
    def setup_method(self):
        self.interpreter = TraceInterpreter()

    # ------------------------------------------------------------------ empty

    def test_empty_trace(self):
        result = self.interpreter.interpret([])
        assert [n.node_type for n in result.graph.nodes] == [GraphNodeType.START, GraphNodeType.OUTPUT]
        assert [(e.source, e.target) for e in result.graph.connections] == [(0, 1)]
        assert [n.type for n in result.workflow_steps] == [IRType.START, IRType.OUTPUT]
        assert result.workflow_steps[0].params == {"url": "https://example.com"}
        assert result.workflow_steps[1].connections == []
        assert result.metadata == {
            "original_step_count": 0,
            "derived_action_count": 0,
            "format_version": FORMAT_VERSION,
        }

    # ------------------------------------------------------------------ linear

    def test_linear_chain_with_wait_and_screenshot(self):
        steps = [
            make_step(TriggerType.CHECKPOINT, "body"),
            make_step(locator="#more", tag="button", text="More", shift=40),
            make_step(locator="#open", tag="div", new_elements=(NewElement("div.panel", 300, 200),)),
        ]
        result = self.interpreter.interpret(steps, "https://shop.example.com/")
        kinds = [n.node_type for n in result.graph.nodes]
        assert kinds == [
            GraphNodeType.START,
            GraphNodeType.CLICK,
            GraphNodeType.WAIT_VISUAL_STABLE,
            GraphNodeType.CLICK,
            GraphNodeType.SCREENSHOT,
            GraphNodeType.OUTPUT,
        ]
        assert [(e.source, e.target) for e in result.graph.connections] == [
            (0, 1), (1, 2), (2, 3), (3, 4), (4, 5),
        ]
        assert result.graph.nodes[4].config["target"] == "div.panel"

        ir = result.workflow_steps
        assert ir[0].params["url"] == "https://shop.example.com/"
        assert ir[1].label == 'CLICK "More"'
        assert ir[2].type is IRType.WAIT
        assert ir[2].params["condition"] == "layout-stable"
        assert ir[4].params["selector"] == "div.panel"
        assert ir[4].params["filename"] == "screenshot-4"
        assert all(c.to == i + 1 for i, node in enumerate(ir[:-1]) for c in node.connections)

    def test_overlay_pattern(self):
        result = self.interpreter.interpret([make_step(body_added=("modal-open",))])
        kinds = [p.kind for p in result.patterns]
        assert PatternKind.OVERLAY_FLOW_DETECTED in kinds
        assert result.actions[0].effects.is_overlay_open
        assert result.graph.nodes[2].node_type is GraphNodeType.SCREENSHOT

    # ------------------------------------------------------------------ loops

    def test_collection_becomes_scan_and_loop(self):
        result = self.interpreter.interpret(tab_clicks(3))
        kinds = [n.node_type for n in result.graph.nodes]
        assert kinds == [
            GraphNodeType.START,
            GraphNodeType.ELEMENT_SCAN,
            GraphNodeType.FOR_EACH_ITEM,
            GraphNodeType.OUTPUT,
        ]
        (pattern,) = result.patterns
        assert pattern.kind is PatternKind.COLLECTION_INTERACTION
        assert pattern.item_count == 3
        assert pattern.is_consistent

        scan, loop = result.workflow_steps[1], result.workflow_steps[2]
        assert scan.type is IRType.ELEMENT_SCAN
        assert scan.params == {"rootSelector": "ul.tabs", "itemSelector": "li", "maxItems": 3, "strategy": "css"}
        assert loop.type is IRType.FOR_EACH_ELEMENT
        assert loop.params["source"] == 1
        assert loop.params["maxIterations"] == 10
        assert [a["type"] for a in loop.params["actions"]] == ["CLICK", "SCREENSHOT"]
        assert loop.params["actions"][0]["params"] == {"selector": "{{current.selector}}"}

    def test_loop_with_overlay_closes_it(self):
        steps = [
            make_step(locator=f"div.card:nth-of-type({i})", body_added=("modal-open",), shift=20)
            for i in (1, 2)
        ]
        result = self.interpreter.interpret(steps)
        children = result.graph.nodes[2].children
        assert [c.node_type for c in children] == [
            GraphNodeType.CLICK,
            GraphNodeType.WAIT_VISUAL_STABLE,
            GraphNodeType.SCREENSHOT,
            GraphNodeType.CLOSE_MODAL,
        ]
        loop = result.workflow_steps[2]
        assert [a["type"] for a in loop.params["actions"]] == ["CLICK", "WAIT", "SCREENSHOT", "CLICK"]
        # single-compound item selector gets an inferred root
        assert result.workflow_steps[1].params["rootSelector"] == "body"

    def test_deterministic(self):
        steps = tab_clicks(2) + [make_step(TriggerType.KEYDOWN, key="Escape")]
        first = self.interpreter.interpret(steps)
        second = self.interpreter.interpret(steps)
        assert first.workflow_steps == second.workflow_steps
        assert first.actions == second.actions
