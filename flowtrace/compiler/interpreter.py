"""Trace interpreter: raw Steps -> semantic actions -> validated workflow graph.

Pipeline:
  1. detect_collections      click steps grouped by index-free locator
  2. derive_semantic_actions  intent, effects and stabilization per step
  3. identify_patterns        collection interactions and overlay flows
  4. synthesize_workflow      Scan/ForEach graph or a linear chain
  5. flatten                  graph -> flat IR (see flatten.py)
"""

from __future__ import annotations

import logging
from typing import Sequence

from flowtrace.compiler.flatten import flatten
from flowtrace.compiler.graph import ensure_valid
from flowtrace.compiler.labels import step_label
from flowtrace.compiler.types import (
    ActionTrigger,
    CollectionPattern,
    DerivedEffects,
    Edge,
    GraphNode,
    GraphNodeType,
    Intent,
    InterpretationResult,
    Pattern,
    PatternKind,
    SemanticAction,
    StabilizationRule,
    WorkflowGraph,
)
from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.types import ElementMetadata, Step, TriggerType
from flowtrace.locator.tokens import normalize

log = logging.getLogger(__name__)

FORMAT_VERSION = "4.0"

# Top-level classes that signal an overlay took over the page
_OVERLAY_VOCABULARY = ("modal", "overlay", "open", "active")
# The narrower list used for the is_overlay_open effect flag
_OVERLAY_EFFECT_VOCABULARY = ("modal", "open", "overlay")
# New elements that are never the thing worth capturing
_BACKDROP_MARKERS = ("backdrop", "fade")


def _metadata_dict(meta: ElementMetadata) -> dict[str, str]:
    return {
        key: value
        for key, value in (
            ("tagName", meta.tag_name),
            ("role", meta.role),
            ("text", meta.text),
            ("ariaLabel", meta.aria_label),
            ("placeholder", meta.placeholder),
            ("testId", meta.test_id),
            ("href", meta.href),
            ("name", meta.name),
        )
        if value
    }


class TraceInterpreter:
    """Turns a recorded Step list into a validated workflow graph and flat IR."""

    def __init__(self, config: FlowTraceConfig | None = None) -> None:
        self._config = config or DEFAULT_CONFIG

    def interpret(self, steps: Sequence[Step], url: str | None = None) -> InterpretationResult:
        steps = list(steps)
        collections = self.detect_collections(steps)
        actions = self.derive_semantic_actions(steps, collections)
        patterns = self.identify_patterns(actions, collections)
        graph = self.synthesize_workflow(patterns, actions)
        workflow_steps = flatten(graph, actions, url, self._config)
        log.debug(
            "interpreted %d steps into %d actions, %d graph nodes",
            len(steps), len(actions), len(graph.nodes),
        )
        return InterpretationResult(
            actions=actions,
            patterns=patterns,
            graph=graph,
            workflow_steps=workflow_steps,
            metadata={
                "original_step_count": len(steps),
                "derived_action_count": len(actions),
                "format_version": FORMAT_VERSION,
            },
        )

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def detect_collections(self, steps: Sequence[Step]) -> dict[str, CollectionPattern]:
        """Group click steps by normalized locator; keep groups with >1 distinct locator."""
        groups: dict[str, CollectionPattern] = {}
        for step in steps:
            if step.trigger.type is not TriggerType.CLICK or not step.trigger.locator:
                continue
            locator = step.trigger.locator
            key = normalize(locator)
            group = groups.setdefault(key, CollectionPattern(normalized_locator=key))
            group.item_count += 1
            group.original_locators.add(locator)
        return {key: group for key, group in groups.items() if len(group.original_locators) > 1}

    # ------------------------------------------------------------------
    # Semantic actions
    # ------------------------------------------------------------------

    def derive_semantic_actions(
        self,
        steps: Sequence[Step],
        collections: dict[str, CollectionPattern],
    ) -> list[SemanticAction]:
        settings = self._config.stabilization
        actions = []
        for step in steps:
            trigger = step.trigger
            normalized = normalize(trigger.locator) if trigger.locator else ""
            in_collection = bool(normalized) and normalized in collections
            effects = self.derive_effects(step)
            needs_wait = self.needs_stabilization(step)
            actions.append(SemanticAction(
                intent=self.derive_intent(step),
                label=step_label(step),
                trigger=ActionTrigger(
                    type=trigger.type.value,
                    selector=normalized if in_collection else trigger.locator,
                    original_selector=trigger.locator,
                    is_collection=in_collection,
                    metadata=_metadata_dict(trigger.metadata),
                ),
                effects=effects,
                requires_stabilization=needs_wait,
                stabilization_rule=(
                    StabilizationRule(
                        threshold_px=settings.layout_delta_px,
                        min_frames=settings.min_stable_frames,
                    )
                    if needs_wait else None
                ),
                capture_target=effects.dominant_new_element,
            ))

        for group in collections.values():
            intents = [a.intent for a in actions if a.trigger.selector == group.normalized_locator]
            if intents:
                group.dominant_intent = intents[0]
                group.is_consistent = len(set(intents)) == 1
        return actions

    def derive_intent(self, step: Step) -> Intent:
        """Priority-ordered decision table; the first matching row wins."""
        trigger = step.trigger
        if trigger.type is TriggerType.CHECKPOINT:
            return Intent.INITIAL_STATE_CAPTURE

        body = step.effects.body_class_changes
        added = body.added if body else ()
        if any(word in cls for cls in added for word in _OVERLAY_VOCABULARY):
            return Intent.OPEN_OVERLAY

        meta = trigger.metadata
        shifted = step.max_layout_shift > self._config.thresholds.ui_expansion_px
        button_like = meta.tag_name in ("button", "a") or meta.role == "button"
        if shifted and button_like:
            return Intent.UI_EXPANSION
        if step.effects.new_elements:
            return Intent.VISUAL_TRANSITION
        if shifted:
            return Intent.VISUAL_TRANSITION

        if trigger.type is TriggerType.SUBMIT:
            return Intent.FORM_SUBMISSION
        if trigger.type is TriggerType.KEYDOWN and trigger.key == "Enter":
            return Intent.CONFIRM_ACTION
        if trigger.type is TriggerType.KEYDOWN and trigger.key == "Escape":
            return Intent.CANCEL_ACTION
        return Intent.USER_INTERACTION

    def derive_effects(self, step: Step) -> DerivedEffects:
        effects = step.effects
        body = effects.body_class_changes
        added = body.added if body else ()
        return DerivedEffects(
            visual_shift=step.max_layout_shift > 0,
            class_toggles=bool(effects.class_toggles),
            body_state_change=body is not None,
            is_overlay_open=any(word in cls for cls in added for word in _OVERLAY_EFFECT_VOCABULARY),
            dominant_new_element=self.dominant_new_element(step),
        )

    @staticmethod
    def dominant_new_element(step: Step) -> str | None:
        """Locator of the largest new element, skipping backdrops and fades."""
        new_elements = step.effects.new_elements
        if not new_elements:
            return None
        best, best_area = None, 0.0
        for element in new_elements:
            locator = element.locator or ""
            if any(marker in locator for marker in _BACKDROP_MARKERS):
                continue
            if element.area > best_area:
                best, best_area = element.locator, element.area
        return best or new_elements[0].locator

    def needs_stabilization(self, step: Step) -> bool:
        if step.visual_settling is None:
            return False
        return step.visual_settling.max_layout_shift > self._config.thresholds.noise_floor_px

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def identify_patterns(
        self,
        actions: Sequence[SemanticAction],
        collections: dict[str, CollectionPattern],
    ) -> list[Pattern]:
        patterns: list[Pattern] = []
        for key, group in collections.items():
            members = [a for a in actions if a.trigger.selector == key]
            if not members:
                continue
            intents = [a.intent for a in members]
            profiles = [
                (a.effects.dominant_new_element is not None, a.effects.is_overlay_open)
                for a in members
            ]
            patterns.append(Pattern(
                kind=PatternKind.COLLECTION_INTERACTION,
                selector=key,
                item_count=group.item_count,
                dominant_intent=intents[0],
                is_consistent=len(set(intents)) == 1,
                effects_consistent=all(p == profiles[0] for p in profiles),
            ))

        if any(a.intent is Intent.OPEN_OVERLAY or a.effects.is_overlay_open for a in actions):
            patterns.append(Pattern(kind=PatternKind.OVERLAY_FLOW_DETECTED, confidence="high"))
        return patterns

    # ------------------------------------------------------------------
    # Graph synthesis
    # ------------------------------------------------------------------

    def synthesize_workflow(
        self,
        patterns: Sequence[Pattern],
        actions: Sequence[SemanticAction],
    ) -> WorkflowGraph:
        graph = WorkflowGraph(nodes=[GraphNode(id="node_0", node_type=GraphNodeType.START)])
        collection = next(
            (p for p in patterns if p.kind is PatternKind.COLLECTION_INTERACTION), None
        )
        if collection is not None:
            self._synthesize_loop(graph, collection, actions)
        else:
            self._synthesize_linear(graph, actions)
        return ensure_valid(graph)

    def _wait_node(self, node_id: str, action: SemanticAction) -> GraphNode:
        return GraphNode(
            id=node_id,
            node_type=GraphNodeType.WAIT_VISUAL_STABLE,
            config={
                "observe": action.capture_target or "body",
                "stabilization_rule": action.stabilization_rule,
            },
        )

    def _synthesize_loop(
        self,
        graph: WorkflowGraph,
        collection: Pattern,
        actions: Sequence[SemanticAction],
    ) -> None:
        sample = next((a for a in actions if a.trigger.selector == collection.selector), None)

        graph.nodes.append(GraphNode(
            id="node_1",
            node_type=GraphNodeType.ELEMENT_SCAN,
            config={"selector": collection.selector, "limit": collection.item_count},
        ))
        graph.connections.append(Edge(0, 1))

        children = [GraphNode(
            id="node_2_click",
            node_type=GraphNodeType.CLICK,
            config={"selector": "{{current.selector}}"},
        )]
        if sample is not None and sample.requires_stabilization:
            children.append(self._wait_node("node_2_wait", sample))
        children.append(GraphNode(
            id="node_2_screenshot",
            node_type=GraphNodeType.SCREENSHOT,
            config={
                "target": (sample.capture_target if sample else None) or "body",
                "full_scroll": True,
            },
        ))
        if sample is not None and sample.effects.is_overlay_open:
            children.append(GraphNode(
                id="node_2_close",
                node_type=GraphNodeType.CLOSE_MODAL,
                config={"heuristic": "ESCAPE_OR_BODY_CLICK"},
            ))

        graph.nodes.append(GraphNode(
            id="node_2",
            node_type=GraphNodeType.FOR_EACH_ITEM,
            config={"source_node": "node_1"},
            children=children,
        ))
        graph.connections.append(Edge(1, 2))

        graph.nodes.append(GraphNode(id="node_3", node_type=GraphNodeType.OUTPUT))
        graph.connections.append(Edge(2, 3))

    def _synthesize_linear(self, graph: WorkflowGraph, actions: Sequence[SemanticAction]) -> None:
        last = 0

        def push(node: GraphNode) -> None:
            nonlocal last
            graph.nodes.append(node)
            index = len(graph.nodes) - 1
            graph.connections.append(Edge(last, index))
            last = index

        for position, action in enumerate(actions):
            if action.intent is Intent.INITIAL_STATE_CAPTURE:
                continue
            push(GraphNode(
                id=f"node_{len(graph.nodes)}",
                node_type=GraphNodeType(action.trigger.type.upper()),
                config={"selector": action.trigger.selector},
                action_index=position,
            ))
            if action.requires_stabilization:
                push(self._wait_node(f"node_{len(graph.nodes)}", action))
            if action.intent in (Intent.OPEN_OVERLAY, Intent.VISUAL_TRANSITION):
                push(GraphNode(
                    id=f"node_{len(graph.nodes)}",
                    node_type=GraphNodeType.SCREENSHOT,
                    config={"target": action.capture_target or "body"},
                ))

        push(GraphNode(id=f"node_{len(graph.nodes)}", node_type=GraphNodeType.OUTPUT))
