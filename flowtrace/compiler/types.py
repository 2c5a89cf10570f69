"""Workflow compiler type definitions: semantic actions, graph form, flat IR."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Intent(str, Enum):
    INITIAL_STATE_CAPTURE = "INITIAL_STATE_CAPTURE"
    OPEN_OVERLAY = "OPEN_OVERLAY"
    UI_EXPANSION = "UI_EXPANSION"
    VISUAL_TRANSITION = "VISUAL_TRANSITION"
    FORM_SUBMISSION = "FORM_SUBMISSION"
    CONFIRM_ACTION = "CONFIRM_ACTION"
    CANCEL_ACTION = "CANCEL_ACTION"
    USER_INTERACTION = "USER_INTERACTION"


class PatternKind(str, Enum):
    COLLECTION_INTERACTION = "COLLECTION_INTERACTION"
    OVERLAY_FLOW_DETECTED = "OVERLAY_FLOW_DETECTED"


class GraphNodeType(str, Enum):
    START = "START"
    OUTPUT = "OUTPUT"
    ELEMENT_SCAN = "ELEMENT_SCAN"
    FOR_EACH_ITEM = "FOR_EACH_ITEM"
    WAIT_VISUAL_STABLE = "WAIT_VISUAL_STABLE"
    SCREENSHOT = "SCREENSHOT"
    CLOSE_MODAL = "CLOSE_MODAL"
    # one per trigger type, used by the linear chain
    CLICK = "CLICK"
    INPUT = "INPUT"
    INPUT_CHANGE = "INPUT_CHANGE"
    CHANGE = "CHANGE"
    KEYDOWN = "KEYDOWN"
    SUBMIT = "SUBMIT"
    FOCUS = "FOCUS"
    SCROLL = "SCROLL"
    CHECKPOINT = "CHECKPOINT"
    CAPTURE_POINT = "CAPTURE_POINT"
    STYLE_CHANGE = "STYLE_CHANGE"
    EXPAND = "EXPAND"
    STYLE_CHANGES_BATCH = "STYLE_CHANGES_BATCH"


class IRType(str, Enum):
    START = "START"
    WAIT = "WAIT"
    CLICK = "CLICK"
    TYPE = "TYPE"
    SCROLL = "SCROLL"
    WAIT_FOR_NAVIGATION = "WAIT_FOR_NAVIGATION"
    PRINT = "PRINT"
    SCREENSHOT = "SCREENSHOT"
    SET_STYLE = "SET_STYLE"
    EXPAND = "EXPAND"
    ELEMENT_SCAN = "ELEMENT_SCAN"
    FOR_EACH_ELEMENT = "FOR_EACH_ELEMENT"
    OUTPUT = "OUTPUT"


class Condition(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Semantic layer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StabilizationRule:
    threshold_px: float
    min_frames: int
    wait_until: str = "layout_stable"


@dataclass(frozen=True)
class ActionTrigger:
    type: str
    selector: str | None  # normalized when the step belongs to a collection
    original_selector: str | None
    is_collection: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DerivedEffects:
    visual_shift: bool = False
    class_toggles: bool = False
    body_state_change: bool = False
    is_overlay_open: bool = False
    dominant_new_element: str | None = None


@dataclass(frozen=True)
class SemanticAction:
    intent: Intent
    label: str
    trigger: ActionTrigger
    effects: DerivedEffects
    requires_stabilization: bool = False
    stabilization_rule: StabilizationRule | None = None
    capture_target: str | None = None


@dataclass
class CollectionPattern:
    """Click steps whose locators differ only in positional terms."""

    normalized_locator: str
    item_count: int = 0
    original_locators: set[str] = field(default_factory=set)
    dominant_intent: Intent | None = None
    is_consistent: bool = True


@dataclass(frozen=True)
class Pattern:
    kind: PatternKind
    selector: str | None = None
    item_count: int = 0
    dominant_intent: Intent | None = None
    is_consistent: bool = True
    effects_consistent: bool = True
    confidence: str | None = None


# ---------------------------------------------------------------------------
# Graph form
# ---------------------------------------------------------------------------

@dataclass
class GraphNode:
    id: str
    node_type: GraphNodeType
    config: dict[str, Any] = field(default_factory=dict)
    children: list["GraphNode"] = field(default_factory=list)
    action_index: int | None = None  # index into the action list, for labels


@dataclass
class Edge:
    source: int
    target: int


@dataclass
class WorkflowGraph:
    nodes: list[GraphNode] = field(default_factory=list)
    connections: list[Edge] = field(default_factory=list)

    def targets_of(self, index: int) -> list[int]:
        return [edge.target for edge in self.connections if edge.source == index]


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    has_cycle: bool = False
    missing_start: bool = False
    missing_output: bool = False


# ---------------------------------------------------------------------------
# Flat IR
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IRConnection:
    to: int
    condition: Condition = Condition.SUCCESS


@dataclass
class IRNode:
    type: IRType
    label: str
    params: dict[str, Any] = field(default_factory=dict)
    connections: list[IRConnection] = field(default_factory=list)
    id: str | None = None  # only scan nodes carry one; loops reference it


@dataclass
class InterpretationResult:
    actions: list[SemanticAction]
    patterns: list[Pattern]
    graph: WorkflowGraph
    workflow_steps: list[IRNode]
    metadata: dict[str, Any] = field(default_factory=dict)
