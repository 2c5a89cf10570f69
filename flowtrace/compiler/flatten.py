"""Graph -> flat IR: one IR node per graph node, edges as embedded connections."""

from __future__ import annotations

from typing import Any, Sequence

from flowtrace.compiler.types import (
    Condition,
    GraphNode,
    GraphNodeType,
    IRConnection,
    IRNode,
    IRType,
    SemanticAction,
    WorkflowGraph,
)
from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.locator.tokens import Notation, TokenKind, render_segments, try_parse

DEFAULT_START_URL = "https://example.com"
_DEFAULT_LOOP_ITERATIONS = 10

_TYPE_TABLE: dict[GraphNodeType, IRType] = {
    GraphNodeType.START: IRType.START,
    GraphNodeType.ELEMENT_SCAN: IRType.ELEMENT_SCAN,
    GraphNodeType.FOR_EACH_ITEM: IRType.FOR_EACH_ELEMENT,
    GraphNodeType.CLICK: IRType.CLICK,
    GraphNodeType.INPUT: IRType.TYPE,
    GraphNodeType.INPUT_CHANGE: IRType.TYPE,
    GraphNodeType.CHANGE: IRType.TYPE,
    GraphNodeType.KEYDOWN: IRType.CLICK,
    GraphNodeType.FOCUS: IRType.CLICK,
    GraphNodeType.SUBMIT: IRType.CLICK,
    GraphNodeType.SCROLL: IRType.SCROLL,
    GraphNodeType.CAPTURE_POINT: IRType.SCREENSHOT,
    GraphNodeType.CHECKPOINT: IRType.SCREENSHOT,
    GraphNodeType.STYLE_CHANGE: IRType.SET_STYLE,
    GraphNodeType.STYLE_CHANGES_BATCH: IRType.SET_STYLE,
    GraphNodeType.EXPAND: IRType.EXPAND,
    GraphNodeType.WAIT_VISUAL_STABLE: IRType.WAIT,
    GraphNodeType.SCREENSHOT: IRType.SCREENSHOT,
    GraphNodeType.CLOSE_MODAL: IRType.CLICK,
    GraphNodeType.OUTPUT: IRType.OUTPUT,
}

_FIXED_LABELS: dict[GraphNodeType, str] = {
    GraphNodeType.START: "Open page",
    GraphNodeType.OUTPUT: "Save results",
    GraphNodeType.FOR_EACH_ITEM: "Process each item",
    GraphNodeType.SCREENSHOT: "Capture screenshot",
    GraphNodeType.WAIT_VISUAL_STABLE: "Wait for page to stabilize",
}

# item tag -> the container it usually lives in
_ROOT_BY_ITEM_TAG = {"li": "ul", "tr": "tbody", "option": "select"}


def map_node_type(node_type: GraphNodeType) -> IRType:
    return _TYPE_TABLE[node_type]


def split_scan_selector(selector: str | None) -> tuple[str, str]:
    """``"ul.menu > li"`` -> ``("ul.menu", "li")``; single compounds get an inferred root."""
    if not selector:
        return "body", "*"
    parsed = try_parse(selector)
    if parsed is not None and parsed.notation is Notation.CSS and len(parsed.segments) > 1:
        *head, last = parsed.segments
        if last.combinator == ">":
            return render_segments(head), render_segments([last])
    return infer_root_selector(selector), selector


def infer_root_selector(item_selector: str | None) -> str:
    if not item_selector:
        return "body"
    parsed = try_parse(item_selector)
    if parsed is None or parsed.notation is not Notation.CSS:
        return "body"
    first = parsed.segments[0].tokens[0]
    if first.kind is not TokenKind.TAG:
        return "body"
    return _ROOT_BY_ITEM_TAG.get(first.value, "body")


def _connections(targets: list[int]) -> list[IRConnection]:
    """First edge is the success path; any further edges are error paths."""
    if not targets:
        return []
    head, *rest = targets
    return [IRConnection(head, Condition.SUCCESS)] + [
        IRConnection(t, Condition.ERROR) for t in rest
    ]


class _Flattener:
    def __init__(
        self,
        graph: WorkflowGraph,
        actions: Sequence[SemanticAction],
        url: str | None,
        config: FlowTraceConfig,
    ) -> None:
        self.graph = graph
        self.actions = actions
        self.url = url or DEFAULT_START_URL
        self.config = config
        self.index_by_id = {node.id: i for i, node in enumerate(graph.nodes)}

    def run(self) -> list[IRNode]:
        return [
            IRNode(
                type=map_node_type(node.node_type),
                label=self.label(node),
                params=self.params(node, index),
                connections=_connections(self.graph.targets_of(index)),
            )
            for index, node in enumerate(self.graph.nodes)
        ]

    # ------------------------------------------------------------------

    def label(self, node: GraphNode) -> str:
        if node.node_type is GraphNodeType.ELEMENT_SCAN:
            return f"Scan {node.config.get('selector') or 'elements'}"
        fixed = _FIXED_LABELS.get(node.node_type)
        if fixed:
            return fixed
        if node.action_index is not None and node.action_index < len(self.actions):
            return self.actions[node.action_index].label
        return node.node_type.value.lower().replace("_", " ")

    def params(self, node: GraphNode, index: int) -> dict[str, Any]:
        kind = node.node_type
        if kind is GraphNodeType.START:
            return {"url": self.url}
        if kind is GraphNodeType.OUTPUT:
            return {}
        if kind is GraphNodeType.FOR_EACH_ITEM:
            return self.loop_params(node)
        if kind is GraphNodeType.ELEMENT_SCAN:
            return self.scan_params(node)
        if kind is GraphNodeType.WAIT_VISUAL_STABLE:
            return self.wait_params(node)
        if kind is GraphNodeType.SCREENSHOT:
            return self.screenshot_params(node, f"screenshot-{index}")
        return {k: v for k, v in node.config.items() if v is not None}

    def scan_params(self, node: GraphNode) -> dict[str, Any]:
        root, item = split_scan_selector(node.config.get("selector"))
        params: dict[str, Any] = {"rootSelector": root, "itemSelector": item}
        if node.config.get("limit"):
            params["maxItems"] = node.config["limit"]
        params["strategy"] = "css"
        return params

    def wait_params(self, node: GraphNode) -> dict[str, Any]:
        params: dict[str, Any] = {
            "condition": "layout-stable",
            "timeoutMs": int(self.config.stabilization.max_timeout_ms),
        }
        if node.config.get("observe"):
            params["selector"] = node.config["observe"]
        return params

    def screenshot_params(self, node: GraphNode, default_name: str) -> dict[str, Any]:
        return {
            "captureMode": "page",
            "target": "element",
            "selector": node.config.get("target") or "body",
            "format": "jpeg",
            "viewportWidth": 1440,
            "useDynamicHeight": True,
            "dynamicHeightDelay": 1,
            "fullPage": True,
            "filename": node.config.get("filename") or default_name,
        }

    def loop_params(self, node: GraphNode) -> dict[str, Any]:
        source = self.index_by_id.get(node.config.get("source_node", ""))
        actions = []
        for child in node.children:
            if child.node_type is GraphNodeType.SCREENSHOT:
                child_params = self.screenshot_params(child, "screenshot-{{loop.index}}")
            elif child.node_type is GraphNodeType.WAIT_VISUAL_STABLE:
                child_params = {
                    "condition": "layout-stable",
                    "timeoutMs": int(self.config.stabilization.max_timeout_ms),
                }
            else:
                child_params = dict(child.config)
            actions.append({"type": map_node_type(child.node_type).value, "params": child_params})
        return {
            "source": source,
            "mode": "for-each",
            "maxIterations": node.config.get("limit") or _DEFAULT_LOOP_ITERATIONS,
            "actions": actions,
        }


def flatten(
    graph: WorkflowGraph,
    actions: Sequence[SemanticAction],
    url: str | None = None,
    config: FlowTraceConfig | None = None,
) -> list[IRNode]:
    """Flat IR for ``graph``: indices are array positions, OUTPUT has no connections."""
    return _Flattener(graph, actions, url, config or DEFAULT_CONFIG).run()
