"""JSON-ready dicts for compiler output (flat IR, graph form, interpretation)."""

from __future__ import annotations

from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Sequence

from flowtrace.compiler.types import (
    GraphNode,
    InterpretationResult,
    IRNode,
    Pattern,
    SemanticAction,
    WorkflowGraph,
)


def _plain(value: Any) -> Any:
    """Enums to their values, dataclasses to dicts, sets to sorted lists."""
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return _plain(asdict(value))
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(v) for v in value)
    return value


def ir_node_to_dict(node: IRNode) -> dict[str, Any]:
    d: dict[str, Any] = {}
    if node.id is not None:
        d["id"] = node.id
    d["type"] = node.type.value
    d["label"] = node.label
    d["params"] = _plain(node.params)
    d["connections"] = [{"to": c.to, "condition": c.condition.value} for c in node.connections]
    return d


def ir_to_dicts(workflow: Sequence[IRNode]) -> list[dict[str, Any]]:
    return [ir_node_to_dict(node) for node in workflow]


def _graph_node_to_dict(node: GraphNode) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": node.id,
        "type": node.node_type.value,
        "config": _plain(node.config),
    }
    if node.children:
        d["children"] = [_graph_node_to_dict(child) for child in node.children]
    return d


def graph_to_dict(graph: WorkflowGraph) -> dict[str, Any]:
    return {
        "nodes": [_graph_node_to_dict(node) for node in graph.nodes],
        "connections": [{"from": e.source, "to": e.target} for e in graph.connections],
    }


def _action_to_dict(action: SemanticAction) -> dict[str, Any]:
    return _plain(action)


def _pattern_to_dict(pattern: Pattern) -> dict[str, Any]:
    return {k: v for k, v in _plain(pattern).items() if v is not None}


def interpretation_to_dict(result: InterpretationResult) -> dict[str, Any]:
    return {
        "semantic_actions": [_action_to_dict(a) for a in result.actions],
        "patterns": [_pattern_to_dict(p) for p in result.patterns],
        "workflow_graph": graph_to_dict(result.graph),
        "workflow_steps": ir_to_dicts(result.workflow_steps),
        "metadata": dict(result.metadata),
    }
