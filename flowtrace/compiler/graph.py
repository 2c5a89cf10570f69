"""Workflow graph validation and automatic repair."""

from __future__ import annotations

import logging

from flowtrace.compiler.types import (
    Edge,
    GraphNode,
    GraphNodeType,
    ValidationResult,
    WorkflowGraph,
)

log = logging.getLogger(__name__)


def _find_back_edges(graph: WorkflowGraph) -> list[Edge]:
    """Edges that close a cycle, found by iterative depth-first search."""
    count = len(graph.nodes)
    adjacency: dict[int, list[Edge]] = {i: [] for i in range(count)}
    for edge in graph.connections:
        if edge.source in adjacency:
            adjacency[edge.source].append(edge)

    WHITE, GREY, BLACK = 0, 1, 2
    colour = [WHITE] * count
    back: list[Edge] = []
    for root in range(count):
        if colour[root] != WHITE:
            continue
        colour[root] = GREY
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node, edges = stack[-1]
            edge = next(edges, None)
            if edge is None:
                colour[node] = BLACK
                stack.pop()
                continue
            target = edge.target
            if not 0 <= target < count:
                continue
            if colour[target] == GREY:
                back.append(edge)
            elif colour[target] == WHITE:
                colour[target] = GREY
                stack.append((target, iter(adjacency[target])))
    return back


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """
    Check the structural invariants of a workflow graph.

    Errors (cycle, missing START) make the graph invalid; orphans and a
    missing OUTPUT are warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []
    nodes = graph.nodes

    back_edges = _find_back_edges(graph)
    for edge in back_edges:
        errors.append(f"Cycle detected at node {edge.target} (edge {edge.source} -> {edge.target})")

    for edge in graph.connections:
        if not (0 <= edge.source < len(nodes) and 0 <= edge.target < len(nodes)):
            errors.append(f"Connection {edge.source} -> {edge.target} references a missing node")

    has_incoming = {edge.target for edge in graph.connections}
    for index, node in enumerate(nodes):
        if index == 0:
            continue
        if index not in has_incoming:
            warnings.append(f"Node {index} ({node.node_type.value}) has no incoming connections")

    missing_start = not nodes or nodes[0].node_type is not GraphNodeType.START
    if missing_start:
        errors.append("Missing START node at index 0")
    elif 0 in has_incoming:
        errors.append("START node has incoming connections")

    missing_output = not nodes or nodes[-1].node_type is not GraphNodeType.OUTPUT
    if missing_output:
        warnings.append("Missing OUTPUT node at the end")

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        has_cycle=bool(back_edges),
        missing_start=missing_start,
        missing_output=missing_output,
    )


def auto_repair(graph: WorkflowGraph) -> WorkflowGraph:
    """
    Return a repaired copy: back edges and dangling edges dropped, START
    prepended (every index shifted by one) and OUTPUT appended when absent.
    """
    nodes = list(graph.nodes)
    has_start = bool(nodes) and nodes[0].node_type is GraphNodeType.START
    back = {id(edge) for edge in _find_back_edges(graph)}
    connections = [
        Edge(edge.source, edge.target)
        for edge in graph.connections
        if id(edge) not in back
        and 0 <= edge.source < len(nodes)
        and 0 <= edge.target < len(nodes)
        and not (has_start and edge.target == 0)
    ]
    if back:
        log.warning("dropped %d cycle-closing connection(s)", len(back))

    if not has_start:
        log.warning("auto-injecting START node")
        nodes.insert(0, GraphNode(id="node_start", node_type=GraphNodeType.START))
        connections = [Edge(edge.source + 1, edge.target + 1) for edge in connections]
        if len(nodes) > 1:
            connections.insert(0, Edge(0, 1))

    if nodes[-1].node_type is not GraphNodeType.OUTPUT:
        log.warning("auto-injecting OUTPUT node")
        index = len(nodes)
        nodes.append(GraphNode(id=f"node_{index}", node_type=GraphNodeType.OUTPUT))
        connections.append(Edge(index - 1, index))

    return WorkflowGraph(nodes=nodes, connections=connections)


def ensure_valid(graph: WorkflowGraph) -> WorkflowGraph:
    """Validate, log the findings, and repair when anything is wrong."""
    result = validate_graph(graph)
    if result.errors:
        log.error("graph validation failed: %s", "; ".join(result.errors))
    if result.warnings:
        log.warning("graph warnings: %s", "; ".join(result.warnings))
    if not result.valid or result.missing_output:
        graph = auto_repair(graph)
    return graph
