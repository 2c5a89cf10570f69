"""Workflow compilers: trace interpretation to a graph, and direct Step -> IR."""

from flowtrace.compiler.compiler import WorkflowCompiler
from flowtrace.compiler.export import graph_to_dict, interpretation_to_dict, ir_to_dicts
from flowtrace.compiler.graph import auto_repair, ensure_valid, validate_graph
from flowtrace.compiler.interpreter import TraceInterpreter
from flowtrace.compiler.types import (
    Condition,
    GraphNode,
    GraphNodeType,
    InterpretationResult,
    Intent,
    IRConnection,
    IRNode,
    IRType,
    Pattern,
    PatternKind,
    SemanticAction,
    ValidationResult,
    WorkflowGraph,
)

__all__ = [
    "Condition",
    "GraphNode",
    "GraphNodeType",
    "IRConnection",
    "IRNode",
    "IRType",
    "Intent",
    "InterpretationResult",
    "Pattern",
    "PatternKind",
    "SemanticAction",
    "TraceInterpreter",
    "ValidationResult",
    "WorkflowCompiler",
    "WorkflowGraph",
    "auto_repair",
    "ensure_valid",
    "graph_to_dict",
    "interpretation_to_dict",
    "ir_to_dicts",
    "validate_graph",
]
