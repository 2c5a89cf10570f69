from flowtrace.config import FlowTraceConfig, load_config
from flowtrace.core.types import (
    Effects,
    Locator,
    LocatorCandidates,
    NodeRef,
    SettlementReport,
    Step,
    StrategyKind,
    Trigger,
    TriggerType,
)
from flowtrace.core.scheduler import FrameScheduler
from flowtrace.compiler.compiler import WorkflowCompiler
from flowtrace.compiler.interpreter import TraceInterpreter
from flowtrace.dom.html import HtmlDocument
from flowtrace.locator.resolver import LocatorResolver
from flowtrace.monitor.stabilizer import StabilizationMonitor
from flowtrace.recorder.controller import RecordingController
from flowtrace.recorder.manager import SessionRecorder

__all__ = [
    "FlowTraceConfig",
    "load_config",
    "Effects",
    "Locator",
    "LocatorCandidates",
    "NodeRef",
    "SettlementReport",
    "Step",
    "StrategyKind",
    "Trigger",
    "TriggerType",
    "FrameScheduler",
    "HtmlDocument",
    "LocatorResolver",
    "SessionRecorder",
    "StabilizationMonitor",
    "RecordingController",
    # Compilers
    "TraceInterpreter",
    "WorkflowCompiler",
]
