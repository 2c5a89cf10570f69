"""Host control interface: start/stop recording, captures, trace retrieval."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from flowtrace.compiler.compiler import WorkflowCompiler
from flowtrace.compiler.export import interpretation_to_dict, ir_to_dicts
from flowtrace.compiler.interpreter import TraceInterpreter
from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.document import DocumentAdapter
from flowtrace.core.errors import FlowTraceError, NotRecordingError
from flowtrace.core.scheduler import FrameScheduler
from flowtrace.core.serialize import step_to_dict
from flowtrace.core.types import Step
from flowtrace.locator.resolver import LocatorResolver
from flowtrace.recorder.events import (
    CheckpointEvent,
    EventIngestor,
    HostEvent,
    MarkCaptureEvent,
)
from flowtrace.recorder.manager import SessionRecorder
from flowtrace.recorder.mutations import MutationBatcher

log = logging.getLogger(__name__)

COMPILE_MODES = ("ir", "graph")


@dataclass
class CommandResult:
    status: str
    count: int | None = None
    steps: list[dict[str, Any]] = field(default_factory=list)
    workflow: Any = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status not in ("error", "unknown_action")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"status": self.status}
        if self.count is not None:
            d["count"] = self.count
        if self.steps:
            d["steps"] = self.steps
        if self.workflow is not None:
            d["workflow"] = self.workflow
        if self.message:
            d["message"] = self.message
        return d


class RecordingController:
    """
    Wires one document, scheduler, resolver, recorder, mutation batcher and
    event ingestor together behind a small command surface.

    Usage:
        controller = RecordingController(document)
        controller.start_recording()
        controller.ingest(ClickEvent(target=node))
        controller.scheduler.advance(1000)
        result = controller.get_trace(compile="ir")
    """

    def __init__(
        self,
        document: DocumentAdapter,
        scheduler: FrameScheduler | None = None,
        config: FlowTraceConfig | None = None,
        on_step: Callable[[Step], None] | None = None,
    ) -> None:
        self._config = config or DEFAULT_CONFIG
        self.document = document
        self.scheduler = scheduler or FrameScheduler(frame_ms=self._config.stabilization.frame_ms)
        self.resolver = LocatorResolver(document, self._config)
        self.recorder = SessionRecorder(
            document, self.scheduler, self.resolver, self._config, on_step=on_step,
        )
        self.mutations = MutationBatcher(
            document, self.scheduler, self.recorder.add_mutation, self._config,
        )
        self.ingestor = EventIngestor(self.recorder, document, self.scheduler, self._config)
        self._commands: dict[str, Callable[..., CommandResult]] = {
            "start_recording": self.start_recording,
            "stop_recording": self.stop_recording,
            "capture_checkpoint": self.capture_checkpoint,
            "mark_capture": self.mark_capture,
            "get_trace": self.get_trace,
        }

    @property
    def recording(self) -> bool:
        return self.ingestor.recording

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start_recording(self) -> CommandResult:
        self.recorder.reset()
        self.resolver.clear_cache()
        self.mutations.start()
        self.ingestor.start()
        log.info("recording started on %s", self.document.location())
        return CommandResult(status="started")

    def stop_recording(self) -> CommandResult:
        self.ingestor.stop()
        self.recorder.finalize_current_session()
        self.mutations.stop()
        count = len(self.recorder.steps)
        log.info("recording stopped with %d steps", count)
        return CommandResult(status="stopped", count=count)

    def capture_checkpoint(self) -> CommandResult:
        self._require_recording("capture_checkpoint")
        self.ingestor.ingest(CheckpointEvent())
        return CommandResult(status="captured")

    def mark_capture(self, label: str | None = None) -> CommandResult:
        self._require_recording("mark_capture")
        self.ingestor.ingest(MarkCaptureEvent(label=label))
        return CommandResult(status="marked")

    def get_trace(self, compile: str | None = None) -> CommandResult:
        if compile is not None and compile not in COMPILE_MODES:
            raise FlowTraceError(f"unknown compile mode {compile!r}, expected one of {COMPILE_MODES}")
        steps = self.recorder.steps
        workflow = None
        if compile == "ir":
            compiler = WorkflowCompiler(self._config)
            workflow = ir_to_dicts(compiler.compile(self.document.location(), steps))
        elif compile == "graph":
            interpreter = TraceInterpreter(self._config)
            workflow = interpretation_to_dict(interpreter.interpret(steps, self.document.location()))
        return CommandResult(
            status="ok",
            count=len(steps),
            steps=[step_to_dict(step) for step in steps],
            workflow=workflow,
        )

    def handle(self, name: str, **kwargs: Any) -> CommandResult:
        """Dispatch a command by name; failures come back as an ``error`` status."""
        command = self._commands.get(name)
        if command is None:
            log.warning("unknown command %r", name)
            return CommandResult(status="unknown_action", message=f"unknown command {name!r}")
        try:
            return command(**kwargs)
        except FlowTraceError as exc:
            log.warning("command %s failed: %s", name, exc)
            return CommandResult(status="error", message=str(exc))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def ingest(self, event: HostEvent) -> bool:
        return self.ingestor.ingest(event)

    def _require_recording(self, command: str) -> None:
        if not self.recording:
            raise NotRecordingError(f"{command} requires an active recording")
