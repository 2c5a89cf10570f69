"""Recording layer: sessions, mutation batching, host events, control commands."""

from flowtrace.recorder.controller import CommandResult, RecordingController
from flowtrace.recorder.events import (
    ChangeEvent,
    CheckpointEvent,
    ClickEvent,
    EventIngestor,
    ExpandEvent,
    FocusEvent,
    HeightNudgeEvent,
    HostEvent,
    InputEvent,
    KeyEvent,
    MarkCaptureEvent,
    ScrollEvent,
    StyleBatchEvent,
    StyleChangeEvent,
    SubmitEvent,
)
from flowtrace.recorder.manager import RecorderState, SessionRecorder
from flowtrace.recorder.mutations import MutationBatcher
from flowtrace.recorder.session import InteractionSession, TriggerRequest

__all__ = [
    "ChangeEvent",
    "CheckpointEvent",
    "ClickEvent",
    "CommandResult",
    "EventIngestor",
    "ExpandEvent",
    "FocusEvent",
    "HeightNudgeEvent",
    "HostEvent",
    "InputEvent",
    "InteractionSession",
    "KeyEvent",
    "MarkCaptureEvent",
    "MutationBatcher",
    "RecorderState",
    "RecordingController",
    "ScrollEvent",
    "SessionRecorder",
    "StyleBatchEvent",
    "StyleChangeEvent",
    "SubmitEvent",
    "TriggerRequest",
]
