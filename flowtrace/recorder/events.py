"""Typed host events and the single function that turns them into triggers.

Host adapters translate raw platform events into the dataclasses below and
hand them to ``EventIngestor.ingest``. Everything that is recording policy
(shortcuts, debouncing, noise filters) lives here, not in the adapters.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable, Union

from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.document import DocumentAdapter
from flowtrace.core.errors import DocumentError
from flowtrace.core.scheduler import Debouncer, FrameScheduler
from flowtrace.core.types import (
    ExpandParams,
    Modifiers,
    NodeRef,
    Point,
    ScrollDelta,
    StyleChange,
    TriggerType,
)
from flowtrace.recorder.manager import SessionRecorder
from flowtrace.recorder.session import TriggerRequest

log = logging.getLogger(__name__)

# Keys recorded as keydown triggers; everything else is typing noise
CAPTURE_KEYS = frozenset({
    "Enter", "Escape", "Tab", " ",
    "ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight",
})

_TEXT_ENTRY_TAGS = frozenset({"input", "textarea"})
_CHANGE_TAGS = frozenset({"input", "select", "textarea"})
_FOCUS_TAGS = frozenset({"input", "textarea", "select"})
_OVERFLOW_CLIPPING = frozenset({"hidden", "auto", "scroll"})
_MIN_NUDGED_HEIGHT = 50.0
_CONSTRAINT_SLACK_PX = 5.0
_MAX_CONTAINER_DEPTH = 32


# ---------------------------------------------------------------------------
# Event union
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClickEvent:
    target: NodeRef
    x: float = 0.0
    y: float = 0.0
    button: int = 0  # 0=left, 1=middle, 2=right
    modifiers: Modifiers = field(default_factory=Modifiers)


@dataclass(frozen=True)
class KeyEvent:
    target: NodeRef
    key: str
    modifiers: Modifiers = field(default_factory=Modifiers)


@dataclass(frozen=True)
class SubmitEvent:
    target: NodeRef


@dataclass(frozen=True)
class InputEvent:
    target: NodeRef
    value: str
    trusted: bool = True  # False for autofill and scripted input


@dataclass(frozen=True)
class ChangeEvent:
    target: NodeRef
    value: str | None = None
    checked: bool | None = None


@dataclass(frozen=True)
class FocusEvent:
    target: NodeRef


@dataclass(frozen=True)
class ScrollEvent:
    target: NodeRef | None
    scroll_x: float
    scroll_y: float


@dataclass(frozen=True)
class CheckpointEvent:
    pass


@dataclass(frozen=True)
class MarkCaptureEvent:
    label: str | None = None


@dataclass(frozen=True)
class StyleChangeEvent:
    target: NodeRef
    property: str
    value: str
    priority: str = "important"


@dataclass(frozen=True)
class StyleBatchEvent:
    target: NodeRef
    styles: dict[str, str]
    priority: str = "important"


@dataclass(frozen=True)
class ExpandEvent:
    target: NodeRef
    mode: str = "fit-content"
    clear_ancestor_constraints: bool = True


@dataclass(frozen=True)
class HeightNudgeEvent:
    delta_px: float


HostEvent = Union[
    ClickEvent, KeyEvent, SubmitEvent, InputEvent, ChangeEvent, FocusEvent,
    ScrollEvent, CheckpointEvent, MarkCaptureEvent, StyleChangeEvent,
    StyleBatchEvent, ExpandEvent, HeightNudgeEvent,
]


# ---------------------------------------------------------------------------
# Shortcuts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Shortcut:
    key: str
    modifiers: Modifiers = field(default_factory=Modifiers)

    @classmethod
    def parse(cls, text: str) -> "Shortcut":
        """'ctrl+shift+c' -> Shortcut(key='C', ctrl, shift)"""
        parts = [p.strip().lower() for p in text.split("+") if p.strip()]
        if not parts:
            raise ValueError(f"empty shortcut: {text!r}")
        *mods, key = parts
        unknown = set(mods) - {"ctrl", "shift", "alt", "meta"}
        if unknown:
            raise ValueError(f"unknown modifier(s) in shortcut {text!r}: {sorted(unknown)}")
        return cls(
            key=key.upper(),
            modifiers=Modifiers(
                ctrl="ctrl" in mods,
                shift="shift" in mods,
                alt="alt" in mods,
                meta="meta" in mods,
            ),
        )

    def matches(self, event: KeyEvent) -> bool:
        return event.modifiers == self.modifiers and event.key.upper() == self.key


def is_height_nudge(event: KeyEvent) -> bool:
    mods = event.modifiers
    return mods.ctrl and mods.shift and event.key in ("ArrowUp", "ArrowDown")


def capture_label(now: datetime.datetime | None = None) -> str:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return f"Capture {now.strftime('%H:%M:%S')}"


def find_constrained_container(document: DocumentAdapter, start: NodeRef) -> NodeRef | None:
    """
    Nearest ancestor-or-self whose content overflows a height constraint.

    A candidate must have more content than visible height and either a
    fixed height, a max-height or a clipping overflow. Falls back to
    ``start`` itself when it declares a height or max-height.
    """
    body = document.body()
    root = document.root()
    node: NodeRef | None = start
    for _ in range(_MAX_CONTAINER_DEPTH):
        if node is None or node == body or node == root:
            break
        try:
            snapshot = document.measure(node)
            style = document.computed_style(node)
        except DocumentError:
            return None
        if snapshot.scroll_height > snapshot.rect.height + _CONSTRAINT_SLACK_PX:
            fixed = style.get("height", "auto") not in ("auto", "")
            capped = style.get("max-height", "none") not in ("none", "")
            clipped = (
                style.get("overflow") in _OVERFLOW_CLIPPING
                or style.get("overflow-y") in _OVERFLOW_CLIPPING
            )
            if fixed or capped or clipped:
                return node
        node = document.parent(node)

    try:
        style = document.computed_style(start)
    except DocumentError:
        return None
    if style.get("height", "auto") != "auto" or style.get("max-height", "none") != "none":
        return start
    return None


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class EventIngestor:
    """
    Single entry point from host events to recorder sessions.

    ``ingest`` returns True when the event was accepted, either by opening
    a session straight away or by arming a debounced capture.
    """

    def __init__(
        self,
        recorder: SessionRecorder,
        document: DocumentAdapter,
        scheduler: FrameScheduler,
        config: FlowTraceConfig | None = None,
        wall_clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self._recorder = recorder
        self._doc = document
        self._config = config or DEFAULT_CONFIG
        self._wall_clock = wall_clock
        timers = self._config.timers
        self._input_debounce = Debouncer(scheduler, timers.input_debounce_ms)
        self._scroll_debounce = Debouncer(scheduler, timers.scroll_debounce_ms)
        self._nudge_debounce = Debouncer(scheduler, timers.height_nudge_debounce_ms)
        self._capture_shortcut = Shortcut.parse(self._config.capture_shortcut)
        self._expand_shortcut = Shortcut.parse(self._config.expand_shortcut)
        self._handlers: dict[type, Callable[[object], bool]] = {
            ClickEvent: self._on_click,
            KeyEvent: self._on_key,
            SubmitEvent: self._on_submit,
            InputEvent: self._on_input,
            ChangeEvent: self._on_change,
            FocusEvent: self._on_focus,
            ScrollEvent: self._on_scroll,
            CheckpointEvent: self._on_checkpoint,
            MarkCaptureEvent: self._on_mark_capture,
            StyleChangeEvent: self._on_style_change,
            StyleBatchEvent: self._on_style_batch,
            ExpandEvent: self._on_expand,
            HeightNudgeEvent: self._on_height_nudge,
        }
        self._recording = False
        self._reset_tracking()

    def _reset_tracking(self) -> None:
        self._last_input_values: dict[str, str] = {}
        self._scroll_start: tuple[NodeRef, float, float] | None = None
        self._last_expanded: NodeRef | None = None
        self._nudged_height: float | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def has_pending_capture(self) -> bool:
        return (
            self._input_debounce.pending
            or self._scroll_debounce.pending
            or self._nudge_debounce.pending
        )

    def start(self) -> None:
        self.cancel_pending()
        self._reset_tracking()
        self._recording = True

    def stop(self) -> None:
        self._recording = False
        self.cancel_pending()
        self._reset_tracking()

    def cancel_pending(self) -> None:
        self._input_debounce.cancel()
        self._scroll_debounce.cancel()
        self._nudge_debounce.cancel()

    def ingest(self, event: HostEvent) -> bool:
        if not self._recording:
            return False
        handler = self._handlers.get(type(event))
        if handler is None:
            log.warning("unsupported host event %s ignored", type(event).__name__)
            return False
        return handler(event)

    # ------------------------------------------------------------------
    # Pointer and keyboard
    # ------------------------------------------------------------------

    def _on_click(self, event: ClickEvent) -> bool:
        return self._open(TriggerRequest(
            type=TriggerType.CLICK,
            target=event.target,
            coordinates=Point(event.x, event.y),
            modifiers=event.modifiers,
            button=event.button,
        ))

    def _on_key(self, event: KeyEvent) -> bool:
        if self._capture_shortcut.matches(event):
            return self._on_mark_capture(MarkCaptureEvent())
        if self._expand_shortcut.matches(event):
            container = find_constrained_container(self._doc, event.target)
            if container is None:
                log.warning("no constrained container under the cursor")
                return False
            return self._on_expand(ExpandEvent(target=container))
        if is_height_nudge(event):
            step = self._config.manual_expand_step
            delta = step if event.key == "ArrowUp" else -step
            return self._on_height_nudge(HeightNudgeEvent(delta_px=delta))
        if event.key not in CAPTURE_KEYS:
            return False
        return self._open(TriggerRequest(
            type=TriggerType.KEYDOWN,
            target=event.target,
            key=event.key,
            modifiers=event.modifiers,
        ))

    def _on_submit(self, event: SubmitEvent) -> bool:
        return self._open(TriggerRequest(type=TriggerType.SUBMIT, target=event.target))

    # ------------------------------------------------------------------
    # Form fields
    # ------------------------------------------------------------------

    def _is_text_entry(self, node: NodeRef) -> bool:
        if self._doc.tag_name(node) in _TEXT_ENTRY_TAGS:
            return True
        editable = self._doc.get_attribute(node, "contenteditable")
        return editable is not None and editable.lower() != "false"

    def _on_input(self, event: InputEvent) -> bool:
        if not self._doc.is_attached(event.target) or not self._is_text_entry(event.target):
            return False
        if not event.trusted:
            log.debug("untrusted input on %s skipped", event.target)
            return False
        if self._last_input_values.get(event.target.key) == event.value:
            return False

        def capture() -> None:
            self._last_input_values[event.target.key] = event.value
            self._open(TriggerRequest(type=TriggerType.INPUT, target=event.target, value=event.value))

        self._input_debounce.trigger(capture)
        return True

    def _on_change(self, event: ChangeEvent) -> bool:
        if not self._doc.is_attached(event.target):
            return False
        if self._doc.tag_name(event.target) not in _CHANGE_TAGS:
            return False
        value = event.value
        input_type = (self._doc.get_attribute(event.target, "type") or "").lower()
        if input_type in ("checkbox", "radio"):
            value = "true" if event.checked else "false"
        return self._open(TriggerRequest(type=TriggerType.INPUT_CHANGE, target=event.target, value=value))

    def _on_focus(self, event: FocusEvent) -> bool:
        if not self._doc.is_attached(event.target):
            return False
        if self._doc.tag_name(event.target) not in _FOCUS_TAGS and not self._is_text_entry(event.target):
            return False
        return self._open(TriggerRequest(type=TriggerType.FOCUS, target=event.target))

    # ------------------------------------------------------------------
    # Scrolling
    # ------------------------------------------------------------------

    def _on_scroll(self, event: ScrollEvent) -> bool:
        if self._scroll_start is None:
            target = event.target or self._doc.root()
            self._scroll_start = (target, event.scroll_x, event.scroll_y)
        self._scroll_debounce.trigger(lambda: self._finish_scroll(event.scroll_x, event.scroll_y))
        return True

    def _finish_scroll(self, end_x: float, end_y: float) -> None:
        start, self._scroll_start = self._scroll_start, None
        if start is None:
            return
        target, start_x, start_y = start
        scroll = ScrollDelta(from_x=start_x, from_y=start_y, to_x=end_x, to_y=end_y)
        threshold = self._config.timers.scroll_min_delta_px
        if abs(scroll.delta_x) <= threshold and abs(scroll.delta_y) <= threshold:
            log.debug("scroll of (%.0f, %.0f) below threshold", scroll.delta_x, scroll.delta_y)
            return
        self._open(TriggerRequest(type=TriggerType.SCROLL, target=target, scroll=scroll))

    # ------------------------------------------------------------------
    # Captures
    # ------------------------------------------------------------------

    def _on_checkpoint(self, event: CheckpointEvent) -> bool:
        self._recorder.finalize_current_session()
        return self._open(TriggerRequest(type=TriggerType.CHECKPOINT, target=self._doc.body()))

    def _on_mark_capture(self, event: MarkCaptureEvent) -> bool:
        label = event.label
        if not label:
            label = capture_label(self._wall_clock() if self._wall_clock else None)
        log.info("capture marked: %s", label)
        return self._open(TriggerRequest(
            type=TriggerType.CAPTURE_POINT,
            target=self._doc.body(),
            capture_label=label,
        ))

    # ------------------------------------------------------------------
    # Styles and expansion
    # ------------------------------------------------------------------

    def _on_style_change(self, event: StyleChangeEvent) -> bool:
        return self._open(TriggerRequest(
            type=TriggerType.STYLE_CHANGE,
            target=event.target,
            style_change=StyleChange(event.property, event.value, event.priority),
        ))

    def _on_style_batch(self, event: StyleBatchEvent) -> bool:
        if not event.styles:
            return False
        batch = tuple(StyleChange(prop, value, event.priority) for prop, value in event.styles.items())
        return self._open(TriggerRequest(
            type=TriggerType.STYLE_CHANGES_BATCH,
            target=event.target,
            style_changes_batch=batch,
        ))

    def _on_expand(self, event: ExpandEvent) -> bool:
        self._last_expanded = event.target
        self._nudged_height = None
        return self._open(TriggerRequest(
            type=TriggerType.EXPAND,
            target=event.target,
            expand_params=ExpandParams(
                mode=event.mode,
                clear_ancestor_constraints=event.clear_ancestor_constraints,
            ),
        ))

    def _on_height_nudge(self, event: HeightNudgeEvent) -> bool:
        target = self._last_expanded
        if target is None or not self._doc.is_attached(target):
            log.warning("height nudge ignored: nothing has been expanded")
            return False
        if self._nudged_height is None:
            try:
                self._nudged_height = self._doc.measure(target).rect.height
            except DocumentError:
                return False
        self._nudged_height = max(_MIN_NUDGED_HEIGHT, self._nudged_height + event.delta_px)
        self._nudge_debounce.trigger(self._commit_height)
        return True

    def _commit_height(self) -> None:
        target, height = self._last_expanded, self._nudged_height
        self._nudged_height = None
        if target is None or height is None:
            return
        self._open(TriggerRequest(
            type=TriggerType.STYLE_CHANGE,
            target=target,
            style_change=StyleChange("height", f"{round(height)}px", "important"),
        ))

    # ------------------------------------------------------------------

    def _open(self, request: TriggerRequest) -> bool:
        return self._recorder.start_session(request) is not None
